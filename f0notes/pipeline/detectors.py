# f0notes/pipeline/detectors.py
from __future__ import annotations

from typing import Any, Tuple

import logging
import numpy as np

from .config import MODEL_HOP_LENGTH, MODEL_MAX_FREQUENCY, MODEL_MIN_FREQUENCY, MODEL_SAMPLE_RATE
from .errors import DetectionError, IncompatibleModelError, PitchDetectionError

try:
    from swift_f0 import SwiftF0  # type: ignore
except Exception:  # pragma: no cover - optional heavy dependency
    SwiftF0 = None  # type: ignore

logger = logging.getLogger(__name__)


class BasePitchDetector:
    """
    Base class used by Stage B.
    Must implement: predict(audio) -> (f0_hz, confidence), one value per hop.
    """

    def __init__(
        self,
        sr: int,
        hop_length: int,
        frame_length: int = 1024,
        fmin: float = MODEL_MIN_FREQUENCY,
        fmax: float = MODEL_MAX_FREQUENCY,
        threshold: float = 0.9,
        **kwargs: Any,
    ):
        self.sr = int(sr)
        self.hop_length = int(hop_length)
        self.frame_length = int(frame_length)
        self.fmin = float(fmin)
        self.fmax = float(fmax)
        self.threshold = float(threshold)

    def predict(self, audio: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.__class__.__name__


class SwiftF0Detector(BasePitchDetector):
    """
    SwiftF0 model via the ``swift_f0`` package.

    The model is fixed to 16 kHz input with a 256-sample hop, so the detector
    refuses any other geometry instead of silently mis-timing frames.
    """

    def __init__(self, sr: int, hop_length: int, frame_length: int = 1024, **kwargs: Any):
        super().__init__(sr=sr, hop_length=hop_length, frame_length=frame_length, **kwargs)
        if SwiftF0 is None:
            raise DetectionError("SwiftF0 unavailable: install the 'swift-f0' package.")
        if self.sr != MODEL_SAMPLE_RATE or self.hop_length != MODEL_HOP_LENGTH:
            raise IncompatibleModelError(
                f"The provided model format is incompatible with the detector "
                f"(expects {MODEL_SAMPLE_RATE} Hz / hop {MODEL_HOP_LENGTH}, "
                f"got {self.sr} Hz / hop {self.hop_length})."
            )
        self._model = SwiftF0(confidence_threshold=self.threshold, fmin=self.fmin, fmax=self.fmax)

    def predict(self, audio: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        y = np.asarray(audio, dtype=np.float32).reshape(-1)
        if y.size == 0:
            return np.zeros((0,), dtype=np.float32), np.zeros((0,), dtype=np.float32)

        try:
            result = self._model.detect_from_array(y, self.sr)
        except Exception as e:
            raise PitchDetectionError(f"Pitch detection failed due to unexpected output from the model: {e}") from e

        f0 = getattr(result, "pitch_hz", None)
        conf = getattr(result, "confidence", None)
        if f0 is None or conf is None:
            raise PitchDetectionError("Pitch detection failed due to unexpected output from the model.")

        f0 = np.asarray(f0, dtype=np.float32).reshape(-1)
        conf = np.asarray(conf, dtype=np.float32).reshape(-1)
        logger.debug("SwiftF0: %d frames from %d samples", f0.size, y.size)
        return f0, conf


def create_detector(config: Any, sr: int) -> BasePitchDetector:
    """Build the default detector from a PipelineConfig's Stage B section."""
    b_conf = config.stage_b
    return SwiftF0Detector(
        sr,
        b_conf.hop_length,
        frame_length=b_conf.frame_length,
        fmin=b_conf.fmin,
        fmax=b_conf.fmax,
        threshold=b_conf.confidence_threshold,
    )
