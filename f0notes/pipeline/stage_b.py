"""
Stage B: Frame classification

Runs the pitch model and turns its per-hop (frequency, confidence) output
into FramePitch objects: a timestamp at the analysis-window centre and a
voiced/unvoiced decision from the frequency band and confidence gate.
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence, Union
import logging
import math

import numpy as np

from .config import PipelineConfig, StageBConfig
from .detectors import BasePitchDetector, create_detector
from .errors import PitchDetectionError
from .models import FramePitch, StageAOutput, StageBOutput

logger = logging.getLogger(__name__)

__all__ = [
    "pitch_of",
    "compute_voicing",
    "frame_timestamp",
    "build_frames",
    "extract_features",
]


def pitch_of(frequency_hz: float) -> float:
    """Continuous MIDI pitch (A4 = 69, 12 per octave); 0.0 for non-positive or NaN input."""
    if math.isnan(frequency_hz) or frequency_hz <= 0:
        return 0.0
    return 69.0 + 12.0 * math.log2(frequency_hz / 440.0)


def compute_voicing(
    pitch_hz: float,
    confidence: float,
    fmin: float,
    fmax: float,
    confidence_threshold: float,
) -> bool:
    # written as inclusive ranges so NaN input is never voiced
    if not (fmin <= pitch_hz <= fmax):
        return False
    return bool(confidence >= confidence_threshold)


def frame_timestamp(index: int, hop_length: int, frame_length: int, sample_rate: int) -> float:
    """Time (s) of the centre of frame ``index``, accounting for STFT padding."""
    stft_padding = (frame_length - hop_length) // 2
    center_offset = (frame_length - 1) / 2.0 - stft_padding
    return (index * hop_length + center_offset) / float(sample_rate)


def build_frames(
    f0_hz: Sequence[float],
    confidence: Sequence[float],
    config: Optional[Union[PipelineConfig, StageBConfig]] = None,
    sample_rate: Optional[int] = None,
) -> List[FramePitch]:
    """Zip the model's two output arrays into classified frames."""
    if config is None:
        config = PipelineConfig()
    if isinstance(config, PipelineConfig):
        b_conf = config.stage_b
        sr = sample_rate or config.stage_a.target_sample_rate
    else:
        b_conf = config
        sr = sample_rate or PipelineConfig().stage_a.target_sample_rate

    f0 = np.asarray(f0_hz, dtype=np.float64).reshape(-1)
    conf = np.asarray(confidence, dtype=np.float64).reshape(-1)
    if f0.shape != conf.shape:
        raise PitchDetectionError(
            f"Pitch detection failed due to unexpected output from the model "
            f"({f0.size} frequencies vs {conf.size} confidences)."
        )

    frames: List[FramePitch] = []
    for i, (hz, c) in enumerate(zip(f0.tolist(), conf.tolist())):
        frames.append(FramePitch(
            time=frame_timestamp(i, b_conf.hop_length, b_conf.frame_length, sr),
            pitch_hz=float(hz),
            confidence=float(c),
            voiced=compute_voicing(hz, c, b_conf.fmin, b_conf.fmax, b_conf.confidence_threshold),
        ))
    return frames


def extract_features(
    stage_a_out: StageAOutput,
    config: Optional[PipelineConfig] = None,
    detector: Optional[BasePitchDetector] = None,
    pipeline_logger: Optional[Any] = None,
) -> StageBOutput:
    """
    Stage B main entry point.

    Uses ``detector`` when given (tests, alternative models), otherwise the
    SwiftF0 model configured from ``config.stage_b``.
    """
    config = config or PipelineConfig()
    b_conf = config.stage_b
    sr = int(stage_a_out.meta.sample_rate)

    if detector is None:
        detector = create_detector(config, sr)

    f0, conf = detector.predict(stage_a_out.audio)
    frames = build_frames(f0, conf, config, sample_rate=sr)

    hop_seconds = float(b_conf.hop_length) / float(sr)
    out = StageBOutput(
        frames=frames,
        hop_seconds=hop_seconds,
        meta=stage_a_out.meta,
        f0_hz=np.asarray(f0, dtype=np.float32).reshape(-1),
        confidence=np.asarray(conf, dtype=np.float32).reshape(-1),
    )
    out.diagnostics["detector"] = str(detector)
    out.diagnostics["n_frames"] = len(frames)
    out.diagnostics["voiced_ratio"] = out.voiced_ratio

    logger.info(
        "Stage B: %d frames (%.1f%% voiced) from %s",
        len(frames), 100.0 * out.voiced_ratio, detector,
    )
    if pipeline_logger:
        pipeline_logger.log_event("stage_b", "frames", dict(out.diagnostics))
    return out
