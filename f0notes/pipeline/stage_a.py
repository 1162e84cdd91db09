"""
Stage A: Load & Preprocess

Decodes audio and converts it to the pitch model's input format:
mono, 32-bit float, resampled to the target sample rate (16 kHz).
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional, Union

import librosa
import numpy as np

from .config import PipelineConfig, StageAConfig
from .errors import AudioLoadError
from .models import MetaData, StageAOutput

logger = logging.getLogger(__name__)


def _resolve_configs(config: Optional[Union[PipelineConfig, StageAConfig]]) -> PipelineConfig:
    if config is None:
        return PipelineConfig()
    if isinstance(config, StageAConfig):
        # Wrap so hop/frame sizes still come from the Stage B defaults
        full_conf = PipelineConfig()
        full_conf.stage_a = config
        return full_conf
    return config


def _pad_short(audio: np.ndarray, min_length: int) -> np.ndarray:
    if len(audio) >= min_length:
        return audio
    return np.pad(audio, (0, min_length - len(audio)), mode="constant")


def _finish(audio: np.ndarray, audio_path: Optional[str], full_conf: PipelineConfig) -> StageAOutput:
    a_conf = full_conf.stage_a
    audio = np.asarray(audio, dtype=np.float32).reshape(-1)
    if audio.size == 0:
        raise ValueError("Audio too short (empty)")

    sr = int(a_conf.target_sample_rate)
    duration_sec = float(len(audio)) / float(sr)
    audio = _pad_short(audio, int(a_conf.min_audio_length))

    meta = MetaData(
        audio_path=audio_path,
        sample_rate=sr,
        duration_sec=duration_sec,
        n_samples=int(len(audio)),
        hop_length=int(full_conf.stage_b.hop_length),
        frame_length=int(full_conf.stage_b.frame_length),
    )
    logger.debug("Stage A: %d samples @ %d Hz (%.3fs)", meta.n_samples, sr, duration_sec)
    return StageAOutput(audio=audio, meta=meta)


def load_and_preprocess(
    audio_path: str,
    config: Optional[Union[PipelineConfig, StageAConfig]] = None,
) -> StageAOutput:
    """
    Stage A main entry point.

    1. Decode the file.
    2. Down-mix to mono and resample to the target rate.
    3. Zero-pad clips shorter than one hop.
    """
    full_conf = _resolve_configs(config)
    target_sr = int(full_conf.stage_a.target_sample_rate)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            audio, _ = librosa.load(audio_path, sr=target_sr, mono=True, dtype=np.float32)
    except Exception as e:
        raise AudioLoadError(f"Failed to convert the audio file to the required format: {audio_path}: {e}") from e

    return _finish(audio, audio_path, full_conf)


def prepare_audio(
    audio: np.ndarray,
    sr: int,
    config: Optional[Union[PipelineConfig, StageAConfig]] = None,
) -> StageAOutput:
    """Same conversion as :func:`load_and_preprocess` for an in-memory buffer.

    ``audio`` may be ``(n_samples,)`` or ``(n_channels, n_samples)``.
    """
    full_conf = _resolve_configs(config)
    target_sr = int(full_conf.stage_a.target_sample_rate)

    y = np.asarray(audio, dtype=np.float32)
    if y.ndim > 2:
        raise AudioLoadError(f"Expected mono or (channels, samples) audio, got shape {y.shape}")
    if y.ndim == 2:
        y = librosa.to_mono(y)
    if y.size and int(sr) != target_sr:
        y = librosa.resample(y, orig_sr=int(sr), target_sr=target_sr)

    return _finish(y, None, full_conf)
