"""
Pipeline configuration.

Each stage reads its own dataclass. Overrides can be supplied as JSON in the
same nested shape, e.g. ``{"stage_c": {"min_note_duration_s": 0.08}}``.
"""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

# SwiftF0 model limits
MODEL_MIN_FREQUENCY = 46.875
MODEL_MAX_FREQUENCY = 2093.75
MODEL_SAMPLE_RATE = 16000
MODEL_HOP_LENGTH = 256
MODEL_FRAME_LENGTH = 1024


@dataclass
class StageAConfig:
    target_sample_rate: int = MODEL_SAMPLE_RATE
    min_audio_length: int = 256

    def validate(self) -> None:
        if self.target_sample_rate <= 0:
            raise ConfigError("stage_a.target_sample_rate must be positive")
        if self.min_audio_length < 0:
            raise ConfigError("stage_a.min_audio_length must be non-negative")


@dataclass
class StageBConfig:
    confidence_threshold: float = 0.9
    fmin: float = MODEL_MIN_FREQUENCY
    fmax: float = MODEL_MAX_FREQUENCY
    hop_length: int = MODEL_HOP_LENGTH
    frame_length: int = MODEL_FRAME_LENGTH

    def validate(self) -> None:
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ConfigError("The confidence threshold must be between 0.0 and 1.0.")

        range_msg = "The specified frequency range is invalid or out of supported bounds."
        if not (MODEL_MIN_FREQUENCY <= self.fmin < MODEL_MAX_FREQUENCY):
            raise ConfigError(range_msg)
        if not (MODEL_MIN_FREQUENCY < self.fmax <= MODEL_MAX_FREQUENCY):
            raise ConfigError(range_msg)
        if self.fmin >= self.fmax:
            raise ConfigError(range_msg)

        if self.hop_length <= 0 or self.frame_length < self.hop_length:
            raise ConfigError("stage_b hop_length must be positive and no larger than frame_length")


@dataclass
class StageCConfig:
    unvoiced_grace_period_s: float = 0.02
    min_note_duration_s: float = 0.05
    semitone_threshold: float = 0.8

    def validate(self) -> None:
        for name in ("unvoiced_grace_period_s", "min_note_duration_s", "semitone_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"stage_c.{name} must be a number (got {value!r})")
            if not value > 0.0:
                raise ConfigError(f"stage_c.{name} must be > 0 (got {value!r})")


@dataclass
class StageDConfig:
    tempo_bpm: float = 120.0
    render_midi: bool = True

    def validate(self) -> None:
        if not self.tempo_bpm > 0.0:
            raise ConfigError("stage_d.tempo_bpm must be > 0")


@dataclass
class PipelineConfig:
    stage_a: StageAConfig = field(default_factory=StageAConfig)
    stage_b: StageBConfig = field(default_factory=StageBConfig)
    stage_c: StageCConfig = field(default_factory=StageCConfig)
    stage_d: StageDConfig = field(default_factory=StageDConfig)

    @property
    def frame_duration(self) -> float:
        """Hop duration in seconds (0.016 for the reference model)."""
        return float(self.stage_b.hop_length) / float(self.stage_a.target_sample_rate)

    def validate(self) -> "PipelineConfig":
        self.stage_a.validate()
        self.stage_b.validate()
        self.stage_c.validate()
        self.stage_d.validate()
        return self


def apply_overrides(config: PipelineConfig, overrides: Dict[str, Any]) -> PipelineConfig:
    """Return a copy of ``config`` with nested per-stage overrides applied."""
    out = copy.deepcopy(config)
    for stage_name, values in (overrides or {}).items():
        stage_conf = getattr(out, stage_name, None)
        if stage_conf is None or not dataclasses.is_dataclass(stage_conf):
            raise ConfigError(f"Unknown config section: {stage_name}")
        if not isinstance(values, dict):
            raise ConfigError(f"Config section {stage_name} must be an object")

        known = {f.name for f in dataclasses.fields(stage_conf)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown keys in {stage_name}: {', '.join(unknown)}")

        setattr(out, stage_name, dataclasses.replace(stage_conf, **values))
        logger.debug("Applied %s overrides: %s", stage_name, values)
    return out


def load_config(path: Optional[str] = None, base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """Load a JSON override file on top of ``base`` (defaults if omitted) and validate it."""
    config = copy.deepcopy(base) if base is not None else PipelineConfig()
    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                overrides = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e
        if not isinstance(overrides, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")
        config = apply_overrides(config, overrides)
    return config.validate()
