"""
Data model shared by all pipeline stages.

FramePitch is the per-hop output of the pitch model after voicing has been
decided; NoteEvent is what the pipeline hands back to callers. Segment only
lives inside Stage C while a conversion is running.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class FramePitch:
    """One hop of pitch-model output."""
    time: float
    pitch_hz: float
    confidence: float
    voiced: bool


@dataclass(frozen=True)
class Segment:
    """A run of voiced frames; pitch_samples holds continuous MIDI pitch per voiced frame."""
    start_sec: float
    end_sec: float
    pitch_samples: Tuple[float, ...] = ()

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec


@dataclass(frozen=True)
class NoteEvent:
    """A quantized note: onset, length and MIDI note number (0-127)."""
    start_sec: float
    duration_sec: float
    midi_note: int

    @property
    def end_sec(self) -> float:
        return self.start_sec + self.duration_sec


@dataclass
class MetaData:
    audio_path: Optional[str] = None
    sample_rate: int = 16000
    duration_sec: float = 0.0
    n_samples: int = 0
    hop_length: int = 256
    frame_length: int = 1024


@dataclass
class StageAOutput:
    audio: np.ndarray
    meta: MetaData


@dataclass
class StageBOutput:
    frames: List[FramePitch]
    hop_seconds: float
    meta: MetaData
    f0_hz: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    confidence: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def voiced_ratio(self) -> float:
        if not self.frames:
            return 0.0
        return sum(1 for fp in self.frames if fp.voiced) / float(len(self.frames))


@dataclass
class TranscriptionResult:
    notes: List[NoteEvent]
    stage_b: Optional[StageBOutput] = None
    midi_bytes: bytes = b""
    metrics: Dict[str, Any] = field(default_factory=dict)
    timing: Dict[str, float] = field(default_factory=dict)
