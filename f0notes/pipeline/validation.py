"""Pipeline invariant checks for stage outputs."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Iterable, Optional, Sequence
import json
import math
import os
import logging

import numpy as np

from .models import FramePitch, NoteEvent, StageAOutput, StageBOutput, TranscriptionResult

logger = logging.getLogger(__name__)


_DEF_TOL = 1e-6


def _validate_timebase_from_frames(frames: Iterable[FramePitch], hop_seconds: float) -> None:
    times = [fp.time for fp in frames]
    if len(times) < 2:
        return
    diffs = np.diff(times)
    if np.any(diffs < -_DEF_TOL):
        raise AssertionError("Frame timestamps must be non-decreasing")
    median_dt = float(np.median(diffs))
    if not math.isclose(median_dt, hop_seconds, rel_tol=1e-2, abs_tol=1e-4):
        raise AssertionError(
            f"Frame spacing {median_dt:.6f}s deviates from hop_seconds {hop_seconds:.6f}s"
        )


def _validate_notes(notes: Sequence[NoteEvent]) -> None:
    prev: Optional[NoteEvent] = None
    for n in notes:
        if not n.duration_sec > 0.0:
            raise AssertionError(f"Note duration must be positive (got {n.duration_sec})")
        if not (0 <= n.midi_note <= 127):
            raise AssertionError(f"Note pitch {n.midi_note} outside MIDI range 0-127")
        if prev is not None:
            if n.start_sec < prev.start_sec:
                raise AssertionError("Notes must be ordered by start time")
            if prev.end_sec - n.start_sec > _DEF_TOL:
                raise AssertionError(
                    f"Note at {prev.start_sec:.3f}s overlaps the next note at {n.start_sec:.3f}s"
                )
        prev = n


def validate_invariants(stage_output: Any) -> None:
    """Validate invariants per stage.

    Raises AssertionError on invariant violations.
    """
    # Stage A
    if isinstance(stage_output, StageAOutput):
        audio = stage_output.audio
        if audio.ndim != 1:
            raise AssertionError("Stage A audio must be mono (1-D)")
        if audio.dtype != np.float32:
            raise AssertionError(f"Stage A audio must be float32 (got {audio.dtype})")
        if stage_output.meta.sample_rate <= 0:
            raise AssertionError("Stage A sample rate must be positive")
        if stage_output.meta.n_samples != len(audio):
            raise AssertionError("Stage A meta.n_samples does not match audio length")
        return

    # Stage B
    if isinstance(stage_output, StageBOutput):
        if stage_output.hop_seconds <= 0:
            raise AssertionError("Stage B hop_seconds must be positive")
        if stage_output.f0_hz.size and stage_output.f0_hz.size != len(stage_output.frames):
            raise AssertionError("Stage B f0_hz length must align with frames")
        for fp in stage_output.frames:
            if fp.pitch_hz < 0 or not (0.0 <= fp.confidence <= 1.0):
                raise AssertionError(f"Frame at {fp.time:.3f}s has invalid pitch/confidence")
        _validate_timebase_from_frames(stage_output.frames, stage_output.hop_seconds)
        return

    # Stage C outputs (list of NoteEvent)
    if isinstance(stage_output, list) and stage_output and isinstance(stage_output[0], NoteEvent):
        _validate_notes(stage_output)
        return

    # Stage D final result
    if isinstance(stage_output, TranscriptionResult):
        _validate_notes(stage_output.notes)
        if stage_output.stage_b is not None:
            _validate_timebase_from_frames(stage_output.stage_b.frames, stage_output.stage_b.hop_seconds)
        return


def dump_resolved_config(config: Any, meta: Any, stage_b_out: Optional[StageBOutput] = None, run_dir: str = "results") -> str:
    """Write the effective config, audio metadata and Stage B diagnostics as JSON; returns the path."""
    os.makedirs(run_dir, exist_ok=True)

    payload = {
        "meta": asdict(meta) if meta is not None else {},
        "frame_duration": getattr(config, "frame_duration", None),
        "diagnostics": dict(stage_b_out.diagnostics) if stage_b_out is not None else {},
        "config": asdict(config) if hasattr(config, "__dataclass_fields__") else str(config),
    }

    path = os.path.join(run_dir, "resolved_config.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)

    logger.info("Resolved config saved to %s", path)
    return path
