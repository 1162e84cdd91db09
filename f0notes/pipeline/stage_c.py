# f0notes/pipeline/stage_c.py
"""
Stage C: note segmentation

Converts a classified frame timeline into discrete NoteEvent objects in
three passes:

1. Segment: group voiced frames into segments. Short unvoiced gaps are
   bridged (grace period); a frame whose pitch is more than
   ``semitone_threshold`` away from the running median starts a new segment.
2. Filter & quantize: drop segments shorter than ``min_note_duration_s``,
   quantize the rest to the rounded median pitch.
3. Merge: join neighbouring notes of equal pitch separated by at most one
   frame.

Segment timing is derived from ``frame index * frame_duration``; the
per-frame ``time`` field is not used for grouping.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import dataclasses
import logging
import math

import numpy as np

from .config import PipelineConfig, StageCConfig
from .errors import ConfigError
from .models import FramePitch, NoteEvent, Segment, StageBOutput
from .stage_b import pitch_of

logger = logging.getLogger(__name__)

FRAME_DURATION_S = 0.016
TIME_TOLERANCE_S = 1e-9
MIDI_MIN = 0
MIDI_MAX = 127


def median(values: Sequence[float]) -> float:
    """Middle value after sorting; mean of the two middle values for even length. 0.0 if empty."""
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=np.float64)))


def _round_half_away(x: float) -> int:
    # round() on floats is banker's rounding; note boundaries need 60.5 -> 61
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


def quantize_pitch(pitch: float) -> int:
    """Nearest MIDI note number, clamped to 0..127."""
    if math.isnan(pitch):
        return MIDI_MIN
    if math.isinf(pitch):
        logger.debug("Clamping infinite pitch %s", pitch)
        return MIDI_MAX if pitch > 0 else MIDI_MIN
    midi = _round_half_away(pitch)
    if midi < MIDI_MIN or midi > MIDI_MAX:
        logger.debug("Clamping out-of-range pitch %.2f", pitch)
        midi = min(MIDI_MAX, max(MIDI_MIN, midi))
    return midi


# ---------------------------------------------------------------------------
# Pass 1: segmentation
# ---------------------------------------------------------------------------

class _SegmenterState(NamedTuple):
    open_segment: Optional[Segment] = None
    unvoiced_run: int = 0


def _open_segment(t: float, frame_duration: float, pitch: float) -> Segment:
    return Segment(start_sec=t, end_sec=t + frame_duration, pitch_samples=(pitch,))


def _step(
    state: _SegmenterState,
    index: int,
    frame: FramePitch,
    frame_duration: float,
    grace_period_s: float,
    semitone_threshold: float,
) -> Tuple[_SegmenterState, Optional[Segment]]:
    """Advance the segmenter by one frame. Returns (new_state, segment_closed_by_this_frame)."""
    t = index * frame_duration
    seg = state.open_segment

    if frame.voiced:
        pitch = pitch_of(frame.pitch_hz)
        if seg is None:
            return _SegmenterState(_open_segment(t, frame_duration, pitch), 0), None

        if abs(median(seg.pitch_samples) - pitch) > semitone_threshold:
            # pitch jump: close and restart on this frame so it is not dropped
            return _SegmenterState(_open_segment(t, frame_duration, pitch), 0), seg

        extended = Segment(
            start_sec=seg.start_sec,
            end_sec=seg.end_sec + frame_duration,
            pitch_samples=seg.pitch_samples + (pitch,),
        )
        return _SegmenterState(extended, 0), None

    if seg is None:
        return state, None

    run = state.unvoiced_run + 1
    if run * frame_duration >= grace_period_s:
        return _SegmenterState(None, 0), seg

    # within the grace period: cover the gap in time, add no pitch sample
    return _SegmenterState(dataclasses.replace(seg, end_sec=t + frame_duration), run), None


def segment_frames(
    frames: Sequence[FramePitch],
    frame_duration: float = FRAME_DURATION_S,
    unvoiced_grace_period_s: float = 0.02,
    semitone_threshold: float = 0.8,
) -> List[Segment]:
    segments: List[Segment] = []
    state = _SegmenterState()

    for index, frame in enumerate(frames):
        state, closed = _step(state, index, frame, frame_duration, unvoiced_grace_period_s, semitone_threshold)
        if closed is not None:
            segments.append(closed)

    # End of input closes unconditionally
    if state.open_segment is not None:
        segments.append(state.open_segment)

    return segments


# ---------------------------------------------------------------------------
# Pass 2: filter & quantize
# ---------------------------------------------------------------------------

def notes_from_segments(segments: Sequence[Segment], min_note_duration_s: float = 0.05) -> List[NoteEvent]:
    notes: List[NoteEvent] = []
    for seg in segments:
        duration = seg.end_sec - seg.start_sec
        if duration < min_note_duration_s:
            continue
        notes.append(NoteEvent(
            start_sec=seg.start_sec,
            duration_sec=duration,
            midi_note=quantize_pitch(median(seg.pitch_samples)),
        ))
    return notes


# ---------------------------------------------------------------------------
# Pass 3: merge
# ---------------------------------------------------------------------------

def merge_adjacent_notes(notes: Sequence[NoteEvent], frame_duration: float = FRAME_DURATION_S) -> List[NoteEvent]:
    """
    Join each note into its predecessor when the pitch matches and the gap
    between them is at most one frame. The merged duration is the sum of
    both durations.
    """
    if not notes:
        return []

    merged: List[NoteEvent] = [notes[0]]
    for note in notes[1:]:
        prev = merged[-1]
        gap = note.start_sec - (prev.start_sec + prev.duration_sec)
        if gap <= frame_duration + TIME_TOLERANCE_S and prev.midi_note == note.midi_note:
            merged[-1] = NoteEvent(
                start_sec=prev.start_sec,
                duration_sec=prev.duration_sec + note.duration_sec,
                midi_note=prev.midi_note,
            )
        else:
            merged.append(note)
    return merged


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _resolve_stage_c_config(config: Union[None, PipelineConfig, StageCConfig, Mapping[str, Any]]) -> StageCConfig:
    if config is None:
        return StageCConfig()
    if isinstance(config, PipelineConfig):
        return config.stage_c
    if isinstance(config, StageCConfig):
        return config
    if isinstance(config, Mapping):
        known = {f.name for f in dataclasses.fields(StageCConfig)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigError(f"Unknown stage_c options: {', '.join(unknown)}")
        return StageCConfig(**dict(config))
    raise ConfigError(f"Unsupported stage_c config type: {type(config).__name__}")


def _run_passes(
    frames: Sequence[FramePitch],
    c_conf: StageCConfig,
    frame_duration: float,
) -> Tuple[List[Segment], List[NoteEvent]]:
    segments = segment_frames(
        frames,
        frame_duration=frame_duration,
        unvoiced_grace_period_s=c_conf.unvoiced_grace_period_s,
        semitone_threshold=c_conf.semitone_threshold,
    )
    notes = notes_from_segments(segments, c_conf.min_note_duration_s)
    merged = merge_adjacent_notes(notes, frame_duration)

    logger.debug(
        "Stage C: %d frames -> %d segments -> %d notes -> %d merged",
        len(frames), len(segments), len(notes), len(merged),
    )
    return segments, merged


def _checked(config: Any, frame_duration: float) -> StageCConfig:
    c_conf = _resolve_stage_c_config(config)
    c_conf.validate()
    if not (math.isfinite(frame_duration) and frame_duration > 0.0):
        raise ConfigError(f"frame_duration must be > 0 (got {frame_duration!r})")
    return c_conf


def convert(
    frames: Sequence[FramePitch],
    config: Union[None, PipelineConfig, StageCConfig, Mapping[str, Any]] = None,
    frame_duration: float = FRAME_DURATION_S,
) -> List[NoteEvent]:
    """
    Convert a complete frame sequence into merged notes.

    ``frame_duration`` must match the hop of the incoming frames.
    Invalid configuration raises ConfigError before any frame is read.
    """
    c_conf = _checked(config, frame_duration)
    if not frames:
        return []
    _, notes = _run_passes(frames, c_conf, frame_duration)
    return notes


def apply_theory(
    stage_b_out: StageBOutput,
    config: Optional[PipelineConfig] = None,
    pipeline_logger: Optional[Any] = None,
) -> List[NoteEvent]:
    """Stage C main entry point: convert Stage B frames using its hop as the frame duration."""
    config = config or PipelineConfig()
    frames = stage_b_out.frames
    c_conf = _checked(config.stage_c, stage_b_out.hop_seconds)

    segments: List[Segment] = []
    notes: List[NoteEvent] = []
    if frames:
        segments, notes = _run_passes(frames, c_conf, stage_b_out.hop_seconds)

    diag: Dict[str, Any] = {
        "n_frames": len(frames),
        "n_segments": len(segments),
        "n_notes": len(notes),
        "frame_duration": stage_b_out.hop_seconds,
    }
    stage_b_out.diagnostics["stage_c"] = diag
    logger.info("Stage C: %d notes from %d frames", len(notes), len(frames))
    if pipeline_logger:
        pipeline_logger.log_event("stage_c", "notes", diag)
    return notes
