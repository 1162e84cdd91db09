"""
Stage D: Rendering

Turns Stage C notes into caller-facing artifacts: a Standard MIDI File
(via music21) and a JSON-ready note list.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np
from music21 import midi, note, stream, tempo

from .config import PipelineConfig
from .models import NoteEvent, StageBOutput, TranscriptionResult

logger = logging.getLogger(__name__)

# MIDI grid in quarter lengths (1/96 of a quarter note)
QL_GRID = 96


def _snap_ql(x: float) -> float:
    if x is None or not np.isfinite(x):
        return 0.0
    return round(float(x) * QL_GRID) / QL_GRID


def notes_to_dicts(notes: Sequence[NoteEvent]) -> List[Dict[str, Any]]:
    return [
        {
            "start_sec": float(n.start_sec),
            "duration_sec": float(n.duration_sec),
            "end_sec": float(n.end_sec),
            "midi_note": int(n.midi_note),
        }
        for n in notes
    ]


def render_midi(notes: Sequence[NoteEvent], tempo_bpm: float = 120.0) -> bytes:
    """Render notes as a single-track Standard MIDI File at a fixed tempo."""
    quarters_per_sec = float(tempo_bpm) / 60.0

    part = stream.Part()
    part.id = "P1"
    part.insert(0, tempo.MetronomeMark(number=tempo_bpm))

    for ev in notes:
        n = note.Note()
        n.pitch.midi = int(ev.midi_note)
        n.quarterLength = max(1.0 / QL_GRID, _snap_ql(ev.duration_sec * quarters_per_sec))
        part.insert(_snap_ql(ev.start_sec * quarters_per_sec), n)

    score = stream.Score()
    score.insert(0, part)

    mf = midi.translate.music21ObjectToMidiFile(score)
    return bytes(mf.writestr())


def quantize_and_render(
    notes: List[NoteEvent],
    stage_b_out: Optional[StageBOutput] = None,
    config: Optional[PipelineConfig] = None,
    pipeline_logger: Optional[Any] = None,
) -> TranscriptionResult:
    """
    Stage D main entry point.

    Returns a TranscriptionResult holding the notes and, when enabled,
    the rendered MIDI bytes.
    """
    d_conf = (config or PipelineConfig()).stage_d

    midi_bytes = b""
    if d_conf.render_midi:
        midi_bytes = render_midi(notes, tempo_bpm=d_conf.tempo_bpm)
        logger.debug("Stage D: rendered %d notes into %d MIDI bytes", len(notes), len(midi_bytes))

    if pipeline_logger:
        pipeline_logger.log_event(
            "stage_d",
            "render",
            {"n_notes": len(notes), "midi_bytes": len(midi_bytes), "tempo_bpm": d_conf.tempo_bpm},
        )

    return TranscriptionResult(notes=list(notes), stage_b=stage_b_out, midi_bytes=midi_bytes)
