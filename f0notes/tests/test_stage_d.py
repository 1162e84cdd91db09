import pytest
from unittest.mock import MagicMock

from music21 import midi

from f0notes.pipeline.config import PipelineConfig, apply_overrides
from f0notes.pipeline.models import NoteEvent
from f0notes.pipeline.stage_d import notes_to_dicts, quantize_and_render, render_midi


@pytest.fixture
def notes():
    return [NoteEvent(0.0, 0.25, 60), NoteEvent(0.5, 0.5, 64)]


def test_notes_to_dicts(notes):
    rows = notes_to_dicts(notes)
    assert rows[1] == {"start_sec": 0.5, "duration_sec": 0.5, "end_sec": 1.0, "midi_note": 64}


def test_render_midi_round_trips_pitches_and_onsets(notes):
    data = render_midi(notes, tempo_bpm=120.0)
    assert data[:4] == b"MThd"

    mf = midi.MidiFile()
    mf.readstr(data)
    s = midi.translate.midiFileToStream(mf)
    parsed = list(s.flatten().notes)

    assert [n.pitch.midi for n in parsed] == [60, 64]
    # 120 bpm: one second is two quarter notes
    assert [float(n.offset) for n in parsed] == pytest.approx([0.0, 1.0])
    assert float(parsed[1].quarterLength) == pytest.approx(1.0)


def test_render_midi_empty():
    assert render_midi([])[:4] == b"MThd"


def test_quantize_and_render(notes):
    pipeline_logger = MagicMock()
    result = quantize_and_render(notes, config=PipelineConfig(), pipeline_logger=pipeline_logger)

    assert result.notes == notes
    assert result.midi_bytes.startswith(b"MThd")
    pipeline_logger.log_event.assert_called_once()


def test_render_can_be_disabled(notes):
    config = apply_overrides(PipelineConfig(), {"stage_d": {"render_midi": False}})
    result = quantize_and_render(notes, config=config)
    assert result.midi_bytes == b""
    assert len(result.notes) == 2
