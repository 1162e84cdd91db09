from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from .config import PipelineConfig
from .detectors import BasePitchDetector
from .instrumentation import PipelineLogger
from .models import FramePitch, NoteEvent, TranscriptionResult
from .stage_a import load_and_preprocess
from .stage_b import extract_features
from .stage_c import apply_theory
from .stage_d import quantize_and_render
from .validation import dump_resolved_config, validate_invariants

logger = logging.getLogger(__name__)


def _quality_metrics(
    notes: List[NoteEvent],
    duration_sec: float,
    frames: Optional[List[FramePitch]] = None,
) -> Dict[str, Any]:
    duration_sec = float(max(1e-6, duration_sec or 0.0))
    note_count = int(len(notes or []))

    voiced_ratio = 0.0
    if frames:
        voiced_ratio = sum(1 for fp in frames if fp.voiced) / float(len(frames))

    if note_count == 0:
        return {
            "voiced_ratio": float(voiced_ratio),
            "note_count": 0,
            "notes_per_sec": 0.0,
            "median_note_dur_ms": 0.0,
        }

    durs_sorted = sorted(max(0.0, float(n.duration_sec)) for n in notes)
    mid = len(durs_sorted) // 2
    if len(durs_sorted) % 2:
        median_dur = durs_sorted[mid]
    else:
        median_dur = 0.5 * (durs_sorted[mid - 1] + durs_sorted[mid])

    return {
        "voiced_ratio": float(voiced_ratio),
        "note_count": note_count,
        "notes_per_sec": float(note_count / duration_sec),
        "median_note_dur_ms": float(1000.0 * median_dur),
    }


def transcribe(
    audio_path: str,
    config: Optional[PipelineConfig] = None,
    detector: Optional[BasePitchDetector] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
) -> TranscriptionResult:
    """
    Run Stage A -> D on one audio file.

    Each stage output is checked with validate_invariants; per-stage
    timings end up in ``result.timing`` (and in the run log when a
    PipelineLogger is given).
    """
    config = (config or PipelineConfig()).validate()
    timing: Dict[str, float] = {}

    if pipeline_logger:
        pipeline_logger.emit_config("pipeline", config, {"audio_path": audio_path})

    t0 = time.perf_counter()
    stage_a_out = load_and_preprocess(audio_path, config=config)
    validate_invariants(stage_a_out)
    timing["stage_a"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    stage_b_out = extract_features(stage_a_out, config=config, detector=detector, pipeline_logger=pipeline_logger)
    validate_invariants(stage_b_out)
    timing["stage_b"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    notes = apply_theory(stage_b_out, config=config, pipeline_logger=pipeline_logger)
    validate_invariants(notes)
    timing["stage_c"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    result = quantize_and_render(notes, stage_b_out, config=config, pipeline_logger=pipeline_logger)
    validate_invariants(result)
    timing["stage_d"] = time.perf_counter() - t0

    result.metrics = _quality_metrics(notes, stage_a_out.meta.duration_sec, stage_b_out.frames)
    result.timing = timing

    logger.info(
        "Transcribed %s: %d notes (%.2f notes/s, %.0f%% voiced)",
        audio_path,
        result.metrics["note_count"],
        result.metrics["notes_per_sec"],
        100.0 * result.metrics["voiced_ratio"],
    )

    if pipeline_logger:
        for stage, duration_s in timing.items():
            pipeline_logger.record_timing(stage, duration_s)
        pipeline_logger.log_event("pipeline", "metrics", result.metrics)
        dump_resolved_config(config, stage_a_out.meta, stage_b_out, run_dir=pipeline_logger.run_dir)

    return result
