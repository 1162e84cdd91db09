import math

import pytest
import numpy as np
from unittest.mock import MagicMock, patch

from f0notes.pipeline.config import PipelineConfig, StageBConfig
from f0notes.pipeline.detectors import BasePitchDetector
from f0notes.pipeline.errors import PitchDetectionError
from f0notes.pipeline.models import MetaData, StageAOutput
from f0notes.pipeline.stage_b import (
    build_frames,
    compute_voicing,
    extract_features,
    frame_timestamp,
    pitch_of,
)


class FixedDetector(BasePitchDetector):
    """Returns canned model output regardless of the audio."""

    def __init__(self, f0, conf, **kwargs):
        super().__init__(sr=16000, hop_length=256, **kwargs)
        self._f0 = np.asarray(f0, dtype=np.float32)
        self._conf = np.asarray(conf, dtype=np.float32)

    def predict(self, audio):
        return self._f0, self._conf


class TestPitchOf:
    def test_reference_pitch(self):
        assert pitch_of(440.0) == pytest.approx(69.0)

    def test_octaves(self):
        assert pitch_of(880.0) == pytest.approx(81.0)
        assert pitch_of(220.0) == pytest.approx(57.0)

    def test_middle_c(self):
        assert pitch_of(261.6255653) == pytest.approx(60.0, abs=1e-6)

    def test_non_positive_frequency_is_zero(self):
        assert pitch_of(0.0) == 0.0
        assert pitch_of(-10.0) == 0.0

    def test_nan_frequency_is_zero(self):
        assert pitch_of(float("nan")) == 0.0


class TestComputeVoicing:
    FMIN = 46.875
    FMAX = 2093.75

    def voicing(self, hz, conf, threshold=0.9):
        return compute_voicing(hz, conf, self.FMIN, self.FMAX, threshold)

    def test_band_edges_are_inclusive(self):
        assert self.voicing(self.FMIN, 0.95)
        assert self.voicing(self.FMAX, 0.95)

    def test_outside_band(self):
        assert not self.voicing(40.0, 0.99)
        assert not self.voicing(2100.0, 0.99)

    def test_confidence_gate_inclusive(self):
        assert self.voicing(440.0, 0.9)
        assert not self.voicing(440.0, 0.89)

    def test_nan_pitch_is_unvoiced(self):
        assert not self.voicing(float("nan"), 0.99)


class TestFrameTimestamp:
    def test_first_frame_is_window_centre(self):
        # (1024 - 1) / 2 - (1024 - 256) // 2 = 127.5 samples
        assert frame_timestamp(0, 256, 1024, 16000) == pytest.approx(127.5 / 16000)

    def test_frames_advance_by_hop(self):
        t0 = frame_timestamp(10, 256, 1024, 16000)
        t1 = frame_timestamp(11, 256, 1024, 16000)
        assert t1 - t0 == pytest.approx(0.016)


class TestBuildFrames:
    def test_voicing_and_times(self):
        frames = build_frames([440.0, 440.0, 0.0, 5000.0], [0.95, 0.5, 0.99, 0.99])

        assert [fp.voiced for fp in frames] == [True, False, False, False]
        assert frames[0].time == pytest.approx(127.5 / 16000)
        assert frames[3].time == pytest.approx((3 * 256 + 127.5) / 16000)
        assert frames[1].pitch_hz == pytest.approx(440.0)
        assert frames[1].confidence == pytest.approx(0.5)

    def test_stage_config_threshold(self):
        frames = build_frames([440.0], [0.5], StageBConfig(confidence_threshold=0.4))
        assert frames[0].voiced

    def test_length_mismatch_raises(self):
        with pytest.raises(PitchDetectionError):
            build_frames([440.0, 440.0], [0.95])

    def test_empty(self):
        assert build_frames([], []) == []


class TestExtractFeatures:
    @pytest.fixture
    def stage_a_output(self):
        audio = np.zeros(16000, dtype=np.float32)
        meta = MetaData(audio_path="test_audio.wav", sample_rate=16000, duration_sec=1.0, n_samples=16000)
        return StageAOutput(audio=audio, meta=meta)

    def test_with_detector(self, stage_a_output):
        detector = FixedDetector([440.0] * 6 + [0.0] * 4, [0.95] * 6 + [0.1] * 4)
        pipeline_logger = MagicMock()

        out = extract_features(stage_a_output, PipelineConfig(), detector=detector, pipeline_logger=pipeline_logger)

        assert len(out.frames) == 10
        assert out.hop_seconds == pytest.approx(0.016)
        assert out.voiced_ratio == pytest.approx(0.6)
        assert out.f0_hz.shape == (10,)
        assert out.diagnostics["detector"] == "FixedDetector"
        assert out.diagnostics["n_frames"] == 10
        pipeline_logger.log_event.assert_called_once()
        assert pipeline_logger.log_event.call_args[0][:2] == ("stage_b", "frames")

    @patch("f0notes.pipeline.stage_b.create_detector")
    def test_default_detector_is_created(self, mock_create, stage_a_output):
        mock_create.return_value = FixedDetector([220.0, 220.0], [0.99, 0.99])

        out = extract_features(stage_a_output)

        mock_create.assert_called_once()
        assert mock_create.call_args[0][1] == 16000
        assert all(fp.voiced for fp in out.frames)
        assert math.isclose(out.frames[1].time - out.frames[0].time, 0.016)
