import pytest
import numpy as np
from unittest.mock import MagicMock, patch

from f0notes.pipeline.config import PipelineConfig, apply_overrides
from f0notes.pipeline.detectors import BasePitchDetector, SwiftF0Detector, create_detector
from f0notes.pipeline.errors import DetectionError, IncompatibleModelError, PitchDetectionError


def test_base_detector_is_abstract():
    det = BasePitchDetector(sr=16000, hop_length=256)
    with pytest.raises(NotImplementedError):
        det.predict(np.zeros(1024, dtype=np.float32))


@patch("f0notes.pipeline.detectors.SwiftF0", None)
def test_missing_model_package():
    with pytest.raises(DetectionError):
        SwiftF0Detector(16000, 256)


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_rejects_incompatible_geometry(MockSwiftF0):
    with pytest.raises(IncompatibleModelError):
        SwiftF0Detector(22050, 256)
    with pytest.raises(IncompatibleModelError):
        SwiftF0Detector(16000, 512)
    MockSwiftF0.assert_not_called()


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_predict_returns_model_arrays(MockSwiftF0):
    model = MockSwiftF0.return_value
    model.detect_from_array.return_value = MagicMock(
        pitch_hz=np.array([440.0, 0.0, 220.0]),
        confidence=np.array([0.95, 0.1, 0.92]),
    )

    det = SwiftF0Detector(16000, 256, fmin=60.0, fmax=1000.0, threshold=0.8)
    f0, conf = det.predict(np.ones(800, dtype=np.float64))

    MockSwiftF0.assert_called_once_with(confidence_threshold=0.8, fmin=60.0, fmax=1000.0)
    args, _ = model.detect_from_array.call_args
    assert args[0].dtype == np.float32
    assert args[1] == 16000
    assert f0.dtype == np.float32 and conf.dtype == np.float32
    np.testing.assert_allclose(f0, [440.0, 0.0, 220.0])
    np.testing.assert_allclose(conf, [0.95, 0.1, 0.92], rtol=1e-6)


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_empty_audio_skips_model(MockSwiftF0):
    det = SwiftF0Detector(16000, 256)
    f0, conf = det.predict(np.zeros(0, dtype=np.float32))

    assert f0.size == 0 and conf.size == 0
    MockSwiftF0.return_value.detect_from_array.assert_not_called()


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_model_failure_is_wrapped(MockSwiftF0):
    MockSwiftF0.return_value.detect_from_array.side_effect = RuntimeError("onnx session died")
    det = SwiftF0Detector(16000, 256)

    with pytest.raises(PitchDetectionError, match="onnx session died"):
        det.predict(np.ones(512, dtype=np.float32))


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_malformed_model_output(MockSwiftF0):
    MockSwiftF0.return_value.detect_from_array.return_value = object()
    det = SwiftF0Detector(16000, 256)

    with pytest.raises(PitchDetectionError):
        det.predict(np.ones(512, dtype=np.float32))


@patch("f0notes.pipeline.detectors.SwiftF0")
def test_create_detector_uses_stage_b_config(MockSwiftF0):
    config = apply_overrides(PipelineConfig(), {"stage_b": {"confidence_threshold": 0.7, "fmin": 80.0}})
    det = create_detector(config, 16000)

    assert isinstance(det, SwiftF0Detector)
    assert str(det) == "SwiftF0Detector"
    assert det.threshold == pytest.approx(0.7)
    MockSwiftF0.assert_called_once_with(confidence_threshold=0.7, fmin=80.0, fmax=2093.75)
