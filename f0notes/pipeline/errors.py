"""Exception hierarchy for the transcription pipeline."""


class PipelineError(Exception):
    """Base class for pipeline failures."""
    pass


class ConfigError(PipelineError, ValueError):
    """Invalid or unknown configuration values."""
    pass


class AudioLoadError(PipelineError):
    """Audio could not be decoded or converted to the model input format."""
    pass


class DetectionError(PipelineError):
    """The pitch model could not be created or run."""
    pass


class IncompatibleModelError(DetectionError):
    """The provided model format is incompatible with the detector."""
    pass


class PitchDetectionError(DetectionError):
    """Pitch detection failed due to unexpected output from the model."""
    pass
