"""Typed errors raised by each stage of the transcription pipeline."""


class SttError(Exception):
    """Base class for all pipeline errors."""


class UnknownModel(SttError):
    """The logical model name is not in the model table."""


class DownloadFailed(SttError):
    """The model artifact could not be fetched or stored."""


class ModelLoadError(SttError):
    """The model artifact exists but cannot be loaded."""


class DecodeError(SttError):
    """The audio input could not be decoded to PCM."""


class UnsupportedFormat(DecodeError):
    """The audio container or codec is not recognized by the decoder."""


class InferenceError(SttError):
    """The inference run failed."""


class ModelNotLoaded(SttError):
    """A request arrived before the shared model was initialized."""
