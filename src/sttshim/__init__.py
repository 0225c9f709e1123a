"""Whisper STT shim package."""

from sttshim.constants import (
    DEFAULT_MODEL,
    MODEL_TABLE,
    SAMPLE_RATE,
    TIMESTAMP_UNITS_PER_SECOND,
)

__all__ = [
    "SAMPLE_RATE",
    "TIMESTAMP_UNITS_PER_SECOND",
    "MODEL_TABLE",
    "DEFAULT_MODEL",
]
