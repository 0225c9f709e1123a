"""Fake engine for CPU-based testing.

Returns deterministic segments based on audio content, allowing reliable
unit tests without torch, GPU or model weights.
"""

import hashlib
import threading
import time
from pathlib import Path

import numpy as np

from sttshim.constants import SAMPLE_RATE, TIMESTAMP_UNITS_PER_SECOND
from sttshim.engine.base import BaseState
from sttshim.engine.protocol import DecodingParams, Segment
from sttshim.errors import ModelLoadError

WINDOW_SAMPLES = SAMPLE_RATE  # one segment per second of audio


class FakeEngine:
    """Deterministic CPU engine for testing.

    Any non-empty file is accepted as a model artifact.
    """

    def __init__(self, latency_ms: float = 0.0):
        """Initialize the fake engine.

        Args:
            latency_ms: Simulated inference latency per run in milliseconds.
        """
        self._latency_ms = latency_ms

    def load(self, path: str | Path) -> "FakeModel":
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise ModelLoadError(f"Cannot read model artifact {path}: {e}") from e
        if size == 0:
            raise ModelLoadError(f"Model artifact {path} is empty")
        return FakeModel(name=path.stem, latency_ms=self._latency_ms)


class FakeModel:
    """Shared fake model. Only the run counter is mutable, under a lock."""

    def __init__(self, name: str = "fake", latency_ms: float = 0.0):
        self._name = name
        self._latency_ms = latency_ms
        self._call_count = 0
        self._count_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        """Number of runs made against this model."""
        return self._call_count

    def new_state(self) -> "FakeState":
        return FakeState(self)

    def _record_call(self) -> None:
        with self._count_lock:
            self._call_count += 1


class FakeState(BaseState):
    """Splits audio into one-second windows, one segment per window."""

    def __init__(self, model: FakeModel):
        super().__init__(model.name)
        self._owner = model

    def _infer(self, samples: np.ndarray, params: DecodingParams) -> list[Segment]:
        self._owner._record_call()
        if self._owner._latency_ms > 0:
            time.sleep(self._owner._latency_ms / 1000.0)

        segments = []
        for offset in range(0, len(samples), WINDOW_SAMPLES):
            window = samples[offset : offset + WINDOW_SAMPLES]
            text = f"[fake:{_hash_audio(window)[:8]}]"
            if offset == 0 and params.initial_prompt:
                text = f"{params.initial_prompt} {text}"
            segments.append(
                Segment(
                    start=_to_units(offset),
                    end=_to_units(offset + len(window)),
                    text=text,
                )
            )
        return segments


def _hash_audio(audio: np.ndarray) -> str:
    """Generate a hash of audio content for deterministic output."""
    return hashlib.sha256(audio.tobytes()).hexdigest()


def _to_units(sample_index: int) -> int:
    return sample_index * TIMESTAMP_UNITS_PER_SECOND // SAMPLE_RATE
