"""Engine protocol defining the interface for STT inference backends.

This is the "sealed boundary" that isolates torch/Whisper code from the
rest of the system (service, server, tests).

Lifecycle:
    engine.load(path) -> LoadedModel      once per process, shared read-only
    model.new_state() -> InferenceState   once per request, never shared
    state.run(samples, params)            one synchronous decoding pass
"""

import enum
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

import numpy as np

from sttshim.constants import DEFAULT_INITIAL_PROMPT, DEFAULT_LANGUAGE


@dataclass(frozen=True)
class Segment:
    """A contiguous span of decoded speech.

    Timestamps are integer centiseconds from the start of the input.
    """

    start: int
    end: int
    text: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


class SamplingStrategy(enum.Enum):
    GREEDY = "greedy"
    BEAM_SEARCH = "beam_search"


@dataclass(frozen=True)
class DecodingParams:
    """Parameters for one inference run.

    The print/debug flags only control diagnostic output and never change
    the decoded segments.
    """

    strategy: SamplingStrategy = SamplingStrategy.GREEDY
    best_of: int = 1
    beam_size: int = 5
    initial_prompt: str | None = DEFAULT_INITIAL_PROMPT
    language: str | None = DEFAULT_LANGUAGE
    debug_mode: bool = False
    print_progress: bool = False
    print_special: bool = False
    print_realtime: bool = False
    print_timestamps: bool = False

    @classmethod
    def defaults(
        cls,
        language: str | None = DEFAULT_LANGUAGE,
        initial_prompt: str | None = DEFAULT_INITIAL_PROMPT,
    ) -> "DecodingParams":
        """Greedy best-of-1 decoding with all diagnostics off."""
        return cls(language=language, initial_prompt=initial_prompt)

    def with_overrides(self, **overrides) -> "DecodingParams":
        """Return a copy with the non-None ``overrides`` applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


class InferenceState(Protocol):
    """Per-request mutable decoding context derived from a LoadedModel."""

    def run(self, samples: np.ndarray, params: DecodingParams) -> list[Segment]:
        """Run a full decoding pass over 16kHz mono float32 samples.

        Returns:
            Segments in time order.

        Raises:
            InferenceError: The run failed or the state is busy/closed.
        """
        ...

    @property
    def n_segments(self) -> int:
        ...

    def segment_text(self, index: int) -> str:
        ...

    def segment_t0(self, index: int) -> int:
        ...

    def segment_t1(self, index: int) -> int:
        ...

    def close(self) -> None:
        """Release all buffers held by the state."""
        ...

    def __enter__(self) -> "InferenceState":
        ...

    def __exit__(self, *exc_info) -> None:
        ...


class LoadedModel(Protocol):
    """Model weights loaded in memory, shared read-only across requests."""

    @property
    def name(self) -> str:
        ...

    def new_state(self) -> InferenceState:
        """Create a fresh, isolated inference state. Safe to call concurrently."""
        ...


class Engine(Protocol):
    """Protocol for speech-to-text inference engines.

    Implementations must be swappable between the real Whisper engine and
    the fake CPU engine used in tests.
    """

    def load(self, path: str | Path) -> LoadedModel:
        """Load a model artifact.

        Raises:
            ModelLoadError: The artifact is missing, unreadable or malformed.
        """
        ...
