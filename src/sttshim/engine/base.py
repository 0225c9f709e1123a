"""Shared implementation of the per-request inference state."""

import logging
import threading

import numpy as np

from sttshim.engine.protocol import DecodingParams, Segment
from sttshim.errors import InferenceError

logger = logging.getLogger(__name__)


class BaseState:
    """Segment buffer and run bookkeeping for one request.

    Subclasses implement ``_infer``. Everything mutable here belongs to this
    state alone, including the count of segments already written to the
    debug log.
    """

    def __init__(self, model_name: str):
        self._model_name = model_name
        self._segments: list[Segment] = []
        self._reported = 0
        self._busy = threading.Lock()
        self._closed = False

    def run(self, samples: np.ndarray, params: DecodingParams) -> list[Segment]:
        if self._closed:
            raise InferenceError("Inference state is closed")
        if not self._busy.acquire(blocking=False):
            raise InferenceError("Inference state is already running")
        try:
            samples = _validate_samples(samples)
            self._segments = []
            self._reported = 0
            try:
                segments = self._infer(samples, params)
            except InferenceError:
                raise
            except Exception as e:
                raise InferenceError(
                    f"Inference failed on model {self._model_name}: {e}"
                ) from e
            self._segments = _ordered(segments)
            if params.debug_mode:
                self._report_new_segments()
            return list(self._segments)
        finally:
            self._busy.release()

    def _infer(self, samples: np.ndarray, params: DecodingParams) -> list[Segment]:
        raise NotImplementedError

    def _report_new_segments(self) -> None:
        for seg in self._segments[self._reported :]:
            logger.debug("[%d -> %d]: %s", seg.start, seg.end, seg.text)
        self._reported = len(self._segments)

    @property
    def n_segments(self) -> int:
        return len(self._segments)

    def segment_text(self, index: int) -> str:
        return self._segments[index].text

    def segment_t0(self, index: int) -> int:
        return self._segments[index].start

    def segment_t1(self, index: int) -> int:
        return self._segments[index].end

    def close(self) -> None:
        self._segments = []
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _validate_samples(samples: np.ndarray) -> np.ndarray:
    samples = np.asarray(samples)
    if samples.ndim != 1:
        raise InferenceError(f"Expected 1-D mono samples, got shape {samples.shape}")
    if samples.size == 0:
        raise InferenceError("Cannot run inference on empty audio")
    return samples.astype(np.float32, copy=False)


def _ordered(segments: list[Segment]) -> list[Segment]:
    """Sort by start time and clamp each end to be >= its start."""
    fixed = [
        s if s.end >= s.start else Segment(s.start, s.start, s.text) for s in segments
    ]
    return sorted(fixed, key=lambda s: s.start)
