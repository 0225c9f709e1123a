"""Transcription orchestration: decode audio, run inference, collect segments."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import numpy as np

from sttshim.audio import decode_audio, duration_seconds
from sttshim.engine.protocol import DecodingParams, LoadedModel, Segment
from sttshim.errors import ModelNotLoaded

logger = logging.getLogger(__name__)

Decoder = Callable[[BinaryIO], np.ndarray]


class ModelHandle:
    """Init-once holder for the process-wide LoadedModel.

    Written once during startup, read by every request afterwards.
    """

    def __init__(self, model: LoadedModel | None = None):
        self._model: LoadedModel | None = None
        self._init_lock = threading.Lock()
        if model is not None:
            self.initialize(model)

    def initialize(self, model: LoadedModel) -> None:
        with self._init_lock:
            if self._model is not None:
                raise RuntimeError("Model handle is already initialized")
            self._model = model

    def get(self) -> LoadedModel:
        model = self._model
        if model is None:
            raise ModelNotLoaded("Model has not been loaded yet")
        return model

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def name(self) -> str | None:
        return self._model.name if self._model is not None else None


@dataclass(frozen=True)
class TranscriptionResult:
    """Ordered segments for one input file."""

    segments: tuple[Segment, ...]

    @property
    def text(self) -> str:
        return "".join(seg.text for seg in self.segments)

    @property
    def start(self) -> int:
        return self.segments[0].start if self.segments else 0

    @property
    def end(self) -> int:
        return self.segments[-1].end if self.segments else 0

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "segments": [seg.to_dict() for seg in self.segments],
        }


class TranscriptionService:
    """Runs the decode -> infer -> collect pipeline for one file at a time.

    Safe to call from many threads: each call gets its own inference state.
    """

    def __init__(
        self,
        model: ModelHandle,
        params: DecodingParams | None = None,
        decoder: Decoder = decode_audio,
    ):
        """Initialize the service.

        Args:
            model: Handle to the shared loaded model.
            params: Default decoding parameters for calls that pass none.
            decoder: Function turning a binary handle into 16kHz mono float32 samples.
        """
        self._model = model
        self._params = params or DecodingParams.defaults()
        self._decoder = decoder

    @property
    def model(self) -> ModelHandle:
        return self._model

    @property
    def default_params(self) -> DecodingParams:
        return self._params

    def transcribe(
        self, source: BinaryIO, params: DecodingParams | None = None
    ) -> TranscriptionResult:
        """Transcribe one audio file.

        Raises:
            DecodeError: The audio could not be decoded.
            ModelNotLoaded: The shared model is not initialized.
            InferenceError: The inference run failed.
        """
        params = params or self._params
        loaded = self._model.get()

        t0 = time.perf_counter()
        samples = self._decoder(source)
        t1 = time.perf_counter()

        with loaded.new_state() as state:
            segments = state.run(samples, params)
        t2 = time.perf_counter()

        logger.info(
            "Transcribed %.2fs of audio into %d segments "
            "(decode %.0fms, inference %.0fms)",
            duration_seconds(samples),
            len(segments),
            (t1 - t0) * 1000,
            (t2 - t1) * 1000,
        )
        return TranscriptionResult(tuple(segments))

    def transcribe_path(
        self, path: str | Path, params: DecodingParams | None = None
    ) -> TranscriptionResult:
        with open(path, "rb") as f:
            return self.transcribe(f, params)
