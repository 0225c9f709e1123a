"""Real engine using OpenAI Whisper checkpoints via the openai-whisper package.

This module imports torch and should only be imported where the model is
actually served.
"""

import logging
import threading
from pathlib import Path

import numpy as np
import torch
import whisper

from sttshim.constants import TIMESTAMP_UNITS_PER_SECOND
from sttshim.engine.base import BaseState
from sttshim.engine.protocol import DecodingParams, SamplingStrategy, Segment
from sttshim.errors import ModelLoadError

logger = logging.getLogger(__name__)


class WhisperEngine:
    """Loads Whisper ``.pt`` checkpoints onto a torch device."""

    def __init__(self, device: str | None = None, in_memory: bool = False):
        """Initialize the Whisper engine.

        Args:
            device: Torch device, or None to use CUDA when available.
            in_memory: Read the checkpoint into memory before deserializing.
        """
        self._device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self._in_memory = in_memory

    @property
    def device(self) -> str:
        return self._device

    def load(self, path: str | Path) -> "WhisperModel":
        path = Path(path)
        if not path.is_file():
            raise ModelLoadError(f"Model artifact not found: {path}")

        logger.info("Loading Whisper model from %s on %s", path, self._device)
        try:
            model = whisper.load_model(
                str(path), device=self._device, in_memory=self._in_memory
            )
        except Exception as e:
            raise ModelLoadError(f"Failed to load model from {path}: {e}") from e

        model.eval()
        return WhisperModel(model, name=path.stem, device=self._device)


class WhisperModel:
    """Loaded Whisper weights shared by all requests.

    openai-whisper attaches its key/value cache hooks to the model modules
    for the duration of each decode, so decodes on one model are serialized
    through ``_decode_lock``. All other per-request data lives on the state.
    """

    def __init__(self, model: "whisper.Whisper", name: str, device: str):
        self._model = model
        self._name = name
        self._device = device
        self._decode_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_multilingual(self) -> bool:
        return self._model.is_multilingual

    def new_state(self) -> "WhisperState":
        return WhisperState(self)


class WhisperState(BaseState):
    """Per-request decoding context for a WhisperModel."""

    def __init__(self, model: WhisperModel):
        super().__init__(model.name)
        self._owner = model

    def _infer(self, samples: np.ndarray, params: DecodingParams) -> list[Segment]:
        fp16 = self._owner._device.startswith("cuda")
        options = transcribe_options(params, fp16=fp16)

        with self._owner._decode_lock, torch.no_grad():
            result = self._owner._model.transcribe(samples, **options)

        return [
            Segment(
                start=_to_units(seg["start"]),
                end=_to_units(seg["end"]),
                text=seg["text"],
            )
            for seg in result["segments"]
        ]


def transcribe_options(params: DecodingParams, fp16: bool) -> dict:
    """Map DecodingParams onto keyword arguments of ``whisper.transcribe``."""
    options: dict = {
        # A single temperature disables the sampling fallback
        "temperature": 0.0,
        "initial_prompt": params.initial_prompt,
        "language": params.language,
        "fp16": fp16,
        "verbose": _verbosity(params),
    }
    if params.strategy is SamplingStrategy.BEAM_SEARCH:
        options["beam_size"] = params.beam_size
    else:
        # best_of only applies to sampling; greedy at T=0 rejects it
        options["beam_size"] = None
        options["best_of"] = None
    return options


def _verbosity(params: DecodingParams) -> bool | None:
    if params.print_realtime or params.print_timestamps:
        return True
    if params.print_progress:
        return False  # progress bar only
    return None


def _to_units(seconds: float) -> int:
    return int(round(seconds * TIMESTAMP_UNITS_PER_SECOND))
