"""Audio decoding and conversion utilities.

Any container/codec ffmpeg understands is decoded to 16kHz mono PCM16 and
converted to float32 numpy arrays normalized to [-1, 1).
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import BinaryIO

import numpy as np

from sttshim.constants import BYTES_PER_SAMPLE, SAMPLE_RATE
from sttshim.errors import DecodeError, UnsupportedFormat

logger = logging.getLogger(__name__)

FFMPEG_BINARY = "ffmpeg"

# ffmpeg stderr fragments that mean "not an audio file we can read"
_UNSUPPORTED_MARKERS = (
    "Invalid data found when processing input",
    "could not find codec parameters",
    "does not contain any stream",
    "Decoder not found",
)


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Convert PCM16 bytes to float32 array normalized to [-1, 1].

    Args:
        data: Raw PCM16 little-endian audio bytes.

    Returns:
        Float32 numpy array with values in [-1, 1].
    """
    audio = np.frombuffer(data, dtype="<i2").astype(np.float32)
    audio /= 32768.0
    return audio


def bytes_to_samples(num_bytes: int) -> int:
    """Convert byte count to sample count for PCM16."""
    return num_bytes // BYTES_PER_SAMPLE


def duration_seconds(audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> float:
    """Length of a sample array in seconds."""
    return len(audio) / sample_rate


def decode_audio(
    source: BinaryIO | str | Path, sample_rate: int = SAMPLE_RATE
) -> np.ndarray:
    """Decode an audio file into mono float32 samples at ``sample_rate``.

    When ``source`` is a handle backed by a file on disk, ffmpeg reads the
    file directly so containers that need seeking (mp4/m4a) decode. Other
    handles are piped through stdin.

    Args:
        source: Open binary handle positioned at the start, or a file path.
        sample_rate: Output sample rate in Hz.

    Returns:
        1-D float32 array.

    Raises:
        UnsupportedFormat: ffmpeg does not recognize the container or codec.
        DecodeError: Decoding failed or produced no samples.
    """
    path = _backing_path(source)
    stdin_data = None
    if path is None:
        stdin_data = source.read()
        if not stdin_data:
            raise DecodeError("Audio input is empty")

    cmd = [
        FFMPEG_BINARY,
        "-nostdin",
        "-threads", "0",
        "-i", path if path is not None else "pipe:0",
        "-f", "s16le",
        "-ac", "1",  # mono
        "-acodec", "pcm_s16le",
        "-ar", str(sample_rate),
        "-",
    ]
    if stdin_data is not None:
        # -nostdin would stop ffmpeg from reading the pipe
        cmd.remove("-nostdin")

    try:
        proc = subprocess.run(cmd, input=stdin_data, capture_output=True, check=False)
    except FileNotFoundError as e:
        raise DecodeError(f"{FFMPEG_BINARY} executable not found") from e

    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        message = stderr.splitlines()[-1] if stderr else f"exit code {proc.returncode}"
        if any(marker in stderr for marker in _UNSUPPORTED_MARKERS):
            raise UnsupportedFormat(f"Unsupported audio format: {message}")
        raise DecodeError(f"Failed to decode audio: {message}")

    if len(proc.stdout) < BYTES_PER_SAMPLE:
        raise DecodeError("Decoded audio contains no samples")

    usable = bytes_to_samples(len(proc.stdout)) * BYTES_PER_SAMPLE
    audio = pcm16_to_float32(proc.stdout[:usable])
    logger.debug(
        "Decoded %.2fs of audio (%d samples)",
        duration_seconds(audio, sample_rate),
        len(audio),
    )
    return audio


def _backing_path(source: BinaryIO | str | Path) -> str | None:
    """Return a filesystem path for ``source`` if it has one."""
    if isinstance(source, (str, Path)):
        return str(source)
    name = getattr(source, "name", None)
    if isinstance(name, str) and os.path.isfile(name):
        return name
    return None
