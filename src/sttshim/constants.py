"""Core constants for the Whisper STT shim.

Whisper consumes 16kHz mono float32 audio. Segment timestamps are reported
as integer centiseconds (10ms ticks).
"""

# Audio format requirements
SAMPLE_RATE: int = 16000  # Hz - required by the Whisper encoder
BYTES_PER_SAMPLE: int = 2  # 16-bit PCM out of ffmpeg

# Segment timestamps: 1 unit = 10ms
TIMESTAMP_UNITS_PER_SECOND: int = 100

# Model artifacts
MODEL_EXTENSION: str = ".pt"
MODEL_BASE_URL: str = "https://openaipublic.azureedge.net/main/whisper/models"

# Logical name -> (artifact name, sha256 of the checkpoint).
# The remote path of an artifact is "<sha256>/<artifact><ext>".
_LARGE_V3_SHA = "e5b1a55b89c1367dacf97e3e19bfd829a01529dbfdeefa8caeb59b3f1b81dadb"
_TURBO_SHA = "aff26ae408abcba5fbf8813c21e62b0941638c5f6eebfb145be0c9839262a19a"

MODEL_TABLE: dict[str, tuple[str, str]] = {
    "tiny.en": (
        "tiny.en",
        "d3dd57d32accea0b295c96e26691aa14d8822fac7d9d27d5dc00b4ca2826dd03",
    ),
    "tiny": (
        "tiny",
        "65147644a518d12f04e32d6f3b26facc3f8dd46e5390956a9424a650c0ce22b9",
    ),
    "base.en": (
        "base.en",
        "25a8566e1d0c1e2231d1c762132cd20e0f96a85d16145c3a00adf5d1ac670ead",
    ),
    "base": (
        "base",
        "ed3a0b6b1c0edf879ad9b11b1af5a0e6ab5db9205f891f668f8b0e6c6326e34e",
    ),
    "small.en": (
        "small.en",
        "f953ad0fd29cacd07d5a9eda5624af0f6bcf2258be67c92b79389873d91e0872",
    ),
    "small": (
        "small",
        "9ecf779972d90ba49c06d968637d720dd632c55bbf19d441fb42bf17a411e794",
    ),
    "medium.en": (
        "medium.en",
        "d7440d1dc186f76616474e0ff0b3b6b879abc9d1a4926b7adfa41db2d497ab4f",
    ),
    "medium": (
        "medium",
        "345ae4da62f9b3d59415adc60127b97c714f32e89e936602e85993674d08dcb1",
    ),
    "large-v2": (
        "large-v2",
        "81f7c96c852ee8fc832187b0132e569d6c3065a3252ed18e56effd0b6a73e524",
    ),
    "large-v3": ("large-v3", _LARGE_V3_SHA),
    "large": ("large-v3", _LARGE_V3_SHA),
    "large-v3-turbo": ("large-v3-turbo", _TURBO_SHA),
    "turbo": ("large-v3-turbo", _TURBO_SHA),
    # No quantized checkpoints exist here; turbo is the reduced large-v3
    "large-v3-q5_0": ("large-v3-turbo", _TURBO_SHA),
}

# Default decoding configuration
DEFAULT_MODEL: str = "turbo"
DEFAULT_LANGUAGE: str = "zh"
DEFAULT_INITIAL_PROMPT: str = "以下是普通话的句子，这是一段会议记录。"
