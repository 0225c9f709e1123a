"""Startup configuration read from environment variables.

Variables:
    STT_MODEL              - logical model name (default: turbo)
    STT_MODELS_DIR         - model cache directory (default: ./models)
    STT_HOST / STT_PORT    - bind address (default: 127.0.0.1:8080)
    STT_WORKERS            - inference worker threads (default: 2)
    STT_TMP_DIR            - directory for spooled uploads (default: ./tmp)
    STT_MODEL_BASE_URL     - artifact store base URL
    STT_DOWNLOAD_TIMEOUT   - artifact download timeout in seconds
    STT_REQUEST_TIMEOUT    - per-file processing deadline in seconds (unset: none)
    STT_DEVICE             - torch device (unset: cuda when available)
    STT_LANGUAGE           - language hint; empty lets the engine decide
    STT_INITIAL_PROMPT     - prompt biasing the first decoded tokens
    LOG_LEVEL              - logging level (default: INFO)
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from sttshim.constants import (
    DEFAULT_INITIAL_PROMPT,
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    MODEL_BASE_URL,
)

LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, fixed for the lifetime of the server."""

    model_name: str = DEFAULT_MODEL
    models_dir: Path = Path("./models")
    host: str = "127.0.0.1"
    port: int = 8080
    workers: int = 2
    tmp_dir: Path = Path("./tmp")
    model_base_url: str = MODEL_BASE_URL
    download_timeout_s: float = 600.0
    request_timeout_s: float | None = None
    device: str | None = None
    language: str | None = DEFAULT_LANGUAGE
    initial_prompt: str | None = DEFAULT_INITIAL_PROMPT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()

        language = env.get("STT_LANGUAGE", defaults.language)
        request_timeout = env.get("STT_REQUEST_TIMEOUT")
        initial_prompt = env.get("STT_INITIAL_PROMPT", defaults.initial_prompt)

        return cls(
            model_name=env.get("STT_MODEL", defaults.model_name),
            models_dir=Path(env.get("STT_MODELS_DIR", str(defaults.models_dir))),
            host=env.get("STT_HOST", defaults.host),
            port=_int(env, "STT_PORT", defaults.port),
            workers=_int(env, "STT_WORKERS", defaults.workers),
            tmp_dir=Path(env.get("STT_TMP_DIR", str(defaults.tmp_dir))),
            model_base_url=env.get("STT_MODEL_BASE_URL", defaults.model_base_url),
            download_timeout_s=_float(
                env, "STT_DOWNLOAD_TIMEOUT", defaults.download_timeout_s
            ),
            request_timeout_s=(
                _float(env, "STT_REQUEST_TIMEOUT", None) if request_timeout else None
            ),
            device=env.get("STT_DEVICE") or None,
            language=language or None,
            initial_prompt=initial_prompt or None,
            log_level=_log_level(env, "LOG_LEVEL", defaults.log_level),
        )


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _log_level(env: Mapping[str, str], key: str, default: str) -> str:
    level = (env.get(key) or default).upper()
    if level not in LOG_LEVELS:
        choices = ", ".join(LOG_LEVELS)
        raise ValueError(f"{key} must be one of {choices}, got {level!r}")
    return level


def _float(env: Mapping[str, str], key: str, default: float | None) -> float | None:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
