"""Serve the STT shim.

Usage:
    python -m sttshim [--model tiny] [--models-dir ./models] [--port 8080]

Every flag defaults to the matching STT_* environment variable (see
sttshim.config). The model is provisioned and loaded before the server
binds; any failure there exits with status 1.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import uvicorn

from sttshim.config import LOG_LEVELS, Settings
from sttshim.engine.protocol import DecodingParams
from sttshim.errors import SttError
from sttshim.provisioning import ModelProvisioner
from sttshim.server import create_app
from sttshim.service import ModelHandle, TranscriptionService

logger = logging.getLogger("sttshim")


def parse_args(argv: list[str] | None, defaults: Settings) -> Settings:
    parser = argparse.ArgumentParser(description="Whisper speech-to-text HTTP shim")
    parser.add_argument(
        "--model", default=defaults.model_name, help="Logical model name"
    )
    parser.add_argument(
        "--models-dir",
        type=Path,
        default=defaults.models_dir,
        help="Model cache directory",
    )
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument(
        "--workers",
        type=int,
        default=defaults.workers,
        help="Inference worker threads",
    )
    parser.add_argument(
        "--device", default=defaults.device, help="Torch device (default: auto)"
    )
    parser.add_argument("--language", default=defaults.language, help="Language hint")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=defaults.log_level,
    )
    args = parser.parse_args(argv)

    return replace(
        defaults,
        model_name=args.model,
        models_dir=args.models_dir,
        host=args.host,
        port=args.port,
        workers=args.workers,
        device=args.device,
        language=args.language or None,
        log_level=args.log_level,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_service(settings: Settings) -> TranscriptionService:
    """Provision and load the model, then wrap it in a service.

    Raises:
        SttError: Provisioning or loading failed.
    """
    provisioner = ModelProvisioner(
        settings.models_dir,
        base_url=settings.model_base_url,
        timeout_s=settings.download_timeout_s,
    )
    artifact = provisioner.ensure(settings.model_name)

    # torch is only imported once there is a model to serve
    from sttshim.engine.whisper import WhisperEngine

    model = WhisperEngine(device=settings.device).load(artifact)

    params = DecodingParams.defaults(
        language=settings.language, initial_prompt=settings.initial_prompt
    )
    return TranscriptionService(ModelHandle(model), params=params)


def main(argv: list[str] | None = None) -> int:
    settings = parse_args(argv, Settings.from_env())
    configure_logging(settings.log_level)
    logger.info(
        "Starting with model=%s models_dir=%s workers=%d",
        settings.model_name,
        settings.models_dir,
        settings.workers,
    )

    try:
        service = build_service(settings)
    except SttError as e:
        logger.critical("Cannot start without a loaded model: %s", e)
        return 1

    app = create_app(
        service,
        workers=settings.workers,
        tmp_dir=settings.tmp_dir,
        request_timeout_s=settings.request_timeout_s,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
