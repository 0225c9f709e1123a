"""FastAPI upload server for batch STT.

This server accepts multipart audio uploads and returns timestamped
transcripts. It depends only on TranscriptionService, allowing use with the
real or the fake engine.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import BinaryIO

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from sttshim.constants import SAMPLE_RATE
from sttshim.engine.protocol import DecodingParams
from sttshim.errors import (
    DecodeError,
    InferenceError,
    ModelNotLoaded,
    SttError,
    UnsupportedFormat,
)
from sttshim.service import TranscriptionResult, TranscriptionService

logger = logging.getLogger(__name__)

WORKER_THREAD_PREFIX = "stt-worker"

# Most specific first
_STATUS_CODES: list[tuple[type[SttError], int]] = [
    (UnsupportedFormat, 415),
    (DecodeError, 422),
    (ModelNotLoaded, 503),
    (InferenceError, 500),
]


def status_for(error: SttError) -> int:
    """HTTP status code for a pipeline error."""
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(
    service: TranscriptionService,
    workers: int = 2,
    tmp_dir: str | Path | None = None,
    request_timeout_s: float | None = None,
) -> FastAPI:
    """Create a FastAPI application around the given service.

    Args:
        service: Transcription service sharing the loaded model.
        workers: Number of threads running decoding and inference.
        tmp_dir: Directory for spooled uploads, or None for the system default.
        request_timeout_s: Deadline for processing one file, or None for no
            deadline.

    Returns:
        Configured FastAPI application.
    """
    executor: ThreadPoolExecutor | None = None
    spool_dir = str(tmp_dir) if tmp_dir is not None else None
    if spool_dir is not None:
        os.makedirs(spool_dir, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal executor
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=WORKER_THREAD_PREFIX
        )
        yield
        executor.shutdown(wait=True)
        executor = None

    app = FastAPI(title="Whisper STT Shim", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok" if service.model.is_ready else "loading",
            "model": service.model.name,
            "sample_rate": SAMPLE_RATE,
        }

    @app.post("/transcribe")
    async def transcribe(
        file: list[UploadFile] = File(...),
        language: str | None = Form(None),
        initial_prompt: str | None = Form(None),
    ):
        """Transcribe every uploaded file.

        Returns one object per file, in upload order. The first file that
        fails aborts the whole request.
        """
        if executor is None:
            raise RuntimeError(
                "Worker pool is not running; serve the app with lifespan enabled"
            )

        params = service.default_params.with_overrides(
            language=language or None,
            initial_prompt=initial_prompt or None,
        )
        loop = asyncio.get_running_loop()
        results = []

        for upload in file:
            future = loop.run_in_executor(
                executor,
                _transcribe_upload,
                service,
                upload.file,
                upload.filename,
                params,
                spool_dir,
            )
            try:
                if request_timeout_s is not None:
                    result = await asyncio.wait_for(future, timeout=request_timeout_s)
                else:
                    result = await future
            except asyncio.TimeoutError:
                logger.warning(
                    "Transcription of %s exceeded %.1fs",
                    upload.filename,
                    request_timeout_s,
                )
                raise HTTPException(
                    status_code=504,
                    detail=f"Transcription of {upload.filename} timed out",
                )
            except SttError as e:
                logger.warning("Transcription of %s failed: %s", upload.filename, e)
                raise HTTPException(status_code=status_for(e), detail=str(e))
            results.append(result.to_dict())

        return results

    return app


def _transcribe_upload(
    service: TranscriptionService,
    upload: BinaryIO,
    filename: str | None,
    params: DecodingParams,
    spool_dir: str | None,
) -> TranscriptionResult:
    """Spool an upload to a temporary file and transcribe it.

    Runs in a worker thread. The temporary file is removed on every exit
    path.
    """
    suffix = Path(filename).suffix if filename else ""
    fd, path = tempfile.mkstemp(suffix=suffix, prefix="upload-", dir=spool_dir)
    try:
        with os.fdopen(fd, "wb") as spooled:
            upload.seek(0)
            shutil.copyfileobj(upload, spooled)
        return service.transcribe_path(path, params)
    finally:
        os.unlink(path)
