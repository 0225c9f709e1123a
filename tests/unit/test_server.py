"""Unit tests for the FastAPI server with the FakeEngine."""

import asyncio
import threading

import numpy as np
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from sttshim.constants import SAMPLE_RATE
from sttshim.engine.fake import FakeModel
from sttshim.engine.protocol import DecodingParams
from sttshim.errors import DecodeError, InferenceError, UnsupportedFormat
from sttshim.server import WORKER_THREAD_PREFIX, create_app, status_for
from sttshim.service import ModelHandle, TranscriptionService


def byte_length_decoder(source):
    """Decode each input byte as 0.1s of silence; text files are rejected."""
    data = source.read()
    if data.startswith(b"TEXT"):
        raise UnsupportedFormat(
            "Unsupported audio format: Invalid data found when processing input"
        )
    if data.startswith(b"BROKEN"):
        raise DecodeError("Failed to decode audio: truncated stream")
    return np.zeros(len(data) * SAMPLE_RATE // 10, dtype=np.float32)


@pytest.fixture
def model():
    return FakeModel(name="tiny")


@pytest.fixture
def spool_dir(tmp_path):
    return tmp_path / "spool"


@pytest.fixture
def app(model, spool_dir):
    service = TranscriptionService(
        ModelHandle(model),
        params=DecodingParams.defaults(initial_prompt=None),
        decoder=byte_length_decoder,
    )
    return create_app(service, workers=2, tmp_dir=spool_dir)


def upload(name: str, data: bytes):
    return ("file", (name, data, "application/octet-stream"))


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_ok(self, app):
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["model"] == "tiny"
        assert data["sample_rate"] == 16000

    def test_health_loading(self, spool_dir):
        service = TranscriptionService(ModelHandle(), decoder=byte_length_decoder)
        with TestClient(create_app(service, tmp_dir=spool_dir)) as client:
            data = client.get("/health").json()

        assert data["status"] == "loading"
        assert data["model"] is None


class TestTranscribeEndpoint:
    """Tests for POST /transcribe."""

    def test_single_file(self, app, spool_dir):
        with TestClient(app) as client:
            response = client.post("/transcribe", files=[upload("a.wav", bytes(20))])

        assert response.status_code == 200
        body = response.json()
        assert len(body) == 1
        assert body[0]["start"] == 0
        assert body[0]["end"] == 200
        assert isinstance(body[0]["text"], str)
        assert [s["start"] for s in body[0]["segments"]] == [0, 100]
        # spooled uploads are removed
        assert list(spool_dir.iterdir()) == []

    def test_multiple_files_in_order(self, app):
        files = [
            upload("a.wav", bytes(10)),
            upload("b.mp3", bytes(30)),
            upload("c.ogg", bytes(5)),
        ]
        with TestClient(app) as client:
            response = client.post("/transcribe", files=files)

        assert response.status_code == 200
        assert [item["end"] for item in response.json()] == [100, 300, 50]

    def test_language_and_prompt_override(self, app):
        with TestClient(app) as client:
            response = client.post(
                "/transcribe",
                files=[upload("a.wav", bytes(10))],
                data={"initial_prompt": "meeting notes", "language": "en"},
            )

        assert response.status_code == 200
        assert response.json()[0]["text"].startswith("meeting notes ")

    def test_unsupported_format(self, app, spool_dir):
        with TestClient(app) as client:
            response = client.post(
                "/transcribe", files=[upload("notes.mp3", b"TEXT not audio")]
            )

        assert response.status_code == 415
        assert "Invalid data" in response.json()["detail"]
        assert list(spool_dir.iterdir()) == []

    def test_decode_error(self, app):
        with TestClient(app) as client:
            response = client.post("/transcribe", files=[upload("a.wav", b"BROKEN")])
        assert response.status_code == 422

    def test_one_bad_file_aborts_batch(self, app, model):
        files = [
            upload("a.wav", bytes(10)),
            upload("b.txt", b"TEXT"),
            upload("c.wav", bytes(10)),
        ]
        with TestClient(app) as client:
            response = client.post("/transcribe", files=files)

        assert response.status_code == 415
        assert model.call_count == 1

    def test_model_not_loaded(self, spool_dir):
        service = TranscriptionService(ModelHandle(), decoder=byte_length_decoder)
        with TestClient(create_app(service, tmp_dir=spool_dir)) as client:
            response = client.post("/transcribe", files=[upload("a.wav", bytes(10))])
        assert response.status_code == 503

    def test_missing_file_field(self, app):
        with TestClient(app) as client:
            response = client.post("/transcribe", data={"language": "en"})
        assert response.status_code == 422

    def test_timeout_releases_spooled_upload(self, spool_dir):
        """A 504 still removes the upload once the worker finishes."""
        service = TranscriptionService(
            ModelHandle(FakeModel(latency_ms=500)),
            decoder=byte_length_decoder,
        )
        app = create_app(service, tmp_dir=spool_dir, request_timeout_s=0.05)
        with TestClient(app) as client:
            response = client.post("/transcribe", files=[upload("a.wav", bytes(10))])
            assert response.status_code == 504

        # leaving the client shuts the worker pool down and waits for the worker
        assert list(spool_dir.iterdir()) == []

    def test_requires_lifespan(self, app):
        """Without lifespan there is no worker pool to run on."""
        client = TestClient(app)
        with pytest.raises(RuntimeError, match="Worker pool is not running"):
            client.post("/transcribe", files=[upload("a.wav", bytes(10))])

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, model, spool_dir):
        """Parallel uploads each get their own result from the worker pool."""
        threads = set()

        def recording_decoder(source):
            threads.add(threading.current_thread().name)
            return byte_length_decoder(source)

        service = TranscriptionService(
            ModelHandle(model),
            params=DecodingParams.defaults(initial_prompt=None),
            decoder=recording_decoder,
        )
        app = create_app(service, workers=2, tmp_dir=spool_dir)

        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            client = AsyncClient(transport=transport, base_url="http://test")
            async with client:
                responses = await asyncio.gather(
                    *[
                        client.post(
                            "/transcribe",
                            files=[upload(f"{i}.wav", bytes(10 * (i + 1)))],
                        )
                        for i in range(4)
                    ]
                )

        assert [r.status_code for r in responses] == [200] * 4
        assert [r.json()[0]["end"] for r in responses] == [100, 200, 300, 400]
        assert threads
        assert all(name.startswith(WORKER_THREAD_PREFIX) for name in threads)
        assert len(threads) <= 2


class TestStatusMapping:
    def test_status_codes(self):
        assert status_for(UnsupportedFormat("x")) == 415
        assert status_for(DecodeError("x")) == 422
        assert status_for(InferenceError("x")) == 500
