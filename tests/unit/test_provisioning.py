"""Unit tests for model provisioning."""

import hashlib

import httpx
import pytest

from sttshim.constants import MODEL_BASE_URL, MODEL_TABLE
from sttshim.errors import DownloadFailed, UnknownModel
from sttshim.provisioning import ModelProvisioner

WEIGHTS = b"not really whisper weights" * 100
WEIGHTS_SHA = hashlib.sha256(WEIGHTS).hexdigest()
TABLE = {
    "tiny": ("tiny", WEIGHTS_SHA),
    "large": ("large-v3", WEIGHTS_SHA),
}


class RecordingTransport:
    """Serves WEIGHTS (or a fixed status) and records requested URLs."""

    def __init__(self, status: int = 200, body: bytes = WEIGHTS):
        self.status = status
        self.body = body
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        return httpx.Response(self.status, content=self.body)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def provisioner(tmp_path, transport):
    client = httpx.Client(transport=httpx.MockTransport(transport))
    return ModelProvisioner(
        tmp_path / "models",
        base_url="https://store.test/models",
        client=client,
        table=TABLE,
    )


class TestResolve:
    """Tests for logical name resolution."""

    def test_case_insensitive(self, provisioner):
        assert provisioner.resolve("TINY").name == "tiny"
        assert provisioner.resolve(" Tiny ").artifact == "tiny"

    def test_alias_resolves_to_artifact(self, provisioner, tmp_path):
        descriptor = provisioner.resolve("large")
        assert descriptor.filename == "large-v3.pt"
        assert descriptor.path == tmp_path / "models" / "large-v3.pt"

    def test_url_layout(self, provisioner):
        descriptor = provisioner.resolve("tiny")
        expected = f"https://store.test/models/{WEIGHTS_SHA}/tiny.pt"
        assert provisioner.url_for(descriptor) == expected

    def test_unknown_model(self, provisioner):
        with pytest.raises(UnknownModel, match="not-a-real-model"):
            provisioner.resolve("not-a-real-model")

    def test_default_table(self, tmp_path):
        provisioner = ModelProvisioner(tmp_path)
        descriptor = provisioner.resolve("turbo")
        assert descriptor.artifact == "large-v3-turbo"
        assert provisioner.url_for(descriptor).startswith(MODEL_BASE_URL + "/")
        assert set(MODEL_TABLE) >= {
            "tiny",
            "base",
            "small",
            "medium",
            "large",
            "large-v3-q5_0",
        }

    def test_quantized_name_maps_to_turbo(self, tmp_path):
        """The quantized large-v3 name resolves to the turbo checkpoint."""
        provisioner = ModelProvisioner(tmp_path)
        quantized = provisioner.resolve("large-v3-q5_0")
        turbo = provisioner.resolve("turbo")

        assert quantized.artifact == "large-v3-turbo"
        assert quantized.path == turbo.path
        assert quantized.sha256 == turbo.sha256


class TestEnsure:
    """Tests for ensure() download and cache behavior."""

    def test_downloads_on_miss(self, provisioner, transport, tmp_path):
        path = provisioner.ensure("tiny")

        assert path == tmp_path / "models" / "tiny.pt"
        assert path.read_bytes() == WEIGHTS
        expected = f"https://store.test/models/{WEIGHTS_SHA}/tiny.pt"
        assert transport.requests == [expected]
        assert not (tmp_path / "models" / "tiny.pt.part").exists()

    def test_idempotent_when_cached(self, provisioner, transport):
        """Second ensure() hits the cache: same path, no network."""
        first = provisioner.ensure("tiny")
        second = provisioner.ensure("Tiny")

        assert first == second
        assert len(transport.requests) == 1

    def test_existing_file_skips_network(
        self, provisioner, transport, tmp_path
    ):
        models = tmp_path / "models"
        models.mkdir()
        (models / "tiny.pt").write_bytes(b"cached")

        path = provisioner.ensure("tiny")

        assert path.read_bytes() == b"cached"
        assert transport.requests == []

    def test_unknown_model_has_no_side_effects(
        self, provisioner, transport, tmp_path
    ):
        with pytest.raises(UnknownModel):
            provisioner.ensure("not-a-real-model")

        assert transport.requests == []
        assert not (tmp_path / "models").exists()

    def test_http_error_status(self, tmp_path):
        transport = RecordingTransport(status=404, body=b"missing")
        client = httpx.Client(transport=httpx.MockTransport(transport))
        provisioner = ModelProvisioner(tmp_path, client=client, table=TABLE)

        with pytest.raises(DownloadFailed, match="404"):
            provisioner.ensure("tiny")

        assert not (tmp_path / "tiny.pt").exists()
        assert not (tmp_path / "tiny.pt.part").exists()

    def test_network_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provisioner = ModelProvisioner(tmp_path, client=client, table=TABLE)

        with pytest.raises(DownloadFailed, match="connection refused"):
            provisioner.ensure("tiny")
        assert list(tmp_path.iterdir()) == []

    def test_invalid_base_url(self, tmp_path):
        """A malformed store URL is reported as a failed download."""
        provisioner = ModelProvisioner(
            tmp_path, base_url="http://store.test:notaport/models", table=TABLE
        )

        with pytest.raises(DownloadFailed, match="notaport"):
            provisioner.ensure("tiny")
        assert list(tmp_path.iterdir()) == []

    def test_truncated_body_is_not_cached(self, tmp_path):
        """A body that fails the checksum never lands under the final name."""
        transport = RecordingTransport(body=WEIGHTS[:100])
        client = httpx.Client(transport=httpx.MockTransport(transport))
        provisioner = ModelProvisioner(tmp_path, client=client, table=TABLE)

        with pytest.raises(DownloadFailed, match="Checksum mismatch"):
            provisioner.ensure("tiny")

        assert not provisioner.is_cached("tiny")
        assert not (tmp_path / "tiny.pt.part").exists()

        # A later attempt with a good body succeeds
        transport.body = WEIGHTS
        assert provisioner.ensure("tiny").read_bytes() == WEIGHTS

    def test_stale_part_file_is_overwritten(self, provisioner, tmp_path):
        models = tmp_path / "models"
        models.mkdir()
        (models / "tiny.pt.part").write_bytes(b"left over from a crash")

        path = provisioner.ensure("tiny")

        assert path.read_bytes() == WEIGHTS
        assert not (models / "tiny.pt.part").exists()

    def test_creates_nested_models_dir(self, transport, tmp_path):
        client = httpx.Client(transport=httpx.MockTransport(transport))
        nested = tmp_path / "a" / "b"
        provisioner = ModelProvisioner(nested, client=client, table=TABLE)

        assert provisioner.ensure("tiny").parent == nested
