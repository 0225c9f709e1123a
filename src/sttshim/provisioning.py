"""Model artifact provisioning.

Resolves a logical model name to a checkpoint file in the local cache and
downloads it from the artifact store on a cache miss.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import httpx

from sttshim.constants import MODEL_BASE_URL, MODEL_EXTENSION, MODEL_TABLE
from sttshim.errors import DownloadFailed, UnknownModel

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_BYTES = 1024 * 1024


@dataclass(frozen=True)
class ModelDescriptor:
    """A resolved model: logical name, artifact file and cache location."""

    name: str
    artifact: str
    sha256: str
    cache_dir: Path

    @property
    def filename(self) -> str:
        return f"{self.artifact}{MODEL_EXTENSION}"

    @property
    def path(self) -> Path:
        """Final location of the artifact in the cache."""
        return self.cache_dir / self.filename

    @property
    def remote_path(self) -> str:
        """Artifact location relative to the store base URL."""
        return f"{self.sha256}/{self.filename}"


class ModelProvisioner:
    """Guarantees a model artifact is present in the local cache.

    A download is streamed to ``<artifact>.pt.part`` and only renamed to the
    final name once the body is complete and its checksum matches, so the
    existence of the final file is the only cache check needed.
    """

    def __init__(
        self,
        models_dir: str | Path,
        base_url: str = MODEL_BASE_URL,
        client: httpx.Client | None = None,
        timeout_s: float = 600.0,
        table: dict[str, tuple[str, str]] | None = None,
    ):
        """Initialize the provisioner.

        Args:
            models_dir: Local cache directory for artifacts.
            base_url: Artifact store base URL.
            client: HTTP client to download with. One is created per download
                if omitted.
            timeout_s: Timeout applied to a client created by the provisioner.
            table: Logical name -> (artifact, sha256) lookup table.
        """
        self._models_dir = Path(models_dir)
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout_s = timeout_s
        self._table = MODEL_TABLE if table is None else table

    @property
    def models_dir(self) -> Path:
        return self._models_dir

    def resolve(self, name: str) -> ModelDescriptor:
        """Map a logical model name to its descriptor.

        Touches neither disk nor network.
        """
        key = name.strip().lower()
        if key not in self._table:
            known = ", ".join(sorted(self._table))
            raise UnknownModel(f"Unknown model {name!r}; expected one of: {known}")
        artifact, sha256 = self._table[key]
        return ModelDescriptor(
            name=key, artifact=artifact, sha256=sha256, cache_dir=self._models_dir
        )

    def url_for(self, descriptor: ModelDescriptor) -> str:
        return f"{self._base_url}/{descriptor.remote_path}"

    def is_cached(self, name: str) -> bool:
        return self.resolve(name).path.is_file()

    def ensure(self, name: str) -> Path:
        """Return the path of a usable artifact, downloading it if absent.

        Raises:
            UnknownModel: The name is not in the model table.
            DownloadFailed: The artifact could not be fetched or written.
        """
        descriptor = self.resolve(name)

        if descriptor.path.is_file():
            logger.debug(
                "Model %s found in cache at %s", descriptor.name, descriptor.path
            )
            return descriptor.path

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadFailed(
                f"Cannot create models directory {self._models_dir}: {e}"
            ) from e

        self._download(descriptor)
        return descriptor.path

    def _download(self, descriptor: ModelDescriptor) -> None:
        url = self.url_for(descriptor)
        part_path = descriptor.path.with_name(descriptor.filename + ".part")
        logger.info("Downloading model %s from %s", descriptor.name, url)

        client = self._client or httpx.Client(timeout=self._timeout_s)
        try:
            digest, size = self._stream_to_file(client, url, part_path)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            _remove_quietly(part_path)
            raise DownloadFailed(
                f"Failed to download model {descriptor.name} from {url}: {e}"
            ) from e
        finally:
            if self._client is None:
                client.close()

        if digest != descriptor.sha256:
            _remove_quietly(part_path)
            raise DownloadFailed(
                f"Checksum mismatch for model {descriptor.name}: "
                f"expected {descriptor.sha256}, got {digest}"
            )

        try:
            os.replace(part_path, descriptor.path)
        except OSError as e:
            _remove_quietly(part_path)
            raise DownloadFailed(
                f"Failed to store model {descriptor.name}: {e}"
            ) from e

        logger.info(
            "Model %s saved to %s (%d bytes)", descriptor.name, descriptor.path, size
        )

    @staticmethod
    def _stream_to_file(
        client: httpx.Client, url: str, path: Path
    ) -> tuple[str, int]:
        """Stream a GET response body into ``path``, returning its sha256 and size."""
        sha = hashlib.sha256()
        size = 0
        with client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            with path.open("wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_BYTES):
                    f.write(chunk)
                    sha.update(chunk)
                    size += len(chunk)
        return sha.hexdigest(), size


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
