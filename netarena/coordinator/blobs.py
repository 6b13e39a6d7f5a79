"""Blob storage backends.

Network weights and training data are opaque blobs addressed by a string
key. Only the read/write/exists/delete contract matters to the rest of the
coordinator; two backends are provided:

- RedisBlobStore: blobs live in Redis beside the rows (default)
- LocalBlobStore: blobs live in a directory tree on the coordinator host
"""

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import redis

from ..config import StorageConfig
from ..errors import NotFound


class BlobStore(ABC):
    """Key -> bytes storage contract."""

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Store data under key, replacing any previous value."""

    @abstractmethod
    def read(self, key: str) -> bytes:
        """Return the bytes stored under key.

        Raises:
            NotFound: If nothing is stored under key.
        """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether key holds a blob."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a blob. Returns True if something was removed."""


class RedisBlobStore(BlobStore):
    """Blobs stored as Redis string values."""

    def __init__(self, client: redis.Redis, prefix: str = "netarena"):
        self.redis = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:blob:{key}"

    def write(self, key: str, data: bytes) -> None:
        self.redis.set(self._key(key), data)

    def read(self, key: str) -> bytes:
        data = self.redis.get(self._key(key))
        if data is None:
            raise NotFound(f"blob {key} not found")
        return data

    def exists(self, key: str) -> bool:
        return bool(self.redis.exists(self._key(key)))

    def delete(self, key: str) -> bool:
        return self.redis.delete(self._key(key)) > 0


class LocalBlobStore(BlobStore):
    """Blobs stored as files under a root directory.

    Writes go to a temporary file in the target directory and are renamed
    into place, so readers never see a partial blob.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFound(f"blob {key} not found")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True


def create_blob_store(
    config: Optional[StorageConfig],
    client: redis.Redis,
    prefix: str = "netarena",
) -> BlobStore:
    """Create the blob store selected by config.

    Args:
        config: Storage configuration (defaults to the Redis backend).
        client: Redis client used by the Redis backend.
        prefix: Key prefix for the Redis backend.

    Returns:
        BlobStore instance.
    """
    config = config or StorageConfig()
    if config.backend == 'local':
        return LocalBlobStore(config.blob_dir)
    if config.backend == 'redis':
        return RedisBlobStore(client, prefix=prefix)
    raise ValueError(f"Unknown storage backend: {config.backend}")
