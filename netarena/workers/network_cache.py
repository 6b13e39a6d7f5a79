"""Local cache of network weight files, keyed by content hash.

Files are named by their sha256 (of the uncompressed weights) and verified
on download before they become visible. Train work keeps only the network
it is about to use; match work needs two networks at once and evicts
nothing.
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Callable, List, Union

from ..errors import TransportFailure, ValidationError
from ..serialization import content_hash, decompress_blob

_SHA_PATTERN = re.compile(r'[0-9a-fA-F]+')


class NetworkCache:
    """Directory of verified network files.

    Args:
        directory: Cache directory (created on demand).
        fetch: Callable returning gzip-compressed weights for a sha.
    """

    def __init__(self, directory: Union[str, Path], fetch: Callable[[str], bytes]):
        self.directory = Path(directory)
        self.fetch = fetch

    def path_for(self, sha: str) -> Path:
        if not _SHA_PATTERN.fullmatch(sha or ''):
            raise ValidationError(f"Invalid network sha: {sha!r}")
        return self.directory / sha

    def cached(self) -> List[str]:
        """Shas currently present in the cache."""
        if not self.directory.is_dir():
            return []
        return sorted(p.name for p in self.directory.iterdir() if p.is_file() and not p.name.startswith('.'))

    def ensure(self, sha: str, exclusive: bool = False) -> Path:
        """Return the local path of a network, downloading it if needed.

        Args:
            sha: Network content hash.
            exclusive: Remove every other cached network first.

        Raises:
            TransportFailure: Download failed or content did not match sha.
        """
        path = self.path_for(sha)
        self.directory.mkdir(parents=True, exist_ok=True)

        if exclusive:
            self.evict_except(sha)

        if path.exists():
            return path

        print(f"Downloading network {sha[:12]}...")
        compressed = self.fetch(sha)
        try:
            raw = decompress_blob(compressed)
        except ValueError as e:
            raise TransportFailure(f"Network {sha[:12]} is not valid gzip: {e}") from e
        actual = content_hash(raw)
        if actual != sha.lower():
            raise TransportFailure(f"Network hash mismatch: expected {sha}, got {actual}")

        self._write_atomic(path, raw)
        print(f"Network {sha[:12]} cached ({len(raw)} bytes)")
        return path

    def evict_except(self, keep: str) -> List[str]:
        """Delete every cached network other than keep."""
        removed = []
        for name in self.cached():
            if name != keep:
                (self.directory / name).unlink()
                removed.append(name)
        if removed:
            print(f"Removed {len(removed)} cached network(s)")
        return removed

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix='.download-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
