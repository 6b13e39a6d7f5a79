"""Serialization utilities for netarena.

This module provides functions for:
- Transport compression of network weights and training data (gzip)
- Content hashing of network weights (sha256 over decompressed bytes)
- Compact record serialization for Redis storage (msgpack)
"""

import gzip
import hashlib
import zlib
from typing import Dict, Any

# Lazy imports to avoid issues if packages not installed
_msgpack = None


def _get_msgpack():
    """Lazy import msgpack."""
    global _msgpack
    if _msgpack is None:
        import msgpack
        _msgpack = msgpack
    return _msgpack


# =============================================================================
# Transport Compression
# =============================================================================

def compress_blob(data: bytes, mtime: float = 0) -> bytes:
    """Compress bytes for transport.

    A fixed mtime keeps the output deterministic for identical input.

    Args:
        data: Raw bytes.
        mtime: Timestamp stored in the gzip header.

    Returns:
        Gzip-compressed bytes.
    """
    return gzip.compress(data, mtime=mtime)


def decompress_blob(data: bytes) -> bytes:
    """Decompress a transport-compressed blob.

    Args:
        data: Gzip-compressed bytes.

    Returns:
        Decompressed bytes.

    Raises:
        ValueError: If data is not valid gzip.
    """
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise ValueError(f"Invalid gzip payload: {e}") from e


def content_hash(data: bytes) -> str:
    """Hex-encoded sha256 digest of raw (decompressed) bytes."""
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# Record Serialization (for Redis)
# =============================================================================

def serialize_record(record: Dict[str, Any]) -> bytes:
    """Serialize a flat record for Redis storage.

    Args:
        record: Dict of scalars, strings and bytes.

    Returns:
        Msgpack-serialized bytes.

    Example:
        >>> data = serialize_record({'network_id': 1, 'pgn': '1. e4 *'})
        >>> redis.rpush('netarena:training_games', data)
    """
    msgpack = _get_msgpack()
    return msgpack.packb(record, use_bin_type=True)


def deserialize_record(data: bytes) -> Dict[str, Any]:
    """Deserialize a record produced by serialize_record()."""
    msgpack = _get_msgpack()
    return msgpack.unpackb(data, raw=False)

