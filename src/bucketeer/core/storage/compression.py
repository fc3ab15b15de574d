"""
Compression utilities for the upload and download pipelines.

Streaming codecs are async generators chained over async byte iterators, so
data flows one chunk at a time and a slow consumer throttles the producer.
Core compression relies on zlib only; no extra dependencies.
"""

import gzip
import json
import zlib
from collections.abc import AsyncIterable, AsyncIterator
from enum import Enum
from io import BytesIO
from typing import Any

from ..exceptions import RemoteStoreError

_GZIP_WBITS = 16 + zlib.MAX_WBITS

# Types registered as compressible that no prefix/suffix rule catches
_COMPRESSIBLE_TYPES = {
    "application/javascript",
    "application/ecmascript",
    "application/json",
    "application/x-javascript",
    "application/xml",
    "application/rtf",
    "application/x-tar",
    "application/x-www-form-urlencoded",
    "application/vnd.ms-fontobject",
    "font/otf",
    "font/ttf",
    "image/bmp",
    "image/x-icon",
    "image/vnd.microsoft.icon",
}
_COMPRESSIBLE_SUFFIXES = ("+json", "+xml", "+text")


class CompressionType(Enum):
    """Supported compression types."""

    NONE = "none"
    GZIP = "gzip"
    DEFLATE = "deflate"


def compress_bytes(data: bytes, compression: CompressionType = CompressionType.GZIP) -> bytes:
    """Compress binary data."""
    if compression == CompressionType.NONE:
        return data
    if compression == CompressionType.GZIP:
        buffer = BytesIO()
        with gzip.GzipFile(fileobj=buffer, mode="wb", compresslevel=6) as gz:
            gz.write(data)
        return buffer.getvalue()
    if compression == CompressionType.DEFLATE:
        return zlib.compress(data, 6)
    raise ValueError(f"Unsupported compression type: {compression}")


def decompress_bytes(data: bytes, compression: CompressionType = CompressionType.GZIP) -> bytes:
    """Decompress binary data."""
    if compression == CompressionType.NONE:
        return data
    if compression == CompressionType.GZIP:
        return gzip.decompress(data)
    if compression == CompressionType.DEFLATE:
        return zlib.decompress(data)
    raise ValueError(f"Unsupported compression type: {compression}")


def compress_json(obj: Any, indent: int | None = None) -> bytes:
    """JSON-serialize and gzip-compress an object."""
    json_str = json.dumps(obj, indent=indent, default=str)
    return compress_bytes(json_str.encode("utf-8"))


def decompress_json(data: bytes) -> Any:
    """Decompress and parse JSON data."""
    json_str = decompress_bytes(data).decode("utf-8")
    return json.loads(json_str)


def estimate_compression_ratio(original_size: int, compressed_size: int) -> float:
    """Calculate compression ratio as a percentage (0-100)."""
    if original_size == 0:
        return 0.0
    return (1 - compressed_size / original_size) * 100


def get_compression_for_content_type(content_type: str | None) -> CompressionType:
    """Decide whether a declared MIME type is worth gzip-compressing before storage.

    Text-like types compress; already-compressed media and opaque binary
    (including ``application/octet-stream``) are stored raw.
    """
    if not content_type:
        return CompressionType.NONE
    mime = content_type.split(";", 1)[0].strip().lower()
    if mime.startswith("text/"):
        return CompressionType.GZIP
    if mime.endswith(_COMPRESSIBLE_SUFFIXES) or mime in _COMPRESSIBLE_TYPES:
        return CompressionType.GZIP
    return CompressionType.NONE


def is_compressible(content_type: str | None) -> bool:
    return get_compression_for_content_type(content_type) == CompressionType.GZIP


# ---------------------------------------------------------------------------
# Streaming codecs
# ---------------------------------------------------------------------------


async def gzip_stream(chunks: AsyncIterable[bytes], level: int = 6) -> AsyncIterator[bytes]:
    """Gzip-compress a byte stream."""
    compressor = zlib.compressobj(level, zlib.DEFLATED, _GZIP_WBITS)
    async for chunk in chunks:
        out = compressor.compress(chunk)
        if out:
            yield out
    yield compressor.flush()


async def deflate_stream(chunks: AsyncIterable[bytes], level: int = 6) -> AsyncIterator[bytes]:
    """Compress a byte stream in the zlib format used by HTTP ``Content-Encoding: deflate``."""
    compressor = zlib.compressobj(level)
    async for chunk in chunks:
        out = compressor.compress(chunk)
        if out:
            yield out
    yield compressor.flush()


async def gunzip_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Decompress a gzip byte stream. A stream cut short of its trailer is an error."""
    decompressor = zlib.decompressobj(_GZIP_WBITS)
    async for chunk in chunks:
        try:
            out = decompressor.decompress(chunk)
        except zlib.error as e:
            raise RemoteStoreError(f"Stored object is not valid gzip: {e}") from e
        if out:
            yield out
    tail = decompressor.flush()
    if tail:
        yield tail
    if not decompressor.eof:
        raise RemoteStoreError("Stored object ended before the end of its gzip stream")
