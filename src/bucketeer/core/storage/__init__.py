"""
Remote blob stores for bucketeer.

Provides the async blob-store interface the storage core talks to, streaming
compression codecs, and a local filesystem backend. The Google Cloud Storage
backend lives in ``bucketeer.integrations.google_storage``.
"""

from .base import DEFAULT_CORS, BlobStore, CorsRule, ObjectMetadata, ObjectWriter
from .compression import (
    CompressionType,
    compress_bytes,
    compress_json,
    decompress_bytes,
    decompress_json,
    deflate_stream,
    estimate_compression_ratio,
    get_compression_for_content_type,
    gunzip_stream,
    gzip_stream,
    is_compressible,
)
from .local import LocalBlobStore

__all__ = [
    "DEFAULT_CORS",
    "BlobStore",
    "CompressionType",
    "CorsRule",
    "LocalBlobStore",
    "ObjectMetadata",
    "ObjectWriter",
    "compress_bytes",
    "compress_json",
    "decompress_bytes",
    "decompress_json",
    "deflate_stream",
    "estimate_compression_ratio",
    "get_compression_for_content_type",
    "gunzip_stream",
    "gzip_stream",
    "is_compressible",
]
