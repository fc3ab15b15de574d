"""
Abstract base class for remote blob stores.

Provides a unified async interface over the object-storage backend that holds
the bytes (local filesystem, Google Cloud Storage, ...). Buckets and objects are
addressed only by identifier strings; the metadata store owns everything else.

A missing bucket or object always surfaces as ``RemoteNotFoundError`` so that
callers can treat "already gone" as benign.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class CorsRule:
    """A cross-origin rule attached to a remote bucket."""

    origins: list[str]
    methods: list[str]
    response_headers: list[str] = field(default_factory=list)
    max_age_seconds: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": list(self.origins),
            "method": list(self.methods),
            "responseHeader": list(self.response_headers),
            "maxAgeSeconds": self.max_age_seconds,
        }


# Every bucket is created with this policy: anyone may GET files directly.
DEFAULT_CORS = [
    CorsRule(
        origins=["*"],
        methods=["GET", "OPTIONS"],
        response_headers=[
            "content-type",
            "authorization",
            "content-length",
            "x-requested-with",
            "x-mime-type",
            "x-file-name",
            "cache-control",
        ],
        max_age_seconds=1,
    )
]


@dataclass
class ObjectMetadata:
    """Metadata for a stored remote object."""

    bucket: str
    key: str
    size: int
    content_type: str
    content_encoding: str | None = None
    custom_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    is_public: bool = False

    @property
    def encoded(self) -> bool:
        """True when the stored bytes were gzip-compressed on upload."""
        value = self.custom_metadata.get("encoded", False)
        if isinstance(value, str):
            return value.lower() == "true"
        return bool(value)


class ObjectWriter(ABC):
    """Push side of a remote write stream. Awaiting ``write`` applies backpressure."""

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        """Append a chunk to the object being written."""

    @abstractmethod
    async def close(self) -> ObjectMetadata:
        """Finish the write; the object becomes visible."""

    @abstractmethod
    async def abort(self) -> None:
        """Stop writing and release resources. Safe to call more than once."""


class BlobStore(ABC):
    """Abstract base class for remote blob stores."""

    def __init__(self, **config):
        self.config = config

    @abstractmethod
    async def create_bucket(self, identifier: str, cors: list[CorsRule], location: str | None = None) -> None:
        """Create a bucket. Raises RemoteStoreError (code 409) if it already exists."""

    @abstractmethod
    async def delete_bucket(self, identifier: str) -> None:
        """Delete an empty bucket. Raises RemoteNotFoundError if it doesn't exist."""

    @abstractmethod
    async def open_writer(
        self,
        bucket: str,
        key: str,
        content_type: str = "application/octet-stream",
        content_encoding: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ObjectWriter:
        """Open a write stream for a new object."""

    @abstractmethod
    def read_stream(self, bucket: str, key: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Stream the stored bytes exactly as written (no transcoding)."""

    @abstractmethod
    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object. Raises RemoteNotFoundError if it doesn't exist."""

    @abstractmethod
    async def get_metadata(self, bucket: str, key: str) -> ObjectMetadata:
        """Get metadata for a stored object. Raises RemoteNotFoundError if not found."""

    @abstractmethod
    async def make_public(self, bucket: str, key: str) -> None:
        """Grant anonymous read access to an object."""

    @abstractmethod
    async def make_private(self, bucket: str, key: str) -> None:
        """Revoke anonymous read access to an object."""

    @abstractmethod
    def public_url(self, bucket: str, key: str) -> str:
        """URL under which a public object can be fetched directly."""
