"""Data models for the bucket/file storage core.

Pure data, no I/O. Each persisted model converts to and from the plain
documents stored in the metadata collections.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterable
from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

MEMORY_ALLOCATED = 500_000_000  # 500 MB
API_CALLS_ALLOCATED = 20_000


def now_ms() -> int:
    return int(time.time() * 1000)


class _Document:
    """Mixin: dataclass <-> metadata document."""

    def to_doc(self) -> dict[str, Any]:
        doc = asdict(self)
        if not doc.get("id"):
            # the store assigns ids
            doc.pop("id", None)
        return doc

    @classmethod
    def from_doc(cls, doc: dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in doc.items() if k in known})


@dataclass
class StorageStats(_Document):
    """Per-user usage counters.

    Intended (not atomically enforced): 0 <= used <= allocated for both pairs.
    """

    user: str
    memory_allocated: int = MEMORY_ALLOCATED
    memory_used: int = 0
    api_calls_allocated: int = API_CALLS_ALLOCATED
    api_calls_used: int = 0

    @property
    def memory_remaining(self) -> int:
        return self.memory_allocated - self.memory_used

    @property
    def api_calls_remaining(self) -> int:
        return self.api_calls_allocated - self.api_calls_used


STATS_FIELDS = ("memory_allocated", "memory_used", "api_calls_allocated", "api_calls_used")


@dataclass
class BucketEntry(_Document):
    """Local metadata for one remote bucket. ``identifier`` is the remote key."""

    identifier: str
    name: str
    user: str
    created: int = field(default_factory=now_ms)
    memory_used: int = 0
    id: str = ""


@dataclass
class FileEntry(_Document):
    """Local metadata for one uploaded object.

    ``parent_file`` is a plain back-reference to another file's identifier;
    removing the parent does not remove this file unless a caller asks for it.
    ``meta`` is an opaque JSON value shared by every file of an upload batch.
    """

    identifier: str
    bucket_id: str
    bucket_name: str
    user: str
    name: str
    size: int = 0
    created: int = field(default_factory=now_ms)
    num_downloads: int = 0
    is_public: bool = False
    public_url: str = ""
    mime_type: str = "application/octet-stream"
    parent_file: str | None = None
    meta: Any = None
    id: str = ""


# ---------------------------------------------------------------------------
# Upload / download shapes
# ---------------------------------------------------------------------------


@dataclass
class UploadPart:
    """One part of a multi-part upload.

    ``byte_count`` is the size declared up front and is what the quota gate
    checks; the stored size is what actually streamed through.
    """

    name: str
    content_type: str
    chunks: AsyncIterable[bytes]
    filename: str | None = None
    byte_count: int = 0

    @property
    def file_name(self) -> str:
        return self.filename or self.name


class UploadState(StrEnum):
    PENDING = "pending"
    QUOTA_CHECKED = "quota_checked"
    STREAMING = "streaming"
    ERROR = "error"
    CLEANUP = "cleanup"
    FAILED = "failed"
    FINISHED = "finished"
    COMMITTING_METADATA = "committing_metadata"
    MAKING_PUBLIC = "making_public"
    COMPLETED = "completed"


@dataclass
class UploadToken:
    """Per-part outcome of an upload batch."""

    field: str
    filename: str | None = None
    file: str = ""
    url: str = ""
    error: bool = False
    error_msg: str = ""


@dataclass
class UploadBatchResult:
    tokens: list[UploadToken]
    files: list[FileEntry]
    message: str
    error: bool


@runtime_checkable
class ResponseSink(Protocol):
    """Where a download is streamed: an HTTP response, a file, a buffer."""

    def set_header(self, name: str, value: str) -> None: ...

    async def write(self, chunk: bytes) -> None: ...
