"""
Download pipeline.

Streams a stored object into a ``ResponseSink``, negotiating the content
encoding with the client's ``Accept-Encoding`` header:

==========  ==============  =============================================
stored      client accepts  action
==========  ==============  =============================================
gzip        gzip            pass through, ``Content-Encoding: gzip``
gzip        deflate         gunzip then deflate, ``Content-Encoding: deflate``
gzip        neither         gunzip, raw body
raw         gzip            pass through with no encoding header [#]_
raw         deflate         deflate on the fly, ``Content-Encoding: deflate``
raw         neither         pass through
==========  ==============  =============================================

.. [#] ``compress_raw_for_gzip=True`` gzips the raw body on the fly instead.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from ..core.storage.base import BlobStore
from ..core.storage.compression import deflate_stream, gunzip_stream, gzip_stream
from ..core.utils.async_helpers import iterate_with_deadline, with_deadline
from .models import FileEntry, ResponseSink
from .quota import QuotaLedger
from .registry import FileRegistry

_GZIP = re.compile(r"\bgzip\b")
_DEFLATE = re.compile(r"\bdeflate\b")


class Transform(StrEnum):
    PASS_THROUGH = "pass_through"
    GUNZIP = "gunzip"
    GUNZIP_DEFLATE = "gunzip_deflate"
    DEFLATE = "deflate"
    GZIP = "gzip"


@dataclass(frozen=True)
class DownloadPlan:
    transform: Transform
    content_encoding: str | None = None


def plan_download(encoded: bool, accept_encoding: str | None, compress_raw_for_gzip: bool = False) -> DownloadPlan:
    """Pick the body transform and ``Content-Encoding`` header. gzip wins over deflate."""
    accept = (accept_encoding or "").lower()
    accepts_gzip = bool(_GZIP.search(accept))
    accepts_deflate = bool(_DEFLATE.search(accept))

    if encoded:
        if accepts_gzip:
            return DownloadPlan(Transform.PASS_THROUGH, "gzip")
        if accepts_deflate:
            return DownloadPlan(Transform.GUNZIP_DEFLATE, "deflate")
        return DownloadPlan(Transform.GUNZIP)

    if accepts_gzip:
        if compress_raw_for_gzip:
            return DownloadPlan(Transform.GZIP, "gzip")
        return DownloadPlan(Transform.PASS_THROUGH)
    if accepts_deflate:
        return DownloadPlan(Transform.DEFLATE, "deflate")
    return DownloadPlan(Transform.PASS_THROUGH)


def _apply(transform: Transform, chunks: AsyncIterable[bytes]) -> AsyncIterable[bytes]:
    if transform == Transform.GUNZIP:
        return gunzip_stream(chunks)
    if transform == Transform.GUNZIP_DEFLATE:
        return deflate_stream(gunzip_stream(chunks))
    if transform == Transform.DEFLATE:
        return deflate_stream(chunks)
    if transform == Transform.GZIP:
        return gzip_stream(chunks)
    return chunks


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class DownloadPipeline:
    def __init__(
        self,
        remote: BlobStore,
        quota: QuotaLedger,
        files: FileRegistry,
        *,
        chunk_size: int = 64 * 1024,
        cache_lifetime: int = 0,
        compress_raw_for_gzip: bool = False,
        remote_timeout: float | None = None,
        chunk_timeout: float | None = None,
    ):
        self._remote = remote
        self._quota = quota
        self._files = files
        self.chunk_size = chunk_size
        self.cache_lifetime = cache_lifetime
        self.compress_raw_for_gzip = compress_raw_for_gzip
        self.remote_timeout = remote_timeout
        self.chunk_timeout = chunk_timeout

    async def _read(self, file: FileEntry) -> AsyncIterator[bytes]:
        stream = self._remote.read_stream(file.bucket_id, file.identifier, self.chunk_size)
        async for chunk in iterate_with_deadline(stream, self.chunk_timeout, "download.read"):
            yield chunk

    async def download_file(
        self, request_headers: Mapping[str, str], sink: ResponseSink, file: FileEntry
    ) -> DownloadPlan:
        """Stream *file* into *sink*. Remote failures propagate before any header is set."""
        meta = await with_deadline(
            self._remote.get_metadata(file.bucket_id, file.identifier), self.remote_timeout, "remote.get_metadata"
        )
        plan = plan_download(meta.encoded, _header(request_headers, "accept-encoding"), self.compress_raw_for_gzip)
        logger.debug(f"Download {file.identifier} (encoded={meta.encoded}): {plan.transform}")

        sink.set_header("Content-Type", file.mime_type)
        if plan.content_encoding:
            sink.set_header("Content-Encoding", plan.content_encoding)
        else:
            sink.set_header("Content-Length", str(file.size))
        if self.cache_lifetime > 0:
            sink.set_header("Cache-Control", f"public, max-age={self.cache_lifetime}")

        async for chunk in _apply(plan.transform, self._read(file)):
            await with_deadline(sink.write(chunk), self.chunk_timeout, "download.write")

        await self._files.increment_downloads(file)
        await self._quota.increment_api(file.user)
        return plan
