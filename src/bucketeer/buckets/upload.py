"""
Upload pipeline.

Streams one part from its source to the remote store, gzip-compressing it on
the way when the content type is compressible, then commits the usage
counters and the file row. Source, compressor and remote writer are chained
async iterators: the writer awaits each chunk before the next one is pulled,
so a slow remote throttles the source and memory stays bounded.

State machine::

    PENDING -> QUOTA_CHECKED -> STREAMING -> ERROR -> CLEANUP -> FAILED
                                          \\-> FINISHED -> COMMITTING_METADATA
                                               -> [MAKING_PUBLIC] -> COMPLETED

``UploadBatch`` handles a whole multi-part form: file parts, an optional
``meta`` JSON part, and the per-part tokens returned to the caller.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from loguru import logger

from ..core.events import FILE_UPLOADED, Event, EventBus
from ..core.exceptions import BucketeerError, NotFoundError, QuotaExceededError, RemoteNotFoundError, UploadError
from ..core.storage.base import BlobStore, ObjectWriter
from ..core.storage.compression import gzip_stream, is_compressible
from ..core.utils.async_helpers import iterate_with_deadline, with_deadline
from ..core.utils.ids import object_identifier
from .models import BucketEntry, FileEntry, UploadBatchResult, UploadPart, UploadState, UploadToken
from .outbox import Operation, OperationJournal, OperationKind
from .quota import QuotaLedger
from .registry import BucketRegistry, FileRegistry


class _Upload:
    """Book-keeping for one in-flight upload."""

    def __init__(self, part: UploadPart, bucket: BucketEntry, user: str):
        self.part = part
        self.bucket = bucket
        self.user = user
        self.state = UploadState.PENDING
        self.size = 0
        self.allowance: int | None = None

    def transition(self, state: UploadState) -> None:
        logger.debug(f"Upload '{self.part.file_name}' for '{self.user}': {self.state} -> {state}")
        self.state = state


class UploadPipeline:
    def __init__(
        self,
        remote: BlobStore,
        quota: QuotaLedger,
        buckets: BucketRegistry,
        files: FileRegistry,
        journal: OperationJournal,
        bus: EventBus,
        *,
        remote_timeout: float | None = None,
        chunk_timeout: float | None = None,
    ):
        self._remote = remote
        self._quota = quota
        self._buckets = buckets
        self._files = files
        self._journal = journal
        self._bus = bus
        self.remote_timeout = remote_timeout
        self.chunk_timeout = chunk_timeout

    async def _counted(self, upload: _Upload) -> AsyncIterator[bytes]:
        async for chunk in iterate_with_deadline(upload.part.chunks, self.chunk_timeout, "upload.read"):
            upload.size += len(chunk)
            # The declared byte count may be missing or wrong
            if upload.allowance is not None and upload.size >= upload.allowance:
                raise QuotaExceededError(
                    "You do not have enough memory allocated. Please upgrade your account for more memory",
                    kind="memory",
                )
            yield chunk

    async def _stream(self, upload: _Upload, writer: ObjectWriter, compress: bool) -> None:
        body = self._counted(upload)
        if compress:
            body = gzip_stream(body)
        async for chunk in body:
            await with_deadline(writer.write(chunk), self.chunk_timeout, "upload.write")
        await with_deadline(writer.close(), self.remote_timeout, "remote.close")

    async def _delete_object(self, bucket: str, key: str) -> None:
        try:
            await with_deadline(self._remote.delete_object(bucket, key), self.remote_timeout, "remote.delete_object")
        except RemoteNotFoundError:
            logger.debug(f"Partial object {bucket}/{key} was never written")

    async def upload_stream(
        self,
        part: UploadPart,
        bucket: BucketEntry,
        user: str,
        make_public: bool = True,
        parent_file: str | None = None,
    ) -> FileEntry:
        """Upload one part into *bucket* and register it as a file of *user*."""
        upload = _Upload(part, bucket, user)

        stats = await self._quota.can_upload(user, part.byte_count)
        upload.allowance = stats.memory_remaining
        upload.transition(UploadState.QUOTA_CHECKED)

        key = object_identifier()
        compress = is_compressible(part.content_type)
        op = await self._journal.begin(
            OperationKind.UPLOAD,
            {"bucket": bucket.identifier, "key": key, "user": user, "make_public": make_public},
        )

        upload.transition(UploadState.STREAMING)
        writer: ObjectWriter | None = None
        try:
            writer = await with_deadline(
                self._remote.open_writer(
                    bucket.identifier,
                    key,
                    content_type=part.content_type,
                    content_encoding="gzip" if compress else None,
                    metadata={"encoded": True} if compress else None,
                ),
                self.remote_timeout,
                "remote.open_writer",
            )
            await self._stream(upload, writer, compress)
        except Exception as e:
            upload.transition(UploadState.ERROR)
            await self._clean_up(upload, op, writer, key, e)
            upload.transition(UploadState.FAILED)
            raise UploadError(f"Could not upload '{part.file_name}': {e}") from e

        upload.transition(UploadState.FINISHED)
        await self._journal.mark(op, "remote_written")
        await self._journal.update_payload(op, size=upload.size)

        upload.transition(UploadState.COMMITTING_METADATA)
        try:
            await self._buckets.adjust_memory(bucket.identifier, upload.size)
            await self._journal.mark(op, "bucket_usage")
            await self._quota.record_usage(user, memory=upload.size, api_calls=1)
            await self._journal.mark(op, "user_usage")

            entry = await self._files.register(
                FileEntry(
                    identifier=key,
                    bucket_id=bucket.identifier,
                    bucket_name=bucket.name,
                    user=user,
                    name=part.file_name,
                    size=upload.size,
                    mime_type=part.content_type,
                    is_public=make_public,
                    public_url=self._remote.public_url(bucket.identifier, key),
                    parent_file=parent_file,
                )
            )
            await self._journal.mark(op, "registered")

            if make_public:
                upload.transition(UploadState.MAKING_PUBLIC)
                await with_deadline(
                    self._remote.make_public(bucket.identifier, key), self.remote_timeout, "remote.make_public"
                )
                await self._journal.mark(op, "published")
        except Exception as e:
            await self._journal.fail(op, e)
            raise

        await self._journal.complete(op)
        upload.transition(UploadState.COMPLETED)
        logger.info(f"Uploaded '{entry.name}' ({upload.size} bytes) to bucket '{bucket.name}' for '{user}'")
        await self._bus.emit(
            Event(
                FILE_UPLOADED,
                {"user": user, "bucket": bucket.identifier, "file": entry.identifier, "name": entry.name},
                source="uploads",
            )
        )
        return entry

    async def _clean_up(
        self, upload: _Upload, op: Operation, writer: ObjectWriter | None, key: str, cause: Exception
    ) -> None:
        upload.transition(UploadState.CLEANUP)
        try:
            if writer is not None:
                await writer.abort()
            await self._delete_object(upload.bucket.identifier, key)
        except Exception as e:
            await self._journal.fail(op, e)
            upload.transition(UploadState.FAILED)
            raise UploadError(
                f"Could not upload '{upload.part.file_name}' ({cause}) and the partial file could not be removed: {e}"
            ) from e
        await self._journal.complete(op)

    async def recover(self, op: Operation) -> None:
        """Compensate an interrupted upload: undo recorded usage and remove the object."""
        bucket = op.payload["bucket"]
        key = op.payload["key"]
        user = op.payload["user"]
        size = int(op.payload.get("size", 0))

        if op.done("registered"):
            try:
                entry = await self._files.get_file(key)
            except NotFoundError:
                pass
            else:
                await self._files.delete_entry(entry)
        if op.done("user_usage"):
            await self._quota.record_usage(user, memory=-size)
        if op.done("bucket_usage"):
            await self._buckets.adjust_memory(bucket, -size)
        await self._delete_object(bucket, key)
        await self._journal.complete(op)
        logger.warning(f"Rolled back interrupted upload {bucket}/{key} for '{user}'")


# ---------------------------------------------------------------------------
# Multi-part batches
# ---------------------------------------------------------------------------


async def _drain(chunks: AsyncIterable[bytes]) -> None:
    async for _ in chunks:
        pass


async def _read_all(chunks: AsyncIterable[bytes]) -> bytes:
    return b"".join([chunk async for chunk in chunks])


class UploadBatch:
    """Upload every file part of a form and attach the optional ``meta`` part to them.

    Args:
        pipeline: The single-part upload pipeline.
        files: File registry used to attach meta.
        remove_files_by_id: Rolls the batch back when its meta is malformed.
        allowed_types: Content types accepted for upload.
    """

    def __init__(
        self,
        pipeline: UploadPipeline,
        files: FileRegistry,
        remove_files_by_id: Callable[..., Awaitable[list[str]]],
        allowed_types: list[str],
    ):
        self._pipeline = pipeline
        self._files = files
        self._remove_files_by_id = remove_files_by_id
        self.allowed_types = list(allowed_types)

    def is_type_allowed(self, content_type: str | None) -> bool:
        return bool(content_type) and content_type.split(";")[0].strip().lower() in self.allowed_types

    async def _upload_part(
        self,
        part: UploadPart,
        token: UploadToken,
        bucket: BucketEntry,
        user: str,
        make_public: bool,
        parent_file: str | None,
    ) -> FileEntry | None:
        try:
            entry = await self._pipeline.upload_stream(part, bucket, user, make_public, parent_file)
        except BucketeerError as e:
            token.error = True
            token.error_msg = str(e)
            return None
        token.file = entry.identifier
        token.url = entry.public_url
        return entry

    async def upload_parts(
        self,
        parts: AsyncIterable[UploadPart],
        bucket: BucketEntry,
        user: str,
        make_public: bool = True,
        parent_file: str | None = None,
    ) -> UploadBatchResult:
        tokens: list[UploadToken] = []
        uploaded: list[FileEntry] = []
        meta: Any = None
        meta_error = ""

        async for part in parts:
            token = UploadToken(field=part.name or "", filename=part.filename)
            if part.filename:
                tokens.append(token)
                if not self.is_type_allowed(part.content_type):
                    await _drain(part.chunks)
                    token.error = True
                    token.error_msg = f"Please only use approved file types '{', '.join(self.allowed_types)}'"
                    continue
                entry = await self._upload_part(part, token, bucket, user, make_public, parent_file)
                if entry:
                    uploaded.append(entry)
            elif part.name == "meta":
                tokens.append(token)
                raw = await _read_all(part.chunks)
                try:
                    meta = json.loads(raw.decode("utf-8"))
                except ValueError as e:
                    meta = None
                    meta_error = f"Meta data is not a valid JSON: {e}"
                    token.error = True
                    token.error_msg = meta_error
            elif self.is_type_allowed(part.content_type):
                tokens.append(token)
                entry = await self._upload_part(part, token, bucket, user, make_public, parent_file)
                if entry:
                    uploaded.append(entry)
            else:
                await _drain(part.chunks)

        if meta_error and uploaded:
            removed = await self._remove_files_by_id([f.identifier for f in uploaded], user)
            logger.warning(f"Malformed upload meta for '{user}'; removed {len(removed)} uploaded files")
            for token in tokens:
                token.file = ""
                token.url = ""
            return UploadBatchResult(tokens=tokens, files=[], message=meta_error, error=True)

        if meta is not None and uploaded:
            await self._files.set_meta({"$or": [{"identifier": f.identifier} for f in uploaded]}, meta)
            for entry in uploaded:
                entry.meta = meta

        message = f"Upload complete. [{len(uploaded)}] Files have been saved."
        error = False
        for token in tokens:
            if token.error:
                error = True
                message = token.error_msg
                break
        if error:
            logger.error(message)
        else:
            logger.info(message)
        return UploadBatchResult(tokens=tokens, files=uploaded, message=message, error=error)
