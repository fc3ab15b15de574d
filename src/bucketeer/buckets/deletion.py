"""
Deletion orchestrator.

Removes files and buckets across the remote store and the metadata
collections. Each single removal runs as a journaled sequence of steps; an
interrupted removal is rolled *forward* by recovery, skipping the steps it
already completed. A remote object or bucket that is already gone counts as
removed.

Batch removals process their targets one at a time. The first failure stops
the batch with a ``CascadeError`` listing what was already removed; nothing is
restored.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from loguru import logger

from ..core.events import BUCKET_REMOVED, FILES_REMOVED, Event, EventBus
from ..core.exceptions import CascadeError, NotFoundError, RemoteNotFoundError, ValidationError
from ..core.metadata import Query
from ..core.storage.base import BlobStore
from ..core.utils.async_helpers import with_deadline
from .models import BucketEntry, FileEntry
from .outbox import Operation, OperationJournal, OperationKind
from .quota import QuotaLedger
from .registry import BucketRegistry, FileRegistry


def _users_payload(users: set[str]) -> dict:
    payload: dict = {"users": sorted(users)}
    if len(users) == 1:
        payload["user"] = next(iter(users))
    return payload


class DeletionOrchestrator:
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
    ):
        self._remote = remote
        self._quota = quota
        self._buckets = buckets
        self._files = files
        self._journal = journal
        self._bus = bus
        self.remote_timeout = remote_timeout

    async def _step(self, op: Operation, step: str, action: Callable[[], Awaitable[object]]) -> None:
        if op.done(step):
            return
        await action()
        await self._journal.mark(op, step)

    async def _run(self, op: Operation, steps: Callable[[Operation], Awaitable[None]]) -> None:
        try:
            await steps(op)
        except Exception as e:
            await self._journal.fail(op, e)
            raise
        await self._journal.complete(op)

    # -- files ---------------------------------------------------------------

    async def _delete_object(self, file: FileEntry) -> None:
        try:
            await with_deadline(
                self._remote.delete_object(file.bucket_id, file.identifier),
                self.remote_timeout,
                "remote.delete_object",
            )
        except RemoteNotFoundError:
            logger.warning(f"File {file.bucket_id}/{file.identifier} was already removed from the storage system")

    def _file_steps(self, file: FileEntry) -> Callable[[Operation], Awaitable[None]]:
        async def steps(op: Operation) -> None:
            await self._step(op, "remote_deleted", lambda: self._delete_object(file))
            await self._step(op, "bucket_usage", lambda: self._buckets.adjust_memory(file.bucket_id, -file.size))
            await self._step(op, "unregistered", lambda: self._files.delete_entry(file))
            await self._step(
                op, "user_usage", lambda: self._quota.record_usage(file.user, memory=-file.size, api_calls=1)
            )

        return steps

    async def delete_file(self, file: FileEntry) -> FileEntry:
        """Remove one file's bytes and row, releasing its usage."""
        if await self._buckets.get_bucket(file.bucket_id) is None:
            raise NotFoundError(f"Could not find the bucket '{file.bucket_name}'")
        op = await self._journal.begin(OperationKind.DELETE_FILE, {"file": file.to_doc()})
        await self._run(op, self._file_steps(file))
        logger.debug(f"Removed file '{file.name}' ({file.identifier}) of '{file.user}'")
        return file

    async def remove_files(self, query: Query) -> list[str]:
        """Remove every file matching *query*. Returns the removed identifiers."""
        files = await self._files.get_files(query)
        removed: list[str] = []
        for file in files:
            try:
                await self.delete_file(file)
            except Exception as e:
                raise CascadeError(f"Could not remove file '{file.name}': {e}", removed) from e
            removed.append(file.identifier)

        if removed:
            logger.info(f"Removed {len(removed)} files")
            payload = _users_payload({f.user for f in files})
            payload["files"] = removed
            await self._bus.emit(Event(FILES_REMOVED, payload, source="deletion"))
        return removed

    async def remove_files_by_id(
        self, ids: list[str], user: str | None = None, include_children: bool = False
    ) -> list[str]:
        """Remove files by identifier. Children (``parent_file``) only when *include_children*."""
        if not ids:
            return []
        clauses: list[Query] = [{"identifier": i} for i in ids]
        if include_children:
            clauses.extend({"parent_file": i} for i in ids)
        query: Query = {"$or": clauses}
        if user:
            query["user"] = user
        return await self.remove_files(query)

    async def remove_files_by_bucket(self, bucket: str, user: str | None = None) -> list[str]:
        """Remove all files of a bucket given by identifier or name."""
        if not bucket or not bucket.strip():
            raise ValidationError("Please specify a valid bucket")
        query: Query = {"$or": [{"bucket_id": bucket}, {"bucket_name": bucket}]}
        if user:
            query["user"] = user
        return await self.remove_files(query)

    # -- buckets -------------------------------------------------------------

    async def _delete_remote_bucket(self, bucket: BucketEntry) -> None:
        try:
            await with_deadline(
                self._remote.delete_bucket(bucket.identifier), self.remote_timeout, "remote.delete_bucket"
            )
        except RemoteNotFoundError:
            logger.warning(f"Bucket {bucket.identifier} was already removed from the storage system")

    def _bucket_steps(self, bucket: BucketEntry) -> Callable[[Operation], Awaitable[None]]:
        async def steps(op: Operation) -> None:
            await self._step(op, "files_removed", lambda: self.remove_files({"bucket_id": bucket.identifier}))
            await self._step(op, "remote_deleted", lambda: self._delete_remote_bucket(bucket))
            await self._step(op, "unregistered", lambda: self._buckets.delete_entry(bucket))
            await self._step(op, "api_counted", lambda: self._quota.increment_api(bucket.user))

        return steps

    async def delete_bucket(self, bucket: BucketEntry) -> BucketEntry:
        """Remove a bucket, its files and its row."""
        op = await self._journal.begin(OperationKind.DELETE_BUCKET, {"bucket": bucket.to_doc()})
        await self._run(op, self._bucket_steps(bucket))
        logger.debug(f"Removed bucket '{bucket.name}' ({bucket.identifier}) of '{bucket.user}'")
        return bucket

    async def remove_buckets(self, query: Query) -> list[str]:
        """Remove every bucket matching *query*. Returns the removed identifiers."""
        buckets = await self._buckets.find(query)
        removed: list[str] = []
        for bucket in buckets:
            try:
                await self.delete_bucket(bucket)
            except Exception as e:
                raise CascadeError(f"Could not remove bucket '{bucket.name}': {e}", removed) from e
            removed.append(bucket.identifier)

        if removed:
            logger.info(f"Removed {len(removed)} buckets")
            payload = _users_payload({b.user for b in buckets})
            payload["buckets"] = removed
            await self._bus.emit(Event(BUCKET_REMOVED, payload, source="deletion"))
        return removed

    async def remove_buckets_by_name(self, names: list[str], user: str) -> list[str]:
        if not user:
            raise ValidationError("Please specify a valid user")
        if not names:
            return []
        return await self.remove_buckets({"$or": [{"name": n} for n in names], "user": user})

    async def remove_buckets_by_user(self, user: str) -> list[str]:
        if not user:
            raise ValidationError("Please specify a valid user")
        return await self.remove_buckets({"user": user})

    async def remove_user(self, user: str) -> list[str]:
        """Remove all of a user's buckets, then the user's storage stats."""
        removed = await self.remove_buckets_by_user(user)
        await self._quota.remove_user_stats(user)
        logger.info(f"Removed storage data for '{user}'")
        return removed

    # -- recovery ------------------------------------------------------------

    async def recover(self, op: Operation) -> None:
        """Roll an interrupted removal forward through its remaining steps."""
        if op.kind == OperationKind.DELETE_FILE:
            file = FileEntry.from_doc(op.payload["file"])
            logger.warning(f"Resuming removal of file {file.identifier} after {op.steps}")
            await self._run(op, self._file_steps(file))
        elif op.kind == OperationKind.DELETE_BUCKET:
            bucket = BucketEntry.from_doc(op.payload["bucket"])
            logger.warning(f"Resuming removal of bucket {bucket.identifier} after {op.steps}")
            await self._run(op, self._bucket_steps(bucket))
        else:
            raise ValueError(f"Not a removal operation: {op.kind}")
