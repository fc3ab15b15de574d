"""
Bucket and file registries.

The registries own the local metadata rows for buckets and files. The rows are
the source of truth for *existence*; the remote blob store only holds bytes.
Bucket creation lives here because it is a single remote call followed by a
single insert. Multi-step removal is in ``deletion.py``.
"""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

from ..core.events import BUCKET_CREATED, Event, EventBus
from ..core.exceptions import (
    DuplicateKeyError,
    DuplicateNameError,
    NotFoundError,
    QuotaExceededError,
    RemoteNotFoundError,
    ValidationError,
)
from ..core.metadata import Collection, Query
from ..core.storage.base import DEFAULT_CORS, BlobStore
from ..core.utils.async_helpers import with_deadline
from ..core.utils.ids import bucket_identifier
from .models import BucketEntry, FileEntry
from .outbox import Operation, OperationJournal, OperationKind
from .quota import QuotaLedger

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\- ]+$")
_UNSAFE_FILE_NAME = re.compile(r"[\\/\x00-\x1f\x7f]")


def _search_pattern(search: str | re.Pattern | None) -> re.Pattern | None:
    if search is None or isinstance(search, re.Pattern):
        return search
    return re.compile(search, re.IGNORECASE)


def validate_name(name: str, what: str = "name") -> str:
    """Names may only contain letters, digits, dashes, underscores and spaces."""
    if not name or not name.strip():
        raise ValidationError(f"Please specify a valid {what}")
    if not _NAME_PATTERN.match(name):
        raise ValidationError(f"Please only use safe characters in the {what}")
    return name


def validate_file_name(name: str) -> str:
    """File names may hold any printable character except path separators."""
    if not name or not name.strip():
        raise ValidationError("Please specify a valid file name")
    if _UNSAFE_FILE_NAME.search(name) or name.strip() in (".", ".."):
        raise ValidationError("Please only use safe characters in the file name")
    return name


class BucketRegistry:
    """Bucket rows plus the remote bucket lifecycle on creation."""

    def __init__(
        self,
        buckets: Collection,
        remote: BlobStore,
        quota: QuotaLedger,
        journal: OperationJournal,
        bus: EventBus,
        *,
        bucket_prefix: str = "bucketeer-bucket-",
        location: str | None = None,
        remote_timeout: float | None = None,
    ):
        self._buckets = buckets
        self._remote = remote
        self._quota = quota
        self._journal = journal
        self._bus = bus
        self.bucket_prefix = bucket_prefix
        self.location = location
        self.remote_timeout = remote_timeout

    # -- queries -------------------------------------------------------------

    async def get_bucket(self, identifier_or_name: str, user: str | None = None) -> BucketEntry | None:
        """Look up by ``(user, name)`` when *user* is given, otherwise by identifier."""
        if user:
            query: Query = {"user": user, "name": identifier_or_name}
        else:
            query = {"identifier": identifier_or_name}
        doc = await self._buckets.find_one(query)
        return BucketEntry.from_doc(doc) if doc else None

    async def get_bucket_entries(
        self, user: str | None = None, search: str | re.Pattern | None = None
    ) -> list[BucketEntry]:
        query: Query = {}
        if user:
            query["user"] = user
        pattern = _search_pattern(search)
        if pattern is not None:
            query["name"] = pattern
        return [BucketEntry.from_doc(doc) for doc in await self._buckets.find(query)]

    async def find(self, query: Query) -> list[BucketEntry]:
        return [BucketEntry.from_doc(doc) for doc in await self._buckets.find(query)]

    # -- mutations -----------------------------------------------------------

    async def create_bucket(self, name: str, user: str) -> BucketEntry:
        """Create a remote bucket and register it for *user*."""
        if not user or not user.strip():
            raise ValidationError("Please specify a valid user")
        validate_name(name, "bucket name")

        if not await self._quota.within_api_limit(user):
            raise QuotaExceededError(
                "You have reached your API call limit. Please upgrade your plan for more API calls",
                kind="api_calls",
            )
        if await self.get_bucket(name, user) is not None:
            raise DuplicateNameError(f"A Bucket with the name '{name}' has already been registered")

        entry = BucketEntry(identifier=bucket_identifier(self.bucket_prefix), name=name, user=user)
        op = await self._journal.begin(
            OperationKind.CREATE_BUCKET, {"identifier": entry.identifier, "name": name, "user": user}
        )
        try:
            await with_deadline(
                self._remote.create_bucket(entry.identifier, DEFAULT_CORS, self.location),
                self.remote_timeout,
                "remote.create_bucket",
            )
            await self._journal.mark(op, "remote_created")

            try:
                doc = await self._buckets.insert_one(entry.to_doc())
            except DuplicateKeyError as e:
                raise DuplicateNameError(f"A Bucket with the name '{name}' has already been registered") from e
            entry = BucketEntry.from_doc(doc)
            await self._journal.mark(op, "registered")

            await self._quota.increment_api(user)
            await self._journal.mark(op, "api_counted")
        except Exception as e:
            await self._journal.fail(op, e)
            raise
        await self._journal.complete(op)

        logger.info(f"Created bucket '{name}' ({entry.identifier}) for '{user}'")
        await self._bus.emit(
            Event(BUCKET_CREATED, {"user": user, "bucket": entry.identifier, "name": name}, source="buckets")
        )
        return entry

    async def adjust_memory(self, identifier: str, delta: int) -> None:
        if delta:
            await self._buckets.update_one({"identifier": identifier}, increments={"memory_used": delta})

    async def delete_entry(self, bucket: BucketEntry) -> int:
        return await self._buckets.delete_one({"identifier": bucket.identifier})

    # -- recovery ------------------------------------------------------------

    async def recover_create(self, op: Operation) -> None:
        """Settle an interrupted bucket creation.

        A registered bucket is kept and its API call counted; a remote bucket
        that never got its row is an orphan and is removed. A bucket this
        operation did not create (e.g. an identifier collision) is left alone.
        """
        identifier = op.payload["identifier"]
        user = op.payload["user"]
        if op.done("registered"):
            if not op.done("api_counted"):
                await self._quota.increment_api(user)
                await self._journal.mark(op, "api_counted")
        elif not op.done("remote_created"):
            logger.debug(f"Bucket {identifier} was never created by operation {op.id}; nothing to undo")
        else:
            try:
                await with_deadline(
                    self._remote.delete_bucket(identifier), self.remote_timeout, "remote.delete_bucket"
                )
            except RemoteNotFoundError:
                logger.debug(f"Orphan bucket {identifier} was never created remotely")
            else:
                logger.warning(f"Removed orphan remote bucket {identifier} for '{user}'")
        await self._journal.complete(op)


class FileRegistry:
    """File rows plus per-file remote ACL changes."""

    def __init__(
        self,
        files: Collection,
        remote: BlobStore,
        quota: QuotaLedger,
        *,
        remote_timeout: float | None = None,
    ):
        self._files = files
        self._remote = remote
        self._quota = quota
        self.remote_timeout = remote_timeout

    async def get_file(
        self, identifier: str, user: str | None = None, search: str | re.Pattern | None = None
    ) -> FileEntry:
        query: Query = {"identifier": identifier}
        if user:
            query["user"] = user
        pattern = _search_pattern(search)
        if pattern is not None:
            query["name"] = pattern
        doc = await self._files.find_one(query)
        if doc is None:
            raise NotFoundError(f"File '{identifier}' does not exist")
        return FileEntry.from_doc(doc)

    async def get_files(self, query: Query, skip: int = 0, limit: int | None = None) -> list[FileEntry]:
        return [FileEntry.from_doc(doc) for doc in await self._files.find(query, skip=skip, limit=limit)]

    async def num_files(self, query: Query) -> int:
        return await self._files.count(query)

    async def get_files_by_bucket(
        self,
        bucket: BucketEntry,
        skip: int = 0,
        limit: int | None = None,
        search: str | re.Pattern | None = None,
    ) -> list[FileEntry]:
        query: Query = {"bucket_id": bucket.identifier}
        pattern = _search_pattern(search)
        if pattern is not None:
            query["name"] = pattern
        return await self.get_files(query, skip=skip, limit=limit)

    async def register(self, entry: FileEntry) -> FileEntry:
        doc = await self._files.insert_one(entry.to_doc())
        return FileEntry.from_doc(doc)

    async def set_meta(self, query: Query, meta: Any) -> int:
        """Attach the opaque *meta* value to every matching file."""
        result = await self._files.update_many(query, values={"meta": meta})
        return result.matched

    async def rename_file(self, file: FileEntry, name: str) -> FileEntry:
        validate_file_name(name)
        await self._quota.increment_api(file.user)
        await self._files.update_one({"identifier": file.identifier}, values={"name": name})
        file.name = name
        return file

    async def _set_public(self, file: FileEntry, is_public: bool) -> FileEntry:
        if not await self._quota.within_api_limit(file.user):
            raise QuotaExceededError("You do not have enough API calls left to make this request", kind="api_calls")
        await self._quota.increment_api(file.user)
        change = self._remote.make_public if is_public else self._remote.make_private
        await with_deadline(
            change(file.bucket_id, file.identifier),
            self.remote_timeout,
            "remote.make_public" if is_public else "remote.make_private",
        )
        await self._files.update_one(
            {"bucket_id": file.bucket_id, "identifier": file.identifier}, values={"is_public": is_public}
        )
        file.is_public = is_public
        return file

    async def make_file_public(self, file: FileEntry) -> FileEntry:
        return await self._set_public(file, True)

    async def make_file_private(self, file: FileEntry) -> FileEntry:
        return await self._set_public(file, False)

    async def increment_downloads(self, file: FileEntry) -> None:
        await self._files.update_one({"identifier": file.identifier}, increments={"num_downloads": 1})

    async def delete_entry(self, file: FileEntry) -> int:
        return await self._files.delete_one({"identifier": file.identifier})
