"""Quota ledger: per-user storage and API-call counters.

Every storage mutation is gated here. ``can_upload`` is a *check*: the usage
it guards is only recorded after the remote write succeeds, in a separate
``record_usage`` call. Two concurrent uploads that each pass the check can
therefore jointly exceed the allocation. This is an accepted soft limit. A
single upload cannot: the pipeline stops a stream once it outgrows the
remaining allocation, whatever size the part declared. The counters
themselves never lose an update because every change is a single atomic
increment in the metadata store.
"""

from __future__ import annotations

from loguru import logger

from ..core.exceptions import DuplicateKeyError, NotFoundError, QuotaExceededError, ValidationError
from ..core.metadata import Collection
from .models import API_CALLS_ALLOCATED, MEMORY_ALLOCATED, STATS_FIELDS, StorageStats


class QuotaLedger:
    def __init__(
        self,
        stats: Collection,
        *,
        memory_allocated: int = MEMORY_ALLOCATED,
        api_calls_allocated: int = API_CALLS_ALLOCATED,
    ) -> None:
        self._stats = stats
        self.memory_allocated = memory_allocated
        self.api_calls_allocated = api_calls_allocated

    async def create_user_stats(self, user: str) -> StorageStats:
        """Insert fresh counters for *user*. Fails if the user already has a row."""
        stats = StorageStats(
            user=user,
            memory_allocated=self.memory_allocated,
            api_calls_allocated=self.api_calls_allocated,
        )
        try:
            doc = await self._stats.insert_one(stats.to_doc())
        except DuplicateKeyError as e:
            raise DuplicateKeyError(f"Storage data for the user '{user}' already exists") from e
        logger.info(f"Created storage stats for '{user}'")
        return StorageStats.from_doc(doc)

    async def get_user_stats(self, user: str) -> StorageStats:
        doc = await self._stats.find_one({"user": user})
        if doc is None:
            raise NotFoundError(f"Could not find storage data for the user '{user}'")
        return StorageStats.from_doc(doc)

    async def remove_user_stats(self, user: str) -> int:
        return await self._stats.delete_one({"user": user})

    async def can_upload(self, user: str, byte_count: int) -> StorageStats:
        """Return the current stats if *user* may upload *byte_count* more bytes."""
        stats = await self.get_user_stats(user)
        if stats.memory_used + byte_count >= stats.memory_allocated:
            raise QuotaExceededError(
                "You do not have enough memory allocated. Please upgrade your account for more memory",
                kind="memory",
            )
        if stats.api_calls_used + 1 >= stats.api_calls_allocated:
            raise QuotaExceededError(
                "You have reached your API call limit. Please upgrade your plan for more API calls",
                kind="api_calls",
            )
        return stats

    async def within_api_limit(self, user: str) -> bool:
        stats = await self.get_user_stats(user)
        return stats.api_calls_used + 1 < stats.api_calls_allocated

    async def increment_api(self, user: str) -> None:
        await self.record_usage(user, api_calls=1)

    async def record_usage(self, user: str, *, memory: int = 0, api_calls: int = 0) -> None:
        """Atomically add *memory* bytes and *api_calls* calls (negative to release)."""
        increments = {}
        if memory:
            increments["memory_used"] = memory
        if api_calls:
            increments["api_calls_used"] = api_calls
        if not increments:
            return
        result = await self._stats.update_one({"user": user}, increments=increments)
        if result.matched == 0:
            # Usage for a vanished user is dropped, the mutation itself already happened
            logger.warning(f"No storage stats for '{user}'; usage {increments} not recorded")

    async def update_storage(self, user: str, /, **values: int) -> int:
        """Administrative absolute set of one or more counters. Returns the modified count."""
        unknown = set(values) - set(STATS_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown storage fields: {', '.join(sorted(unknown))}")
        if not values:
            raise ValidationError("Specify at least one storage field to update")
        for key, value in values.items():
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"'{key}' must be a non-negative integer")
        result = await self._stats.update_one({"user": user}, values=values)
        if result.matched == 0:
            raise NotFoundError(f"Could not find user '{user}'")
        logger.info(f"Updated storage for '{user}': {values}")
        return result.modified
