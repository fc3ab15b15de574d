"""Tests for bucketeer.core.metadata collections."""

import asyncio
import re

import pytest

from bucketeer.core.exceptions import (
    ConfigurationError,
    DeadlineExceededError,
    DuplicateKeyError,
    PersistenceError,
)
from bucketeer.core.metadata import JsonFileCollection, MemoryCollection, matches, open_metadata_store


class TestMatches:
    def test_equality(self):
        assert matches({"user": "alice", "n": 1}, {"user": "alice"})
        assert not matches({"user": "bob"}, {"user": "alice"})
        assert matches({"user": "alice"}, {})

    def test_missing_field(self):
        assert not matches({"user": "alice"}, {"name": "pics"})
        assert matches({"user": "alice"}, {"parent_file": None})

    def test_or(self):
        query = {"$or": [{"bucket_id": "b1"}, {"bucket_name": "b1"}]}
        assert matches({"bucket_id": "b1", "bucket_name": "x"}, query)
        assert matches({"bucket_id": "zz", "bucket_name": "b1"}, query)
        assert not matches({"bucket_id": "zz", "bucket_name": "zz"}, query)

    def test_regex(self):
        query = {"name": re.compile("^pi", re.IGNORECASE)}
        assert matches({"name": "Pics"}, query)
        assert not matches({"name": "docs"}, query)
        assert not matches({"name": 12}, query)


class TestMemoryCollection:
    @pytest.fixture
    def coll(self):
        return MemoryCollection("buckets", unique=[("identifier",), ("user", "name")])

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, coll):
        doc = await coll.insert_one({"identifier": "b1", "user": "alice", "name": "pics"})
        assert doc["id"]
        assert await coll.find_one({"id": doc["id"]}) == doc

    @pytest.mark.asyncio
    async def test_unique_keys(self, coll):
        await coll.insert_one({"identifier": "b1", "user": "alice", "name": "pics"})
        with pytest.raises(DuplicateKeyError):
            await coll.insert_one({"identifier": "b1", "user": "bob", "name": "x"})
        with pytest.raises(DuplicateKeyError):
            await coll.insert_one({"identifier": "b2", "user": "alice", "name": "pics"})
        # same name for a different owner is fine
        await coll.insert_one({"identifier": "b3", "user": "bob", "name": "pics"})
        assert await coll.count({}) == 2

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, coll):
        doc = await coll.insert_one({"identifier": "b1", "user": "alice", "name": "pics", "tags": []})
        doc["tags"].append("mutated")
        assert (await coll.find_one({"identifier": "b1"}))["tags"] == []

    @pytest.mark.asyncio
    async def test_find_skip_limit(self, coll):
        for i in range(5):
            await coll.insert_one({"identifier": f"b{i}", "user": "alice", "name": f"n{i}"})
        found = await coll.find({"user": "alice"}, skip=1, limit=2)
        assert [d["identifier"] for d in found] == ["b1", "b2"]

    @pytest.mark.asyncio
    async def test_update_values_and_increments(self, coll):
        await coll.insert_one({"identifier": "b1", "user": "alice", "name": "pics", "memory_used": 10})
        result = await coll.update_one({"identifier": "b1"}, values={"name": "photos"}, increments={"memory_used": 5})
        assert (result.matched, result.modified) == (1, 1)
        doc = await coll.find_one({"identifier": "b1"})
        assert doc["name"] == "photos"
        assert doc["memory_used"] == 15

    @pytest.mark.asyncio
    async def test_update_no_match(self, coll):
        result = await coll.update_one({"identifier": "nope"}, increments={"memory_used": 1})
        assert (result.matched, result.modified) == (0, 0)

    @pytest.mark.asyncio
    async def test_update_many_and_delete_many(self, coll):
        for i in range(3):
            await coll.insert_one({"identifier": f"b{i}", "user": "alice", "name": f"n{i}"})
        result = await coll.update_many({"user": "alice"}, values={"flag": True})
        assert result.matched == 3
        assert await coll.delete_one({"user": "alice"}) == 1
        assert await coll.delete_many({"user": "alice"}) == 2
        assert await coll.count({}) == 0

    @pytest.mark.asyncio
    async def test_concurrent_increments_do_not_lose_updates(self, coll):
        await coll.insert_one({"identifier": "b1", "user": "alice", "name": "pics", "memory_used": 0})
        await asyncio.gather(*(coll.update_one({"identifier": "b1"}, increments={"memory_used": 1}) for _ in range(50)))
        assert (await coll.find_one({"identifier": "b1"}))["memory_used"] == 50


class _SlowCollection(MemoryCollection):
    async def _find(self, query, skip, limit):
        await asyncio.sleep(1)
        return []


class _BrokenCollection(MemoryCollection):
    async def _count(self, query):
        raise OSError("disk on fire")


class TestCollectionSeam:
    @pytest.mark.asyncio
    async def test_deadline(self):
        coll = _SlowCollection("files", timeout=0.01)
        with pytest.raises(DeadlineExceededError) as exc_info:
            await coll.find({})
        assert exc_info.value.stage == "metadata.files.find"

    @pytest.mark.asyncio
    async def test_os_errors_become_persistence_errors(self):
        coll = _BrokenCollection("files")
        with pytest.raises(PersistenceError, match="disk on fire"):
            await coll.count({})


class TestJsonFileCollection:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        coll = JsonFileCollection("stats", tmp_path, unique=[("user",)])
        await coll.insert_one({"user": "alice", "memory_used": 0})
        await coll.update_one({"user": "alice"}, increments={"memory_used": 42})

        reopened = JsonFileCollection("stats", tmp_path, unique=[("user",)])
        doc = await reopened.find_one({"user": "alice"})
        assert doc["memory_used"] == 42
        with pytest.raises(DuplicateKeyError):
            await reopened.insert_one({"user": "alice"})

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        (tmp_path / "stats.json").write_text("{not json")
        coll = JsonFileCollection("stats", tmp_path)
        with pytest.raises(PersistenceError, match="Corrupt"):
            await coll.find({})


class TestOpenMetadataStore:
    def test_memory(self):
        store = open_metadata_store("memory")
        assert {c.name for c in (store.buckets, store.files, store.stats, store.operations)} == {
            "buckets",
            "files",
            "stats",
            "operations",
        }

    def test_json(self, tmp_path):
        store = open_metadata_store("json", tmp_path, timeout=5)
        assert isinstance(store.files, JsonFileCollection)
        assert store.files.timeout == 5

    def test_json_needs_directory(self):
        with pytest.raises(ConfigurationError):
            open_metadata_store("json")

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            open_metadata_store("mongo")
