"""Tests for bucketeer.buckets.deletion."""

from unittest.mock import AsyncMock

import pytest

from bucketeer.core.exceptions import (
    CascadeError,
    NotFoundError,
    RemoteNotFoundError,
    RemoteStoreError,
    ValidationError,
)

pytestmark = pytest.mark.smoke


@pytest.fixture
def upload(manager, make_part):
    async def _upload(bucket, data=b"x" * 100, name="f.png", **kw):
        return await manager.uploads.upload_stream(make_part(data, "image/png", name), bucket, bucket.user, **kw)

    return _upload


class TestDeleteFile:
    async def test_releases_usage(self, manager, blob_store, pics, upload):
        file = await upload(pics, b"x" * 100)
        before = await manager.quota.get_user_stats("alice")

        await manager.deletion.delete_file(file)

        after = await manager.quota.get_user_stats("alice")
        assert after.memory_used == before.memory_used - 100
        assert after.api_calls_used == before.api_calls_used + 1
        assert (await manager.buckets.get_bucket(pics.identifier)).memory_used == 0
        assert await manager.files.num_files({}) == 0
        assert await manager.journal.pending() == []
        with pytest.raises(RemoteNotFoundError):
            await blob_store.get_metadata(pics.identifier, file.identifier)

    async def test_remote_already_gone_is_tolerated(self, manager, blob_store, pics, upload):
        file = await upload(pics)
        await blob_store.delete_object(pics.identifier, file.identifier)

        await manager.deletion.delete_file(file)
        assert await manager.files.num_files({}) == 0
        assert (await manager.quota.get_user_stats("alice")).memory_used == 0

    async def test_missing_bucket(self, manager, pics, upload):
        file = await upload(pics)
        await manager.buckets.delete_entry(pics)
        with pytest.raises(NotFoundError):
            await manager.deletion.delete_file(file)


class TestRemoveFiles:
    async def test_emits_one_event(self, manager, pics, upload, events):
        a = await upload(pics, name="a.png")
        b = await upload(pics, name="b.png")
        events.clear()

        removed = await manager.deletion.remove_files({"user": "alice"})

        assert removed == [a.identifier, b.identifier]
        assert [e.name for e in events] == ["files.removed"]
        assert events[0].payload["files"] == removed
        assert events[0].payload["user"] == "alice"

    async def test_first_failure_stops_the_batch(self, manager, blob_store, pics, upload, events):
        a = await upload(pics, name="a.png")
        b = await upload(pics, name="b.png")
        c = await upload(pics, name="c.png")
        events.clear()

        real_delete = blob_store.delete_object

        async def flaky_delete(bucket, key):
            if key == b.identifier:
                raise RemoteStoreError("remote down", code=503)
            await real_delete(bucket, key)

        blob_store.delete_object = flaky_delete

        with pytest.raises(CascadeError) as exc_info:
            await manager.deletion.remove_files({"user": "alice"})

        assert exc_info.value.removed == [a.identifier]
        assert isinstance(exc_info.value.__cause__, RemoteStoreError)
        remaining = {f.identifier for f in await manager.files.get_files({})}
        assert remaining == {b.identifier, c.identifier}
        assert events == []
        [op] = await manager.journal.pending()
        assert op.kind == "delete_file"

    async def test_by_id_ignores_children_unless_asked(self, manager, pics, upload):
        parent = await upload(pics, name="p.png")
        child = await upload(pics, name="c.png", parent_file=parent.identifier)

        assert await manager.deletion.remove_files_by_id([parent.identifier], "alice") == [parent.identifier]
        assert (await manager.files.get_file(child.identifier)).parent_file == parent.identifier

    async def test_by_id_with_children(self, manager, pics, upload):
        parent = await upload(pics, name="p.png")
        child = await upload(pics, name="c.png", parent_file=parent.identifier)

        removed = await manager.deletion.remove_files_by_id([parent.identifier], include_children=True)
        assert set(removed) == {parent.identifier, child.identifier}

    async def test_by_id_respects_owner(self, manager, pics, upload):
        file = await upload(pics)
        assert await manager.deletion.remove_files_by_id([file.identifier], "bob") == []
        assert await manager.deletion.remove_files_by_id([]) == []

    async def test_by_bucket_name_or_identifier(self, manager, pics, upload):
        await upload(pics, name="a.png")
        await upload(pics, name="b.png")
        assert len(await manager.deletion.remove_files_by_bucket("pics", "alice")) == 2

        await upload(pics, name="c.png")
        assert len(await manager.deletion.remove_files_by_bucket(pics.identifier)) == 1

    async def test_by_bucket_blank(self, manager):
        with pytest.raises(ValidationError):
            await manager.deletion.remove_files_by_bucket("  ")


class TestRemoveBuckets:
    async def test_cascade(self, manager, blob_store, alice, upload, events):
        pics = await manager.buckets.create_bucket("pics", alice)
        docs = await manager.buckets.create_bucket("docs", alice)
        await upload(pics, b"x" * 100, "a.png")
        await upload(pics, b"x" * 50, "b.png")
        await upload(docs, b"x" * 25, "c.png")
        events.clear()

        removed = await manager.deletion.remove_buckets_by_name(["pics"], alice)

        assert removed == [pics.identifier]
        assert not (blob_store.base_path / pics.identifier).exists()
        assert await manager.buckets.get_bucket("pics", alice) is None
        assert await manager.files.num_files({"bucket_id": pics.identifier}) == 0
        assert await manager.files.num_files({"bucket_id": docs.identifier}) == 1
        assert (await manager.quota.get_user_stats(alice)).memory_used == 25
        assert [e.name for e in events] == ["files.removed", "bucket.removed"]
        assert events[-1].payload["buckets"] == removed

    async def test_remote_bucket_already_gone(self, manager, blob_store, pics):
        await blob_store.delete_bucket(pics.identifier)
        assert await manager.deletion.remove_buckets_by_user("alice") == [pics.identifier]
        assert await manager.buckets.get_bucket_entries("alice") == []

    async def test_counts_api_call(self, manager, pics):
        before = (await manager.quota.get_user_stats("alice")).api_calls_used
        await manager.deletion.delete_bucket(pics)
        assert (await manager.quota.get_user_stats("alice")).api_calls_used == before + 1

    async def test_buckets_processed_sequentially(self, manager, alice, blob_store):
        first = await manager.buckets.create_bucket("first", alice)
        second = await manager.buckets.create_bucket("second", alice)
        blob_store.delete_bucket = AsyncMock(side_effect=[None, RemoteStoreError("remote down")])

        with pytest.raises(CascadeError) as exc_info:
            await manager.deletion.remove_buckets_by_user(alice)

        assert exc_info.value.removed == [first.identifier]
        assert await manager.buckets.get_bucket(second.identifier) is not None

    async def test_validation(self, manager):
        with pytest.raises(ValidationError):
            await manager.deletion.remove_buckets_by_user("")
        with pytest.raises(ValidationError):
            await manager.deletion.remove_buckets_by_name(["x"], "")
        assert await manager.deletion.remove_buckets_by_name([], "alice") == []

    async def test_remove_user(self, manager, pics, upload):
        await upload(pics)
        removed = await manager.deletion.remove_user("alice")
        assert removed == [pics.identifier]
        assert await manager.files.num_files({}) == 0
        with pytest.raises(NotFoundError):
            await manager.quota.get_user_stats("alice")
