"""Tests for bucketeer.buckets.outbox."""

import pytest

from bucketeer.buckets import OperationJournal, OperationKind, OperationStatus
from bucketeer.core.metadata import MemoryCollection


@pytest.fixture
def journal():
    return OperationJournal(MemoryCollection("operations", unique=[("id",)]))


async def test_begin_persists_pending_record(journal):
    op = await journal.begin(OperationKind.UPLOAD, {"bucket": "b1", "key": "k1"})
    stored = await journal.get(op.id)
    assert stored.kind == "upload"
    assert stored.status == OperationStatus.PENDING
    assert stored.payload == {"bucket": "b1", "key": "k1"}
    assert stored.steps == []


async def test_mark_uses_idempotency_keys(journal):
    op = await journal.begin(OperationKind.DELETE_FILE, {})
    await journal.mark(op, "remote_deleted")
    await journal.mark(op, "remote_deleted")

    stored = await journal.get(op.id)
    assert stored.steps == [f"{op.id}:remote_deleted"]
    assert stored.done("remote_deleted")
    assert not stored.done("unregistered")


async def test_update_payload(journal):
    op = await journal.begin(OperationKind.UPLOAD, {"key": "k1"})
    await journal.update_payload(op, size=42)
    assert (await journal.get(op.id)).payload == {"key": "k1", "size": 42}


async def test_complete_removes_record(journal):
    op = await journal.begin(OperationKind.CREATE_BUCKET, {})
    await journal.complete(op)
    assert await journal.get(op.id) is None
    assert await journal.pending() == []


async def test_fail_keeps_record_with_error(journal):
    op = await journal.begin(OperationKind.DELETE_BUCKET, {})
    await journal.mark(op, "files_removed")
    await journal.fail(op, RuntimeError("remote down"))

    [stored] = await journal.pending()
    assert stored.status == OperationStatus.FAILED
    assert stored.error == "remote down"
    assert stored.done("files_removed")


async def test_pending_filters_by_kind(journal):
    await journal.begin(OperationKind.UPLOAD, {})
    await journal.begin(OperationKind.DELETE_FILE, {})
    assert [op.kind for op in await journal.pending(OperationKind.DELETE_FILE)] == ["delete_file"]
    assert len(await journal.pending()) == 2
