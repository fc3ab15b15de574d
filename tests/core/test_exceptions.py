"""Tests for bucketeer.core.exceptions."""

from bucketeer.core.exceptions import (
    BucketeerError,
    CascadeError,
    ConfigurationError,
    DeadlineExceededError,
    DuplicateKeyError,
    DuplicateNameError,
    NotFoundError,
    PersistenceError,
    QuotaExceededError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteStoreError,
    UploadError,
    ValidationError,
)


def test_hierarchy():
    """All exceptions should inherit from BucketeerError."""
    for exc_cls in [
        ConfigurationError,
        ValidationError,
        QuotaExceededError,
        NotFoundError,
        PersistenceError,
        RemoteStoreError,
        DeadlineExceededError,
        UploadError,
        CascadeError,
    ]:
        assert issubclass(exc_cls, BucketeerError)


def test_specializations():
    assert issubclass(DuplicateNameError, ValidationError)
    assert issubclass(DuplicateKeyError, PersistenceError)
    assert issubclass(NotFoundError, LookupError)
    assert issubclass(DeadlineExceededError, TimeoutError)


def test_remote_codes():
    assert RemoteNotFoundError("gone").code == 404
    assert RemotePermissionError("nope").code == 403
    assert RemoteStoreError("boom", code=500).code == 500
    assert RemoteStoreError("boom").code is None


def test_quota_kind():
    err = QuotaExceededError("no more memory", kind="memory")
    assert err.kind == "memory"
    assert "no more memory" in str(err)


def test_deadline_message():
    err = DeadlineExceededError("remote.create_bucket", 2.5)
    assert err.stage == "remote.create_bucket"
    assert err.seconds == 2.5
    assert str(err) == "Stage 'remote.create_bucket' exceeded its deadline of 2.5s"


def test_cascade_removed():
    assert CascadeError("failed").removed == []
    assert CascadeError("failed", ["a", "b"]).removed == ["a", "b"]


def test_catch_base():
    try:
        raise RemoteNotFoundError("Object not found")
    except BucketeerError as e:
        assert "not found" in str(e)
