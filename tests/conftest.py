"""Shared test fixtures for bucketeer."""

import os

import pytest

from bucketeer.buckets import BucketManager, UploadPart
from bucketeer.core.events import EventBus
from bucketeer.core.metadata import open_metadata_store
from bucketeer.core.storage import LocalBlobStore


async def iter_chunks(data: bytes, size: int = 1024):
    """Yield *data* in *size*-byte chunks."""
    for start in range(0, len(data), size):
        yield data[start : start + size]


class MemorySink:
    """ResponseSink that collects headers and body in memory."""

    def __init__(self):
        self.headers: dict[str, str] = {}
        self.body = bytearray()

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    async def write(self, chunk: bytes) -> None:
        self.body.extend(chunk)


@pytest.fixture
def make_part():
    """Build an UploadPart streaming *data* in small chunks."""

    def _make(data: bytes, content_type: str = "application/octet-stream", filename: str | None = "file.bin", **kw):
        kw.setdefault("byte_count", len(data))
        return UploadPart(
            name=kw.pop("name", "file"),
            content_type=content_type,
            chunks=iter_chunks(data, kw.pop("chunk_size", 256)),
            filename=filename,
            **kw,
        )

    return _make


@pytest.fixture
def chunked():
    return iter_chunks


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(base_path=str(tmp_path / "blobs"), public_base_url="https://files.test")


@pytest.fixture
def metadata():
    return open_metadata_store("memory")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    """Every event emitted on the shared bus, in order."""
    received = []
    bus.on_all(received.append)
    return received


@pytest.fixture
def manager(blob_store, metadata, bus):
    return BucketManager(blob_store, metadata, bus)


@pytest.fixture
async def alice(manager):
    """User 'alice' with default allocations."""
    await manager.quota.create_user_stats("alice")
    return "alice"


@pytest.fixture
async def pics(manager, alice):
    """Alice's bucket 'pics'."""
    return await manager.buckets.create_bucket("pics", alice)


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a temporary YAML config file rooted in tmp_path."""
    import yaml

    config_data = {
        "paths": {
            "data_dir": os.path.join(tmp_path, "data"),
            "blob_dir": os.path.join(tmp_path, "data", "blobs"),
            "metadata_dir": os.path.join(tmp_path, "data", "metadata"),
            "log_dir": os.path.join(tmp_path, "data", "logs"),
        },
        "remote": {"backend": "local", "bucket_prefix": "test-bucket-"},
        "quota": {"memory_allocated": 10_000, "api_calls_allocated": 100},
    }
    config_path = os.path.join(tmp_path, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path
