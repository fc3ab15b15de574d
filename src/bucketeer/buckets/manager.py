"""
BucketManager: wires the storage core together.

There is no global instance. Build one per process with
``BucketManager.from_config`` (or construct the components yourself) and pass
it to whatever serves requests::

    config = Config("bucketeer.yaml")
    manager = BucketManager.from_config(config)
    await manager.recover()

    bucket = await manager.buckets.create_bucket("pics", "alice")
"""

from __future__ import annotations

from loguru import logger

from ..core.config import DEFAULT_ALLOWED_TYPES, Config
from ..core.events import EventBus
from ..core.exceptions import ConfigurationError
from ..core.metadata import MetadataStore, open_metadata_store
from ..core.storage.base import BlobStore
from ..core.storage.local import LocalBlobStore
from .deletion import DeletionOrchestrator
from .download import DownloadPipeline
from .outbox import OperationJournal, OperationKind
from .quota import QuotaLedger
from .registry import BucketRegistry, FileRegistry
from .upload import UploadBatch, UploadPipeline


def create_blob_store(config: Config) -> BlobStore:
    """Build the remote blob store named by ``remote.backend``."""
    backend = config.get("remote.backend", "local")
    if backend == "local":
        return LocalBlobStore(config.get("paths.blob_dir"), public_base_url=config.get("remote.public_base_url", ""))
    if backend == "gcs":
        from ..integrations.google_storage import GoogleStorageBlobStore

        return GoogleStorageBlobStore(
            project_id=config.get("remote.project_id", ""), key_file=config.get("remote.key_file", "")
        )
    raise ConfigurationError(f"Unknown remote backend: {backend}")


class BucketManager:
    """Holds the storage components. Each is usable on its own."""

    def __init__(
        self,
        remote: BlobStore,
        metadata: MetadataStore,
        bus: EventBus | None = None,
        *,
        memory_allocated: int = 500_000_000,
        api_calls_allocated: int = 20_000,
        bucket_prefix: str = "bucketeer-bucket-",
        location: str | None = None,
        allowed_types: list[str] | None = None,
        chunk_size: int = 64 * 1024,
        cache_lifetime: int = 0,
        compress_raw_for_gzip: bool = False,
        remote_timeout: float | None = None,
        chunk_timeout: float | None = None,
    ):
        self.remote = remote
        self.metadata = metadata
        self.bus = bus or EventBus()

        self.journal = OperationJournal(metadata.operations)
        self.quota = QuotaLedger(
            metadata.stats, memory_allocated=memory_allocated, api_calls_allocated=api_calls_allocated
        )
        self.buckets = BucketRegistry(
            metadata.buckets,
            remote,
            self.quota,
            self.journal,
            self.bus,
            bucket_prefix=bucket_prefix,
            location=location,
            remote_timeout=remote_timeout,
        )
        self.files = FileRegistry(metadata.files, remote, self.quota, remote_timeout=remote_timeout)
        self.uploads = UploadPipeline(
            remote,
            self.quota,
            self.buckets,
            self.files,
            self.journal,
            self.bus,
            remote_timeout=remote_timeout,
            chunk_timeout=chunk_timeout,
        )
        self.downloads = DownloadPipeline(
            remote,
            self.quota,
            self.files,
            chunk_size=chunk_size,
            cache_lifetime=cache_lifetime,
            compress_raw_for_gzip=compress_raw_for_gzip,
            remote_timeout=remote_timeout,
            chunk_timeout=chunk_timeout,
        )
        self.deletion = DeletionOrchestrator(
            remote, self.quota, self.buckets, self.files, self.journal, self.bus, remote_timeout=remote_timeout
        )
        self.batches = UploadBatch(
            self.uploads,
            self.files,
            self.deletion.remove_files_by_id,
            allowed_types if allowed_types is not None else list(DEFAULT_ALLOWED_TYPES),
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        remote: BlobStore | None = None,
        metadata: MetadataStore | None = None,
        bus: EventBus | None = None,
    ) -> BucketManager:
        """Build a manager from config. Any collaborator passed in is used as is."""
        if metadata is None:
            metadata = open_metadata_store(
                config.get("metadata.backend", "json"),
                config.get("paths.metadata_dir"),
                timeout=config.get_float("timeouts.metadata_call", 10.0),
            )
        allowed_types = config.get("upload.allowed_types")
        if isinstance(allowed_types, str):
            allowed_types = [t.strip() for t in allowed_types.split(",") if t.strip()]
        return cls(
            remote or create_blob_store(config),
            metadata,
            bus,
            memory_allocated=config.get_int("quota.memory_allocated", 500_000_000),
            api_calls_allocated=config.get_int("quota.api_calls_allocated", 20_000),
            bucket_prefix=config.get("remote.bucket_prefix", "bucketeer-bucket-"),
            location=config.get("remote.location") or None,
            allowed_types=allowed_types,
            chunk_size=config.get_int("download.chunk_size", 64 * 1024),
            cache_lifetime=config.get_int("download.cache_lifetime", 0),
            compress_raw_for_gzip=config.get_bool("download.compress_raw_for_gzip", False),
            remote_timeout=config.get_float("timeouts.remote_call", 30.0),
            chunk_timeout=config.get_float("timeouts.stream_chunk", 60.0),
        )

    async def recover(self) -> int:
        """Settle every operation left unfinished by a crash or a failure.

        Uploads and bucket creations are compensated; removals are rolled
        forward. Returns the number of operations settled.
        """
        settled = 0
        for op in await self.journal.pending():
            try:
                if op.kind == OperationKind.UPLOAD:
                    await self.uploads.recover(op)
                elif op.kind == OperationKind.CREATE_BUCKET:
                    await self.buckets.recover_create(op)
                elif op.kind in (OperationKind.DELETE_FILE, OperationKind.DELETE_BUCKET):
                    await self.deletion.recover(op)
                else:
                    logger.warning(f"Skipping operation {op.id} of unknown kind '{op.kind}'")
                    continue
            except Exception as e:
                logger.error(f"Could not recover operation {op.id} ({op.kind}): {e}")
                continue
            settled += 1
        if settled:
            logger.info(f"Recovered {settled} unfinished operations")
        return settled
