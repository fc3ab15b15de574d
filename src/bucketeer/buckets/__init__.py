"""
Bucket and file storage core.

Quota ledger, bucket and file registries, the upload and download pipelines,
cascading deletion and crash recovery, wired together by ``BucketManager``.
"""

from .deletion import DeletionOrchestrator
from .download import DownloadPipeline, DownloadPlan, plan_download
from .manager import BucketManager, create_blob_store
from .models import (
    BucketEntry,
    FileEntry,
    ResponseSink,
    StorageStats,
    UploadBatchResult,
    UploadPart,
    UploadState,
    UploadToken,
)
from .outbox import Operation, OperationJournal, OperationKind, OperationStatus
from .quota import QuotaLedger
from .registry import BucketRegistry, FileRegistry
from .upload import UploadBatch, UploadPipeline

__all__ = [
    "BucketEntry",
    "BucketManager",
    "BucketRegistry",
    "DeletionOrchestrator",
    "DownloadPipeline",
    "DownloadPlan",
    "FileEntry",
    "FileRegistry",
    "Operation",
    "OperationJournal",
    "OperationKind",
    "OperationStatus",
    "QuotaLedger",
    "ResponseSink",
    "StorageStats",
    "UploadBatch",
    "UploadBatchResult",
    "UploadPart",
    "UploadPipeline",
    "UploadState",
    "UploadToken",
    "create_blob_store",
    "plan_download",
]
