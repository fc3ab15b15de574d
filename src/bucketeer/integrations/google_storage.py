"""Google Cloud Storage blob store.

Wraps the ``google-cloud-storage`` client behind the async ``BlobStore``
interface. The client library is synchronous, so every call is dispatched to
the default executor; streaming reads and writes go through the library's
chunked ``Blob.open`` file objects, one chunk per executor hop.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from functools import partial
from typing import Any

from loguru import logger

from ..core.exceptions import RemoteNotFoundError, RemotePermissionError, RemoteStoreError
from ..core.storage.base import BlobStore, CorsRule, ObjectMetadata, ObjectWriter


def _translate(exc: Exception, what: str) -> RemoteStoreError:
    """Map google-api-core errors onto the remote-store hierarchy."""
    from google.api_core import exceptions as gexc

    if isinstance(exc, gexc.NotFound):
        return RemoteNotFoundError(f"{what}: {exc}")
    if isinstance(exc, gexc.Forbidden):
        return RemotePermissionError(f"{what}: {exc}")
    code = getattr(exc, "code", None)
    return RemoteStoreError(f"{what}: {exc}", code=code if isinstance(code, int) else None)


async def _run(fn, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))


class _GoogleObjectWriter(ObjectWriter):
    def __init__(self, store: GoogleStorageBlobStore, blob, handle):
        self._store = store
        self._blob = blob
        self._handle = handle
        self._closed = False

    async def write(self, chunk: bytes) -> None:
        try:
            await _run(self._handle.write, chunk)
        except Exception as e:
            raise _translate(e, f"Could not write gs://{self._blob.bucket.name}/{self._blob.name}") from e

    async def close(self) -> ObjectMetadata:
        self._closed = True
        try:
            await _run(self._handle.close)
            await _run(self._blob.reload)
        except Exception as e:
            raise _translate(e, f"Could not finish gs://{self._blob.bucket.name}/{self._blob.name}") from e
        return self._store._metadata_from_blob(self._blob)

    async def abort(self) -> None:
        # Resumable uploads can't be cancelled through the file API; closing
        # finalizes whatever was sent and the caller deletes the partial object.
        if self._closed:
            return
        self._closed = True
        try:
            await _run(self._handle.close)
        except Exception as e:
            logger.warning(f"Closing aborted upload gs://{self._blob.bucket.name}/{self._blob.name} failed: {e}")


class GoogleStorageBlobStore(BlobStore):
    """Google Cloud Storage blob store.

    Args:
        project_id: Google Cloud project owning the buckets.
        key_file: Path to a service-account JSON key. If empty, uses
            Application Default Credentials.
    """

    PUBLIC_URL = "https://storage.googleapis.com/{bucket}/{key}"

    def __init__(self, project_id: str = "", key_file: str = "", **config):
        super().__init__(**config)
        self.project_id = project_id or None
        self.key_file = key_file
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from google.cloud import storage

            if self.key_file:
                self._client = storage.Client.from_service_account_json(self.key_file, project=self.project_id)
            else:
                self._client = storage.Client(project=self.project_id)
        return self._client

    @staticmethod
    def _metadata_from_blob(blob) -> ObjectMetadata:
        return ObjectMetadata(
            bucket=blob.bucket.name,
            key=blob.name,
            size=int(blob.size or 0),
            content_type=blob.content_type or "application/octet-stream",
            content_encoding=blob.content_encoding,
            custom_metadata=dict(blob.metadata or {}),
            created_at=blob.time_created,
        )

    # -- buckets -------------------------------------------------------------

    async def create_bucket(self, identifier: str, cors: list[CorsRule], location: str | None = None) -> None:
        bucket = self.client.bucket(identifier)
        bucket.cors = [rule.to_dict() for rule in cors]
        try:
            await _run(self.client.create_bucket, bucket, location=location)
        except Exception as e:
            raise _translate(e, f"Could not create a new bucket '{identifier}'") from e

    async def delete_bucket(self, identifier: str) -> None:
        try:
            await _run(self.client.bucket(identifier).delete)
        except Exception as e:
            raise _translate(e, f"Could not remove bucket '{identifier}' from storage system") from e

    # -- objects -------------------------------------------------------------

    async def open_writer(
        self,
        bucket: str,
        key: str,
        content_type: str = "application/octet-stream",
        content_encoding: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ObjectWriter:
        blob = self.client.bucket(bucket).blob(key)
        blob.content_type = content_type
        if content_encoding:
            blob.content_encoding = content_encoding
        if metadata:
            blob.metadata = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in metadata.items()}
        try:
            handle = await _run(blob.open, "wb", content_type=content_type, ignore_flush=True)
        except Exception as e:
            raise _translate(e, f"Could not open gs://{bucket}/{key} for writing") from e
        return _GoogleObjectWriter(self, blob, handle)

    async def read_stream(self, bucket: str, key: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        blob = self.client.bucket(bucket).blob(key)
        # raw_download keeps gzip-encoded objects compressed; decoding is the caller's choice
        try:
            handle = await _run(blob.open, "rb", chunk_size=chunk_size, raw_download=True)
        except Exception as e:
            raise _translate(e, f"Could not read gs://{bucket}/{key}") from e
        try:
            while True:
                try:
                    chunk = await _run(handle.read, chunk_size)
                except Exception as e:
                    raise _translate(e, f"Could not read gs://{bucket}/{key}") from e
                if not chunk:
                    break
                yield chunk
        finally:
            await _run(handle.close)

    async def delete_object(self, bucket: str, key: str) -> None:
        try:
            await _run(self.client.bucket(bucket).blob(key).delete)
        except Exception as e:
            raise _translate(e, f"Could not remove file '{key}' from storage system") from e

    async def get_metadata(self, bucket: str, key: str) -> ObjectMetadata:
        try:
            blob = await _run(self.client.bucket(bucket).get_blob, key)
        except Exception as e:
            raise _translate(e, f"Could not fetch metadata for gs://{bucket}/{key}") from e
        if blob is None:
            raise RemoteNotFoundError(f"Object not found: gs://{bucket}/{key}")
        return self._metadata_from_blob(blob)

    async def make_public(self, bucket: str, key: str) -> None:
        try:
            await _run(self.client.bucket(bucket).blob(key).make_public)
        except Exception as e:
            raise _translate(e, f"Could not make gs://{bucket}/{key} public") from e

    async def make_private(self, bucket: str, key: str) -> None:
        try:
            await _run(self.client.bucket(bucket).blob(key).make_private)
        except Exception as e:
            raise _translate(e, f"Could not make gs://{bucket}/{key} private") from e

    def public_url(self, bucket: str, key: str) -> str:
        return self.PUBLIC_URL.format(bucket=bucket, key=key)
