"""
Local filesystem blob store.

Buckets are directories under ``base_path``; each object is a file with a
gzip-compressed JSON metadata sidecar. Writes land in a ``.part`` file that is
renamed into place on close, so readers never see a half-written object.
Useful for development, tests and single-host deployments.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from loguru import logger

from ..exceptions import RemoteNotFoundError, RemotePermissionError, RemoteStoreError
from .base import BlobStore, CorsRule, ObjectMetadata, ObjectWriter
from .compression import compress_json, decompress_json

_BUCKET_FILE = ".bucket.json"
_META_SUFFIX = ".meta.json"
_PART_SUFFIX = ".part"


def _check_segment(value: str, what: str) -> str:
    raw = value.strip()
    if not raw:
        raise RemotePermissionError(f"{what} cannot be empty.")
    if "\x00" in raw:
        raise RemotePermissionError(f"{what} cannot contain null bytes.")
    if "/" in raw or "\\" in raw:
        raise RemotePermissionError(f"Unsafe {what.lower()} '{value}': path separators are not allowed.")
    if raw in (".", "..") or raw.startswith("~"):
        raise RemotePermissionError(f"Unsafe {what.lower()} '{value}'.")
    if raw.endswith((_META_SUFFIX, _PART_SUFFIX)) or raw == _BUCKET_FILE:
        raise RemotePermissionError(f"{what} '{value}' uses a reserved suffix.")
    return raw


class _LocalObjectWriter(ObjectWriter):
    def __init__(self, store: LocalBlobStore, bucket: str, key: str, meta: dict[str, Any]):
        self._store = store
        self._bucket = bucket
        self._key = key
        self._meta = meta
        self._final_path = store._object_path(bucket, key)
        self._part_path = self._final_path.with_name(self._final_path.name + _PART_SUFFIX)
        self._handle = None
        self._closed = False

    async def _open(self) -> None:
        try:
            self._handle = await aiofiles.open(self._part_path, "wb")
        except OSError as e:
            raise RemoteStoreError(f"Cannot open {self._part_path} for writing: {e}") from e

    async def write(self, chunk: bytes) -> None:
        if self._closed or self._handle is None:
            raise RemoteStoreError(f"Write stream for '{self._bucket}/{self._key}' is closed")
        try:
            await self._handle.write(chunk)
        except OSError as e:
            raise RemoteStoreError(f"Cannot write to {self._part_path}: {e}") from e

    async def close(self) -> ObjectMetadata:
        if self._closed or self._handle is None:
            raise RemoteStoreError(f"Write stream for '{self._bucket}/{self._key}' is closed")
        self._closed = True
        try:
            await self._handle.close()
            await aiofiles.os.replace(self._part_path, self._final_path)
            stat = await aiofiles.os.stat(self._final_path)
        except OSError as e:
            raise RemoteStoreError(f"Cannot finalize {self._final_path}: {e}") from e

        self._meta["size"] = stat.st_size
        self._meta["created_at"] = datetime.fromtimestamp(stat.st_mtime).isoformat()
        await self._store._write_sidecar(self._bucket, self._key, self._meta)
        return self._store._metadata_from_dict(self._bucket, self._key, self._meta)

    async def abort(self) -> None:
        if self._handle is not None and not self._closed:
            self._closed = True
            await self._handle.close()
        if self._part_path.exists():
            await aiofiles.os.remove(self._part_path)


class LocalBlobStore(BlobStore):
    """Local filesystem blob store."""

    def __init__(self, base_path: str = "~/.bucketeer-data/blobs", public_base_url: str = "", **config):
        super().__init__(**config)
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    # -- paths ---------------------------------------------------------------

    def _bucket_path(self, bucket: str) -> Path:
        return self.base_path / _check_segment(bucket, "Bucket identifier")

    def _object_path(self, bucket: str, key: str) -> Path:
        return self._bucket_path(bucket) / _check_segment(key, "Object key")

    def _sidecar_path(self, bucket: str, key: str) -> Path:
        path = self._object_path(bucket, key)
        return path.with_name(path.name + _META_SUFFIX)

    def _require_bucket(self, bucket: str) -> Path:
        path = self._bucket_path(bucket)
        if not (path / _BUCKET_FILE).exists():
            raise RemoteNotFoundError(f"Bucket not found: {bucket}")
        return path

    # -- sidecars ------------------------------------------------------------

    async def _write_sidecar(self, bucket: str, key: str, meta: dict[str, Any]) -> None:
        try:
            async with aiofiles.open(self._sidecar_path(bucket, key), "wb") as f:
                await f.write(compress_json(meta))
        except OSError as e:
            raise RemoteStoreError(f"Cannot write metadata for '{bucket}/{key}': {e}") from e

    async def _read_sidecar(self, bucket: str, key: str) -> dict[str, Any]:
        self._require_bucket(bucket)
        path = self._object_path(bucket, key)
        if not path.exists():
            raise RemoteNotFoundError(f"Object not found: {bucket}/{key}")

        sidecar = self._sidecar_path(bucket, key)
        if sidecar.exists():
            try:
                async with aiofiles.open(sidecar, "rb") as f:
                    return decompress_json(await f.read())
            except (OSError, ValueError) as e:
                logger.warning(f"Invalid metadata sidecar for '{bucket}/{key}': {e}. Falling back to file stats.")

        stat = await aiofiles.os.stat(path)
        return {
            "size": stat.st_size,
            "content_type": "application/octet-stream",
            "content_encoding": None,
            "metadata": {},
            "created_at": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "is_public": False,
        }

    @staticmethod
    def _metadata_from_dict(bucket: str, key: str, meta: dict[str, Any]) -> ObjectMetadata:
        created = meta.get("created_at")
        return ObjectMetadata(
            bucket=bucket,
            key=key,
            size=int(meta.get("size", 0)),
            content_type=meta.get("content_type") or "application/octet-stream",
            content_encoding=meta.get("content_encoding"),
            custom_metadata=dict(meta.get("metadata") or {}),
            created_at=datetime.fromisoformat(created) if created else None,
            is_public=bool(meta.get("is_public", False)),
        )

    # -- buckets -------------------------------------------------------------

    async def create_bucket(self, identifier: str, cors: list[CorsRule], location: str | None = None) -> None:
        path = self._bucket_path(identifier)
        if (path / _BUCKET_FILE).exists():
            raise RemoteStoreError(f"Bucket already exists: {identifier}", code=409)
        try:
            path.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path / _BUCKET_FILE, "w") as f:
                await f.write(json.dumps({"location": location, "cors": [rule.to_dict() for rule in cors]}))
        except OSError as e:
            raise RemoteStoreError(f"Cannot create bucket {identifier}: {e}") from e

    async def delete_bucket(self, identifier: str) -> None:
        path = self._require_bucket(identifier)
        leftovers = [name for name in await aiofiles.os.listdir(path) if name != _BUCKET_FILE]
        if leftovers:
            raise RemoteStoreError(f"Bucket {identifier} is not empty ({len(leftovers)} entries)", code=409)
        try:
            await aiofiles.os.remove(path / _BUCKET_FILE)
            await aiofiles.os.rmdir(path)
        except OSError as e:
            raise RemoteStoreError(f"Cannot delete bucket {identifier}: {e}") from e

    # -- objects -------------------------------------------------------------

    async def open_writer(
        self,
        bucket: str,
        key: str,
        content_type: str = "application/octet-stream",
        content_encoding: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ObjectWriter:
        self._require_bucket(bucket)
        writer = _LocalObjectWriter(
            self,
            bucket,
            key,
            {
                "content_type": content_type,
                "content_encoding": content_encoding,
                "metadata": metadata or {},
                "is_public": False,
            },
        )
        await writer._open()
        return writer

    async def read_stream(self, bucket: str, key: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        self._require_bucket(bucket)
        path = self._object_path(bucket, key)
        if not path.exists():
            raise RemoteNotFoundError(f"Object not found: {bucket}/{key}")
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise RemoteStoreError(f"Cannot read {path}: {e}") from e

    async def delete_object(self, bucket: str, key: str) -> None:
        self._require_bucket(bucket)
        path = self._object_path(bucket, key)
        if not path.exists():
            raise RemoteNotFoundError(f"Object not found: {bucket}/{key}")
        try:
            await aiofiles.os.remove(path)
            sidecar = self._sidecar_path(bucket, key)
            if sidecar.exists():
                await aiofiles.os.remove(sidecar)
        except OSError as e:
            raise RemoteStoreError(f"Cannot delete {path}: {e}") from e

    async def get_metadata(self, bucket: str, key: str) -> ObjectMetadata:
        return self._metadata_from_dict(bucket, key, await self._read_sidecar(bucket, key))

    async def _set_public(self, bucket: str, key: str, is_public: bool) -> None:
        meta = await self._read_sidecar(bucket, key)
        meta["is_public"] = is_public
        await self._write_sidecar(bucket, key, meta)

    async def make_public(self, bucket: str, key: str) -> None:
        await self._set_public(bucket, key, True)

    async def make_private(self, bucket: str, key: str) -> None:
        await self._set_public(bucket, key, False)

    def public_url(self, bucket: str, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{bucket}/{key}"
        return f"file://{self._object_path(bucket, key)}"
