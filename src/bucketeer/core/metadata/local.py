"""
JSON-file document collection.

Each collection is one ``<name>.json`` file holding a list of documents. The
file is loaded lazily on first use and rewritten (via a temp file and an
atomic rename) after every mutation. Intended for single-process deployments.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger

from ..exceptions import PersistenceError
from .memory import MemoryCollection


class JsonFileCollection(MemoryCollection):
    def __init__(
        self,
        name: str,
        directory: str | Path,
        unique: Sequence[tuple[str, ...]] = (),
        timeout: float | None = None,
    ):
        super().__init__(name, unique=unique, timeout=timeout)
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / f"{name}.json"
        self._loaded = False
        self._write_lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self.path.exists():
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                raw = await f.read()
            try:
                docs = json.loads(raw) if raw.strip() else []
            except json.JSONDecodeError as e:
                raise PersistenceError(f"Corrupt collection file {self.path}: {e}") from e
            if not self._loaded:
                self._docs[:] = docs
                logger.debug(f"Loaded {len(docs)} documents from {self.path}")
        self._loaded = True

    async def _persist(self) -> None:
        snapshot = json.dumps(self._docs, default=str)
        async with self._write_lock:
            tmp_path = self.path.with_suffix(".json.tmp")
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(snapshot)
            await aiofiles.os.replace(tmp_path, self.path)
