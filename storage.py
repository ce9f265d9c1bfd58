"""
JSON file collections for products, orders and slider images.

Each collection is a single JSON array on disk. Reads never fail (a broken or
missing file reads as an empty list); writes go through a temp file and
``os.replace``. Read-modify-write cycles are serialized per collection with an
``asyncio.Lock`` so concurrent requests in one process don't lose updates.
"""

import asyncio
import json
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

import structlog

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """A collection could not be written."""


class JsonCollection:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.path.stem

    def ensure(self):
        """Create the file with an empty array if it doesn't exist yet."""
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write([])
        except StorageError:
            logger.error("storage_init_failed", collection=self.name, path=str(self.path))

    def read(self) -> List[Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("storage_read_failed", collection=self.name, error=str(e))
            return []
        if not isinstance(data, list):
            logger.error("storage_not_a_list", collection=self.name)
            return []
        return data

    def _write(self, items: List[Any]):
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.name}-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, ensure_ascii=False, allow_nan=False)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("storage_write_failed", collection=self.name, error=str(e))
            if tmp and os.path.exists(tmp):
                os.unlink(tmp)
            raise StorageError(f"Could not write {self.name}") from e

    async def all(self) -> List[Any]:
        async with self._lock:
            return self.read()

    async def replace(self, items: List[Any]):
        async with self._lock:
            self._write(items)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[List[Any]]:
        """Hold the collection lock around a read-modify-write.

        The yielded list is written back when the block exits normally and
        discarded if it raises.
        """
        async with self._lock:
            items = self.read()
            yield items
            self._write(items)


class IdGenerator:
    """Millisecond timestamp ids that never repeat within the process."""

    def __init__(self):
        self._last = 0

    def next(self) -> int:
        now = int(time.time() * 1000)
        self._last = now if now > self._last else self._last + 1
        return self._last


class Store:
    def __init__(self, data_dir: Path):
        data_dir = Path(data_dir)
        self.products = JsonCollection(data_dir / "products.json")
        self.orders = JsonCollection(data_dir / "orders.json")
        self.slider = JsonCollection(data_dir / "slider.json")
        self.ids = IdGenerator()

    def ensure(self):
        for collection in (self.products, self.orders, self.slider):
            collection.ensure()
