"""JSON file-based implementation of LocalCacheInterface.

All collections live in a single JSON file:

    {
        "collections": {
            "notes": [{"id": "n1", "verse_id": "John-3-16", ...}, ...],
            "edges": [...]
        },
        "last_sync": "2024-05-01T12:00:00+00:00"
    }

The file is read lazily on first access and rewritten whole on every change,
matching the collection-granularity write model of the cache.
"""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from versegraph.entity import coerce_timestamp
from versegraph.exceptions import LocalCacheError
from versegraph.logging import setup_logging
from versegraph.storage.interfaces import LocalCacheInterface


class JsonFileLocalCache(LocalCacheInterface):
    """Local cache persisted to one JSON file.

    Attributes:
        cache_file: Path to the JSON file
        _collections: In-memory copy of the stored collections
        _last_sync: Time of the last successful sync pass, if any
        _loaded: Whether the file has been read yet
    """

    def __init__(self, cache_file: Path | None = None):
        """Initialize the cache.

        Args:
            cache_file: Path to the JSON file. Defaults to
                "versegraph_cache.json" in the current directory.
        """
        self.cache_file = Path(cache_file) if cache_file is not None else Path("versegraph_cache.json")
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._last_sync: datetime | None = None
        self._loaded = False
        # Serializes file access; both sync classes write concurrently.
        self._io_lock = asyncio.Lock()
        self.logger = setup_logging()

    def _read_file(self) -> Any:
        with open(self.cache_file, "r") as f:
            return json.load(f)

    def _write_file(self, payload: str) -> None:
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.cache_file, "w") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

    async def _load(self) -> None:
        async with self._io_lock:
            if self._loaded:
                return
            if not self.cache_file.exists():
                self.logger.debug(
                    {
                        "message": f"Cache file does not exist: {self.cache_file}",
                        "cache_file": str(self.cache_file),
                    },
                    pprint=True,
                )
                self._loaded = True
                return
            try:
                data = await asyncio.to_thread(self._read_file)
            except (OSError, ValueError) as e:
                raise LocalCacheError(f"Failed to read cache file {self.cache_file}: {e}") from e

            if not isinstance(data, dict) or not isinstance(data.get("collections", {}), dict):
                raise LocalCacheError(f"Cache file {self.cache_file} has an unexpected layout")

            self._collections = {
                name: [record for record in records if isinstance(record, dict)]
                for name, records in data.get("collections", {}).items()
                if isinstance(records, list)
            }
            raw_last_sync = data.get("last_sync")
            self._last_sync = coerce_timestamp(raw_last_sync) if raw_last_sync else None
            self._loaded = True
            self.logger.debug(
                {
                    "message": f"Loaded {len(self._collections)} collections from {self.cache_file}",
                    "cache_file": str(self.cache_file),
                    "sizes": {name: len(records) for name, records in self._collections.items()},
                },
                pprint=True,
            )

    async def _save(self) -> None:
        async with self._io_lock:
            # Encoded on the loop; the worker thread only writes the text.
            payload = json.dumps(
                {
                    "collections": self._collections,
                    "last_sync": self._last_sync.isoformat() if self._last_sync else None,
                },
                indent=2,
                default=str,
            )
            try:
                await asyncio.to_thread(self._write_file, payload)
            except OSError as e:
                self.logger.error(
                    {
                        "message": f"Failed to save cache to {self.cache_file}",
                        "cache_file": str(self.cache_file.absolute()),
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    pprint=True,
                )
                raise LocalCacheError(f"Failed to write cache file {self.cache_file}: {e}") from e

    async def get_collection(self, name: str) -> list[dict[str, Any]]:
        await self._load()
        return [dict(record) for record in self._collections.get(name, [])]

    async def set_collection(self, name: str, records: Sequence[dict[str, Any]]) -> None:
        await self._load()
        self._collections[name] = [dict(record) for record in records]
        await self._save()

    async def remove_collection(self, name: str) -> None:
        await self._load()
        if self._collections.pop(name, None) is not None:
            await self._save()

    async def get_last_sync_timestamp(self) -> datetime | None:
        await self._load()
        return self._last_sync

    async def set_last_sync_timestamp(self, timestamp: datetime) -> None:
        await self._load()
        self._last_sync = timestamp
        await self._save()
