import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from pymongo.errors import PyMongoError

from braidr.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# Keys shared by the session, favorites and location layers
USER_KEY = "user"
NEEDS_ONBOARDING_KEY = "needsOnboarding"
FAVORITES_KEY = "favoriteStylists"
LAST_LOCATION_KEY = "lastKnownLocation"
AUTH_TOKENS_KEY = "authTokens"

class KeyValueStorage:
    """Async string key-value store, the client's equivalent of device storage."""

    async def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove_item(self, key: str) -> None:
        raise NotImplementedError

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.remove_item(key)

    async def close(self) -> None:
        pass

class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._items)

class FileStorage(KeyValueStorage):
    """
    All keys live in a single JSON document on disk.

    Writes go to a temp file that replaces the original, so a crash never
    leaves a half-written store behind.
    """

    def __init__(self, path: str):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except ValueError:
            logger.warning(f"Storage file {self.path} is corrupt, starting empty")
            return {}
        except OSError as e:
            raise StorageError(f"Could not read local storage: {e}") from e
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Could not write local storage: {e}") from e

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._read().get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            data = self._read()
            removed = [key for key in keys if data.pop(key, None) is not None]
            if removed:
                self._write(data)

class MongoStorage(KeyValueStorage):
    """Keys stored as ``{_id: key, value, updatedAt}`` documents in a motor collection."""

    def __init__(self, collection):
        self.collection = collection

    async def get_item(self, key: str) -> Optional[str]:
        try:
            doc = await self.collection.find_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(f"Could not read key {key}: {e}") from e
        return doc["value"] if doc else None

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self.collection.update_one(
                {"_id": key},
                {"$set": {"value": value, "updatedAt": datetime.utcnow()}},
                upsert=True
            )
        except PyMongoError as e:
            raise StorageError(f"Could not write key {key}: {e}") from e

    async def remove_item(self, key: str) -> None:
        try:
            await self.collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(f"Could not remove key {key}: {e}") from e

    async def multi_remove(self, keys: Iterable[str]) -> None:
        try:
            await self.collection.delete_many({"_id": {"$in": list(keys)}})
        except PyMongoError as e:
            raise StorageError(f"Could not remove keys: {e}") from e
