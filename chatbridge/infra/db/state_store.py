"""Named-blob key-value store backed by a single MongoDB collection.

Each blob is one document ``{_id: key, value: ..., updated_at}``. There are
no transactions: concurrent writers get last-write-wins.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from pymongo.errors import PyMongoError

from chatbridge.errors import PersistenceError

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
CONFIG_KEY = "config"
PARTICIPANTS_KEY = "participants"
POOL_KEY = "pool"
HISTORY_KEY = "history"
PROFILES_KEY = "timeout_profiles"


class StateStore:
    """Async get/set of named blobs."""

    COLLECTION = "orchestrator_state"

    def __init__(self, db, retry_backoff: float = 0.5) -> None:
        self._col = db[self.COLLECTION]
        self._retry_backoff = retry_backoff

    async def get(self, key: str, default: Any = None) -> Any:
        """Read a blob. Raises PersistenceError on store failure."""
        try:
            doc = await self._col.find_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e
        if not doc:
            return default
        return doc.get("value", default)

    async def set(self, key: str, value: Any) -> None:
        """Write a blob. Raises PersistenceError on store failure."""
        try:
            await self._col.update_one(
                {"_id": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    async def set_best_effort(self, key: str, value: Any) -> bool:
        """Write a non-critical blob, retrying once with backoff.

        Returns False (and logs) if both attempts fail.
        """
        for attempt in range(2):
            try:
                await self.set(key, value)
                return True
            except PersistenceError:
                if attempt == 0:
                    logger.debug("Retrying write of %s", key)
                    await asyncio.sleep(self._retry_backoff)
        logger.warning("Dropped write of %s after retry", key)
        return False

    async def delete(self, key: str) -> None:
        try:
            await self._col.delete_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to delete {key}: {e}") from e
