"""Conversation event repository - the orchestrator's observability sink."""

from __future__ import annotations

import asyncio
import logging

from pymongo.errors import PyMongoError

from chatbridge.models.event import ConversationEvent

logger = logging.getLogger(__name__)


class EventRepo:
    """Append-only event log in MongoDB."""

    COLLECTION = "conversation_events"

    def __init__(self, db, retry_backoff: float = 0.5) -> None:
        self._col = db[self.COLLECTION]
        self._retry_backoff = retry_backoff

    async def insert(self, event: ConversationEvent) -> ConversationEvent | None:
        """Insert an event, retrying once. Returns None if the write was dropped."""
        doc = event.to_doc()
        doc.pop("_id", None)
        for attempt in range(2):
            try:
                result = await self._col.insert_one(dict(doc))
                return ConversationEvent(
                    id=str(result.inserted_id),
                    event_type=event.event_type,
                    participant_index=event.participant_index,
                    platform_id=event.platform_id,
                    detail=event.detail,
                    created_at=event.created_at,
                )
            except PyMongoError:
                if attempt == 0:
                    await asyncio.sleep(self._retry_backoff)
        logger.warning("Dropped %s event after retry", event.event_type.value)
        return None

    async def list_recent(self, limit: int = 50) -> list[ConversationEvent]:
        """List most recent events, newest first."""
        cursor = self._col.find().sort("created_at", -1).limit(limit)
        return [ConversationEvent.from_doc(doc) async for doc in cursor]
