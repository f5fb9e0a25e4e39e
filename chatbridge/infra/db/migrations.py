"""MongoDB index creation."""

from __future__ import annotations

import logging

import pymongo

logger = logging.getLogger(__name__)


async def run_migrations(db) -> None:
    """Create indexes on startup."""
    logger.info("Running MongoDB migrations...")

    events = db["conversation_events"]
    await events.create_index([("created_at", pymongo.DESCENDING)])
    await events.create_index(
        [("event_type", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)]
    )

    logger.info("MongoDB migrations complete")
