"""Conversation event domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ConversationEventType(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    MESSAGE_SENT = "message_sent"
    RESPONSE_RECEIVED = "response_received"
    POLL_TIMEOUT = "poll_timeout"
    DELIVERY_FAILED = "delivery_failed"
    TAB_GONE = "tab_gone"
    DEADLOCK = "deadlock"
    MAX_TURNS = "max_turns"


@dataclass(frozen=True)
class ConversationEvent:
    """Observable orchestration event recorded to the event sink."""

    event_type: ConversationEventType
    participant_index: int | None = None
    platform_id: str | None = None
    detail: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str | None = None

    def to_doc(self) -> dict:
        doc: dict = {
            "event_type": self.event_type.value,
            "participant_index": self.participant_index,
            "platform_id": self.platform_id,
            "detail": self.detail,
            "created_at": self.created_at,
        }
        if self.id:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> ConversationEvent:
        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            event_type=ConversationEventType(doc["event_type"]),
            participant_index=doc.get("participant_index"),
            platform_id=doc.get("platform_id"),
            detail=doc.get("detail", ""),
            created_at=doc.get("created_at", datetime.now(timezone.utc)),
        )
