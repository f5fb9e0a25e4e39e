"""Controller results -> JSON-safe values for RPC transport."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from chatbridge.models.event import ConversationEvent
from chatbridge.models.timeout_profile import PlatformTimeoutProfile


def _dt_to_str(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def jsonable(value: Any) -> Any:
    """Recursively convert datetimes and enums inside dicts and lists."""
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, datetime):
        return _dt_to_str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def serialize_event(event: ConversationEvent) -> dict:
    return {
        "id": event.id,
        "event_type": event.event_type.value,
        "participant_index": event.participant_index,
        "platform_id": event.platform_id,
        "detail": event.detail,
        "created_at": _dt_to_str(event.created_at),
    }


def serialize_profile(profile: PlatformTimeoutProfile) -> dict:
    return {
        **profile.to_doc(),
        "success_rate": round(profile.success_rate, 3),
        "learned": profile.is_learned,
    }
