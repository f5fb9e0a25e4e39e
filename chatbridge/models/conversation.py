"""Conversation domain models: config, history, and the session aggregate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum

from chatbridge.models.participant import Participant

logger = logging.getLogger(__name__)


class TemplateType(str, Enum):
    DEBATE = "debate"
    STORY = "story"
    QA = "qa"
    BRAINSTORM = "brainstorm"


class ActivationMode(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    HYBRID = "hybrid"

    @classmethod
    def coerce(cls, value: object) -> ActivationMode:
        """Parse a mode value; booleans map to always/never, unknowns to hybrid."""
        if isinstance(value, ActivationMode):
            return value
        if isinstance(value, bool):
            return cls.ALWAYS if value else cls.NEVER
        try:
            return cls(str(value))
        except ValueError:
            logger.warning("Unknown activation mode %r, falling back to hybrid", value)
            return cls.HYBRID


def parse_template(value: object) -> TemplateType | None:
    if value is None or value == "":
        return None
    if isinstance(value, TemplateType):
        return value
    try:
        return TemplateType(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class ConversationConfig:
    """User-tunable conversation settings, persisted on every change."""

    auto_reply_delay_ms: int = 2000
    max_turns: int = 50
    context_window_size: int = 4
    initial_prompt: str = ""
    template_id: TemplateType | None = None
    activation_mode: ActivationMode = ActivationMode.HYBRID
    hybrid_activation_ms: int = 1500
    hybrid_check_interval_ms: int = 30000
    hybrid_initial_delay_ms: int = 30000

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.context_window_size < 0:
            raise ValueError("context_window_size must be >= 0")
        if self.hybrid_check_interval_ms <= 0:
            raise ValueError("hybrid_check_interval_ms must be > 0")

    def merged(self, updates: dict) -> ConversationConfig:
        """Return a copy with the recognised keys of *updates* applied."""
        known = {f.name for f in fields(self)}
        changes: dict = {}
        for key, value in updates.items():
            if key not in known:
                logger.debug("Ignoring unknown config key %s", key)
                continue
            if key == "activation_mode":
                value = ActivationMode.coerce(value)
            elif key == "template_id":
                value = parse_template(value)
            elif key == "initial_prompt":
                value = value or ""
            else:
                try:
                    value = int(value)
                except (TypeError, ValueError) as e:
                    raise ValueError(f"{key} must be an integer, got {value!r}") from e
            changes[key] = value
        return replace(self, **changes)

    def to_doc(self) -> dict:
        return {
            "auto_reply_delay_ms": self.auto_reply_delay_ms,
            "max_turns": self.max_turns,
            "context_window_size": self.context_window_size,
            "initial_prompt": self.initial_prompt,
            "template_id": self.template_id.value if self.template_id else None,
            "activation_mode": self.activation_mode.value,
            "hybrid_activation_ms": self.hybrid_activation_ms,
            "hybrid_check_interval_ms": self.hybrid_check_interval_ms,
            "hybrid_initial_delay_ms": self.hybrid_initial_delay_ms,
        }

    @classmethod
    def from_doc(cls, doc: dict, defaults: ConversationConfig | None = None) -> ConversationConfig:
        base = defaults or cls()
        if not doc:
            return base
        return base.merged(doc)


@dataclass(frozen=True)
class HistoryEntry:
    """One agent utterance. Immutable once appended."""

    id: int
    participant_index: int
    slot_order: int
    role: str
    content: str
    platform_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "participant_index": self.participant_index,
            "slot_order": self.slot_order,
            "role": self.role,
            "content": self.content,
            "platform_id": self.platform_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> HistoryEntry:
        return cls(
            id=doc["id"],
            participant_index=doc["participant_index"],
            slot_order=doc.get("slot_order", doc["participant_index"] + 1),
            role=doc.get("role", ""),
            content=doc.get("content", ""),
            platform_id=doc.get("platform_id"),
            timestamp=doc.get("timestamp", datetime.now(timezone.utc)),
        )


@dataclass
class ConversationSession:
    """Root aggregate owned by the ConversationController.

    Mutable: the controller writes it through to the store on every change.
    """

    active: bool = False
    participants: list[Participant] = field(default_factory=list)
    current_turn: int = 0
    history: list[HistoryEntry] = field(default_factory=list)
    config: ConversationConfig = field(default_factory=ConversationConfig)

    @property
    def filled_participants(self) -> list[Participant]:
        return [p for p in self.participants if p.is_filled]

    def index_of_tab(self, tab_handle: str) -> int | None:
        for idx, p in enumerate(self.participants):
            if p.tab_handle == tab_handle:
                return idx
        return None

    def next_history_id(self) -> int:
        return (self.history[-1].id + 1) if self.history else 1

    def state_doc(self) -> dict:
        """The turn-state blob (participants and history persist separately)."""
        return {"active": self.active, "current_turn": self.current_turn}
