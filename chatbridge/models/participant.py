"""Participant and pool agent domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Last known readiness of an agent's input surface."""

    available: bool = True
    reason: str | None = None
    requires_login: bool = False

    def to_doc(self) -> dict:
        return {
            "available": self.available,
            "reason": self.reason,
            "requires_login": self.requires_login,
        }

    @classmethod
    def from_doc(cls, doc: dict | None) -> AvailabilitySnapshot:
        if not doc:
            return cls()
        return cls(
            available=doc.get("available", True),
            reason=doc.get("reason"),
            requires_login=doc.get("requires_login", doc.get("requiresLogin", False)),
        )


def display_role_for(slot_order: int) -> str:
    return f"Participant {slot_order}"


@dataclass(frozen=True)
class Participant:
    """An ordinal conversation slot, optionally bound to a live agent tab.

    A ``None`` tab_handle marks a held-open, unfilled slot.
    """

    slot_order: int
    tab_handle: str | None = None
    platform_id: str | None = None
    title: str = ""
    display_role: str = ""
    availability: AvailabilitySnapshot | None = None

    def __post_init__(self) -> None:
        if self.slot_order < 1:
            raise ValueError("Participant slot_order must be >= 1")
        if not self.display_role:
            object.__setattr__(self, "display_role", display_role_for(self.slot_order))

    @property
    def is_filled(self) -> bool:
        return self.tab_handle is not None

    def with_slot(self, slot_order: int) -> Participant:
        """Return a copy renumbered to slot_order."""
        return replace(
            self, slot_order=slot_order, display_role=display_role_for(slot_order)
        )

    def with_availability(self, availability: AvailabilitySnapshot) -> Participant:
        return replace(self, availability=availability)

    def to_doc(self) -> dict:
        return {
            "slot_order": self.slot_order,
            "tab_handle": self.tab_handle,
            "platform_id": self.platform_id,
            "title": self.title,
            "display_role": self.display_role,
            "availability": self.availability.to_doc() if self.availability else None,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> Participant:
        av = doc.get("availability")
        return cls(
            slot_order=doc["slot_order"],
            tab_handle=doc.get("tab_handle"),
            platform_id=doc.get("platform_id"),
            title=doc.get("title", ""),
            display_role=doc.get("display_role", ""),
            availability=AvailabilitySnapshot.from_doc(av) if av else None,
        )


@dataclass(frozen=True)
class PoolAgent:
    """A registered agent tab not yet bound to a conversation slot."""

    tab_handle: str
    platform_id: str
    title: str = ""
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    availability: AvailabilitySnapshot = field(default_factory=AvailabilitySnapshot)

    def __post_init__(self) -> None:
        if not self.tab_handle:
            raise ValueError("PoolAgent must have a tab_handle")

    def with_availability(self, availability: AvailabilitySnapshot) -> PoolAgent:
        return replace(self, availability=availability)

    def to_doc(self) -> dict:
        return {
            "tab_handle": self.tab_handle,
            "platform_id": self.platform_id,
            "title": self.title,
            "registered_at": self.registered_at,
            "availability": self.availability.to_doc(),
        }

    @classmethod
    def from_doc(cls, doc: dict) -> PoolAgent:
        return cls(
            tab_handle=doc["tab_handle"],
            platform_id=doc.get("platform_id", ""),
            title=doc.get("title", ""),
            registered_at=doc.get("registered_at", datetime.now(timezone.utc)),
            availability=AvailabilitySnapshot.from_doc(doc.get("availability")),
        )
