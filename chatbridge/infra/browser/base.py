"""Tab host and site adapter protocol definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from chatbridge.models.participant import AvailabilitySnapshot


class TabMessageType(str, Enum):
    SEND_MESSAGE = "send_message"
    CHECK_RESPONSE = "check_response"
    CHECK_AVAILABILITY = "check_availability"
    REGISTERED_TO_POOL = "registered_to_pool"
    REMOVED_FROM_POOL = "removed_from_pool"
    REGISTRATION_CONFIRMED = "registration_confirmed"
    REMOVED_FROM_CONVERSATION = "removed_from_conversation"
    CONVERSATION_STOPPED = "conversation_stopped"


@dataclass(frozen=True)
class TabMessage:
    """Typed message delivered to a tab."""

    type: TabMessageType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def send_text(cls, text: str, request_id: str | None = None, watch: bool = True) -> TabMessage:
        payload: dict[str, Any] = {"text": text, "watch": watch}
        if request_id:
            payload["request_id"] = request_id
        return cls(TabMessageType.SEND_MESSAGE, payload)


@dataclass(frozen=True)
class TabInfo:
    """Snapshot of a tab as seen by the host."""

    handle: str
    url: str = ""
    title: str = ""
    active: bool = False
    platform_id: str | None = None


@dataclass(frozen=True)
class ResponseCheck:
    """Reply to a CHECK_RESPONSE poll."""

    has_response: bool = False
    text: str = ""
    length: int = 0
    is_generating: bool = False

    def to_reply(self) -> dict:
        return {
            "has_response": self.has_response,
            "response_text": self.text,
            "response_length": self.length,
            "is_generating": self.is_generating,
        }

    @classmethod
    def from_reply(cls, reply: dict | None) -> ResponseCheck:
        if not reply:
            return cls()
        text = reply.get("response_text") or ""
        return cls(
            has_response=bool(reply.get("has_response", bool(text))),
            text=text,
            length=reply.get("response_length", len(text)),
            is_generating=bool(reply.get("is_generating", False)),
        )


STABLE_POLLS = 2


class ResponseStabilizer:
    """Debounce for still-streaming output.

    A response is final once the same length has been observed on
    ``required`` consecutive polls while the adapter reports not generating.
    Text equal to ``baseline`` (the reply already on the page before the
    message was sent) never counts.
    """

    def __init__(self, required: int = STABLE_POLLS, baseline: str | None = None) -> None:
        self.required = required
        self.baseline = baseline
        self.last_length = 0
        self.stable_count = 0

    def observe(self, check: ResponseCheck) -> bool:
        if check.is_generating:
            self.stable_count = 0
            return False
        if not check.has_response or not check.text or check.text == self.baseline:
            self.stable_count = 0
            return False
        if check.length == self.last_length:
            self.stable_count += 1
        else:
            self.last_length = check.length
            self.stable_count = 1
        return self.stable_count >= self.required


@runtime_checkable
class TabHost(Protocol):
    """Protocol for the browser-tab host.

    ``send`` raises TabGoneError when the tab no longer exists and
    DeliveryError when the tab is live but the message could not be handled.
    It may also never return; callers bound it with a timeout.
    """

    async def get_tab(self, tab_handle: str) -> TabInfo | None:
        """Return the tab, or None if it no longer exists."""
        ...

    async def active_tab(self) -> str | None:
        """Return the handle of the currently foregrounded tab."""
        ...

    async def activate(self, tab_handle: str) -> None:
        """Bring a tab to the foreground."""
        ...

    async def send(self, tab_handle: str, message: TabMessage) -> dict:
        """Deliver a typed message to a tab and return its reply."""
        ...

    async def open_tab(self, url: str) -> TabInfo:
        """Open a new tab."""
        ...

    async def close_tab(self, tab_handle: str) -> None:
        """Close a tab."""
        ...


@runtime_checkable
class SiteAdapter(Protocol):
    """Capability set implemented once per chat website.

    The orchestrator only ever uses these capabilities, never site identity.
    """

    async def get_input_field(self) -> Any:
        ...

    async def get_send_button(self) -> Any:
        ...

    async def set_input_text(self, text: str) -> bool:
        ...

    async def click_send(self) -> bool:
        ...

    async def get_latest_response(self) -> str | None:
        ...

    async def is_generating(self) -> bool:
        ...

    async def check_availability(self) -> AvailabilitySnapshot:
        ...
