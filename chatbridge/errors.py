"""Error taxonomy for the conversation orchestrator."""

from __future__ import annotations


class ChatBridgeError(Exception):
    """Base class for orchestrator errors."""


class NotFoundError(ChatBridgeError):
    """Unknown tab handle or slot."""


class TabGoneError(ChatBridgeError):
    """The target tab disappeared mid-operation."""

    def __init__(self, tab_handle: str, message: str = "") -> None:
        self.tab_handle = tab_handle
        super().__init__(message or f"Tab {tab_handle} no longer exists")


class InsufficientParticipantsError(ChatBridgeError):
    """Fewer than two participants hold a live tab."""


class NoValidParticipantsError(ChatBridgeError):
    """The scheduler found no participant with a live tab."""


class DeliveryError(ChatBridgeError):
    """Sending a message to a live tab failed."""


class PersistenceError(ChatBridgeError):
    """A store read or write failed."""
