"""Shared fakes: in-memory store, event sink and tab host."""

from __future__ import annotations

import asyncio
import copy

import pytest

from chatbridge.config import OrchestratorConfig
from chatbridge.errors import DeliveryError, PersistenceError, TabGoneError
from chatbridge.infra.browser.base import TabInfo, TabMessage, TabMessageType
from chatbridge.models.conversation import ActivationMode, ConversationConfig, ConversationSession
from chatbridge.services.conversation_controller import ConversationController
from chatbridge.services.participant_registry import ParticipantRegistry
from chatbridge.services.tab_activation import TabActivationController
from chatbridge.services.timeout_learner import TimeoutProfileLearner


class MemoryStore:
    """StateStore stand-in; keys in ``fail_keys`` raise PersistenceError on write."""

    def __init__(self) -> None:
        self.data: dict = {}
        self.fail_keys: set[str] = set()

    async def get(self, key, default=None):
        return copy.deepcopy(self.data.get(key, default))

    async def set(self, key, value) -> None:
        if key in self.fail_keys:
            raise PersistenceError(f"Failed to write {key}")
        self.data[key] = copy.deepcopy(value)

    async def set_best_effort(self, key, value) -> bool:
        try:
            await self.set(key, value)
        except PersistenceError:
            return False
        return True

    async def delete(self, key) -> None:
        self.data.pop(key, None)


class MemoryEventRepo:
    def __init__(self) -> None:
        self.events: list = []

    async def insert(self, event):
        self.events.append(event)
        return event

    async def list_recent(self, limit: int = 50):
        return list(reversed(self.events))[:limit]

    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


class FakeTabHost:
    """In-memory TabHost recording every activation and message."""

    def __init__(self) -> None:
        self.tabs: dict[str, TabInfo] = {}
        self.active: str | None = None
        self.activations: list[str] = []
        self.sent: list[tuple[str, TabMessage]] = []
        self.check_replies: dict[str, list[dict]] = {}
        self.availability: dict[str, dict] = {}
        self.failing: set[str] = set()
        self.hanging: set[str] = set()

    def add_tab(self, handle: str, platform_id: str | None = "chatgpt", title: str = "") -> TabInfo:
        info = TabInfo(
            handle=handle,
            url=f"https://{platform_id or 'example'}.test/",
            title=title or handle,
            platform_id=platform_id,
        )
        self.tabs[handle] = info
        return info

    def queue_checks(self, handle: str, *replies: dict) -> None:
        """Replies to CHECK_RESPONSE; the last one repeats."""
        self.check_replies[handle] = list(replies)

    def messages_to(self, handle: str, message_type=TabMessageType.SEND_MESSAGE) -> list[dict]:
        return [m.payload for h, m in self.sent if h == handle and m.type == message_type]

    async def get_tab(self, tab_handle):
        return self.tabs.get(tab_handle)

    async def active_tab(self):
        return self.active

    async def activate(self, tab_handle) -> None:
        if tab_handle not in self.tabs:
            raise TabGoneError(tab_handle)
        self.active = tab_handle
        self.activations.append(tab_handle)

    async def send(self, tab_handle, message: TabMessage) -> dict:
        if tab_handle not in self.tabs:
            raise TabGoneError(tab_handle)
        if tab_handle in self.hanging:
            await asyncio.sleep(3600)
        if tab_handle in self.failing:
            raise DeliveryError(f"send to {tab_handle} failed")
        self.sent.append((tab_handle, message))
        if message.type == TabMessageType.CHECK_RESPONSE:
            queue = self.check_replies.get(tab_handle, [])
            if not queue:
                return {"has_response": False}
            return queue.pop(0) if len(queue) > 1 else queue[0]
        if message.type == TabMessageType.CHECK_AVAILABILITY:
            return self.availability.get(tab_handle, {"available": True})
        return {"success": True}

    async def open_tab(self, url: str) -> TabInfo:
        handle = f"tab{len(self.tabs) + 1}"
        return self.add_tab(handle)

    async def close_tab(self, tab_handle) -> None:
        self.tabs.pop(tab_handle, None)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def check_reply(text: str, generating: bool = False) -> dict:
    return {
        "has_response": bool(text),
        "response_text": text,
        "response_length": len(text),
        "is_generating": generating,
    }


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def events():
    return MemoryEventRepo()


@pytest.fixture
def host():
    return FakeTabHost()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_config():
    return ConversationConfig(
        auto_reply_delay_ms=0,
        activation_mode=ActivationMode.NEVER,
        hybrid_activation_ms=2,
        hybrid_check_interval_ms=5,
        hybrid_initial_delay_ms=1,
    )


@pytest.fixture
def orchestrator():
    return OrchestratorConfig(
        message_timeout_s=0.5,
        notify_timeout_s=0.2,
        poll_ceiling_ms=50,
    )


@pytest.fixture
def session(fast_config):
    return ConversationSession(config=fast_config)


@pytest.fixture
def learner(store, fast_config, orchestrator, clock):
    return TimeoutProfileLearner(store, fast_config, orchestrator, clock=clock)


@pytest.fixture
def registry(store, host, session):
    return ParticipantRegistry(store, host, session)


@pytest.fixture
def activation(host, learner, orchestrator, events):
    return TabActivationController(host, learner, orchestrator, events)


@pytest.fixture
def controller(store, host, session, registry, activation, learner, orchestrator, events):
    return ConversationController(
        store=store,
        host=host,
        session=session,
        registry=registry,
        activation=activation,
        learner=learner,
        orchestrator=orchestrator,
        event_repo=events,
    )
