"""Conversation orchestration: the top-level state machine and control surface.

The controller owns the ConversationSession, writes it through to the store
on every change, and is the only component that drives the tab host. All
public methods resolve to ``{"success": True, ...}`` or
``{"success": False, "error": str}``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable

from chatbridge.config import OrchestratorConfig
from chatbridge.errors import (
    ChatBridgeError,
    InsufficientParticipantsError,
    NoValidParticipantsError,
    NotFoundError,
    TabGoneError,
)
from chatbridge.infra.browser.base import TabHost, TabMessage, TabMessageType
from chatbridge.infra.db.events import EventRepo
from chatbridge.infra.db.state_store import (
    CONFIG_KEY,
    HISTORY_KEY,
    SESSION_KEY,
    StateStore,
)
from chatbridge.models.conversation import (
    ConversationConfig,
    ConversationSession,
    HistoryEntry,
    parse_template,
)
from chatbridge.models.event import ConversationEvent, ConversationEventType
from chatbridge.models.participant import AvailabilitySnapshot
from chatbridge.services.message_composer import compose
from chatbridge.services.participant_registry import ParticipantRegistry
from chatbridge.services.tab_activation import TabActivationController
from chatbridge.services.timeout_learner import TimeoutProfileLearner
from chatbridge.services.turn_scheduler import DEADLOCK, first_turn, is_valid_turn, next_turn

logger = logging.getLogger(__name__)

StateListener = Callable[[dict], Awaitable[object]]


def _structured(method):
    """Resolve taxonomy and validation errors to a ``success: False`` result."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs) -> dict:
        try:
            return await method(self, *args, **kwargs)
        except (ChatBridgeError, ValueError) as e:
            logger.warning("%s failed: %s", method.__name__, e)
            return {"success": False, "error": str(e)}

    return wrapper


class ConversationController:
    """INACTIVE -> ACTIVE -> INACTIVE, driven by control calls and agent responses."""

    def __init__(
        self,
        store: StateStore,
        host: TabHost,
        session: ConversationSession,
        registry: ParticipantRegistry,
        activation: TabActivationController,
        learner: TimeoutProfileLearner,
        orchestrator: OrchestratorConfig | None = None,
        event_repo: EventRepo | None = None,
    ) -> None:
        self._store = store
        self._host = host
        self._session = session
        self._registry = registry
        self._activation = activation
        self._learner = learner
        self._orchestrator = orchestrator or OrchestratorConfig()
        self._event_repo = event_repo
        self._defaults = session.config
        self._listeners: list[StateListener] = []
        self._reply_task: asyncio.Task | None = None
        self._asks: dict[str, asyncio.Future] = {}
        activation.set_response_handler(self._on_activation_response)
        activation.set_tab_gone_handler(self._on_activation_tab_gone)

    @property
    def session(self) -> ConversationSession:
        return self._session

    @property
    def reply_task(self) -> asyncio.Task | None:
        """The pending auto-reply, if one is scheduled."""
        return self._reply_task

    # --- Listeners ---

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> dict:
        s = self._session
        return {
            "active": s.active,
            "current_turn": s.current_turn,
            "participants": [p.to_doc() for p in s.participants],
            "pool": [a.to_doc() for a in self._registry.available_agents()],
            "history_length": len(s.history),
            "config": s.config.to_doc(),
        }

    async def _broadcast(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception:
                logger.debug("State listener failed, removing it", exc_info=True)
                self.remove_listener(listener)

    # --- Persistence ---

    async def load(self) -> None:
        """Restore session state from the store and prune tabs that are gone."""
        raw_config = await self._store.get(CONFIG_KEY)
        self._session.config = ConversationConfig.from_doc(raw_config or {}, self._defaults)
        self._learner.set_defaults(self._session.config)
        await self._learner.load()
        await self._registry.load()

        raw_history = await self._store.get(HISTORY_KEY, []) or []
        self._session.history = [HistoryEntry.from_doc(doc) for doc in raw_history]

        raw_state = await self._store.get(SESSION_KEY, {}) or {}
        self._session.active = bool(raw_state.get("active", False))
        self._session.current_turn = int(raw_state.get("current_turn", 0))

        await self._registry.prune_dead_tabs()
        if self._session.active and not is_valid_turn(
            self._session.participants, self._session.current_turn,
        ):
            logger.warning(
                "Turn %d no longer names a live participant, deactivating",
                self._session.current_turn,
            )
            self._session.active = False
            await self._save_state()
        logger.info(
            "Loaded session: active=%s participants=%d history=%d",
            self._session.active, len(self._session.participants), len(self._session.history),
        )

    async def _save_state(self) -> None:
        await self._store.set(SESSION_KEY, self._session.state_doc())

    async def _save_history(self) -> None:
        await self._store.set(HISTORY_KEY, [e.to_doc() for e in self._session.history])

    async def _record(
        self,
        event_type: ConversationEventType,
        participant_index: int | None = None,
        detail: str = "",
    ) -> None:
        if self._event_repo is None:
            return
        platform_id = None
        if participant_index is not None and 0 <= participant_index < len(self._session.participants):
            platform_id = self._session.participants[participant_index].platform_id
        await self._event_repo.insert(ConversationEvent(
            event_type=event_type,
            participant_index=participant_index,
            platform_id=platform_id,
            detail=detail,
        ))

    # --- Sending ---

    async def _send_to_participant(
        self, participant_index: int, text: str, request_id: str | None = None,
    ) -> dict:
        participant = self._session.participants[participant_index]
        try:
            result = await self._activation.deliver(
                participant_index, participant, text,
                self._session.config.activation_mode, request_id,
            )
        except TabGoneError as e:
            slot = participant.slot_order
            await self._record(ConversationEventType.TAB_GONE, participant_index, str(e))
            await self._drop_participant(participant_index, repool=False)
            return {"success": False, "error": str(e), "slot_emptied": slot}
        except ChatBridgeError as e:
            await self._record(ConversationEventType.DELIVERY_FAILED, participant_index, str(e))
            return {"success": False, "error": str(e)}
        await self._record(ConversationEventType.MESSAGE_SENT, participant_index, f"{len(text)} chars")
        return result

    def _cancel_reply(self) -> None:
        task = self._reply_task
        self._reply_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _schedule_reply(self, next_index: int, latest_text: str, from_index: int) -> None:
        self._cancel_reply()
        self._reply_task = asyncio.ensure_future(
            self._reply_after_delay(next_index, latest_text, from_index)
        )

    async def _reply_after_delay(self, next_index: int, latest_text: str, from_index: int) -> None:
        await asyncio.sleep(self._session.config.auto_reply_delay_ms / 1000)
        if not self._session.active or not is_valid_turn(self._session.participants, next_index):
            logger.debug("Conversation moved on, not sending to participant %d", next_index)
            return
        text = compose(self._session.history, self._session.config, latest_text, from_index)
        try:
            result = await self._send_to_participant(next_index, text)
        except ChatBridgeError:
            logger.warning("Auto-reply to participant %d failed", next_index, exc_info=True)
            return
        if not result.get("success"):
            logger.warning("Auto-reply to participant %d failed: %s", next_index, result.get("error"))

    # --- Lifecycle ---

    async def _stop(self, reason: str) -> None:
        self._session.active = False
        self._cancel_reply()
        self._activation.cancel_all()
        await self._save_state()
        await asyncio.gather(*(
            self._activation.notify(p.tab_handle, TabMessageType.CONVERSATION_STOPPED, reason=reason)
            for p in self._session.filled_participants
        ))
        await self._record(ConversationEventType.STOPPED, detail=reason)
        logger.info("Conversation stopped: %s", reason)
        await self._broadcast()

    async def _drop_participant(self, participant_index: int, repool: bool) -> dict:
        """Release a slot, cancelling its work and stopping an active conversation."""
        participant = self._session.participants[participant_index]
        self._activation.cancel(participant_index)
        removed = await self._registry.release(participant.slot_order, repool=repool)
        if self._session.active:
            await self._stop("participant removed")
        elif self._session.current_turn >= len(self._session.participants):
            self._session.current_turn = 0
            await self._save_state()
        repooled = (
            removed.tab_handle is not None
            and self._registry.get_pool_agent(removed.tab_handle) is not None
        )
        if repooled:
            await self._activation.notify(removed.tab_handle, TabMessageType.REMOVED_FROM_CONVERSATION)
            await self._activation.notify(removed.tab_handle, TabMessageType.REGISTERED_TO_POOL)
        await self._broadcast()
        return {"success": True, "participant": removed.to_doc(), "repooled": repooled}

    @_structured
    async def start(self, topic: str | None = None, template_id: str | None = None) -> dict:
        live = self._session.filled_participants
        if len(live) < 2:
            raise InsufficientParticipantsError(
                "At least 2 participants with agents must be assigned"
            )
        first = first_turn(self._session.participants)
        if first is DEADLOCK:
            raise NoValidParticipantsError("No participants with agents assigned")

        updates: dict = {"template_id": parse_template(template_id)}
        if topic is not None:
            updates["initial_prompt"] = topic
        self._session.config = self._session.config.merged(updates)
        await self._store.set(CONFIG_KEY, self._session.config.to_doc())

        self._cancel_reply()
        self._activation.cancel_all()
        self._session.active = True
        self._session.current_turn = first
        await self._save_state()
        await self._record(ConversationEventType.STARTED, first)
        await self._broadcast()

        result: dict = {"success": True, "current_turn": first}
        prompt = self._session.config.initial_prompt
        if prompt:
            text = compose(self._session.history, self._session.config, prompt, None)
            result["delivery"] = await self._send_to_participant(first, text)
        return result

    @_structured
    async def stop(self) -> dict:
        if not self._session.active:
            return {"success": True, "already_stopped": True}
        await self._stop("stopped by user")
        return {"success": True}

    @_structured
    async def continue_conversation(self, participant_index: int, message: str) -> dict:
        """Resume at *participant_index*, re-activating a stopped conversation."""
        if not 0 <= participant_index < len(self._session.participants):
            raise NotFoundError(f"Invalid participant index {participant_index}")
        if not self._session.participants[participant_index].is_filled:
            raise NotFoundError(f"Participant {participant_index} has no agent assigned")
        if not message:
            raise ValueError("message is required")
        was_active = self._session.active
        self._cancel_reply()
        self._activation.cancel_all()
        self._session.active = True
        self._session.current_turn = participant_index
        await self._save_state()
        if not was_active:
            await self._record(ConversationEventType.STARTED, participant_index, "continued")
        await self._broadcast()
        return await self._send_to_participant(participant_index, message)

    # --- Agent responses ---

    async def _on_activation_response(
        self, participant_index: int, text: str, request_id: str | None,
    ) -> None:
        result = await self.on_agent_response(text, participant_index, request_id)
        if not result.get("success"):
            logger.info("Response from participant %d not used: %s", participant_index, result.get("error"))

    async def _on_activation_tab_gone(self, participant_index: int, tab_handle: str) -> None:
        result = await self.on_tab_closed(tab_handle)
        if not result.get("success"):
            logger.warning("Could not drop participant %d: %s", participant_index, result.get("error"))

    @_structured
    async def on_agent_response(
        self, text: str, participant_index: int | None, request_id: str | None = None,
    ) -> dict:
        if participant_index is not None:
            # A reply pushed by the tab retires any poll still waiting on it.
            self._activation.cancel(participant_index)
        if request_id:
            future = self._asks.get(request_id)
            if future is None or future.done():
                return {"success": False, "error": f"Unknown request {request_id}"}
            future.set_result(text.strip())
            return {"success": True, "forwarded": True, "request_id": request_id}

        if not self._session.active:
            return {"success": False, "ignored": True, "error": "Conversation not active"}
        if participant_index is None or not 0 <= participant_index < len(self._session.participants):
            raise NotFoundError(f"Participant {participant_index} not found")
        participant = self._session.participants[participant_index]
        if not participant.is_filled:
            raise NotFoundError(f"Participant {participant_index} has no agent assigned")

        latest = text.strip()
        entry = HistoryEntry(
            id=self._session.next_history_id(),
            participant_index=participant_index,
            slot_order=participant.slot_order,
            role=participant.display_role,
            content=latest,
            platform_id=participant.platform_id,
        )
        self._session.history.append(entry)
        await self._save_history()
        await self._record(ConversationEventType.RESPONSE_RECEIVED, participant_index, f"{len(latest)} chars")
        await self._broadcast()

        if len(self._session.history) >= self._session.config.max_turns:
            await self._record(ConversationEventType.MAX_TURNS, participant_index)
            await self._stop("max turns reached")
            return {"success": True, "stopped": True, "reason": "max_turns"}

        nxt = next_turn(self._session.participants, participant_index)
        if nxt is DEADLOCK:
            await self._record(ConversationEventType.DEADLOCK, participant_index)
            await self._stop("no valid participants")
            return {"success": True, "stopped": True, "reason": "deadlock"}

        self._session.current_turn = nxt
        await self._save_state()
        await self._broadcast()
        self._schedule_reply(nxt, latest, participant_index)
        return {"success": True, "next_turn": nxt}

    @_structured
    async def on_tab_response(self, tab_handle: str, text: str, request_id: str | None = None) -> dict:
        """Map a host-reported response from a tab onto its participant."""
        idx = self._session.index_of_tab(tab_handle)
        if idx is None and not request_id:
            raise NotFoundError(f"Tab {tab_handle} is not a participant")
        return await self.on_agent_response(text, idx, request_id)

    @_structured
    async def ask(self, participant_index: int, text: str, timeout_s: float | None = None) -> dict:
        """One-shot query outside the turn cycle; never touches history."""
        if not 0 <= participant_index < len(self._session.participants):
            raise NotFoundError(f"Invalid participant index {participant_index}")
        if not self._session.participants[participant_index].is_filled:
            raise NotFoundError(f"Participant {participant_index} has no agent assigned")
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._asks[request_id] = future
        try:
            delivery = await self._send_to_participant(participant_index, text, request_id)
            if not delivery.get("success"):
                return delivery
            timeout = timeout_s if timeout_s is not None else self._orchestrator.poll_ceiling_ms / 1000
            try:
                response = await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError:
                return {"success": False, "request_id": request_id, "error": "Timed out waiting for response"}
            return {"success": True, "request_id": request_id, "response": response}
        finally:
            self._asks.pop(request_id, None)

    # --- Participants and pool ---

    @_structured
    async def register_agent(self, tab_handle: str, platform_id: str, title: str = "") -> dict:
        agent = await self._registry.register_to_pool(tab_handle, platform_id, title)
        idx = self._session.index_of_tab(tab_handle)
        if idx is None:
            await self._activation.notify(tab_handle, TabMessageType.REGISTERED_TO_POOL)
        await self._broadcast()
        return {"success": True, "agent": agent.to_doc(), "in_conversation": idx is not None}

    @_structured
    async def remove_agent(self, tab_handle: str) -> dict:
        agent = await self._registry.remove_from_pool(tab_handle)
        if agent is None:
            raise NotFoundError(f"Tab {tab_handle} is not in the pool")
        await self._activation.notify(tab_handle, TabMessageType.REMOVED_FROM_POOL)
        await self._broadcast()
        return {"success": True}

    async def list_agents(self) -> dict:
        return {
            "success": True,
            "pool": [a.to_doc() for a in self._registry.available_agents()],
            "participants": [p.to_doc() for p in self._session.participants],
        }

    @_structured
    async def assign_participant(self, tab_handle: str, slot_order: int) -> dict:
        was_assigned = self._session.index_of_tab(tab_handle) is not None
        occupant = None
        if 1 <= slot_order <= len(self._session.participants):
            occupant = self._session.participants[slot_order - 1].tab_handle
        participant = await self._registry.assign(tab_handle, slot_order)
        if not was_assigned:
            await self._activation.notify(
                tab_handle, TabMessageType.REGISTRATION_CONFIRMED,
                slot_order=participant.slot_order, display_role=participant.display_role,
            )
            if occupant and occupant != tab_handle:
                await self._activation.notify(occupant, TabMessageType.REMOVED_FROM_CONVERSATION)
                await self._activation.notify(occupant, TabMessageType.REGISTERED_TO_POOL)
        await self._broadcast()
        return {"success": True, "participant": participant.to_doc(), "already_assigned": was_assigned}

    @_structured
    async def release_participant(self, slot_order: int) -> dict:
        if not 1 <= slot_order <= len(self._session.participants):
            raise NotFoundError(f"No participant slot {slot_order}")
        return await self._drop_participant(slot_order - 1, repool=True)

    @_structured
    async def add_slot(self, slot_order: int | None = None) -> dict:
        participant = await self._registry.add_empty_slot(slot_order)
        idx = participant.slot_order - 1
        if self._session.active and idx <= self._session.current_turn:
            self._session.current_turn += 1
            await self._save_state()
        await self._broadcast()
        return {"success": True, "participant": participant.to_doc()}

    @_structured
    async def reorder(self, from_slot: int, to_slot: int) -> dict:
        current_tab = None
        if is_valid_turn(self._session.participants, self._session.current_turn):
            current_tab = self._session.participants[self._session.current_turn].tab_handle
        if self._activation.pending:
            # Pending polls are keyed by index.
            self._activation.cancel_all()
        participants = await self._registry.reorder(from_slot, to_slot)
        if current_tab is not None:
            self._session.current_turn = self._session.index_of_tab(current_tab) or 0
            await self._save_state()
        for p in participants:
            if p.is_filled:
                await self._activation.notify(
                    p.tab_handle, TabMessageType.REGISTRATION_CONFIRMED,
                    slot_order=p.slot_order, display_role=p.display_role,
                )
        await self._broadcast()
        return {"success": True, "participants": [p.to_doc() for p in participants]}

    @_structured
    async def on_tab_closed(self, tab_handle: str) -> dict:
        """Host notification: drop every reference to a closed tab."""
        idx = self._session.index_of_tab(tab_handle)
        in_pool = await self._registry.remove_from_pool(tab_handle) is not None
        if idx is not None:
            await self._record(ConversationEventType.TAB_GONE, idx, f"Tab {tab_handle} closed")
            await self._drop_participant(idx, repool=False)
        elif in_pool:
            await self._broadcast()
        return {"success": True, "was_participant": idx is not None, "was_pooled": in_pool}

    # --- Availability ---

    @_structured
    async def check_availability(self, tab_handle: str) -> dict:
        try:
            reply = await self._activation.send_to_tab(
                tab_handle, TabMessage(TabMessageType.CHECK_AVAILABILITY),
            )
        except TabGoneError:
            await self.on_tab_closed(tab_handle)
            raise
        snapshot = AvailabilitySnapshot.from_doc(reply)
        await self._registry.update_availability(tab_handle, snapshot)
        await self._broadcast()
        return {"success": True, "availability": snapshot.to_doc()}

    @_structured
    async def update_availability(self, tab_handle: str, availability: dict) -> dict:
        snapshot = AvailabilitySnapshot.from_doc(availability)
        if not await self._registry.update_availability(tab_handle, snapshot):
            raise NotFoundError(f"Tab {tab_handle} is not registered")
        await self._broadcast()
        return {"success": True, "availability": snapshot.to_doc()}

    async def check_registration(self, tab_handle: str) -> dict:
        return {"success": True, **self._registry.check_registration(tab_handle)}

    # --- State, history and config ---

    async def get_state(self) -> dict:
        return {"success": True, **self.snapshot()}

    async def get_history(self) -> dict:
        return {"success": True, "history": [e.to_doc() for e in self._session.history]}

    @_structured
    async def clear_history(self) -> dict:
        self._session.history = []
        await self._save_history()
        await self._broadcast()
        return {"success": True}

    @_structured
    async def update_config(self, updates: dict) -> dict:
        self._session.config = self._session.config.merged(updates)
        self._learner.set_defaults(self._session.config)
        await self._store.set(CONFIG_KEY, self._session.config.to_doc())
        await self._broadcast()
        return {"success": True, "config": self._session.config.to_doc()}

    async def shutdown(self) -> None:
        """Cancel timers without touching persisted state."""
        self._cancel_reply()
        self._activation.cancel_all()
        for future in self._asks.values():
            if not future.done():
                future.cancel()
        self._asks.clear()

