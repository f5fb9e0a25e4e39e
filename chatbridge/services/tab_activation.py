"""Tab activation and response polling per participant.

Per participant index the flow is IDLE -> SENT_AND_ACTIVE -> (hybrid)
WAITING_INITIAL_DELAY -> POLLING -> IDLE. A PendingResponse exists only
between a hybrid send and its final response or timeout, and ``cancel`` is
the single path that retires its tasks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from chatbridge.config import OrchestratorConfig
from chatbridge.errors import DeliveryError, TabGoneError
from chatbridge.infra.browser.base import (
    ResponseCheck,
    ResponseStabilizer,
    TabHost,
    TabMessage,
    TabMessageType,
)
from chatbridge.infra.db.events import EventRepo
from chatbridge.models.conversation import ActivationMode
from chatbridge.models.event import ConversationEvent, ConversationEventType
from chatbridge.models.participant import Participant
from chatbridge.models.timeout_profile import TimeoutSettings
from chatbridge.services.timeout_learner import TimeoutProfileLearner

logger = logging.getLogger(__name__)

ResponseHandler = Callable[[int, str, "str | None"], Awaitable[object]]
TabGoneHandler = Callable[[int, str], Awaitable[object]]

# Delay between foregrounding a tab and typing into it.
SEND_SETTLE_MS = 500


class PendingState(str, Enum):
    WAITING_INITIAL_DELAY = "waiting_initial_delay"
    POLLING = "polling"


@dataclass
class PendingResponse:
    participant_index: int
    tab_handle: str
    platform_id: str | None
    original_tab: str | None
    settings: TimeoutSettings
    sent_at: float
    request_id: str | None = None
    state: PendingState = PendingState.WAITING_INITIAL_DELAY
    delay_task: asyncio.Task | None = None
    poll_task: asyncio.Task | None = None
    poll_count: int = 0
    stabilizer: ResponseStabilizer = field(default_factory=ResponseStabilizer)

    @property
    def last_observed_length(self) -> int:
        return self.stabilizer.last_length

    def cancel(self) -> None:
        current = asyncio.current_task()
        for task in (self.delay_task, self.poll_task):
            if task is not None and task is not current and not task.done():
                task.cancel()


class TabActivationController:
    """Delivers composed messages to tabs according to the activation mode."""

    def __init__(
        self,
        host: TabHost,
        learner: TimeoutProfileLearner,
        config: OrchestratorConfig,
        event_repo: EventRepo | None = None,
    ) -> None:
        self._host = host
        self._learner = learner
        self._config = config
        self._event_repo = event_repo
        self._pending: dict[int, PendingResponse] = {}
        self._on_response: ResponseHandler | None = None
        self._on_tab_gone: TabGoneHandler | None = None

    def set_response_handler(self, handler: ResponseHandler) -> None:
        """Late-bind the controller callback for finalized hybrid responses."""
        self._on_response = handler

    def set_tab_gone_handler(self, handler: TabGoneHandler) -> None:
        """Late-bind the controller callback for tabs that vanish mid-poll."""
        self._on_tab_gone = handler

    @property
    def pending(self) -> dict[int, PendingResponse]:
        return dict(self._pending)

    # --- Cancellation ---

    def cancel(self, participant_index: int) -> bool:
        pending = self._pending.pop(participant_index, None)
        if pending is None:
            return False
        pending.cancel()
        logger.debug("Cancelled pending response for participant %d", participant_index)
        return True

    def cancel_all(self) -> None:
        for idx in list(self._pending):
            self.cancel(idx)

    # --- Tab messaging ---

    async def send_to_tab(self, tab_handle: str, message: TabMessage) -> dict:
        """Round trip to a tab, bounded by message_timeout_s."""
        try:
            reply = await asyncio.wait_for(
                self._host.send(tab_handle, message), timeout=self._config.message_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"No reply from {tab_handle} to {message.type.value}") from e
        return reply or {}

    async def notify(self, tab_handle: str, message_type: TabMessageType, **payload) -> None:
        """Best-effort notification; failures are logged only."""
        try:
            await asyncio.wait_for(
                self._host.send(tab_handle, TabMessage(message_type, payload)),
                timeout=self._config.notify_timeout_s,
            )
        except (TabGoneError, DeliveryError, asyncio.TimeoutError):
            logger.debug("Notification %s to %s failed", message_type.value, tab_handle, exc_info=True)

    async def _activate(self, tab_handle: str) -> None:
        try:
            await self._host.activate(tab_handle)
        except TabGoneError:
            raise
        except Exception:
            logger.warning("Failed to activate tab %s", tab_handle, exc_info=True)

    async def _restore(self, original_tab: str | None, target_tab: str) -> None:
        if not original_tab or original_tab == target_tab:
            return
        try:
            await self._host.activate(original_tab)
        except Exception:
            logger.warning("Failed to restore tab %s", original_tab, exc_info=True)

    async def _record_event(self, event: ConversationEvent) -> None:
        if self._event_repo is not None:
            await self._event_repo.insert(event)

    # --- Delivery ---

    async def deliver(
        self,
        participant_index: int,
        participant: Participant,
        text: str,
        mode: ActivationMode,
        request_id: str | None = None,
    ) -> dict:
        """Send *text* to a participant's tab.

        Raises TabGoneError if the tab no longer exists and DeliveryError if
        the send failed for a live tab.
        """
        tab_handle = participant.tab_handle
        if tab_handle is None:
            raise TabGoneError("", f"Participant {participant_index} has no tab")
        self.cancel(participant_index)
        if await self._host.get_tab(tab_handle) is None:
            raise TabGoneError(tab_handle)

        if mode == ActivationMode.ALWAYS:
            await self._activate(tab_handle)
            await self.send_to_tab(tab_handle, TabMessage.send_text(text, request_id))
            return {"success": True, "mode": mode.value, "pending": False}

        if mode == ActivationMode.NEVER:
            await self.send_to_tab(tab_handle, TabMessage.send_text(text, request_id))
            return {"success": True, "mode": mode.value, "pending": False}

        await self._deliver_hybrid(participant_index, participant, text, request_id)
        return {"success": True, "mode": mode.value, "pending": True}

    async def _deliver_hybrid(
        self,
        participant_index: int,
        participant: Participant,
        text: str,
        request_id: str | None,
    ) -> None:
        tab_handle = participant.tab_handle
        settings = self._learner.profile_for(participant.platform_id)
        try:
            original_tab = await self._host.active_tab()
        except Exception:
            logger.debug("Could not read active tab", exc_info=True)
            original_tab = None

        await self._activate(tab_handle)
        settle_ms = min(SEND_SETTLE_MS, settings.activation_ms)
        await asyncio.sleep(settle_ms / 1000)
        await self.send_to_tab(tab_handle, TabMessage.send_text(text, request_id, watch=False))
        remaining_ms = settings.activation_ms - settle_ms
        if remaining_ms > 0:
            await asyncio.sleep(remaining_ms / 1000)
        await self._restore(original_tab, tab_handle)

        loop = asyncio.get_running_loop()
        pending = PendingResponse(
            participant_index=participant_index,
            tab_handle=tab_handle,
            platform_id=participant.platform_id,
            original_tab=original_tab,
            settings=settings,
            sent_at=loop.time(),
            request_id=request_id,
        )
        self._pending[participant_index] = pending
        pending.delay_task = asyncio.ensure_future(self._wait_initial_delay(pending))

    async def _wait_initial_delay(self, pending: PendingResponse) -> None:
        await asyncio.sleep(pending.settings.initial_delay_ms / 1000)
        if self._pending.get(pending.participant_index) is not pending:
            return
        pending.state = PendingState.POLLING
        pending.poll_task = asyncio.ensure_future(self._poll(pending))

    async def _poll(self, pending: PendingResponse) -> None:
        interval_ms = pending.settings.check_interval_ms
        max_checks = max(1, self._config.poll_ceiling_ms // interval_ms)
        while pending.poll_count < max_checks:
            pending.poll_count += 1
            try:
                check = await self._check_once(pending)
            except TabGoneError:
                logger.info("Tab %s closed while polling", pending.tab_handle)
                if self._drop(pending) and self._on_tab_gone is not None:
                    await self._on_tab_gone(pending.participant_index, pending.tab_handle)
                return
            except DeliveryError:
                logger.warning(
                    "Poll %d failed for participant %d",
                    pending.poll_count, pending.participant_index, exc_info=True,
                )
                check = None
            if check is not None and pending.stabilizer.observe(check):
                await self._finalize(pending, check.text)
                return
            await asyncio.sleep(interval_ms / 1000)
        await self._expire(pending)

    async def _check_once(self, pending: PendingResponse) -> ResponseCheck:
        await self._activate(pending.tab_handle)
        try:
            reply = await self.send_to_tab(
                pending.tab_handle, TabMessage(TabMessageType.CHECK_RESPONSE),
            )
        finally:
            await self._restore(pending.original_tab, pending.tab_handle)
        return ResponseCheck.from_reply(reply)

    def _drop(self, pending: PendingResponse) -> bool:
        if self._pending.get(pending.participant_index) is not pending:
            return False
        del self._pending[pending.participant_index]
        pending.cancel()
        return True

    def _timeout_used_ms(self, pending: PendingResponse) -> int:
        return pending.settings.initial_delay_ms + pending.poll_count * pending.settings.check_interval_ms

    async def _finalize(self, pending: PendingResponse, text: str) -> None:
        if not self._drop(pending):
            return
        elapsed_ms = (asyncio.get_running_loop().time() - pending.sent_at) * 1000
        await self._learner.record(
            pending.platform_id,
            timeout_used_ms=self._timeout_used_ms(pending),
            observed_response_ms=elapsed_ms,
            succeeded=True,
            was_cutoff=False,
        )
        logger.info(
            "Response from participant %d after %d polls (%d chars)",
            pending.participant_index, pending.poll_count, len(text),
        )
        if self._on_response is not None:
            await self._on_response(pending.participant_index, text, pending.request_id)

    async def _expire(self, pending: PendingResponse) -> None:
        if not self._drop(pending):
            return
        timeout_used = self._timeout_used_ms(pending)
        logger.warning(
            "Gave up polling participant %d after %d checks",
            pending.participant_index, pending.poll_count,
        )
        await self._learner.record(
            pending.platform_id,
            timeout_used_ms=timeout_used,
            observed_response_ms=timeout_used,
            succeeded=False,
            was_cutoff=True,
        )
        await self._record_event(ConversationEvent(
            event_type=ConversationEventType.POLL_TIMEOUT,
            participant_index=pending.participant_index,
            platform_id=pending.platform_id,
            detail=f"No stable response after {pending.poll_count} checks",
        ))
        await self._restore(pending.original_tab, pending.tab_handle)
