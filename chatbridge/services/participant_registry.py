"""Participant slots and the pool of registered-but-unassigned agent tabs."""

from __future__ import annotations

import logging

from chatbridge.errors import NotFoundError
from chatbridge.infra.browser.base import TabHost
from chatbridge.infra.db.state_store import PARTICIPANTS_KEY, POOL_KEY, StateStore
from chatbridge.models.conversation import ConversationSession
from chatbridge.models.participant import AvailabilitySnapshot, Participant, PoolAgent

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """Owns the ordered participant list (on the session) and the agent pool.

    Every mutation renumbers slots so that ``participants[i].slot_order ==
    i + 1`` and writes the list through to the store. A tab handle lives in
    at most one participant or one pool entry.
    """

    def __init__(self, store: StateStore, host: TabHost, session: ConversationSession) -> None:
        self._store = store
        self._host = host
        self._session = session
        self._pool: dict[str, PoolAgent] = {}

    @property
    def participants(self) -> list[Participant]:
        return self._session.participants

    @property
    def pool(self) -> list[PoolAgent]:
        return list(self._pool.values())

    def get_pool_agent(self, tab_handle: str) -> PoolAgent | None:
        return self._pool.get(tab_handle)

    def index_of(self, tab_handle: str) -> int | None:
        return self._session.index_of_tab(tab_handle)

    def available_agents(self) -> list[PoolAgent]:
        assigned = {p.tab_handle for p in self.participants if p.is_filled}
        return [a for a in self._pool.values() if a.tab_handle not in assigned]

    # --- Persistence ---

    async def load(self) -> None:
        raw_participants = await self._store.get(PARTICIPANTS_KEY, []) or []
        raw_pool = await self._store.get(POOL_KEY, []) or []
        self._session.participants = [
            p.with_slot(i + 1)
            for i, p in enumerate(Participant.from_doc(doc) for doc in raw_participants)
        ]
        assigned = {p.tab_handle for p in self.participants if p.is_filled}
        self._pool = {}
        for doc in raw_pool:
            agent = PoolAgent.from_doc(doc)
            if agent.tab_handle not in assigned:
                self._pool[agent.tab_handle] = agent

    async def _save_participants(self) -> None:
        self._session.participants = [
            p.with_slot(i + 1) for i, p in enumerate(self.participants)
        ]
        await self._store.set(PARTICIPANTS_KEY, [p.to_doc() for p in self.participants])

    async def _save_pool(self) -> None:
        await self._store.set(POOL_KEY, [a.to_doc() for a in self._pool.values()])

    # --- Pool ---

    async def register_to_pool(
        self, tab_handle: str, platform_id: str, title: str = "",
    ) -> PoolAgent:
        """Idempotent upsert. A tab already in a slot is left there."""
        idx = self.index_of(tab_handle)
        if idx is not None:
            p = self.participants[idx]
            return PoolAgent(
                tab_handle=tab_handle,
                platform_id=p.platform_id or platform_id,
                title=p.title,
                availability=p.availability or AvailabilitySnapshot(),
            )
        existing = self._pool.get(tab_handle)
        if existing is not None:
            agent = PoolAgent(
                tab_handle=tab_handle,
                platform_id=platform_id or existing.platform_id,
                title=title or existing.title,
                registered_at=existing.registered_at,
                availability=existing.availability,
            )
        else:
            agent = PoolAgent(tab_handle=tab_handle, platform_id=platform_id, title=title)
        self._pool[tab_handle] = agent
        await self._save_pool()
        logger.info("Registered %s (%s) to pool", tab_handle, platform_id)
        return agent

    async def remove_from_pool(self, tab_handle: str) -> PoolAgent | None:
        agent = self._pool.pop(tab_handle, None)
        if agent is not None:
            await self._save_pool()
        return agent

    # --- Slots ---

    def _check_slot(self, slot_order: int) -> int:
        if not 1 <= slot_order <= len(self.participants):
            raise NotFoundError(f"No participant slot {slot_order}")
        return slot_order - 1

    async def assign(self, tab_handle: str, slot_order: int) -> Participant:
        """Bind a pooled tab to a slot, demoting any different occupant to the pool.

        A slot past the end appends a new participant.
        """
        if slot_order < 1:
            raise ValueError("slot_order must be >= 1")
        existing_idx = self.index_of(tab_handle)
        if existing_idx is not None:
            return self.participants[existing_idx]
        agent = self._pool.get(tab_handle)
        if agent is None:
            raise NotFoundError(f"Tab {tab_handle} is not registered")

        participant = Participant(
            slot_order=slot_order,
            tab_handle=agent.tab_handle,
            platform_id=agent.platform_id,
            title=agent.title,
            availability=agent.availability,
        )
        idx = slot_order - 1
        if idx < len(self.participants):
            occupant = self.participants[idx]
            if occupant.is_filled:
                self._pool[occupant.tab_handle] = PoolAgent(
                    tab_handle=occupant.tab_handle,
                    platform_id=occupant.platform_id or "",
                    title=occupant.title,
                    availability=occupant.availability or AvailabilitySnapshot(),
                )
                logger.info("Demoted %s from slot %d to pool", occupant.tab_handle, slot_order)
            self.participants[idx] = participant
        else:
            self.participants.append(participant)

        del self._pool[tab_handle]
        await self._save_participants()
        await self._save_pool()
        return self.participants[self.index_of(tab_handle)]

    async def release(self, slot_order: int, repool: bool = True) -> Participant:
        """Remove a slot, renumber the rest and re-pool the tab if still open."""
        idx = self._check_slot(slot_order)
        removed = self.participants.pop(idx)
        await self._save_participants()
        if repool and removed.is_filled:
            tab = await self._host.get_tab(removed.tab_handle)
            if tab is not None:
                self._pool[removed.tab_handle] = PoolAgent(
                    tab_handle=removed.tab_handle,
                    platform_id=removed.platform_id or tab.platform_id or "",
                    title=tab.title or removed.title,
                    availability=removed.availability or AvailabilitySnapshot(),
                )
                await self._save_pool()
        return removed

    async def add_empty_slot(self, slot_order: int | None = None) -> Participant:
        n = len(self.participants)
        idx = n if slot_order is None else min(max(slot_order - 1, 0), n)
        self.participants.insert(idx, Participant(slot_order=idx + 1))
        await self._save_participants()
        return self.participants[idx]

    async def reorder(self, from_slot: int, to_slot: int) -> list[Participant]:
        src = self._check_slot(from_slot)
        dst = min(max(to_slot - 1, 0), len(self.participants) - 1)
        moved = self.participants.pop(src)
        self.participants.insert(dst, moved)
        await self._save_participants()
        return list(self.participants)

    # --- Availability / lookup ---

    async def update_availability(
        self, tab_handle: str, snapshot: AvailabilitySnapshot,
    ) -> bool:
        idx = self.index_of(tab_handle)
        if idx is not None:
            self.participants[idx] = self.participants[idx].with_availability(snapshot)
            await self._save_participants()
            return True
        agent = self._pool.get(tab_handle)
        if agent is not None:
            self._pool[tab_handle] = agent.with_availability(snapshot)
            await self._save_pool()
            return True
        return False

    def check_registration(self, tab_handle: str) -> dict:
        idx = self.index_of(tab_handle)
        if idx is not None:
            p = self.participants[idx]
            return {
                "registered": True,
                "in_conversation": True,
                "participant_index": idx,
                "slot_order": p.slot_order,
                "display_role": p.display_role,
            }
        if tab_handle in self._pool:
            return {"registered": True, "in_conversation": False}
        return {"registered": False, "in_conversation": False}

    async def prune_dead_tabs(self) -> list[str]:
        """Drop participants and pool agents whose tabs no longer exist."""
        pruned: list[str] = []
        kept: list[Participant] = []
        for p in self.participants:
            if p.is_filled and await self._host.get_tab(p.tab_handle) is None:
                pruned.append(p.tab_handle)
                continue
            kept.append(p)
        for tab_handle in list(self._pool):
            if await self._host.get_tab(tab_handle) is None:
                del self._pool[tab_handle]
                pruned.append(tab_handle)
        if pruned:
            self._session.participants = kept
            await self._save_participants()
            await self._save_pool()
            logger.info("Pruned %d dead tabs", len(pruned))
        return pruned
