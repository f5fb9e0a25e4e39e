"""Tests for ParticipantRegistry."""

from __future__ import annotations

import pytest

from chatbridge.errors import NotFoundError, PersistenceError
from chatbridge.infra.db.state_store import PARTICIPANTS_KEY, POOL_KEY
from chatbridge.models.participant import AvailabilitySnapshot
from chatbridge.services.participant_registry import ParticipantRegistry


def assert_contiguous(registry):
    for i, p in enumerate(registry.participants):
        assert p.slot_order == i + 1
        assert p.display_role == f"Participant {i + 1}"


async def pool_tabs(registry, host, *handles):
    for h in handles:
        host.add_tab(h)
        await registry.register_to_pool(h, "chatgpt", title=h.upper())


class TestPool:
    @pytest.mark.asyncio
    async def test_register_is_idempotent(self, registry, host):
        await pool_tabs(registry, host, "a")
        first = registry.get_pool_agent("a")
        again = await registry.register_to_pool("a", "chatgpt")
        assert len(registry.pool) == 1
        assert again.registered_at == first.registered_at
        assert again.title == "A"

    @pytest.mark.asyncio
    async def test_register_participant_is_noop(self, registry, host):
        await pool_tabs(registry, host, "a")
        await registry.assign("a", 1)
        view = await registry.register_to_pool("a", "gemini")
        assert view.tab_handle == "a"
        assert registry.pool == []
        assert registry.participants[0].platform_id == "chatgpt"

    @pytest.mark.asyncio
    async def test_remove_from_pool(self, registry, host, store):
        await pool_tabs(registry, host, "a")
        assert (await registry.remove_from_pool("a")).tab_handle == "a"
        assert await registry.remove_from_pool("a") is None
        assert store.data[POOL_KEY] == []

    @pytest.mark.asyncio
    async def test_available_agents_excludes_assigned(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        assert [a.tab_handle for a in registry.available_agents()] == ["b"]


class TestAssign:
    @pytest.mark.asyncio
    async def test_moves_tab_from_pool_to_slot(self, registry, host, store):
        await pool_tabs(registry, host, "a")
        p = await registry.assign("a", 1)
        assert p.tab_handle == "a"
        assert p.title == "A"
        assert registry.get_pool_agent("a") is None
        assert store.data[PARTICIPANTS_KEY][0]["tab_handle"] == "a"

    @pytest.mark.asyncio
    async def test_unknown_tab(self, registry):
        with pytest.raises(NotFoundError):
            await registry.assign("ghost", 1)

    @pytest.mark.asyncio
    async def test_past_end_appends(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        p = await registry.assign("b", 7)
        assert p.slot_order == 2
        assert_contiguous(registry)

    @pytest.mark.asyncio
    async def test_fills_empty_slot(self, registry, host):
        await registry.add_empty_slot()
        await registry.add_empty_slot()
        await pool_tabs(registry, host, "a")
        await registry.assign("a", 2)
        assert [p.tab_handle for p in registry.participants] == [None, "a"]

    @pytest.mark.asyncio
    async def test_demotes_occupant_to_pool(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        await registry.assign("b", 1)
        assert [p.tab_handle for p in registry.participants] == ["b"]
        assert registry.get_pool_agent("a") is not None
        assert registry.get_pool_agent("b") is None

    @pytest.mark.asyncio
    async def test_already_assigned_returns_existing(self, registry, host):
        await pool_tabs(registry, host, "a")
        await registry.assign("a", 1)
        p = await registry.assign("a", 3)
        assert p.slot_order == 1
        assert len(registry.participants) == 1

    @pytest.mark.asyncio
    async def test_tab_never_in_both_pool_and_slot(self, registry, host):
        await pool_tabs(registry, host, "a", "b", "c")
        await registry.assign("a", 1)
        await registry.assign("b", 2)
        await registry.assign("c", 1)
        await registry.release(2)
        slotted = {p.tab_handle for p in registry.participants if p.is_filled}
        pooled = {a.tab_handle for a in registry.pool}
        assert not slotted & pooled
        assert slotted | pooled == {"a", "b", "c"}


class TestRelease:
    @pytest.mark.asyncio
    async def test_renumbers_and_repools(self, registry, host):
        await pool_tabs(registry, host, "a", "b", "c")
        for i, h in enumerate(("a", "b", "c")):
            await registry.assign(h, i + 1)
        removed = await registry.release(1)
        assert removed.tab_handle == "a"
        assert [p.tab_handle for p in registry.participants] == ["b", "c"]
        assert_contiguous(registry)
        assert registry.get_pool_agent("a") is not None

    @pytest.mark.asyncio
    async def test_closed_tab_not_repooled(self, registry, host):
        await pool_tabs(registry, host, "a")
        await registry.assign("a", 1)
        del host.tabs["a"]
        await registry.release(1)
        assert registry.pool == []

    @pytest.mark.asyncio
    async def test_repool_can_be_skipped(self, registry, host):
        await pool_tabs(registry, host, "a")
        await registry.assign("a", 1)
        await registry.release(1, repool=False)
        assert registry.pool == []

    @pytest.mark.asyncio
    async def test_unknown_slot(self, registry):
        with pytest.raises(NotFoundError):
            await registry.release(1)


class TestSlots:
    @pytest.mark.asyncio
    async def test_add_empty_slot_inserts_and_renumbers(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        await registry.assign("b", 2)
        p = await registry.add_empty_slot(2)
        assert p.slot_order == 2
        assert not p.is_filled
        assert [x.tab_handle for x in registry.participants] == ["a", None, "b"]
        assert_contiguous(registry)

    @pytest.mark.asyncio
    async def test_reorder(self, registry, host):
        await pool_tabs(registry, host, "a", "b", "c")
        for i, h in enumerate(("a", "b", "c")):
            await registry.assign(h, i + 1)
        await registry.reorder(3, 1)
        assert [p.tab_handle for p in registry.participants] == ["c", "a", "b"]
        assert_contiguous(registry)

    @pytest.mark.asyncio
    async def test_slot_invariant_after_mixed_operations(self, registry, host):
        await pool_tabs(registry, host, "a", "b", "c", "d")
        await registry.assign("a", 1)
        await registry.add_empty_slot()
        await registry.assign("b", 5)
        await registry.add_empty_slot(1)
        await registry.assign("c", 2)
        await registry.release(3)
        await registry.assign("d", 1)
        await registry.reorder(1, 3)
        assert_contiguous(registry)

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, registry, store):
        store.fail_keys.add(PARTICIPANTS_KEY)
        with pytest.raises(PersistenceError):
            await registry.add_empty_slot()


class TestLookups:
    @pytest.mark.asyncio
    async def test_update_availability(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        down = AvailabilitySnapshot(available=False, reason="Login required", requires_login=True)
        assert await registry.update_availability("a", down)
        assert await registry.update_availability("b", down)
        assert not await registry.update_availability("zzz", down)
        assert registry.participants[0].availability.requires_login
        assert registry.get_pool_agent("b").availability.available is False

    @pytest.mark.asyncio
    async def test_check_registration(self, registry, host):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        assert registry.check_registration("a")["slot_order"] == 1
        assert registry.check_registration("b") == {"registered": True, "in_conversation": False}
        assert registry.check_registration("c")["registered"] is False

    @pytest.mark.asyncio
    async def test_prune_dead_tabs(self, registry, host):
        await pool_tabs(registry, host, "a", "b", "c")
        await registry.assign("a", 1)
        await registry.assign("b", 2)
        del host.tabs["a"]
        del host.tabs["c"]
        pruned = await registry.prune_dead_tabs()
        assert set(pruned) == {"a", "c"}
        assert [p.tab_handle for p in registry.participants] == ["b"]
        assert registry.pool == []
        assert_contiguous(registry)

    @pytest.mark.asyncio
    async def test_load_restores_state(self, registry, host, store, session):
        await pool_tabs(registry, host, "a", "b")
        await registry.assign("a", 1)
        await registry.add_empty_slot()
        session.participants = []
        fresh = ParticipantRegistry(store, host, session)
        await fresh.load()
        assert [p.tab_handle for p in fresh.participants] == ["a", None]
        assert [a.tab_handle for a in fresh.pool] == ["b"]
