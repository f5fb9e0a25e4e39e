"""Tests for participant and pool agent models."""

from __future__ import annotations

import pytest

from chatbridge.models.participant import AvailabilitySnapshot, Participant, PoolAgent


class TestParticipant:
    def test_display_role_follows_slot(self):
        p = Participant(slot_order=3, tab_handle="t1")
        assert p.display_role == "Participant 3"
        assert p.is_filled

    def test_empty_slot(self):
        p = Participant(slot_order=1)
        assert not p.is_filled
        assert p.tab_handle is None

    def test_slot_must_be_positive(self):
        with pytest.raises(ValueError):
            Participant(slot_order=0)

    def test_with_slot_renames_role(self):
        p = Participant(slot_order=2, tab_handle="t1").with_slot(1)
        assert p.slot_order == 1
        assert p.display_role == "Participant 1"

    def test_from_doc(self):
        doc = Participant(
            slot_order=2, tab_handle="t9", platform_id="gemini", title="Gemini",
            availability=AvailabilitySnapshot(available=False, reason="Login required"),
        ).to_doc()
        p = Participant.from_doc(doc)
        assert p.tab_handle == "t9"
        assert p.platform_id == "gemini"
        assert p.availability.available is False


class TestAvailabilitySnapshot:
    def test_defaults_available(self):
        assert AvailabilitySnapshot.from_doc(None).available is True

    def test_accepts_camel_case_login_flag(self):
        snap = AvailabilitySnapshot.from_doc({"available": False, "requiresLogin": True})
        assert snap.requires_login is True


class TestPoolAgent:
    def test_requires_handle(self):
        with pytest.raises(ValueError):
            PoolAgent(tab_handle="", platform_id="chatgpt")

    def test_with_availability(self):
        agent = PoolAgent(tab_handle="t1", platform_id="chatgpt")
        updated = agent.with_availability(AvailabilitySnapshot(available=False))
        assert updated.availability.available is False
        assert agent.availability.available is True
