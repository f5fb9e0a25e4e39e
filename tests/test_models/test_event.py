"""Tests for ConversationEvent."""

from __future__ import annotations

from chatbridge.models.event import ConversationEvent, ConversationEventType


class TestConversationEvent:
    def test_to_doc_omits_missing_id(self):
        doc = ConversationEvent(event_type=ConversationEventType.STARTED).to_doc()
        assert "_id" not in doc
        assert doc["event_type"] == "started"

    def test_from_doc_stringifies_id(self):
        event = ConversationEvent.from_doc({"_id": 42, "event_type": "poll_timeout", "participant_index": 1})
        assert event.id == "42"
        assert event.event_type == ConversationEventType.POLL_TIMEOUT
        assert event.participant_index == 1
