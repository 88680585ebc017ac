"""Tests for the chat data model and ordering helpers."""

from datetime import datetime, timedelta, timezone

from botchat.core.models import (
    NEW_CHAT_LABEL,
    Conversation,
    Message,
    order_conversations,
    order_messages,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _message(mid: str, minutes: int, sender: str = "user") -> Message:
    return Message(id=mid, content=f"text {mid}", sender=sender, created_at=T0 + timedelta(minutes=minutes))


class TestMessage:
    def test_parses_camel_case_payload(self):
        msg = Message.model_validate({
            "id": "m1",
            "content": "hi",
            "sender": "bot",
            "createdAt": "2024-05-01T12:00:00+00:00",
        })
        assert msg.created_at == T0
        assert msg.from_user is False

    def test_user_sender_tag(self):
        assert _message("m1", 0).from_user is True


class TestConversationPreview:
    def test_preview_uses_latest_message(self):
        chat = Conversation.model_validate({"id": "c1", "messages": [{"content": "latest"}]})
        assert chat.preview == "latest"

    def test_preview_falls_back_without_messages(self):
        chat = Conversation.model_validate({"id": "c1", "messages": []})
        assert chat.preview == NEW_CHAT_LABEL

    def test_preview_falls_back_on_empty_content(self):
        chat = Conversation.model_validate({"id": "c1", "messages": [{"content": ""}]})
        assert chat.preview == NEW_CHAT_LABEL


class TestOrdering:
    def test_messages_sorted_ascending(self):
        m1, m2, m3 = _message("m1", 1), _message("m2", 2), _message("m3", 3)
        assert order_messages([m3, m1, m2]) == [m1, m2, m3]

    def test_messages_without_timestamps_keep_delivery_order(self):
        a = Message(id="a", content="a", sender="user")
        b = Message(id="b", content="b", sender="bot")
        assert order_messages([b, a]) == [b, a]

    def test_conversations_sorted_descending(self):
        a = Conversation(id="A", created_at=T0)
        b = Conversation(id="B", created_at=T0 + timedelta(hours=1))
        assert [c.id for c in order_conversations([a, b])] == ["B", "A"]

    def test_equal_timestamps_are_stable(self):
        a = Conversation(id="A", created_at=T0)
        b = Conversation(id="B", created_at=T0)
        assert [c.id for c in order_conversations([a, b])] == ["A", "B"]
