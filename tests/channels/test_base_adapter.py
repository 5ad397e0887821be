"""Tests for antcore.channels.base"""

import asyncio

import pytest

from antcore.channels.models import MessagePriority

from tests.fakes import FakeAdapter, make_message


class TestHandleIncoming:

    def test_message_event(self):
        adapter = FakeAdapter("web")
        events = []
        adapter.on_event(events.append)

        message = adapter.handle_incoming({"text": "hello", "chat_id": "c3"})

        assert message.content == "hello"
        assert message.session_key == "web:c3"
        assert [e.type for e in events] == ["message"]
        assert events[0].message is message

    def test_normalization_error_emits_error(self):
        adapter = FakeAdapter()
        events = []
        adapter.on_event(events.append)

        assert adapter.handle_incoming(12345) is None
        assert events[0].type == "error"
        assert isinstance(events[0].error, ValueError)

    def test_filtered_message(self):
        adapter = FakeAdapter()
        events = []
        adapter.on_event(events.append)
        assert adapter.handle_incoming(None) is None
        assert events == []

    def test_default_priority_applied(self):
        adapter = FakeAdapter()
        adapter.default_priority = MessagePriority.HIGH
        message = adapter.handle_incoming(make_message("hi", priority=None))
        assert message.priority == MessagePriority.HIGH

    def test_unsubscribe(self):
        adapter = FakeAdapter()
        events = []
        unsubscribe = adapter.on_event(events.append)
        unsubscribe()
        unsubscribe()
        adapter.handle_incoming({"text": "hi"})
        assert events == []

    def test_failing_handler_is_isolated(self):
        adapter = FakeAdapter()
        events = []

        def broken(event):
            raise RuntimeError("handler down")

        adapter.on_event(broken)
        adapter.on_event(events.append)
        adapter.handle_incoming({"text": "hi"})
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_async_handler_scheduled(self):
        adapter = FakeAdapter()
        seen = []

        async def handler(event):
            seen.append(event.type)

        adapter.on_event(handler)
        adapter.handle_incoming({"text": "hi"})
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert seen == ["message"]


class TestConnection:

    @pytest.mark.asyncio
    async def test_connect_events_emitted_once(self):
        adapter = FakeAdapter()
        events = []
        adapter.on_event(events.append)

        await adapter.start()
        adapter.set_connected(True)
        await adapter.stop()

        assert [e.type for e in events] == ["connected", "disconnected"]
        assert events[1].reason == "stopped"
        assert not adapter.connected


class TestHelpers:

    def test_session_key_for(self):
        adapter = FakeAdapter("telegram")
        assert adapter.session_key_for("42") == "telegram:42"
        assert adapter.session_key_for("42", "7") == "telegram:42:7"
        assert adapter.session_key_for() == "telegram"

    def test_new_message_id_unique(self):
        assert FakeAdapter.new_message_id() != FakeAdapter.new_message_id()

    def test_message_to_dict(self):
        data = make_message("hi").to_dict()
        assert data["context"]["session_key"] == "cli:c1"
        assert data["priority"] == "normal"
        assert data["sender"]["name"] == "Ada"
