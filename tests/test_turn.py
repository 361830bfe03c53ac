"""Tests for TurnOrchestrator."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from chatrelay.core.chat import TurnOrchestrator, queries
from chatrelay.core.errors import ChatError
from chatrelay.core.generation import Delta
from chatrelay.core.streaming import DONE_EVENT, AttachStatus, StreamLedger
from chatrelay.schemas.chat import PostRequestBody
from tests.conftest import (
    FakeGenerationEngine,
    billing_error,
    collect,
    events_of,
    make_user,
    post_body,
)


def _orchestrator(session_factory, broker, supervisor, engine=None, max_messages_per_day=100):
    return TurnOrchestrator(
        session_factory,
        broker,
        engine or FakeGenerationEngine(),
        supervisor,
        max_messages_per_day=max_messages_per_day,
        system_prompt="You are helpful.",
    )


def _body(**kwargs):
    return PostRequestBody.model_validate(post_body(**kwargs))


class TestTurnOrchestrator:
    async def test_successful_turn_event_sequence(self, session_factory, memory_broker, supervisor, user):
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor)
        frames = await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        events = events_of(frames)

        assert [e["type"] for e in events[:-1]] == [
            "start",
            "data-chatId",
            "text-start",
            "text-delta",
            "text-delta",
            "text-end",
            "data-usage",
            "data-title",
            "finish",
        ]
        assert events[-1] is None
        assert events[1] == {"type": "data-chatId", "data": "c1", "transient": True}
        assert events[3]["id"] == events[4]["id"] == events[2]["id"]
        assert events[7]["data"] == "Generated title"

    async def test_turn_persists_messages_usage_and_title(self, session_factory, memory_broker, supervisor, user, db):
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor)
        frames = await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        start = events_of(frames)[0]

        messages = queries.get_messages_by_chat_id(db, "c1")
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].id == start["messageId"]
        assert messages[1].parts == [{"type": "text", "text": "Hello, world"}]

        chat = queries.get_chat_by_id(db, "c1")
        assert chat.title == "Generated title"
        assert chat.selected_model_id == "chat-model"
        assert chat.last_context["prompt_tokens"] == 12
        assert chat.last_context["modelId"] == "chat-model"

    async def test_reasoning_and_text_parts(self, session_factory, memory_broker, supervisor, user, db):
        engine = FakeGenerationEngine(
            deltas=[
                Delta("reasoning", text="Let me think."),
                Delta("text", text="Paris."),
            ]
        )
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        frames = await collect(
            await orchestrator.start_turn(user[0], _body(conversation_id="c1", model="chat-model-reasoning"))
        )
        types = [e["type"] for e in events_of(frames)[:-1]]
        assert types[2:8] == [
            "reasoning-start",
            "reasoning-delta",
            "reasoning-end",
            "text-start",
            "text-delta",
            "text-end",
        ]
        assert engine.stream_calls[0]["reasoning"] is True
        assistant = queries.get_latest_message(db, "c1")
        assert assistant.parts == [
            {"type": "reasoning", "text": "Let me think."},
            {"type": "text", "text": "Paris."},
        ]

    async def test_stream_recorded_before_generation(self, session_factory, memory_broker, supervisor, user):
        """The ledger and the user message exist before the engine is called."""
        seen = {}

        def on_stream():
            with session_factory() as db:
                seen["stream_id"] = StreamLedger(db).latest("c1")
                seen["roles"] = [m.role for m in queries.get_messages_by_chat_id(db, "c1")]

        engine = FakeGenerationEngine(on_stream=on_stream)
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        assert seen["stream_id"] is not None
        assert seen["roles"] == ["user"]

    async def test_provider_billing_error_in_stream(self, session_factory, memory_broker, supervisor, user, db):
        """A provider failure keeps the user message and reports a billing code."""
        engine = FakeGenerationEngine(deltas=[], error=billing_error())
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        frames = await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        events = events_of(frames)

        errors = [e for e in events if e and e["type"] == "error"]
        assert errors[0]["code"] == "billing_required:chat"
        assert "payment method" in errors[0]["errorText"]
        assert frames[-1] == DONE_EVENT
        assert [m.role for m in queries.get_messages_by_chat_id(db, "c1")] == ["user"]

    async def test_partial_output_closed_before_error(self, session_factory, memory_broker, supervisor, user):
        engine = FakeGenerationEngine(deltas=[Delta("text", text="Hal")], error=billing_error())
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        frames = await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        types = [e["type"] for e in events_of(frames)[:-1]]
        assert types[-2:] == ["text-end", "error"]

    async def test_unexpected_failure_reported_by_broker(self, session_factory, memory_broker, supervisor, user):
        engine = FakeGenerationEngine(deltas=[Delta("text", text="x")], error=RuntimeError("bug"))
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        frames = await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        events = events_of(frames)
        assert events[-2]["code"] == "offline:stream"
        assert events[-1] is None

    async def test_rate_limit(self, session_factory, memory_broker, supervisor, user, db):
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, max_messages_per_day=0)
        await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        with pytest.raises(ChatError) as info:
            await orchestrator.start_turn(user[0], _body(conversation_id="c1"))
        assert info.value.code == "rate_limit:chat"
        assert len(queries.get_messages_by_chat_id(db, "c1")) == 2

    async def test_foreign_chat_forbidden(self, session_factory, memory_broker, supervisor, user, other_user, db):
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor)
        await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        with pytest.raises(ChatError) as info:
            await orchestrator.start_turn(other_user[0], _body(conversation_id="c1"))
        assert info.value.code == "forbidden:chat"
        assert len(queries.get_messages_by_chat_id(db, "c1")) == 2

    async def test_existing_chat_keeps_title_and_updates_model(self, session_factory, memory_broker, supervisor, user, db):
        engine = FakeGenerationEngine()
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        await collect(await orchestrator.start_turn(user[0], _body(conversation_id="c1")))
        engine.title = "Another title"
        frames = await collect(
            await orchestrator.start_turn(user[0], _body(conversation_id="c1", model="chat-model-reasoning"))
        )
        assert "data-title" not in [e["type"] for e in events_of(frames)[:-1]]
        chat = queries.get_chat_by_id(db, "c1")
        assert chat.title == "Generated title"
        assert chat.selected_model_id == "chat-model-reasoning"
        # the second turn sees the whole history
        assert len(engine.stream_calls[1]["messages"]) == 4

    async def test_generation_outlives_abandoned_client(self, session_factory, memory_broker, supervisor, user, db):
        """Dropping the originating feed does not stop generation or its writes."""
        gate = asyncio.Event()
        engine = FakeGenerationEngine(gate=gate)
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        feed = await orchestrator.start_turn(user[0], _body(conversation_id="c1"))
        await feed.__anext__()
        await feed.aclose()

        gate.set()
        await supervisor.drain(timeout=1)
        assistant = queries.get_latest_message(db, "c1")
        assert assistant.role == "assistant"

        stream_id = StreamLedger(db).latest("c1")
        attachment = await memory_broker.attach(stream_id, lambda: None)
        assert attachment.status is AttachStatus.LIVE
        assert (await collect(attachment.events))[-1] == DONE_EVENT

    async def test_concurrent_new_chats_get_their_own_titles(self, session_factory, memory_broker, supervisor, db):
        """Two simultaneous first turns never swap titles."""
        ada, _ = make_user(db, "ada2@example.com")
        engine = FakeGenerationEngine(title=lambda text: f"About {text}")
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)

        async def turn(chat_id, text):
            feed = await orchestrator.start_turn(ada, _body(conversation_id=chat_id, text=text))
            return await collect(feed)

        await asyncio.gather(turn("c1", "cats"), turn("c2", "dogs"))
        assert queries.get_chat_by_id(db, "c1").title == "About cats"
        assert queries.get_chat_by_id(db, "c2").title == "About dogs"

    async def test_title_failure_does_not_fail_turn(self, session_factory, memory_broker, supervisor, user, db):
        engine = FakeGenerationEngine(title_error=billing_error())
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        frames = await collect(
            await orchestrator.start_turn(user[0], _body(conversation_id="c1", text="Tell me about Paris"))
        )
        types = [e["type"] for e in events_of(frames)[:-1]]
        assert "data-title" not in types
        assert types[-1] == "finish"
        assert queries.get_chat_by_id(db, "c1").title == "Tell me about Paris"

    async def test_storage_failure_becomes_database_error(
        self, session_factory, memory_broker, supervisor, user, monkeypatch
    ):
        def failing_record(self, chat_id, stream_id):
            raise OperationalError("INSERT INTO streams", {}, Exception("disk I/O error"))

        monkeypatch.setattr(StreamLedger, "record", failing_record)
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor)
        with pytest.raises(ChatError) as info:
            await orchestrator.start_turn(user[0], _body(conversation_id="c1"))
        assert info.value.code == "bad_request:database"
        assert supervisor.pending == 0

    async def test_file_only_first_message_skips_title(self, session_factory, memory_broker, supervisor, user, db):
        """Without any text there is nothing to title; the placeholder stays."""
        engine = FakeGenerationEngine()
        orchestrator = _orchestrator(session_factory, memory_broker, supervisor, engine)
        body = post_body(conversation_id="c1")
        body["message"]["parts"] = [
            {"type": "file", "mediaType": "image/png", "name": "cat.png", "url": "https://files.test/cat.png"}
        ]
        frames = await collect(await orchestrator.start_turn(user[0], PostRequestBody.model_validate(body)))

        assert "data-title" not in [e["type"] for e in events_of(frames)[:-1]]
        assert engine.complete_calls == []
        assert queries.get_chat_by_id(db, "c1").title == "New chat"
