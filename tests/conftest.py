"""Shared fixtures for chatrelay tests."""

from __future__ import annotations

import asyncio
import secrets
import uuid
from typing import Any, AsyncIterator, Callable

import httpx
import openai
import pytest
from fastapi.testclient import TestClient

from chatrelay.core.database import init_db, make_engine, make_session_factory
from chatrelay.core.generation import Delta
from chatrelay.core.streaming import MemoryStreamBroker
from chatrelay.core.streaming.events import decode_event
from chatrelay.core.tasks import TaskSupervisor
from chatrelay.main import create_app
from chatrelay.models.access_token import AccessToken
from chatrelay.models.user import User


class FakeGenerationEngine:
    """Scripted stand-in for the provider-backed GenerationEngine."""

    def __init__(
        self,
        deltas: list[Delta] | None = None,
        error: BaseException | None = None,
        title: str | Callable[[str], str] = "Generated title",
        title_error: BaseException | None = None,
        gate: asyncio.Event | None = None,
        on_stream: Callable[[], None] | None = None,
    ) -> None:
        self.deltas = deltas if deltas is not None else [
            Delta("text", text="Hello"),
            Delta("text", text=", world"),
            Delta("usage", usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}),
        ]
        self.error = error
        self.title = title
        self.title_error = title_error
        self.gate = gate
        self.on_stream = on_stream
        self.stream_calls: list[dict[str, Any]] = []
        self.complete_calls: list[list[dict[str, Any]]] = []

    async def stream(self, model, messages, reasoning=False) -> AsyncIterator[Delta]:
        self.stream_calls.append({"model": model, "messages": messages, "reasoning": reasoning})
        if self.on_stream is not None:
            self.on_stream()
        for index, delta in enumerate(self.deltas):
            if self.gate is not None and index == 1:
                await self.gate.wait()
            yield delta
        if self.error is not None:
            raise self.error

    async def complete(self, model, messages) -> str:
        self.complete_calls.append(messages)
        if self.title_error is not None:
            raise self.title_error
        if callable(self.title):
            return self.title(messages[-1]["content"])
        return self.title


def billing_error() -> openai.APIStatusError:
    request = httpx.Request("POST", "https://provider.test/v1/chat/completions")
    response = httpx.Response(402, request=request)
    return openai.APIStatusError("Payment required", response=response, body=None)


def connection_error() -> openai.APIConnectionError:
    request = httpx.Request("POST", "https://provider.test/v1/chat/completions")
    return openai.APIConnectionError(request=request)


def frames_of(body: str) -> list[str]:
    """Split an SSE body back into frames, each ending with a blank line."""
    return [chunk + "\n\n" for chunk in body.split("\n\n") if chunk]


def events_of(frames: list[str]) -> list[dict[str, Any] | None]:
    return [decode_event(frame) for frame in frames]


async def collect(feed: AsyncIterator[str]) -> list[str]:
    return [frame async for frame in feed]


async def frames_from(items: list[str]) -> AsyncIterator[str]:
    for item in items:
        yield item


def post_body(
    text: str = "What is the capital of France?",
    conversation_id: str | None = None,
    model: str = "chat-model",
    visibility: str = "private",
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "message": {
            "id": str(uuid.uuid4()),
            "role": "user",
            "parts": [{"type": "text", "text": text}],
        },
        "selectedModel": model,
        "visibility": visibility,
    }
    if conversation_id is not None:
        body["conversationId"] = conversation_id
    return body


@pytest.fixture
def engine(tmp_path):
    """SQLAlchemy engine on a temp SQLite file with all tables created."""
    e = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(e)
    yield e
    e.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def supervisor():
    return TaskSupervisor()


@pytest.fixture
def memory_broker(supervisor):
    return MemoryStreamBroker(supervisor, retention_seconds=60.0)


def make_user(db, email: str = "ada@example.com") -> tuple[User, str]:
    """Create a user with an access token; returns ``(user, token)``."""
    user = User(id=str(uuid.uuid4()), email=email)
    db.add(user)
    token = secrets.token_urlsafe(16)
    db.add(AccessToken(token=token, user_id=user.id))
    db.commit()
    return user, token


@pytest.fixture
def user(db):
    return make_user(db, "ada@example.com")


@pytest.fixture
def other_user(db):
    return make_user(db, "grace@example.com")


@pytest.fixture
def make_client(session_factory):
    """Build a TestClient around a fresh app; use it as a context manager."""

    def _make(
        generation_engine: FakeGenerationEngine | None = None,
        stream_broker_url: str | None = "memory://",
        retention_seconds: float = 60.0,
        max_messages_per_day: int = 100,
    ) -> TestClient:
        app = create_app(
            session_factory=session_factory,
            generation_engine=generation_engine or FakeGenerationEngine(),
            stream_broker_url=stream_broker_url,
            retention_seconds=retention_seconds,
            max_messages_per_day=max_messages_per_day,
        )
        return TestClient(app)

    return _make


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
