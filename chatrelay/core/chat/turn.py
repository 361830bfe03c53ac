"""
Turn orchestration: one user message in, one streamed assistant message out.

Validating -> Resolving -> Persisting-Inbound -> Generating -> Finalizing.

Everything up to Persisting-Inbound runs in the request and may raise a
``ChatError`` that becomes a JSON error response. From Generating on, work
runs inside the broker's producer task: the client connection can drop
without stopping generation or the final writes, and failures reach the
client as in-stream error events.
"""

import asyncio
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chatrelay.core.chat import queries
from chatrelay.core.config import CHAT_MODELS, MAX_MESSAGES_PER_DAY, SYSTEM_PROMPT
from chatrelay.core.errors import ChatError
from chatrelay.core.generation import (
    GenerationEngine,
    build_usage_snapshot,
    classify_generation_error,
    generate_title_from_message,
    placeholder_title,
    to_model_messages,
)
from chatrelay.core.streaming import StreamBroker, StreamLedger
from chatrelay.core.streaming import events
from chatrelay.core.tasks import TaskSupervisor
from chatrelay.models.user import User
from chatrelay.schemas.chat import PostRequestBody
from chatrelay.schemas.message import (
    MessagePart,
    ReasoningPart,
    TextPart,
    parse_parts,
    storable_parts,
    text_of,
)


class TurnOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker,
        broker: StreamBroker,
        engine: GenerationEngine,
        supervisor: TaskSupervisor,
        max_messages_per_day: int = MAX_MESSAGES_PER_DAY,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._session_factory = session_factory
        self._broker = broker
        self._engine = engine
        self._supervisor = supervisor
        self._max_messages_per_day = max_messages_per_day
        self._system_prompt = system_prompt
        self._logger = structlog.get_logger("chatrelay.turn")

    async def start_turn(self, user: User, body: PostRequestBody) -> AsyncIterator[str]:
        """
        Persist the user's message, start generation and return the feed of
        SSE frames for the originating response.

        Raises:
            ChatError: ``rate_limit:chat`` or ``forbidden:chat``; nothing has
                been written in either case. ``bad_request:database`` when
                storage fails; the cause is logged, never returned.
        """
        model_id = body.selected_model
        inbound_parts = body.stored_parts()
        text = text_of(parse_parts(inbound_parts))

        try:
            with self._session_factory() as db:
                sent = queries.count_user_messages_since(db, user.id, hours=24)
                if sent > self._max_messages_per_day:
                    raise ChatError("rate_limit:chat")

                chat_id = body.conversation_id or str(uuid.uuid4())
                chat = queries.get_chat_by_id(db, chat_id)
                created = chat is None
                if created:
                    queries.save_chat(
                        db,
                        chat_id=chat_id,
                        user_id=user.id,
                        title=placeholder_title(text),
                        visibility=body.visibility,
                        selected_model_id=model_id,
                    )
                elif chat.user_id != user.id:
                    raise ChatError("forbidden:chat")
                elif chat.selected_model_id != model_id:
                    queries.update_chat_selected_model(db, chat_id, model_id)

                # the user's input is durable before any generation starts
                queries.save_message(db, chat_id, "user", inbound_parts, body.attachments())

                history = queries.get_messages_by_chat_id(db, chat_id)
                model_messages = to_model_messages(self._system_prompt, history)

                stream_id = uuid.uuid4().hex
                StreamLedger(db).record(chat_id, stream_id)
        except SQLAlchemyError as exc:
            raise ChatError("bad_request:database", str(exc)) from exc

        title_task: Optional[asyncio.Task] = None
        # a file-only first message keeps the "New chat" placeholder
        if created and text.strip():
            title_task = self._supervisor.spawn(
                self._derive_title(chat_id, text), name=f"chat-title:{chat_id}"
            )

        self._logger.info("turn_started", chat_id=chat_id, stream_id=stream_id, model=model_id)
        source = self._generate(chat_id, stream_id, model_id, model_messages, title_task)
        return await self._broker.publish(stream_id, source)

    async def _generate(
        self,
        chat_id: str,
        stream_id: str,
        model_id: str,
        model_messages: List[Dict[str, Any]],
        title_task: Optional[asyncio.Task],
    ) -> AsyncIterator[str]:
        model_info = CHAT_MODELS[model_id]
        provider_model = model_info["provider_model"]
        message_id = str(uuid.uuid4())
        parts: List[MessagePart] = []
        usage: Optional[Dict[str, Any]] = None
        open_kind: Optional[str] = None
        open_id = ""
        buffer: List[str] = []

        def close_part() -> Optional[str]:
            nonlocal open_kind
            if open_kind is None:
                return None
            content = "".join(buffer)
            parts.append(TextPart(text=content) if open_kind == "text" else ReasoningPart(text=content))
            frame = events.part_end_event(open_kind, open_id)
            open_kind = None
            buffer.clear()
            return frame

        yield events.start_event(message_id)
        yield events.data_event("chatId", chat_id, transient=True)

        try:
            async for delta in self._engine.stream(
                provider_model, model_messages, reasoning=model_info.get("reasoning", False)
            ):
                if delta.kind == "usage":
                    usage = delta.usage
                    continue
                if delta.kind != open_kind:
                    end = close_part()
                    if end:
                        yield end
                    open_kind = delta.kind
                    open_id = f"{delta.kind}-{len(parts)}"
                    yield events.part_start_event(open_kind, open_id)
                buffer.append(delta.text)
                yield events.part_delta_event(open_kind, open_id, delta.text)
        except openai.OpenAIError as exc:
            code = classify_generation_error(exc)
            self._logger.error(
                "generation_failed",
                chat_id=chat_id,
                stream_id=stream_id,
                code=code,
                error=str(exc),
            )
            end = close_part()
            if end:
                yield end
            yield events.error_event(ChatError(code).message, code=code)
            await self._settle_title(title_task)
            return

        end = close_part()
        if end:
            yield end

        snapshot = self._finalize(chat_id, message_id, parts, usage, model_id, provider_model)
        title = await self._settle_title(title_task)

        if snapshot is not None:
            yield events.data_event("usage", snapshot)
        if title:
            yield events.data_event("title", title)
        yield events.finish_event()
        self._logger.info("turn_finished", chat_id=chat_id, stream_id=stream_id)

    def _finalize(
        self,
        chat_id: str,
        message_id: str,
        parts: List[MessagePart],
        usage: Optional[Dict[str, Any]],
        model_id: str,
        provider_model: str,
    ) -> Optional[Dict[str, Any]]:
        """Persist the assistant message and the Usage Snapshot; never raises."""
        stored = storable_parts(parts)
        if stored:
            try:
                with self._session_factory() as db:
                    queries.save_message(db, chat_id, "assistant", stored, message_id=message_id)
            except SQLAlchemyError as exc:
                self._logger.error("assistant_message_persist_failed", chat_id=chat_id, error=str(exc))
        else:
            self._logger.warning("empty_assistant_message", chat_id=chat_id)

        snapshot = build_usage_snapshot(usage, model_id, provider_model)
        try:
            with self._session_factory() as db:
                queries.update_chat_last_context(db, chat_id, snapshot)
        except SQLAlchemyError as exc:
            self._logger.error("usage_persist_failed", chat_id=chat_id, error=str(exc))
        return snapshot

    async def _derive_title(self, chat_id: str, text: str) -> Optional[str]:
        try:
            title = await generate_title_from_message(self._engine, text)
        except openai.OpenAIError as exc:
            self._logger.warning("title_generation_failed", chat_id=chat_id, error=str(exc))
            return None
        try:
            with self._session_factory() as db:
                queries.update_chat_title(db, chat_id, title)
        except SQLAlchemyError as exc:
            self._logger.error("title_persist_failed", chat_id=chat_id, error=str(exc))
            return None
        return title

    @staticmethod
    async def _settle_title(title_task: Optional[asyncio.Task]) -> Optional[str]:
        if title_task is None:
            return None
        try:
            return await title_task
        except Exception:
            # already logged by the supervisor; the turn goes on without a title
            return None
