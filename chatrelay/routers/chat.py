# chatrelay/routers/chat.py
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from chatrelay.core.auth import get_optional_user
from chatrelay.core.chat import queries
from chatrelay.core.chat.resume import resume_stream
from chatrelay.core.chat.turn import TurnOrchestrator
from chatrelay.core.config import CATCH_UP_FRESHNESS_SECONDS
from chatrelay.core.database import get_db
from chatrelay.core.deps import get_orchestrator, get_stream_broker
from chatrelay.core.errors import ChatError
from chatrelay.core.streaming import StreamBroker
from chatrelay.models.user import User
from chatrelay.schemas.chat import (
    ChatResponse,
    MessageResponse,
    PostRequestBody,
    VisibilityRequest,
)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _chat_response(chat) -> ChatResponse:
    return ChatResponse(
        id=chat.id,
        title=chat.title,
        visibility=chat.visibility,
        created_at=chat.created_at,
        selected_model_id=chat.selected_model_id,
        last_context=chat.last_context,
    )


def _require_owned_chat(db: Session, chat_id: str, user: Optional[User]):
    if user is None:
        raise ChatError("unauthorized:chat")
    chat = queries.get_chat_by_id(db, chat_id)
    if chat is None:
        raise ChatError("not_found:chat", f"Chat {chat_id}")
    if chat.user_id != user.id:
        raise ChatError("forbidden:chat")
    return chat


@router.post("")
async def post_chat(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """
    Submit one user message and stream the assistant's answer.

    The body is `{conversationId?, message, selectedModel, visibility}`.
    The response is a `text/event-stream` of JSON UI events ending with
    `data: [DONE]`. Errors found before streaming starts are JSON
    `{code, message, cause?}`.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise ChatError("bad_request:api", "Request body is not valid JSON.")
    try:
        body = PostRequestBody.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(item) for item in first["loc"])
        raise ChatError("bad_request:api", f"{location}: {first['msg']}")

    if user is None:
        raise ChatError("unauthorized:chat")

    feed = await orchestrator.start_turn(user, body)
    return StreamingResponse(feed, media_type="text/event-stream", headers=SSE_HEADERS)


@router.delete("")
def delete_chat(
    id: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Delete the chat identified by `id`, with its messages and stream records.
    """
    if not id:
        raise ChatError("bad_request:api", "Parameter id is required.")
    chat = _require_owned_chat(db, id, user)
    queries.delete_chat(db, chat)
    return {"id": id, "detail": "Chat deleted successfully."}


@router.get("/history", response_model=List[ChatResponse])
def chat_history(
    limit: int = 50,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        raise ChatError("unauthorized:chat")
    return [_chat_response(chat) for chat in queries.list_chats_for_user(db, user.id, limit=limit)]


@router.get("/{chat_id}/messages", response_model=List[MessageResponse])
def chat_messages(
    chat_id: str,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Messages of a chat in creation order. Public chats are readable by any
    signed-in user; private chats only by their owner.
    """
    if user is None:
        raise ChatError("unauthorized:chat")
    chat = queries.get_chat_by_id(db, chat_id)
    if chat is None:
        raise ChatError("not_found:chat", f"Chat {chat_id}")
    if not queries.can_read_chat(chat, user.id):
        raise ChatError("forbidden:chat")
    return [
        MessageResponse(
            id=message.id,
            chat_id=message.chat_id,
            role=message.role,
            parts=message.parts,
            attachments=message.attachments or [],
            created_at=message.created_at,
        )
        for message in queries.get_messages_by_chat_id(db, chat_id)
    ]


@router.patch("/{chat_id}/visibility", response_model=ChatResponse)
def update_visibility(
    chat_id: str,
    payload: VisibilityRequest,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    chat = _require_owned_chat(db, chat_id, user)
    queries.update_chat_visibility(db, chat_id, payload.visibility)
    db.refresh(chat)
    return _chat_response(chat)


@router.delete("/messages/{message_id}/trailing")
def delete_trailing_messages(
    message_id: str,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Delete a message and every later message of its chat (edit and resubmit).
    """
    if user is None:
        raise ChatError("unauthorized:chat")
    message = queries.get_message_by_id(db, message_id)
    if message is None:
        raise ChatError("not_found:chat", f"Message {message_id}")
    chat = _require_owned_chat(db, message.chat_id, user)
    deleted = queries.delete_messages_after(db, chat.id, message.created_at)
    return {"chat_id": chat.id, "deleted": deleted}


@router.get("/{chat_id}/stream")
async def resume_chat_stream(
    chat_id: str,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    broker: StreamBroker = Depends(get_stream_broker),
):
    """
    Re-attach to the most recent stream of a chat.

    204 when resumable streams are disabled; otherwise 200 with a full replay,
    a one-shot catch-up event, or just the terminal marker.
    """
    requested_at = time.time()
    if not broker.available:
        return Response(status_code=204)
    if user is None:
        raise ChatError("unauthorized:chat")
    chat = queries.get_chat_by_id(db, chat_id)
    if chat is None:
        raise ChatError("not_found:chat", f"Chat {chat_id}")
    if not queries.can_read_chat(chat, user.id):
        raise ChatError("forbidden:chat")

    feed = await resume_stream(
        db, broker, chat_id, requested_at, freshness_seconds=CATCH_UP_FRESHNESS_SECONDS
    )
    if feed is None:
        return Response(status_code=204)
    return StreamingResponse(feed, media_type="text/event-stream", headers=SSE_HEADERS)
