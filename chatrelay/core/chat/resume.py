"""Re-attaching a client to the latest stream of a chat."""

from typing import AsyncIterator, List, Optional

import structlog
from sqlalchemy.orm import Session

from chatrelay.core.chat import queries
from chatrelay.core.config import CATCH_UP_FRESHNESS_SECONDS
from chatrelay.core.streaming import AttachStatus, StreamBroker, StreamLedger
from chatrelay.core.streaming.events import DONE_EVENT, data_event

logger = structlog.get_logger("chatrelay.resume")


async def iterate_frames(frames: List[str]) -> AsyncIterator[str]:
    for frame in frames:
        yield frame


def catch_up_frames(
    db: Session,
    chat_id: str,
    requested_at: float,
    freshness_seconds: float = CATCH_UP_FRESHNESS_SECONDS,
) -> List[str]:
    """
    Frames for a client that missed a stream whose buffer is gone.

    Only a fresh assistant message is worth delivering: anything else means
    the client already has (or never needed) the final state.
    """
    message = queries.get_latest_message(db, chat_id)
    if message is None or message.role != "assistant":
        return [DONE_EVENT]
    if requested_at - message.created_at > freshness_seconds:
        return [DONE_EVENT]
    return [
        data_event("appendMessage", queries.message_to_dict(message), transient=True),
        DONE_EVENT,
    ]


async def resume_stream(
    db: Session,
    broker: StreamBroker,
    chat_id: str,
    requested_at: float,
    freshness_seconds: float = CATCH_UP_FRESHNESS_SECONDS,
) -> Optional[AsyncIterator[str]]:
    """
    Frames to send to a resuming client, or ``None`` when the broker cannot
    resume anything at all.

    Read access to the chat is checked by the caller.
    """
    stream_id = StreamLedger(db).latest(chat_id)
    if stream_id is None:
        return iterate_frames([DONE_EVENT])

    def fallback() -> AsyncIterator[str]:
        # queried now, while the request's session is open
        return iterate_frames(catch_up_frames(db, chat_id, requested_at, freshness_seconds))

    attachment = await broker.attach(stream_id, fallback)
    logger.info("stream_resume", chat_id=chat_id, stream_id=stream_id, status=attachment.status.value)

    if attachment.status is AttachStatus.UNAVAILABLE:
        return None
    if attachment.status is AttachStatus.NOT_FOUND:
        # the ledger knows this id but the channel never saw it or forgot it
        return fallback()
    return attachment.events
