"""Durable record of every stream id started for a chat."""

from typing import List, Optional

from sqlalchemy.orm import Session

from chatrelay.models.base import now_ts
from chatrelay.models.stream import Stream


class StreamLedger:
    """
    Append-only façade over the ``streams`` table.

    Records are never updated; they disappear only with their chat (cascade).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def record(self, chat_id: str, stream_id: str) -> Stream:
        stream = Stream(id=stream_id, chat_id=chat_id, created_at=now_ts())
        self._db.add(stream)
        self._db.commit()
        return stream

    def latest(self, chat_id: str) -> Optional[str]:
        stream = (
            self._db.query(Stream)
            .filter(Stream.chat_id == chat_id)
            .order_by(Stream.created_at.desc())
            .first()
        )
        return stream.id if stream else None

    def stream_ids(self, chat_id: str) -> List[str]:
        streams = (
            self._db.query(Stream)
            .filter(Stream.chat_id == chat_id)
            .order_by(Stream.created_at)
            .all()
        )
        return [stream.id for stream in streams]
