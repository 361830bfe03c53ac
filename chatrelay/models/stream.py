# chatrelay/models/stream.py
from sqlalchemy import Column, String, Float, ForeignKey
from sqlalchemy.orm import relationship
from chatrelay.models.base import Base, now_ts

class Stream(Base):
    """One record per generation attempt; append-only."""

    __tablename__ = "streams"

    id = Column(String, primary_key=True, index=True)  # the stream id
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False, index=True)
    created_at = Column(Float, nullable=False, default=now_ts, index=True)

    chat = relationship("Chat", back_populates="streams")
