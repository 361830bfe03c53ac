# chatrelay/models/message.py
from sqlalchemy import Column, String, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from chatrelay.models.base import Base, now_ts

class Message(Base):
    __tablename__ = "messages"
    
    id = Column(String, primary_key=True, index=True)  # UUID as string
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False, index=True)
    role = Column(String, nullable=False)  # "user" | "assistant" | "system"
    parts = Column(JSON, nullable=False, default=list)
    attachments = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False, default=now_ts, index=True)
    
    # Relationship
    chat = relationship("Chat", back_populates="messages")
