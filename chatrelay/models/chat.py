# chatrelay/models/chat.py
from sqlalchemy import Column, String, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from chatrelay.models.base import Base, now_ts

class Chat(Base):
    __tablename__ = "chats"
    
    id = Column(String, primary_key=True, index=True)  # UUID as string
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    visibility = Column(String, nullable=False, default="private")  # "public" | "private"
    last_context = Column(JSON, nullable=True)  # Usage Snapshot of the latest turn
    selected_model_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)
    
    # Relationships
    user = relationship("User", back_populates="chats")
    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
    streams = relationship(
        "Stream",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Stream.created_at",
    )
