# chatrelay/models/user.py
from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
from chatrelay.models.base import Base

class User(Base):
    __tablename__ = "users"
    
    id = Column(String, primary_key=True, index=True)   # Use a UUID string
    email = Column(String, unique=True, nullable=False)
    
    # Relationships
    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")
    tokens = relationship("AccessToken", back_populates="user", cascade="all, delete-orphan")
