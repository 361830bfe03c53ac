# chatrelay/models/access_token.py
from sqlalchemy import Column, String, Float, ForeignKey
from sqlalchemy.orm import relationship
from chatrelay.models.base import Base, now_ts

class AccessToken(Base):
    __tablename__ = "access_tokens"

    token = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(Float, nullable=False, default=now_ts)

    user = relationship("User", back_populates="tokens")
