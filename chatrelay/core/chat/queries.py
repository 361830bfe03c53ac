"""Chat and message data access.

Lookups return ``None`` for a missing row; callers decide whether that is
an error.
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from chatrelay.models.base import now_ts
from chatrelay.models.chat import Chat
from chatrelay.models.message import Message


def get_chat_by_id(db: Session, chat_id: str) -> Optional[Chat]:
    return db.query(Chat).filter(Chat.id == chat_id).first()


def can_read_chat(chat: Chat, user_id: Optional[str]) -> bool:
    return chat.visibility == "public" or chat.user_id == user_id


def save_chat(
    db: Session,
    chat_id: str,
    user_id: str,
    title: str,
    visibility: str,
    selected_model_id: Optional[str] = None,
) -> Chat:
    chat = Chat(
        id=chat_id,
        user_id=user_id,
        title=title,
        visibility=visibility,
        selected_model_id=selected_model_id,
        created_at=now_ts(),
    )
    db.add(chat)
    db.commit()
    return chat


def list_chats_for_user(db: Session, user_id: str, limit: int = 50) -> List[Chat]:
    return (
        db.query(Chat)
        .filter(Chat.user_id == user_id)
        .order_by(Chat.created_at.desc())
        .limit(limit)
        .all()
    )


def delete_chat(db: Session, chat: Chat) -> None:
    """Delete a chat; its messages and stream records go with it."""
    db.delete(chat)
    db.commit()


def update_chat_title(db: Session, chat_id: str, title: str) -> None:
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.title: title})
    db.commit()


def update_chat_visibility(db: Session, chat_id: str, visibility: str) -> None:
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.visibility: visibility})
    db.commit()


def update_chat_selected_model(db: Session, chat_id: str, model_id: str) -> None:
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.selected_model_id: model_id})
    db.commit()


def update_chat_last_context(db: Session, chat_id: str, context: Dict[str, Any]) -> None:
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.last_context: context})
    db.commit()


def save_message(
    db: Session,
    chat_id: str,
    role: str,
    parts: List[Dict[str, Any]],
    attachments: Optional[List[Dict[str, Any]]] = None,
    message_id: Optional[str] = None,
) -> Message:
    message = Message(
        id=message_id or str(uuid.uuid4()),
        chat_id=chat_id,
        role=role,
        parts=parts,
        attachments=attachments or [],
        created_at=now_ts(),
    )
    db.add(message)
    db.commit()
    return message


def get_message_by_id(db: Session, message_id: str) -> Optional[Message]:
    return db.query(Message).filter(Message.id == message_id).first()


def get_messages_by_chat_id(db: Session, chat_id: str) -> List[Message]:
    return (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at)
        .all()
    )


def get_latest_message(db: Session, chat_id: str) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc())
        .first()
    )


def delete_messages_after(db: Session, chat_id: str, timestamp: float) -> int:
    """Delete every message of ``chat_id`` created at or after ``timestamp``."""
    deleted = (
        db.query(Message)
        .filter(Message.chat_id == chat_id, Message.created_at >= timestamp)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def count_user_messages_since(db: Session, user_id: str, hours: float) -> int:
    cutoff = now_ts() - hours * 3600
    return (
        db.query(Message)
        .join(Chat, Chat.id == Message.chat_id)
        .filter(
            Chat.user_id == user_id,
            Message.role == "user",
            Message.created_at >= cutoff,
        )
        .count()
    )


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "role": message.role,
        "parts": message.parts,
        "attachments": message.attachments or [],
        "createdAt": message.created_at,
    }
