from .base import Base
from .user import User
from .access_token import AccessToken
from .chat import Chat
from .message import Message
from .stream import Stream

__all__ = ["Base", "User", "AccessToken", "Chat", "Message", "Stream"]
