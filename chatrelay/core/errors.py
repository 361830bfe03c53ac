"""Error taxonomy shared by every endpoint and by in-stream error events.

An error code is ``"<type>:<surface>"``. The type decides the HTTP status;
the surface decides whether the cause may be shown to the client or only
logged.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi.responses import JSONResponse

logger = structlog.get_logger("chatrelay.errors")

ERROR_TYPES = (
    "bad_request",
    "unauthorized",
    "billing_required",
    "forbidden",
    "not_found",
    "rate_limit",
    "offline",
)

SURFACES = (
    "chat",
    "auth",
    "api",
    "stream",
    "database",
    "history",
    "document",
    "suggestions",
    "activate_gateway",
)

# "response": message and cause go to the client; "log": only logged.
VISIBILITY_BY_SURFACE: Dict[str, str] = {
    "database": "log",
    "chat": "response",
    "auth": "response",
    "api": "response",
    "stream": "response",
    "history": "response",
    "document": "response",
    "suggestions": "response",
    "activate_gateway": "response",
}

STATUS_BY_TYPE: Dict[str, int] = {
    "bad_request": 400,
    "unauthorized": 401,
    "billing_required": 402,
    "forbidden": 403,
    "not_found": 404,
    "rate_limit": 429,
    "offline": 503,
}

GENERIC_MESSAGE = "Something went wrong. Please try again later."

_MESSAGES: Dict[str, str] = {
    "bad_request:api": "The request couldn't be processed. Please check your input and try again.",
    "unauthorized:auth": "You need to sign in before continuing.",
    "forbidden:auth": "Your account does not have access to this feature.",
    "rate_limit:chat": "You have exceeded your maximum number of messages for the day. Please try again later.",
    "not_found:chat": "The requested chat was not found. Please check the chat ID and try again.",
    "forbidden:chat": "This chat belongs to another user. Please check the chat ID and try again.",
    "unauthorized:chat": "You need to sign in to view this chat. Please sign in and try again.",
    "offline:chat": "We're having trouble sending your message. Please check your internet connection and try again.",
    "billing_required:chat": "Your model provider requires a valid payment method on file. Add a payment method and try again.",
    "bad_request:activate_gateway": "The model gateway requires a valid credit card on file to service requests. Add a card and try again.",
    "not_found:stream": "There is no stream to resume for this chat.",
    "not_found:document": "The requested document was not found. Please check the document ID and try again.",
    "forbidden:document": "This document belongs to another user. Please check the document ID and try again.",
    "unauthorized:document": "You need to sign in to view this document. Please sign in and try again.",
    "bad_request:document": "The request to create or update the document was invalid. Please check your input and try again.",
}


def get_message_by_error_code(code: str) -> str:
    if code.endswith(":database"):
        return "An error occurred while executing a database query."
    return _MESSAGES.get(code, GENERIC_MESSAGE)


class ChatError(Exception):
    """
    Structured application error.

    Example::

        raise ChatError("forbidden:chat")
        raise ChatError("not_found:chat", f"Chat {chat_id}")
    """

    def __init__(self, code: str, cause: Optional[str] = None) -> None:
        error_type, _, surface = code.partition(":")
        self.code = code
        self.type = error_type
        self.surface = surface
        self.cause = cause
        self.message = get_message_by_error_code(code)
        self.status_code = STATUS_BY_TYPE.get(error_type, 500)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        if VISIBILITY_BY_SURFACE.get(self.surface) == "log":
            return {"code": "", "message": GENERIC_MESSAGE}
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.cause is not None:
            body["cause"] = self.cause
        return body

    def to_response(self) -> JSONResponse:
        if VISIBILITY_BY_SURFACE.get(self.surface) == "log":
            logger.error("chat_error", code=self.code, cause=self.cause)
        return JSONResponse(self.to_dict(), status_code=self.status_code)
