# chatrelay/schemas/chat.py
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from chatrelay.core.config import CHAT_MODELS


class InboundTextPart(BaseModel):
    type: Literal["text"]
    text: str = Field(min_length=1, max_length=2000)


class InboundFilePart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["file"]
    media_type: Literal["image/jpeg", "image/png"] = Field(alias="mediaType")
    name: str = Field(min_length=1, max_length=100)
    url: HttpUrl


InboundPart = Annotated[Union[InboundTextPart, InboundFilePart], Field(discriminator="type")]


class InboundMessage(BaseModel):
    id: str
    role: Literal["user"]
    parts: List[InboundPart] = Field(min_length=1)


class PostRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: InboundMessage
    selected_model: str = Field(alias="selectedModel")
    visibility: Literal["public", "private"]

    @field_validator("selected_model")
    @classmethod
    def _known_model(cls, value: str) -> str:
        if value not in CHAT_MODELS:
            raise ValueError(f"unknown model id: {value}")
        return value

    def stored_parts(self) -> List[Dict[str, Any]]:
        parts = []
        for part in self.message.parts:
            if isinstance(part, InboundTextPart):
                parts.append({"type": "text", "text": part.text})
            else:
                parts.append({
                    "type": "file",
                    "mediaType": part.media_type,
                    "url": str(part.url),
                    "filename": part.name,
                })
        return parts

    def attachments(self) -> List[Dict[str, Any]]:
        return [
            {"name": part.name, "url": str(part.url), "contentType": part.media_type}
            for part in self.message.parts
            if isinstance(part, InboundFilePart)
        ]


class ChatResponse(BaseModel):
    id: str
    title: str
    visibility: str
    created_at: float
    selected_model_id: Optional[str] = None
    last_context: Optional[Dict[str, Any]] = None


class MessageResponse(BaseModel):
    id: str
    chat_id: str
    role: str
    parts: List[Dict[str, Any]]
    attachments: List[Dict[str, Any]] = []
    created_at: float


class VisibilityRequest(BaseModel):
    visibility: Literal["public", "private"]


class ChatModelResponse(BaseModel):
    id: str
    name: str
    description: str
    reasoning: bool
