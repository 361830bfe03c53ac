# chatrelay/schemas/message.py
"""
Typed message parts.

The upstream message format is extensible, so parsing never fails on an
unfamiliar part: anything outside the known variants becomes an
``UnknownPart`` that keeps the raw payload untouched.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class FilePart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["file"] = "file"
    media_type: str = Field(alias="mediaType")
    url: str
    filename: Optional[str] = None


class ToolPart(BaseModel):
    """A tool invocation; ``type`` is ``tool-<tool name>``."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(pattern=r"^tool-.+")
    tool_call_id: str = Field(alias="toolCallId")
    state: Optional[str] = None
    input: Any = None
    output: Any = None

    @property
    def tool_name(self) -> str:
        return self.type[len("tool-"):]


class UnknownPart(BaseModel):
    raw: Dict[str, Any]

    @property
    def type(self) -> str:
        return str(self.raw.get("type", ""))


MessagePart = Union[TextPart, ReasoningPart, FilePart, ToolPart, UnknownPart]

KNOWN_PART_TYPES = (TextPart, ReasoningPart, FilePart, ToolPart)


def parse_part(raw: Dict[str, Any]) -> MessagePart:
    part_type = raw.get("type") if isinstance(raw, dict) else None
    model = None
    if part_type == "text":
        model = TextPart
    elif part_type == "reasoning":
        model = ReasoningPart
    elif part_type == "file":
        model = FilePart
    elif isinstance(part_type, str) and part_type.startswith("tool-"):
        model = ToolPart
    if model is not None:
        try:
            return model.model_validate(raw)
        except ValidationError:
            pass
    return UnknownPart(raw=dict(raw) if isinstance(raw, dict) else {"value": raw})


def parse_parts(raw_parts: List[Dict[str, Any]]) -> List[MessagePart]:
    return [parse_part(raw) for raw in raw_parts or []]


def part_to_dict(part: MessagePart) -> Dict[str, Any]:
    if isinstance(part, UnknownPart):
        return dict(part.raw)
    return part.model_dump(by_alias=True, exclude_none=True)


def storable_parts(parts: List[MessagePart]) -> List[Dict[str, Any]]:
    """Parts that may be persisted; unrecognized variants are dropped."""
    return [part_to_dict(part) for part in parts if isinstance(part, KNOWN_PART_TYPES)]


def text_of(parts: List[MessagePart]) -> str:
    return "".join(part.text for part in parts if isinstance(part, TextPart))
