"""
Server-sent UI events.

Every event is serialized exactly once, here, into an SSE frame. The broker
stores and replays these frames verbatim, so the original response and any
resumed response carry the same bytes.
"""

import json
from typing import Any, Dict, Optional

DONE_EVENT = "data: [DONE]\n\n"


def encode_event(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, separators=(',', ':'), ensure_ascii=False)}\n\n"


def decode_event(frame: str) -> Optional[Dict[str, Any]]:
    """Inverse of ``encode_event``; ``None`` for the terminal marker."""
    payload = frame.strip()
    if payload.startswith("data:"):
        payload = payload[len("data:"):].strip()
    if payload == "[DONE]":
        return None
    return json.loads(payload)


def start_event(message_id: str) -> str:
    return encode_event({"type": "start", "messageId": message_id})


def finish_event() -> str:
    return encode_event({"type": "finish"})


def error_event(error_text: str, code: Optional[str] = None) -> str:
    event: Dict[str, Any] = {"type": "error", "errorText": error_text}
    if code:
        event["code"] = code
    return encode_event(event)


def data_event(name: str, data: Any, transient: bool = False) -> str:
    event: Dict[str, Any] = {"type": f"data-{name}", "data": data}
    if transient:
        event["transient"] = True
    return encode_event(event)


def part_start_event(kind: str, part_id: str) -> str:
    return encode_event({"type": f"{kind}-start", "id": part_id})


def part_delta_event(kind: str, part_id: str, delta: str) -> str:
    return encode_event({"type": f"{kind}-delta", "id": part_id, "delta": delta})


def part_end_event(kind: str, part_id: str) -> str:
    return encode_event({"type": f"{kind}-end", "id": part_id})
