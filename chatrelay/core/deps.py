# chatrelay/core/deps.py
"""Process-wide services, built once in the lifespan and read from app state."""

from fastapi import Request

from chatrelay.core.chat.turn import TurnOrchestrator
from chatrelay.core.streaming import StreamBroker


def get_stream_broker(request: Request) -> StreamBroker:
    return request.app.state.stream_broker


def get_orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.orchestrator
