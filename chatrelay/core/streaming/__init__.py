from .broker import (
    Attachment,
    AttachStatus,
    DuplicateStreamError,
    MemoryStreamBroker,
    StreamBroker,
    UnavailableStreamBroker,
    create_stream_broker,
)
from .events import DONE_EVENT, encode_event
from .ledger import StreamLedger

__all__ = [
    "Attachment",
    "AttachStatus",
    "DuplicateStreamError",
    "MemoryStreamBroker",
    "StreamBroker",
    "UnavailableStreamBroker",
    "create_stream_broker",
    "DONE_EVENT",
    "encode_event",
    "StreamLedger",
]
