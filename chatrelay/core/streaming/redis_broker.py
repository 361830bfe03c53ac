"""Redis-backed resumable streams.

Layout per stream id:

- ``chatrelay:stream:<id>:state``: ``active`` or ``done``; lives for the
  tombstone period so an expired stream stays distinguishable from an
  unknown one.
- ``chatrelay:stream:<id>:events``: a Redis stream with one entry per SSE
  frame, terminal marker included; expires after the retention window.
"""

import math
from typing import AsyncIterator, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from chatrelay.core.streaming.broker import (
    STREAM_FAILED_MESSAGE,
    AttachStatus,
    DuplicateStreamError,
    StreamBroker,
)
from chatrelay.core.streaming.events import DONE_EVENT, error_event
from chatrelay.core.tasks import TaskSupervisor

KEY_PREFIX = "chatrelay:stream"


class RedisStreamBroker(StreamBroker):
    channel_errors = (RedisError, OSError)

    def __init__(
        self,
        client: "redis.Redis",
        supervisor: TaskSupervisor,
        retention_seconds: float = 60.0,
        tombstone_seconds: float = 86400.0,
        idle_timeout_seconds: float = 60.0,
        block_ms: int = 1000,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        super().__init__(supervisor, logger=logger)
        self._client = client
        self._retention_ms = int(retention_seconds * 1000)
        self._tombstone_seconds = max(1, int(math.ceil(tombstone_seconds)))
        self._idle_timeout = idle_timeout_seconds
        self._block_ms = block_ms

    @classmethod
    def from_url(cls, url: str, supervisor: TaskSupervisor, **kwargs) -> "RedisStreamBroker":
        client = redis.from_url(url, decode_responses=True)
        return cls(client, supervisor, **kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _state_key(stream_id: str) -> str:
        return f"{KEY_PREFIX}:{stream_id}:state"

    @staticmethod
    def _events_key(stream_id: str) -> str:
        return f"{KEY_PREFIX}:{stream_id}:events"

    async def _register(self, stream_id: str) -> bool:
        created = await self._client.set(
            self._state_key(stream_id), "active", nx=True, ex=self._tombstone_seconds
        )
        if not created:
            raise DuplicateStreamError(stream_id)
        return True

    async def _append(self, stream_id: str, event: str) -> None:
        events_key = self._events_key(stream_id)
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.xadd(events_key, {"event": event})
            # bounds the lifetime of a stream whose producer died mid-way
            pipe.expire(events_key, self._tombstone_seconds)
            await pipe.execute()

    async def _finish(self, stream_id: str) -> None:
        events_key = self._events_key(stream_id)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.xadd(events_key, {"event": DONE_EVENT})
            pipe.set(self._state_key(stream_id), "done", ex=self._tombstone_seconds)
            if self._retention_ms > 0:
                pipe.pexpire(events_key, self._retention_ms)
            else:
                pipe.delete(events_key)
            await pipe.execute()

    async def _lookup(self, stream_id: str) -> AttachStatus:
        state = await self._client.get(self._state_key(stream_id))
        if state is None:
            return AttachStatus.NOT_FOUND
        if state == "active":
            return AttachStatus.LIVE
        if await self._client.exists(self._events_key(stream_id)):
            return AttachStatus.LIVE
        return AttachStatus.FALLBACK

    async def _replay(self, stream_id: str) -> AsyncIterator[str]:
        events_key = self._events_key(stream_id)
        last_id = "0-0"
        idle = 0.0
        while True:
            try:
                response = await self._client.xread(
                    {events_key: last_id}, count=100, block=self._block_ms
                )
            except self.channel_errors as exc:
                self._logger.error("stream_replay_failed", stream_id=stream_id, error=str(exc))
                yield error_event(STREAM_FAILED_MESSAGE, code="offline:stream")
                yield DONE_EVENT
                return

            if not response:
                idle += self._block_ms / 1000
                if idle >= self._idle_timeout:
                    self._logger.warning("stream_replay_idle", stream_id=stream_id, idle_seconds=idle)
                    yield error_event(STREAM_FAILED_MESSAGE, code="offline:stream")
                    yield DONE_EVENT
                    return
                continue

            idle = 0.0
            for _key, entries in response:
                for entry_id, fields in entries:
                    last_id = entry_id
                    event = fields.get("event", "")
                    yield event
                    if event == DONE_EVENT:
                        return
