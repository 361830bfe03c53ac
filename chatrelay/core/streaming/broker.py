"""
Resumable stream broker.

A generation turn publishes its SSE frames under a stream id. The frames go
to the originating HTTP response and to a replayable channel, so a client
that reconnects later (another tab, a dropped connection) can attach and
receive the whole sequence from the first frame.

Three variants share one producer implementation:

- ``UnavailableStreamBroker``: no channel configured. Publishing still
  streams to the originating response; attaching always reports
  ``UNAVAILABLE``.
- ``MemoryStreamBroker``: in-process buffers, for single-process deployments
  and tests.
- ``RedisStreamBroker`` (``chatrelay.core.streaming.redis_broker``): Redis
  streams, shared by every worker process.

The broker is built once at startup by ``create_stream_broker`` and injected
into the handlers.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple, Type

import structlog

from chatrelay.core.streaming.events import DONE_EVENT, error_event
from chatrelay.core.tasks import TaskSupervisor

FallbackSource = Callable[[], AsyncIterator[str]]

STREAM_FAILED_MESSAGE = "The response stream failed before it finished. Please try again."


class AttachStatus(str, Enum):
    LIVE = "live"  # replay from the first frame, then follow the producer
    FALLBACK = "fallback"  # stream finished and its buffer expired
    NOT_FOUND = "not_found"  # id was never published here
    UNAVAILABLE = "unavailable"  # no durable channel


@dataclass
class Attachment:
    status: AttachStatus
    events: Optional[AsyncIterator[str]] = None


class DuplicateStreamError(Exception):
    """A stream id may have at most one producer."""


class StreamBroker:
    """Shared producer logic; subclasses provide the channel."""

    available = True

    # channel errors that degrade the broker instead of failing the turn
    channel_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        supervisor: TaskSupervisor,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self._supervisor = supervisor
        self._logger = logger or structlog.get_logger("chatrelay.broker")

    async def publish(self, stream_id: str, source: AsyncIterator[str]) -> AsyncIterator[str]:
        """
        Bind ``stream_id`` to ``source`` and start producing.

        The producer runs as a supervised task, so it drains ``source`` to the
        end even if nobody reads the returned feed.

        Args:
            stream_id: Fresh stream id; reusing one raises ``DuplicateStreamError``.
            source: Async iterator of encoded SSE frames, without the
                terminal marker (the broker appends it).

        Returns:
            The direct feed for the originating response.
        """
        try:
            mirrored = await self._register(stream_id)
        except self.channel_errors as exc:
            self._logger.error("stream_register_failed", stream_id=stream_id, error=str(exc))
            mirrored = False

        queue: asyncio.Queue = asyncio.Queue()
        self._supervisor.spawn(
            self._produce(stream_id, source, queue, mirrored),
            name=f"stream-producer:{stream_id}",
        )
        return self._direct_feed(queue)

    async def attach(self, stream_id: str, fallback: FallbackSource) -> Attachment:
        """
        Attach a consumer to ``stream_id``.

        ``fallback`` is only invoked when the stream is known but its buffered
        frames are gone.
        """
        try:
            status = await self._lookup(stream_id)
        except self.channel_errors as exc:
            self._logger.error("stream_lookup_failed", stream_id=stream_id, error=str(exc))
            return Attachment(AttachStatus.UNAVAILABLE)

        if status is AttachStatus.LIVE:
            return Attachment(status, self._replay(stream_id))
        if status is AttachStatus.FALLBACK:
            return Attachment(status, fallback())
        return Attachment(status)

    async def close(self) -> None:
        pass

    async def _produce(
        self,
        stream_id: str,
        source: AsyncIterator[str],
        queue: asyncio.Queue,
        mirrored: bool,
    ) -> None:
        try:
            async for event in source:
                mirrored = await self._mirror(stream_id, event, mirrored)
                queue.put_nowait(event)
        except Exception as exc:
            self._logger.error(
                "stream_producer_failed",
                stream_id=stream_id,
                error=str(exc),
                exc_info=exc,
            )
            event = error_event(STREAM_FAILED_MESSAGE, code="offline:stream")
            mirrored = await self._mirror(stream_id, event, mirrored)
            queue.put_nowait(event)
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
            if mirrored:
                try:
                    await self._finish(stream_id)
                except self.channel_errors as exc:
                    self._logger.error("stream_finish_failed", stream_id=stream_id, error=str(exc))
            queue.put_nowait(DONE_EVENT)
            queue.put_nowait(None)

    async def _mirror(self, stream_id: str, event: str, mirrored: bool) -> bool:
        if not mirrored:
            return False
        try:
            await self._append(stream_id, event)
        except self.channel_errors as exc:
            self._logger.error("stream_append_failed", stream_id=stream_id, error=str(exc))
            return False
        return True

    @staticmethod
    async def _direct_feed(queue: asyncio.Queue) -> AsyncIterator[str]:
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    # Channel hooks.

    async def _register(self, stream_id: str) -> bool:
        """Claim ``stream_id``; return whether frames should be mirrored."""
        raise NotImplementedError

    async def _append(self, stream_id: str, event: str) -> None:
        raise NotImplementedError

    async def _finish(self, stream_id: str) -> None:
        """Append the terminal marker and start the retention window."""
        raise NotImplementedError

    async def _lookup(self, stream_id: str) -> AttachStatus:
        raise NotImplementedError

    def _replay(self, stream_id: str) -> AsyncIterator[str]:
        raise NotImplementedError


class UnavailableStreamBroker(StreamBroker):
    """No durable channel: stream directly, never resume."""

    available = False

    async def _register(self, stream_id: str) -> bool:
        return False

    async def attach(self, stream_id: str, fallback: FallbackSource) -> Attachment:
        return Attachment(AttachStatus.UNAVAILABLE)


class _Buffer:
    def __init__(self) -> None:
        self.events: List[str] = []
        self.done = False
        self.finished_at: Optional[float] = None
        self.changed = asyncio.Condition()


class MemoryStreamBroker(StreamBroker):
    """
    In-process channel.

    Finished buffers are kept for ``retention_seconds``; after that only a
    tombstone remains (for ``tombstone_seconds``) so late consumers get the
    fallback instead of "not found".
    """

    def __init__(
        self,
        supervisor: TaskSupervisor,
        retention_seconds: float = 60.0,
        tombstone_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        super().__init__(supervisor, logger=logger)
        self._retention = retention_seconds
        self._tombstone_ttl = tombstone_seconds
        self._clock = clock
        self._buffers: Dict[str, _Buffer] = {}
        self._tombstones: Dict[str, float] = {}

    async def _register(self, stream_id: str) -> bool:
        self._purge()
        if stream_id in self._buffers or stream_id in self._tombstones:
            raise DuplicateStreamError(stream_id)
        self._buffers[stream_id] = _Buffer()
        return True

    async def _append(self, stream_id: str, event: str) -> None:
        buffer = self._buffers[stream_id]
        async with buffer.changed:
            buffer.events.append(event)
            buffer.changed.notify_all()

    async def _finish(self, stream_id: str) -> None:
        buffer = self._buffers[stream_id]
        async with buffer.changed:
            buffer.events.append(DONE_EVENT)
            buffer.done = True
            buffer.finished_at = self._clock()
            buffer.changed.notify_all()
        self._tombstones[stream_id] = buffer.finished_at

    async def _lookup(self, stream_id: str) -> AttachStatus:
        self._purge()
        if stream_id in self._buffers:
            return AttachStatus.LIVE
        if stream_id in self._tombstones:
            return AttachStatus.FALLBACK
        return AttachStatus.NOT_FOUND

    def _replay(self, stream_id: str) -> AsyncIterator[str]:
        # bound now, right after the lookup; a later purge must not break the replay
        return self._iterate_buffer(self._buffers[stream_id])

    @staticmethod
    async def _iterate_buffer(buffer: _Buffer) -> AsyncIterator[str]:
        index = 0
        while True:
            async with buffer.changed:
                await buffer.changed.wait_for(lambda: index < len(buffer.events) or buffer.done)
                batch = buffer.events[index:]
                done = buffer.done
            index += len(batch)
            for event in batch:
                yield event
            if done and index >= len(buffer.events):
                return

    def _purge(self) -> None:
        now = self._clock()
        for stream_id, buffer in list(self._buffers.items()):
            if buffer.done and now - buffer.finished_at >= self._retention:
                del self._buffers[stream_id]
        for stream_id, finished_at in list(self._tombstones.items()):
            if now - finished_at >= self._tombstone_ttl:
                del self._tombstones[stream_id]


def create_stream_broker(
    url: Optional[str],
    supervisor: TaskSupervisor,
    retention_seconds: float = 60.0,
    tombstone_seconds: float = 86400.0,
    idle_timeout_seconds: float = 60.0,
) -> StreamBroker:
    """Pick the broker variant for ``url``; a missing URL is not an error."""
    logger = structlog.get_logger("chatrelay.broker")
    if not url:
        logger.info("stream_broker_disabled", reason="STREAM_BROKER_URL not set")
        return UnavailableStreamBroker(supervisor)
    if url.startswith("memory://"):
        logger.info("stream_broker_ready", backend="memory")
        return MemoryStreamBroker(
            supervisor,
            retention_seconds=retention_seconds,
            tombstone_seconds=tombstone_seconds,
        )
    if url.startswith(("redis://", "rediss://", "unix://")):
        from chatrelay.core.streaming.redis_broker import RedisStreamBroker

        logger.info("stream_broker_ready", backend="redis")
        return RedisStreamBroker.from_url(
            url,
            supervisor,
            retention_seconds=retention_seconds,
            tombstone_seconds=tombstone_seconds,
            idle_timeout_seconds=idle_timeout_seconds,
        )
    logger.warning("stream_broker_disabled", reason="unsupported STREAM_BROKER_URL scheme")
    return UnavailableStreamBroker(supervisor)
