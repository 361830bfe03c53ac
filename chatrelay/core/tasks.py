"""Detached execution for work that must outlive the HTTP request."""

import asyncio
from typing import Any, Coroutine, Optional, Set

import structlog


class TaskSupervisor:
    """
    Owns background tasks spawned by request handlers.

    - Tasks are plain ``asyncio`` tasks; a client disconnect cancels the
      request task only, never a supervised task.
    - A reference to every live task is held so it is not garbage collected
      mid-flight.
    - Failures are logged here; they never propagate to the spawner.
    - ``drain()`` at shutdown waits for in-flight work (generation and its
      persistence) before the process exits.

    Example::

        supervisor = TaskSupervisor()
        supervisor.spawn(save_usage(chat_id, usage), name="usage")
        ...
        await supervisor.drain(timeout=30)
    """

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._logger = logger or structlog.get_logger("chatrelay.tasks")

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._logger.warning("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
