"""Scheduled task abstraction.

Every timer in the client (phase tick, status refetch, results polling,
debounced refreshes, fire-and-forget prefetches) is a ``ScheduledTask``
owned by a ``TaskScheduler``. Handles are individually cancellable and a
scheduler cancels everything it owns on ``close()``, so no callback can
fire after the owning component is disposed.
"""

import asyncio
import enum
import inspect
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

Callback = Callable[[], Any | Awaitable[Any]]


class TaskState(enum.StrEnum):
    """Lifecycle state of a scheduled task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ScheduledTask:
    """Handle for a one-shot or repeating callback running on the event loop.

    Args:
        name: Identifier used in logs and scheduler lookups.
        callback: Sync or async zero-argument callable.
        delay: Seconds to wait before the first invocation.
        interval: Seconds between invocations; ``None`` for a one-shot task.
    """

    def __init__(
        self,
        name: str,
        callback: Callback,
        *,
        delay: float = 0.0,
        interval: float | None = None,
    ) -> None:
        self.name = name
        self.state = TaskState.PENDING
        self.runs = 0
        self._callback = callback
        self._delay = delay
        self._interval = interval
        self._cancelled = False
        self._task: asyncio.Task[None] = asyncio.create_task(self._run(), name=f"scheduled:{name}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Cancel the task. The callback is never invoked afterwards."""
        if self._cancelled:
            return
        self._cancelled = True
        if not self._task.done():
            self.state = TaskState.CANCELLED
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the task finishes, is cancelled, or fails."""
        await asyncio.wait([self._task])

    async def _run(self) -> None:
        try:
            if self._delay > 0:
                await asyncio.sleep(self._delay)
            while not self._cancelled:
                await self._invoke()
                if self._interval is None:
                    return
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            self.state = TaskState.CANCELLED
            raise

    async def _invoke(self) -> None:
        self.state = TaskState.RUNNING
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task {} failed", self.name)
            self.state = TaskState.FAILED if self._interval is None else TaskState.PENDING
            return
        finally:
            self.runs += 1

        self.state = TaskState.COMPLETED if self._interval is None else TaskState.PENDING


class TaskScheduler:
    """Owner of a component's timers.

    Suitable for a single cooperative event loop: tasks run in the same
    loop via ``asyncio.create_task()``.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def call_every(
        self,
        interval: float,
        callback: Callback,
        *,
        name: str | None = None,
        immediate: bool = False,
    ) -> ScheduledTask:
        """Invoke ``callback`` every ``interval`` seconds.

        Args:
            interval: Seconds between invocations.
            callback: Sync or async zero-argument callable.
            name: Optional task name (a UUID is generated otherwise).
            immediate: Invoke once right away instead of after the first interval.

        Returns:
            The owned task handle.
        """
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        delay = 0.0 if immediate else interval
        return self._register(name, callback, delay=delay, interval=interval)

    def call_later(self, delay: float, callback: Callback, *, name: str | None = None) -> ScheduledTask:
        """Invoke ``callback`` once after ``delay`` seconds.

        Args:
            delay: Seconds to wait (0 runs on the next loop iteration).
            callback: Sync or async zero-argument callable.
            name: Optional task name (a UUID is generated otherwise).

        Returns:
            The owned task handle.
        """
        if delay < 0:
            msg = f"delay must not be negative, got {delay}"
            raise ValueError(msg)
        return self._register(name, callback, delay=delay, interval=None)

    def get_state(self, name: str) -> TaskState:
        """Return the state of a task by name.

        Raises:
            KeyError: If no task with that name is owned by this scheduler.
        """
        return self._tasks[name].state

    def cancel(self, name: str) -> None:
        """Cancel a single task by name; unknown names are ignored."""
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def close(self) -> None:
        """Cancel every owned task and refuse new ones."""
        self._closed = True
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()

    def active_tasks(self) -> list[ScheduledTask]:
        """Return the owned tasks that have not finished yet."""
        return [task for task in self._tasks.values() if not task.done]

    def _register(
        self,
        name: str | None,
        callback: Callback,
        *,
        delay: float,
        interval: float | None,
    ) -> ScheduledTask:
        if self._closed:
            msg = "scheduler is closed"
            raise RuntimeError(msg)

        # Drop finished one-shot handles so debounce timers do not accumulate.
        for key in [key for key, task in self._tasks.items() if task.done]:
            del self._tasks[key]

        task_name = name or str(uuid.uuid4())
        previous = self._tasks.get(task_name)
        if previous is not None:
            previous.cancel()
        task = ScheduledTask(task_name, callback, delay=delay, interval=interval)
        self._tasks[task_name] = task
        return task
