"""
Cancellable timers on the asyncio event loop.

Callbacks may be plain callables or coroutine functions; a returned
awaitable is run as a task on the same loop. Timers may be requested from
another thread (sync views run on a worker thread under ASGI); they are
then armed on the loop through ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a one-shot or periodic timer."""

    def __init__(self) -> None:
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def attach(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def bind(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        # raises RuntimeError when called outside a running loop and unbound
        return self._loop or asyncio.get_running_loop()

    def _on_loop(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask:
        loop = self._get_loop()
        task = ScheduledTask()
        if self._on_loop(loop):
            self._arm(loop, task, delay, callback)
        else:
            loop.call_soon_threadsafe(self._arm, loop, task, delay, callback)
        return task

    def _arm(self, loop: asyncio.AbstractEventLoop, task: ScheduledTask, delay: float, callback: Callable[[], Any]) -> None:
        if not task.cancelled:
            task.attach(loop.call_later(delay, self._run, loop, task, callback))

    def call_every(self, interval: float, callback: Callable[[], Any]) -> ScheduledTask:
        loop = self._get_loop()
        task = ScheduledTask()

        def tick() -> None:
            if task.cancelled:
                return
            task.attach(loop.call_later(interval, tick))
            self._run(loop, task, callback)

        task.attach(loop.call_later(interval, tick))
        return task

    def _run(self, loop: asyncio.AbstractEventLoop, task: ScheduledTask, callback: Callable[[], Any]) -> None:
        if task.cancelled:
            return
        try:
            result = callback()
        except Exception:
            logger.exception("scheduled callback %r failed", callback)
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result, loop=loop)
            self._tasks.add(future)
            future.add_done_callback(self._finished)

    def _finished(self, future: "asyncio.Future[Any]") -> None:
        self._tasks.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("scheduled coroutine failed", exc_info=future.exception())

    def cancel_all(self) -> None:
        for future in list(self._tasks):
            future.cancel()
