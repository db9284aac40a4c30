"""
Single-queue event dispatcher.

WHAT: Serializes engine events (inbound messages, timer fires, checkpoint decisions)
WHY: Handlers for one conversation must never interleave
HOW: asyncio.Queue drained by one worker task; handler errors are logged, never propagated
"""

import asyncio
from typing import Any, Awaitable, Callable

from ..utils.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[..., Awaitable[Any]]


class EventDispatcher:
    """One logical thread of control for the engine."""

    def __init__(self):
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running loop (idempotent)."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run(), name="event-dispatcher")
        logger.debug("Event dispatcher started")

    def submit(self, handler: EventHandler, *args: Any) -> None:
        """
        Enqueue an event; returns immediately.

        Must be called from the event loop thread (timer callbacks and
        coroutines both qualify).
        """
        self.start()
        self._queue.put_nowait((handler, args, None))

    async def call(self, handler: EventHandler, *args: Any) -> Any:
        """
        Enqueue an event and wait for its result.

        Exceptions raised by the handler propagate to the caller. Never await
        this from inside a dispatched event: the worker would wait on itself.
        """
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((handler, args, future))
        return await future

    async def join(self) -> None:
        """Wait until every queued event, including ones enqueued meanwhile, has run."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.debug("Event dispatcher stopped")

    async def _run(self) -> None:
        while True:
            handler, args, future = await self._queue.get()
            try:
                result = await handler(*args)
                if future is not None and not future.done():
                    future.set_result(result)
            except Exception as e:
                if future is not None and not future.done():
                    future.set_exception(e)
                    continue
                logger.exception(f"Event handler {getattr(handler, '__name__', handler)} failed")
            finally:
                self._queue.task_done()
