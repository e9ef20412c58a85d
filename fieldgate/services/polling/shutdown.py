"""
Cancellation and Shutdown

CancellationToken is the one-shot latch shared by all pollers of an epoch.
ShutdownCoordinator sets it and waits until every poller task has exited.
It carries no policy: the health aggregator, a poller escalation or the
lifecycle manager decide when to call it.
"""

import asyncio
import time

from fieldgate.common.logging_setup import get_service_logger

logger = get_service_logger("polling.shutdown")


class CancellationToken:
    """Latch-only broadcast flag; once set it stays set"""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """
        Sleep for up to timeout seconds, waking early on cancellation.

        Returns:
            True if the token is cancelled
        """
        if timeout <= 0:
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self._event.is_set()

    async def wait_cancelled(self) -> None:
        await self._event.wait()


class ShutdownCoordinator:
    """
    Broadcasts cancellation to the pollers of one epoch and waits for
    all of them to exit.

    trigger() may be called from several places; the first reason wins
    and every caller waits for the same drain.
    """

    def __init__(self, token: CancellationToken | None = None):
        self.token = token or CancellationToken()
        self._tasks: dict[str, asyncio.Task] = {}
        self._drain_task: asyncio.Future | None = None
        self._failures: list[BaseException] = []
        self.reason: str | None = None
        self.triggered_at: float | None = None
        self.drained_at: float | None = None

    @property
    def triggered(self) -> bool:
        return self.triggered_at is not None

    @property
    def failures(self) -> list[BaseException]:
        """Exceptions raised by poller tasks"""
        return list(self._failures)

    def register(self, name: str, task: asyncio.Task) -> None:
        """Track a poller task; a task that dies cancels the epoch"""
        self._tasks[name] = task
        task.add_done_callback(lambda t, name=name: self._on_task_done(name, t))

    def _on_task_done(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._failures.append(exc)
            logger.error(f"Poller {name} failed: {exc!r}")
            self.cancel(f"poller {name} failed")

    def cancel(self, reason: str) -> None:
        """Set the latch without waiting; safe to call from a poller"""
        if self.triggered_at is not None:
            return
        self.reason = reason
        self.triggered_at = time.monotonic()
        logger.info(f"Stopping {len(self._tasks)} pollers: {reason}")
        self.token.cancel()

    async def drain(self) -> None:
        """Wait until every registered poller has exited"""
        if self._drain_task is None:
            self._drain_task = asyncio.ensure_future(self._wait_for_pollers())
        await asyncio.shield(self._drain_task)

    async def trigger(self, reason: str) -> None:
        """Cancel all pollers and return once they have all exited"""
        self.cancel(reason)
        await self.drain()

    async def _wait_for_pollers(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.wait(tasks)
        self.drained_at = time.monotonic()
        logger.debug(f"All {len(tasks)} pollers stopped")
