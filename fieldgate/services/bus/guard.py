"""
Transport Guard

Single-owner access to the one physical bus connection. Every register
exchange from every poller goes through exclusive(); the lock covers the
wire exchange only.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from fieldgate.common.exceptions import TransportError

T = TypeVar("T")


class TransportGuard:
    """
    Serializes access to a shared bus connection.

    After close() every acquisition fails with TransportError without
    touching the connection, so no exchange can race a teardown. With a
    token, holders still queued on the lock when it is cancelled are
    turned away the same way.
    """

    def __init__(self, connection: Any, endpoint: str = "", token: Any = None):
        self._connection = connection
        self._endpoint = endpoint
        self._token = token
        self._lock = asyncio.Lock()
        self._closed = False
        self._acquisitions = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def acquisitions(self) -> int:
        return self._acquisitions

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Any]:
        """Hold the bus for one exchange; released on every exit path"""
        async with self._lock:
            if self._closed:
                raise TransportError("bus access after teardown", endpoint=self._endpoint)
            if self._token is not None and self._token.cancelled:
                raise TransportError("bus access after cancellation", endpoint=self._endpoint)
            self._acquisitions += 1
            yield self._connection

    async def with_exclusive_access(self, fn: Callable[[Any], Awaitable[T]]) -> T:
        """Run fn(connection) while holding the bus"""
        async with self.exclusive() as connection:
            return await fn(connection)

    async def close(self) -> None:
        """Refuse further access; waits for an in-flight exchange to finish"""
        async with self._lock:
            self._closed = True
