"""Cooperative cancellation tokens.

A task owns one root :class:`CancellationToken`.  Every reasoning call,
capability invocation and discovery request runs under a disposable child
token obtained from :meth:`CancellationToken.child`, so aborting the current
step cancels only that child while cancelling the task cancels everything.
"""

import asyncio
from typing import Any, Awaitable, TypeVar

from agentloom.exceptions import TaskCancelledError

T = TypeVar("T")


class CancellationToken:
    def __init__(self, parent: 'CancellationToken | None' = None):
        self._parent = parent
        self._children: set[CancellationToken] = set()
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None):
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def cancel_children(self, reason: str | None = None):
        """Cancel the in-flight calls running under this token without cancelling it."""
        for child in list(self._children):
            child.cancel(reason)

    def child(self) -> 'CancellationToken':
        """Create a child token that is cancelled together with this token."""
        token = CancellationToken(self)
        self._children.add(token)
        if self.cancelled:
            token.cancel(self.reason)
        return token

    def dispose(self):
        """Detach from the parent once the guarded call has finished."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None

    def raise_if_cancelled(self):
        if self.cancelled:
            raise TaskCancelledError(self.reason)

    async def wait(self):
        await self._event.wait()

    async def run(self, aw: Awaitable[T]) -> T:
        """Await *aw*, abandoning it with ``TaskCancelledError`` if the token fires first."""
        self.raise_if_cancelled()
        task: asyncio.Future[Any] = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise TaskCancelledError(self.reason)

    def __enter__(self) -> 'CancellationToken':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
