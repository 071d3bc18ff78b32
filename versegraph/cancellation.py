"""Cooperative cancellation for remote graph calls.

A `CancellationToken` is created per fetch operation and passed down to every
remote read. Cooperative stores check it themselves; for stores that don't,
`CancellationToken.run()` races the call against the token so the caller is
released as soon as the token is signalled.
"""

import asyncio
import inspect
from typing import Awaitable, TypeVar

from versegraph.exceptions import OperationAbortedError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal shared by the tasks of one operation.

    Example:
        ```python
        token = CancellationToken()
        node = await token.run(store.get_node_by_id(NodeKind.VERSE, "John-3-16", token))
        ...
        token.cancel("view closed")  # outstanding run() calls raise OperationAbortedError
        ```
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation. Only the first reason is kept."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationAbortedError(self._reason or "cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token is cancelled first.

        Raises:
            OperationAbortedError: if the token fires before the awaitable
                completes. The awaitable's task is cancelled.
        """
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise OperationAbortedError(self._reason or "cancelled")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise OperationAbortedError(self._reason or "cancelled")
