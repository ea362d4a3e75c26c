from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> tuple[bool, T | None]:
        """Await ``awaitable`` unless the token is cancelled first.

        Returns ``(True, result)`` on completion and ``(False, None)`` when
        the token won; the losing work is cancelled and never awaited for a
        result.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return False, None
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work.done() and not self._cancelled:
            return True, work.result()
        work.cancel()
        return False, None
