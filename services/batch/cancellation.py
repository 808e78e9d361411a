"""Cooperative cancellation for a single batch attempt."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from services.batch.batch_errors import BatchCancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation flag shared between a batch run and its owner.

    A token is never reset; every attempt gets a fresh one.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BatchCancelledError("Batch was cancelled.")

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking early and raising on cancellation."""
        self.raise_if_cancelled()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it if the token is cancelled first."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise BatchCancelledError("Batch was cancelled.")
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work
        if work.cancelled():
            raise BatchCancelledError("Batch was cancelled.")
        return work.result()
