# PATH: core/abort.py
"""
Cooperative cancellation for upstream requests.

An AbortController is shared between a caller and the requests it starts.
Aborting wakes every request racing on it; the request then raises
RequestAbortedError (or NewBlockAbortError for the new-block reason).
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from core.constants import NEW_BLOCK_ABORT
from core.exceptions import NewBlockAbortError, RequestAbortedError

T = TypeVar("T")


class AbortController:
    """Abort signal with a reason."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "Request aborted") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def error(self) -> RequestAbortedError:
        if self.reason == NEW_BLOCK_ABORT:
            return NewBlockAbortError()
        return RequestAbortedError(self.reason or "Request aborted")

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise self.error()

    async def wait(self) -> None:
        await self._event.wait()


async def run_abortable(awaitable: Awaitable[T], abort: Optional[AbortController]) -> T:
    """
    Await awaitable unless abort fires first.

    Raises:
        RequestAbortedError: If the controller aborted before completion
    """
    if abort is None:
        return await awaitable

    if abort.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise abort.error()
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise abort.error()
