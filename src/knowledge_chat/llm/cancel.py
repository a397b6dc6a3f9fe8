"""Cooperative cancellation handle for chat streams."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class StreamCancelled(Exception):
    """Raised by :meth:`CancelToken.race` when the token fires first."""


class CancelToken:
    """A caller-owned flag that aborts a stream at its next suspension point.

    ``cancel()`` may be called from any coroutine on the same event loop
    (or from a signal handler installed on it).  It is idempotent.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._waiter: asyncio.Future[bool] | None = None
        self.reason: str = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        _logger.debug("Cancel token triggered: %s", reason)
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def release(self) -> None:
        """Drop the waiter task kept between ``race()`` calls.

        Call once the stream using this token is over.  A later ``race()``
        starts a fresh waiter.
        """
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()
        self._waiter = None

    def _get_waiter(self) -> asyncio.Future[bool]:
        # One waiter serves every read of a stream.
        if self._waiter is None or self._waiter.cancelled():
            self._waiter = asyncio.ensure_future(self._event.wait())
        return self._waiter

    async def race(
        self,
        aw: Awaitable[T],
        on_discard: Callable[[T], Awaitable[None]] | None = None,
    ) -> T:
        """Await *aw* unless the token fires first.

        If the token wins, *aw* is cancelled and ``StreamCancelled`` is
        raised.  If both finish in the same loop iteration, cancellation
        wins and a result *aw* already produced is handed to *on_discard*.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise StreamCancelled(self.reason)

        work = asyncio.ensure_future(aw)
        try:
            await asyncio.wait(
                {work, self._get_waiter()}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise

        if self.cancelled:
            if not work.done():
                work.cancel()
                await asyncio.wait({work})
            if not work.cancelled() and work.exception() is None:
                if on_discard is not None:
                    await on_discard(work.result())
            raise StreamCancelled(self.reason)

        return work.result()
