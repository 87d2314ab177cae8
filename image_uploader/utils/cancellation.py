"""Cooperative cancellation shared across multi-stage operations."""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from image_uploader.exceptions import CancelledError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Shared signal used to abandon an in-flight operation.

    The owner calls ``cancel()``; operations check ``raise_if_cancelled()``
    between stages and wrap awaitables with ``run()`` so a pending stage is
    abandoned as soon as the token fires.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.debug(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(f"Operation cancelled: {self.reason}")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token fires first.

        Returns:
            The awaitable's result

        Raises:
            CancelledError: If the token fired before or while awaiting, even
                when the awaitable finished in the same step. The
                pending awaitable is cancelled and awaited before raising.
        """
        if self._event.is_set():
            # Close an unstarted coroutine so it does not warn about never being awaited
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())

        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        waiter.cancel()
        # A token that fired while the work finished still wins
        if task in done and not self._event.is_set():
            return task.result()

        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Abandoned operation raised after cancellation: {e}")

        self.raise_if_cancelled()
        # Unreachable: the event is set on every path that gets here
        raise CancelledError("Operation cancelled")
