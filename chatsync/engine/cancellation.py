"""Cooperative cancellation token for in-flight turns.

Cancelling sets a flag and wakes anything awaiting through the token. It
never force-kills work the token does not own: a remote write already
issued keeps running to completion.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import TurnCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """A one-shot abort signal shared between the coordinator and a provider."""

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
        """Signal cancellation. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled(self._reason or "cancelled")

    async def guard(
        self,
        awaitable: Awaitable[T],
        *,
        timeout: float | None = None,
        abort_on_cancel: bool = True,
    ) -> T:
        """Await *awaitable* unless the token fires first.

        On cancellation raises TurnCancelled. With ``abort_on_cancel`` the
        wrapped task is cancelled too; otherwise it keeps running detached.
        A positive *timeout* raises asyncio.TimeoutError after aborting.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout if timeout and timeout > 0 else None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            # A settled result wins over a cancel that landed alongside it.
            return task.result()
        if self._event.is_set():
            if abort_on_cancel:
                task.cancel()
            raise TurnCancelled(self._reason or "cancelled")
        if task not in done:
            task.cancel()
            raise asyncio.TimeoutError()
        return task.result()
