"""Cooperative cancellation for ingest runs."""
import asyncio
from typing import Optional

from statline.services.ingest.errors import RunCancelledError


class CancellationToken:
    """
    Signal shared by every suspension point of one ingest run.

    Calls already dispatched to a source are not aborted; the run stops at
    the next wait or before the next network call.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """
        Sleep unless cancelled first.

        Raises:
            RunCancelledError: If the token fires before or during the sleep
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()
