"""Cooperative cancellation for work running on behalf of a session."""

import asyncio
from typing import Optional

from fscrape.utils.exceptions import OperationCancelledError


class CancellationToken:
    """One-shot signal scoped to a single running interval of a session.

    The token never interrupts anything by itself; work checks `cancelled`
    (or calls `raise_if_cancelled`) between units and stops on its own.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            OperationCancelledError: If the token was cancelled
        """
        if self._event.is_set():
            raise OperationCancelledError(self.session_id, self.reason)

    async def wait(self) -> None:
        await self._event.wait()
