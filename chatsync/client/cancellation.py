"""Cooperative cancellation for in-flight sends."""

import time
from typing import Optional

from chatsync.domain.errors import CancelledByUser


class CancellationToken:
    """Set once to abort a send; optionally expires after ``timeout`` seconds.

    Readers poll ``cancelled`` or call ``raise_if_cancelled`` between chunks.
    """

    def __init__(self, timeout: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "Request cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        if self._reason is None and self._deadline is not None and self._clock() >= self._deadline:
            self._reason = "Request timed out"
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason if self.cancelled else None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledByUser(self._reason)
