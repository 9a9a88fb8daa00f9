"""
Reply correlation for launch and load requests.

Receivers answer LAUNCH with RECEIVER_STATUS and LOAD with MEDIA_STATUS.
NextEventCorrelator resolves a waiter with the next qualifying status,
whatever request caused it. Two outstanding waiters of the same kind on one
client are therefore both resolved by the same status; callers must not
issue concurrent launches or loads against one session.

RequestIdCorrelator only resolves a waiter when the status echoes the
waiter's requestId. Receivers do not always echo it, so it is opt-in.
"""

import asyncio
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class NextEventCorrelator:
    """Resolves every pending waiter with the next status fed to it."""

    def __init__(self) -> None:
        self._waiters: list[tuple[Optional[int], asyncio.Future]] = []

    @property
    def pending(self) -> int:
        """Number of unresolved waiters."""
        return sum(1 for _, fut in self._waiters if not fut.done())

    def expect(self, request_id: Optional[int] = None) -> asyncio.Future:
        """
        Arm a waiter. Must be called before the request is sent.

        Args:
            request_id: Request id of the outbound request

        Returns:
            Future resolved with the qualifying status message
        """
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((request_id, fut))
        return fut

    def matches(self, request_id: Optional[int], message: dict[str, Any]) -> bool:
        """Check whether message qualifies as the reply for request_id."""
        return True

    def resolve(self, message: dict[str, Any]) -> int:
        """
        Feed an inbound status.

        Returns:
            Number of waiters resolved
        """
        resolved = 0
        remaining = []
        for request_id, fut in self._waiters:
            if fut.done():
                continue
            if self.matches(request_id, message):
                fut.set_result(message)
                resolved += 1
            else:
                remaining.append((request_id, fut))
        self._waiters = remaining
        return resolved

    def discard(self, fut: asyncio.Future) -> None:
        """Forget a waiter (after timeout or cancellation)."""
        self._waiters = [(rid, f) for rid, f in self._waiters if f is not fut]


class RequestIdCorrelator(NextEventCorrelator):
    """Resolves a waiter only with a status carrying its requestId."""

    def matches(self, request_id: Optional[int], message: dict[str, Any]) -> bool:
        if request_id is None:
            return True
        return message.get("requestId") == request_id
