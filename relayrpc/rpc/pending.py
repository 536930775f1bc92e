"""
Pending Call

Single-assignment result cell for one outbound call.

A PendingCall owns a timer and a reply subscription. Whichever settlement
path runs first (resolve, fail, timeout or cancel) wins; every later one is
a no-op. The timer and subscription are released exactly once, at
settlement.
"""

import asyncio
import logging
from typing import Any

from relayrpc.errors import RequestTimeout
from relayrpc.transport.ports import Subscription

logger = logging.getLogger(__name__)


class PendingCall:
    """
    Write-once future with a deadline.

    Must be created inside a running event loop.
    """

    def __init__(self, correlation_id: str, timeout: float, timeout_message: str | None = None):
        """
        Args:
            correlation_id: Id the reply must carry (or the sent message id)
            timeout: Seconds until the call fails with RequestTimeout
            timeout_message: Message for the RequestTimeout
        """
        self._loop = asyncio.get_running_loop()
        self.correlation_id = correlation_id
        self.timeout = timeout
        self.deadline = self._loop.time() + timeout
        self._timeout_message = timeout_message or f"Request timeout after {int(timeout * 1000)}ms"

        self._future: asyncio.Future = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        self._subscription: Subscription | None = None
        self._settled = False
        self._released = False

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def released(self) -> bool:
        return self._released

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    def attach(self, subscription: Subscription) -> None:
        """Hand the reply subscription to this call. Closed at once if already settled."""
        if self._released:
            subscription.close()
            return
        self._subscription = subscription

    def start_timer(self) -> None:
        if self._settled or self._timer is not None:
            return
        delay = max(0.0, self.deadline - self._loop.time())
        self._timer = self._loop.call_later(delay, self._expire)

    def resolve(self, value: Any) -> bool:
        """
        Settle with a result.

        Returns:
            True if this call settled the cell, False if it was already settled
        """
        if not self._claim():
            return False
        self._future.set_result(value)
        return True

    def fail(self, error: BaseException) -> bool:
        """Settle with an exception. Same return contract as resolve()."""
        if not self._claim():
            return False
        self._future.set_exception(error)
        return True

    def cancel(self) -> bool:
        """Settle by cancelling the waiter. Same return contract as resolve()."""
        if not self._claim():
            return False
        self._future.cancel()
        return True

    def _expire(self) -> None:
        self._timer = None
        if self.fail(RequestTimeout(self._timeout_message, self.timeout)):
            logger.warning(f"Call {self.correlation_id} timed out after {self.timeout}s")

    def _claim(self) -> bool:
        if self._settled:
            return False
        self._settled = True
        self._release()
        return True

    def _release(self) -> None:
        if self._released:
            return
        self._released = True

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._subscription is not None:
            self._subscription.close()

    async def wait(self) -> Any:
        """
        Wait for settlement and return the result or raise the error.

        If the waiting task is cancelled, the call is settled as cancelled.
        """
        try:
            return await self._future
        finally:
            self.cancel()
