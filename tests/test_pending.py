import asyncio

import pytest

from relayrpc.errors import RemoteError, RequestTimeout
from relayrpc.protocol import MessageFilter
from relayrpc.rpc.pending import PendingCall
from relayrpc.transport.ports import Subscription


class CountingSubscription(Subscription):
    def __init__(self):
        super().__init__("sub-test", MessageFilter(), lambda message: None)
        self.releases = 0

    def _on_close(self) -> None:
        self.releases += 1


async def test_first_settlement_wins():
    call = PendingCall("abc", timeout=5)

    assert call.resolve({"sum": 8})
    assert not call.fail(RemoteError("late error"))
    assert not call.resolve("late value")
    assert not call.cancel()

    assert await call.wait() == {"sum": 8}


async def test_fail_raises_from_wait():
    call = PendingCall("abc", timeout=5)
    call.fail(RemoteError("Method not found: foo"))

    with pytest.raises(RemoteError, match="Method not found: foo"):
        await call.wait()


async def test_timeout_message_and_duration():
    call = PendingCall("abc", timeout=0.1)
    subscription = CountingSubscription()
    call.attach(subscription)
    call.start_timer()

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(RequestTimeout) as exc:
        await call.wait()

    assert 0.09 <= loop.time() - started < 1
    assert str(exc.value) == "Request timeout after 100ms"
    assert exc.value.timeout == 0.1
    assert subscription.releases == 1


async def test_custom_timeout_message():
    call = PendingCall("abc", timeout=0.01, timeout_message="Reply timeout after 10ms")
    call.start_timer()

    with pytest.raises(RequestTimeout, match="Reply timeout after 10ms"):
        await call.wait()


async def test_resolve_releases_timer_and_subscription_once():
    call = PendingCall("abc", timeout=0.05)
    subscription = CountingSubscription()
    call.attach(subscription)
    call.start_timer()

    call.resolve(1)
    await asyncio.sleep(0.1)
    call.cancel()
    subscription.close()

    assert await call.wait() == 1
    assert call.released
    assert subscription.releases == 1


async def test_attach_after_settlement_closes_immediately():
    call = PendingCall("abc", timeout=5)
    call.cancel()

    subscription = CountingSubscription()
    call.attach(subscription)

    assert subscription.is_closed
    assert call.subscription is None


async def test_cancelled_waiter_settles_call():
    call = PendingCall("abc", timeout=5)
    subscription = CountingSubscription()
    call.attach(subscription)
    call.start_timer()

    waiter = asyncio.create_task(call.wait())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert call.settled
    assert subscription.is_closed
    assert not call.resolve("too late")
