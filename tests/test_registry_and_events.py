import asyncio

import pytest

from relayrpc.events import EventEmitter, LifecycleEvent
from relayrpc.policy import AuthMode
from relayrpc.protocol import SignedMessage
from relayrpc.registry import MethodRegistry


class TestMethodRegistry:
    def test_register_and_replace(self):
        registry = MethodRegistry()
        registry.register("echo", lambda params, *_: params)
        replacement = registry.register("echo", lambda params, *_: "v2", {"auth_mode": "whitelist"})

        assert len(registry) == 1
        assert "echo" in registry
        assert registry.get("echo") is replacement
        assert replacement.auth_config.mode == AuthMode.WHITELIST

    def test_validation(self):
        registry = MethodRegistry()
        with pytest.raises(ValueError):
            registry.register("", lambda *_: None)
        with pytest.raises(TypeError):
            registry.register("x", "not callable")
        with pytest.raises(TypeError):
            registry.register("x", lambda *_: None, "public")

    def test_unregister(self):
        registry = MethodRegistry()
        registry.register("b", lambda *_: None)
        registry.register("a", lambda *_: None)

        assert registry.names == ["a", "b"]
        assert registry.unregister("a")
        assert not registry.unregister("a")
        assert registry.get("a") is None

    async def test_invoke_sync_and_async(self):
        registry = MethodRegistry()
        message = SignedMessage(id="ab" * 32, pubkey="cd" * 32, created_at=1, content="")

        async def whoami(params, message, message_id, sender):
            await asyncio.sleep(0)
            return sender

        registry.register("whoami", whoami)
        registry.register("id", lambda params, message, message_id, sender: message_id)

        assert await registry.get("whoami").invoke({}, message) == "cd" * 32
        assert await registry.get("id").invoke({}, message) == "ab" * 32


class TestEventEmitter:
    def test_emit_and_unsubscribe(self):
        emitter = EventEmitter()
        calls = []
        unsubscribe = emitter.on(LifecycleEvent.ERROR, calls.append)

        assert emitter.emit("error", "first") == 1
        unsubscribe()
        assert emitter.emit(LifecycleEvent.ERROR, "second") == 0

        assert calls == ["first"]

    def test_failing_listener_does_not_stop_others(self):
        emitter = EventEmitter()
        calls = []

        def broken():
            raise RuntimeError("listener bug")

        emitter.on("started", broken)
        emitter.on("started", lambda: calls.append("ok"))

        assert emitter.emit("started") == 2
        assert calls == ["ok"]

    async def test_async_listener_is_scheduled(self):
        emitter = EventEmitter()
        done = asyncio.Event()

        async def listener():
            done.set()

        emitter.on("stopped", listener)
        emitter.emit("stopped")

        await asyncio.wait_for(done.wait(), timeout=1)

    def test_listener_must_be_callable(self):
        with pytest.raises(TypeError):
            EventEmitter().on("started", None)

    def test_off_unknown_listener_is_ignored(self):
        emitter = EventEmitter()
        emitter.off("started", print)
        assert emitter.listener_count("started") == 0
