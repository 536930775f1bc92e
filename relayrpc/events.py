"""
Lifecycle Signals

Small named-signal emitter used by RpcServer to report `started`,
`stopped` and `error`. Listeners may be plain functions or coroutine
functions; coroutine listeners are scheduled as tasks and not awaited.

A failing listener is logged and never breaks the emitter.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class LifecycleEvent(str, Enum):
    """Signals emitted by RpcServer."""
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"


class EventEmitter:
    """Named signals with any number of listeners each."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def _name(event: str | LifecycleEvent) -> str:
        return event.value if isinstance(event, LifecycleEvent) else event

    def on(self, event: str | LifecycleEvent, listener: Listener) -> Callable[[], None]:
        """
        Add a listener.

        Returns:
            A function that removes the listener again
        """
        if not callable(listener):
            raise TypeError("Listener must be callable")
        name = self._name(event)
        self._listeners[name].append(listener)
        return lambda: self.off(name, listener)

    def off(self, event: str | LifecycleEvent, listener: Listener) -> None:
        listeners = self._listeners.get(self._name(event))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str | LifecycleEvent) -> int:
        return len(self._listeners.get(self._name(event), ()))

    def emit(self, event: str | LifecycleEvent, *args: Any) -> int:
        """
        Call every listener for `event` with `args`.

        Returns:
            Number of listeners called
        """
        name = self._name(event)
        listeners = list(self._listeners.get(name, ()))

        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                logger.error(f"Listener for '{name}' failed: {e}", exc_info=True)

        return len(listeners)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async listener failed: {task.exception()}")
