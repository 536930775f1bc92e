"""
Method Registry

Maps method names to handlers and their authorization settings.

Handlers are called as handler(params, message, message_id, sender) and may
be plain functions or coroutine functions. Whatever they return becomes the
reply's `result`; whatever they raise becomes the reply's `error`.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from relayrpc.policy.engine import AuthConfig
from relayrpc.protocol.message import SignedMessage

logger = logging.getLogger(__name__)

MethodHandler = Callable[[dict[str, Any], SignedMessage, str, str], "Any | Awaitable[Any]"]


@dataclass(frozen=True)
class MethodRegistration:
    name: str
    handler: MethodHandler
    auth_config: AuthConfig

    async def invoke(self, params: dict[str, Any], message: SignedMessage) -> Any:
        """Call the handler, awaiting it if it returned an awaitable."""
        result = self.handler(params, message, message.id, message.pubkey)
        if inspect.isawaitable(result):
            result = await result
        return result


class MethodRegistry:
    """Name to MethodRegistration mapping. Names are unique."""

    def __init__(self):
        self._methods: dict[str, MethodRegistration] = {}

    def register(
        self,
        name: str,
        handler: MethodHandler,
        auth_config: AuthConfig | Mapping[str, Any] | None = None,
    ) -> MethodRegistration:
        """
        Register a method, replacing any existing one with the same name.

        Args:
            name: Method name used in requests
            handler: Callable(params, message, message_id, sender)
            auth_config: AuthConfig, or a mapping with auth_mode / whitelist /
                auth_handler keys. Defaults to public.

        Raises:
            TypeError: If handler is not callable or auth_config has the
                wrong type
            ValueError: If name is empty
        """
        if not name or not isinstance(name, str):
            raise ValueError("Method name must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for {name} must be callable")

        registration = MethodRegistration(
            name=name,
            handler=handler,
            auth_config=AuthConfig.from_value(auth_config),
        )

        if name in self._methods:
            logger.info(f"Replacing handler for method {name}")
        self._methods[name] = registration

        logger.debug(f"Registered method {name} (auth={registration.auth_config.mode})")
        return registration

    def unregister(self, name: str) -> bool:
        return self._methods.pop(name, None) is not None

    def get(self, name: str) -> MethodRegistration | None:
        return self._methods.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._methods

    def __len__(self) -> int:
        return len(self._methods)

    @property
    def names(self) -> list[str]:
        return sorted(self._methods)
