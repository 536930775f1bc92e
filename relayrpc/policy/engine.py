"""
Method Authorization

Decides, per call, whether a sender may invoke a method.

Modes:
- public: always allowed
- whitelist: the method's own whitelist if it has a non-empty one,
  otherwise the global WhitelistStore (unrestricted if empty)
- custom: a registered predicate decides; no predicate means deny

Anything else is denied. Evaluation fails closed.
"""

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping

from relayrpc.crypto.keys import public_to_hex
from relayrpc.policy.whitelist import WhitelistStore

logger = logging.getLogger(__name__)

AuthHandler = Callable[[str], "bool | Awaitable[bool]"]


class AuthMode(str, Enum):
    """Method-level authorization modes."""
    PUBLIC = "public"
    WHITELIST = "whitelist"
    CUSTOM = "custom"


@dataclass(frozen=True)
class AuthConfig:
    """
    Authorization settings attached to a registered method.

    `mode` is kept as given; unknown values are denied at evaluation time
    rather than rejected at registration.
    """
    mode: AuthMode | str = AuthMode.PUBLIC
    whitelist: frozenset[str] | None = None
    handler: AuthHandler | None = None

    @classmethod
    def create(
        cls,
        mode: AuthMode | str = AuthMode.PUBLIC,
        whitelist: Iterable[Any] | None = None,
        handler: AuthHandler | None = None,
    ) -> "AuthConfig":
        """Build a config, normalizing whitelist entries to hex."""
        keys = frozenset(public_to_hex(k) for k in whitelist) if whitelist else None
        return cls(mode=mode, whitelist=keys or None, handler=handler)

    @classmethod
    def from_value(cls, value: "AuthConfig | Mapping[str, Any] | None") -> "AuthConfig":
        """
        Accept an AuthConfig, a mapping, or None.

        Mapping keys: auth_mode (or mode), whitelist, auth_handler (or handler).
        """
        if value is None:
            return cls()
        if isinstance(value, AuthConfig):
            return value
        if isinstance(value, Mapping):
            return cls.create(
                mode=value.get("auth_mode", value.get("mode")) or AuthMode.PUBLIC,
                whitelist=value.get("whitelist"),
                handler=value.get("auth_handler", value.get("handler")),
            )
        raise TypeError(f"Unsupported auth config: {type(value).__name__}")


PUBLIC = AuthConfig()


class AuthorizationEvaluator:
    """Evaluates AuthConfig against a sender identity."""

    def __init__(self, whitelist: WhitelistStore):
        self._whitelist = whitelist

    async def is_allowed(self, method: str, sender: str, config: AuthConfig) -> bool:
        try:
            mode = AuthMode(config.mode)
        except ValueError:
            logger.warning(f"Unknown auth mode {config.mode!r} for {method}, denying")
            return False

        match mode:
            case AuthMode.PUBLIC:
                return True

            case AuthMode.WHITELIST:
                if config.whitelist:
                    return sender in config.whitelist
                return await self._whitelist.is_allowed(sender)

            case AuthMode.CUSTOM:
                if config.handler is None:
                    logger.warning(f"Method {method} uses custom auth without a handler")
                    return False
                try:
                    decision = config.handler(sender)
                    if inspect.isawaitable(decision):
                        decision = await decision
                except Exception as e:
                    logger.error(f"Auth handler for {method} failed: {e}", exc_info=True)
                    return False
                return bool(decision)

        return False
