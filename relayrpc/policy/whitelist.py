"""
Sender Whitelist

The global whitelist restricts which identities may reach the server at all.
It comes from one of two sources:
- StaticWhitelist: a mutable set maintained through add/remove/clear
- ProviderWhitelist: a caller-supplied function (sync or async) returning
  the current set, or None for "no restriction"

WhitelistStore resolves which source is active. A configured provider
always wins, regardless of what the static set contains.

A None or empty whitelist means unrestricted. A provider whose entries are
all invalid yields an empty set, which denies every sender.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable

from relayrpc.crypto.keys import public_to_hex
from relayrpc.errors import InvalidKeyFormat

logger = logging.getLogger(__name__)

WhitelistProvider = Callable[[], "Iterable[Any] | None | Awaitable[Iterable[Any] | None]"]


class WhitelistSource(ABC):
    """Where the current whitelist comes from."""

    @abstractmethod
    async def snapshot(self) -> frozenset[str] | None:
        """
        Current whitelist.

        Returns:
            Set of hex identities, or None when unrestricted
        """
        ...


class StaticWhitelist(WhitelistSource):
    """In-process mutable whitelist."""

    def __init__(self, keys: Iterable[Any] | None = None):
        self._keys: set[str] = set()
        if keys:
            self.add(*keys)

    def add(self, *keys: Any) -> None:
        self._keys.update(public_to_hex(k) for k in keys)

    def remove(self, *keys: Any) -> None:
        for key in keys:
            self._keys.discard(public_to_hex(key))

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    async def snapshot(self) -> frozenset[str] | None:
        return frozenset(self._keys) if self._keys else None


class ProviderWhitelist(WhitelistSource):
    """Whitelist computed on demand by an external function."""

    def __init__(self, provider: WhitelistProvider):
        if not callable(provider):
            raise TypeError("Whitelist provider must be callable")
        self._provider = provider

    async def snapshot(self) -> frozenset[str] | None:
        result = self._provider()
        if inspect.isawaitable(result):
            result = await result

        if result is None:
            return None
        if isinstance(result, (str, bytes)):
            raise TypeError("Whitelist provider must return a collection of keys, not a single key")
        entries = list(result)
        if not entries:
            return None

        keys: set[str] = set()
        for entry in entries:
            try:
                keys.add(public_to_hex(entry))
            except InvalidKeyFormat:
                logger.warning(f"Whitelist provider returned an invalid key: {entry!r}")
        if not keys:
            logger.warning("Whitelist provider returned no valid keys, denying all senders")
        return frozenset(keys)


class WhitelistStore:
    """
    Resolves the active whitelist source and answers membership queries.

    This is the only place that knows whether a provider or the static set
    is in effect.
    """

    def __init__(
        self,
        allowed: Iterable[Any] | None = None,
        provider: WhitelistProvider | None = None,
    ):
        self._static = StaticWhitelist(allowed)
        self._provider = ProviderWhitelist(provider) if provider else None

    @property
    def static(self) -> StaticWhitelist:
        return self._static

    @property
    def has_provider(self) -> bool:
        return self._provider is not None

    def set_provider(self, provider: WhitelistProvider | None) -> None:
        """Install (or remove, with None) an external whitelist provider."""
        self._provider = ProviderWhitelist(provider) if provider else None

    def _active(self) -> WhitelistSource:
        return self._provider if self._provider is not None else self._static

    def add(self, *keys: Any) -> None:
        self._static.add(*keys)

    def remove(self, *keys: Any) -> None:
        self._static.remove(*keys)

    def clear(self) -> None:
        self._static.clear()

    async def get_whitelist(self) -> frozenset[str] | None:
        return await self._active().snapshot()

    async def is_allowed(self, sender: str) -> bool:
        """
        Check a sender against the active whitelist.

        An unrestricted (None) whitelist allows everyone. An empty set
        from a provider whose entries were all invalid allows no one.
        """
        whitelist = await self.get_whitelist()
        if whitelist is None:
            return True
        try:
            return public_to_hex(sender) in whitelist
        except InvalidKeyFormat:
            return False
