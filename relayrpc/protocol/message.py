"""
Relay Wire Messages

Signed messages travel through relays unchanged. Routing information lives
in the tag list:
- ["p", <hex pubkey>]  - recipient routing tag
- ["e", <message id>]  - back-reference to the message being answered

Only kind 4 (encrypted direct message) is used by this package, but the
models accept any kind so subscriptions can be shared with other traffic.
"""

import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

# Encrypted direct message
ENCRYPTED_DIRECT_MESSAGE = 4

RECIPIENT_TAG = "p"
REFERENCE_TAG = "e"


def now_seconds() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def find_tag(tags: list[list[str]], name: str) -> str | None:
    """Return the value of the first tag called `name`, or None."""
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None


class UnsignedMessage(BaseModel):
    """A message before identity hashing and signing."""

    model_config = ConfigDict(frozen=True)

    pubkey: str
    created_at: int = Field(default_factory=now_seconds)
    kind: int = ENCRYPTED_DIRECT_MESSAGE
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""


class SignedMessage(BaseModel):
    """
    A signed relay message.

    `id` is the SHA-256 content hash assigned by the signer; `sig` is only
    meaningful to the crypto provider that produced it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    pubkey: str
    created_at: int
    kind: int = ENCRYPTED_DIRECT_MESSAGE
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""
    sig: str = ""

    @property
    def recipient(self) -> str | None:
        return find_tag(self.tags, RECIPIENT_TAG)

    @property
    def reply_to(self) -> str | None:
        return find_tag(self.tags, REFERENCE_TAG)

    def short_id(self) -> str:
        return self.id[:8]


class MessageFilter(BaseModel):
    """
    Subscription filter.

    All populated fields must match (AND). Fields left as None match
    everything.
    """

    kinds: set[int] | None = None
    authors: set[str] | None = None
    recipients: set[str] | None = None
    references: set[str] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    def matches(self, message: SignedMessage) -> bool:
        """Check whether a message passes this filter."""
        if self.kinds is not None and message.kind not in self.kinds:
            return False

        if self.authors is not None and message.pubkey not in self.authors:
            return False

        if self.recipients is not None:
            tagged = {t[1] for t in message.tags if len(t) >= 2 and t[0] == RECIPIENT_TAG}
            if not tagged & self.recipients:
                return False

        if self.references is not None:
            tagged = {t[1] for t in message.tags if len(t) >= 2 and t[0] == REFERENCE_TAG}
            if not tagged & self.references:
                return False

        if self.since is not None and message.created_at < self.since:
            return False

        if self.until is not None and message.created_at > self.until:
            return False

        return True

    def to_wire(self) -> dict[str, Any]:
        """Render the filter in the relay REQ format."""
        wire: dict[str, Any] = {}
        if self.kinds is not None:
            wire["kinds"] = sorted(self.kinds)
        if self.authors is not None:
            wire["authors"] = sorted(self.authors)
        if self.recipients is not None:
            wire["#p"] = sorted(self.recipients)
        if self.references is not None:
            wire["#e"] = sorted(self.references)
        if self.since is not None:
            wire["since"] = self.since
        if self.until is not None:
            wire["until"] = self.until
        if self.limit is not None:
            wire["limit"] = self.limit
        return wire


# (base_filter, context) -> replacement filter, or None to keep the base
FilterBuilder = Callable[[MessageFilter, dict[str, Any]], "MessageFilter | None"]


def validate_filter_builder(builder: Any) -> FilterBuilder | None:
    """Accept None or a callable; reject anything else."""
    if builder is None:
        return None
    if not callable(builder):
        raise TypeError(
            "Filter override must be a callable accepting (base_filter, context)"
        )
    return builder


def build_filter(
    base: MessageFilter,
    builder: FilterBuilder | None,
    context: dict[str, Any],
) -> MessageFilter:
    """
    Apply an optional filter override to a base filter.

    The builder receives a copy of the base filter, so mutating it in place
    and returning None is equivalent to returning it.
    """
    if builder is None:
        return base.model_copy(deep=True)

    candidate = base.model_copy(deep=True)
    result = builder(candidate, dict(context))
    if result is None:
        return candidate
    if not isinstance(result, MessageFilter):
        raise TypeError("Filter builder must return a MessageFilter")
    return result
