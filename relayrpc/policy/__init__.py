# Method Authorization
# Per-method auth modes (public, whitelist, custom) and the global sender whitelist
# Evaluation fails closed on unknown modes

from relayrpc.policy.engine import (
    PUBLIC,
    AuthConfig,
    AuthHandler,
    AuthMode,
    AuthorizationEvaluator,
)
from relayrpc.policy.whitelist import (
    ProviderWhitelist,
    StaticWhitelist,
    WhitelistProvider,
    WhitelistSource,
    WhitelistStore,
)

__all__ = [
    "PUBLIC",
    "AuthConfig",
    "AuthHandler",
    "AuthMode",
    "AuthorizationEvaluator",
    "ProviderWhitelist",
    "StaticWhitelist",
    "WhitelistProvider",
    "WhitelistSource",
    "WhitelistStore",
]
