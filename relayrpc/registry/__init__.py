# Method Registry
# Name -> handler + authorization settings for the RPC server

from relayrpc.registry.registry import MethodHandler, MethodRegistration, MethodRegistry

__all__ = [
    "MethodHandler",
    "MethodRegistration",
    "MethodRegistry",
]
