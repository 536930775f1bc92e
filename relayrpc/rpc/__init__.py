# RPC Layer
# Client correlation engine and server dispatch pipeline over relay direct messages

from relayrpc.rpc.pending import PendingCall
from relayrpc.rpc.emitter import ReplyEmitter
from relayrpc.rpc.processing import RequestProcessor
from relayrpc.rpc.dispatcher import DispatcherStats, EventDispatcher
from relayrpc.rpc.client import IncomingMessage, MessageReply, MessageSent, RpcClient
from relayrpc.rpc.server import RpcServer

__all__ = [
    "PendingCall",
    "ReplyEmitter",
    "RequestProcessor",
    "DispatcherStats",
    "EventDispatcher",
    "IncomingMessage",
    "MessageReply",
    "MessageSent",
    "RpcClient",
    "RpcServer",
]
