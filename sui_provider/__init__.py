"""Sui JSON-RPC provider with websocket event subscriptions."""
from .config import AppConfig, ProviderConfig, ReconnectConfig, load_config
from .errors import (
    BatchError,
    IllegalStateError,
    ProtocolError,
    ProviderError,
    RpcResponseError,
    RpcTimeoutError,
    TransportError,
)
from .models import Endpoint, RpcRequest, SubscriptionEvent, get_websocket_url
from .provider import JsonRpcProvider
from .rpc.state import ConnectionState, ReconnectPolicy

__all__ = [
    "AppConfig",
    "BatchError",
    "ConnectionState",
    "Endpoint",
    "IllegalStateError",
    "JsonRpcProvider",
    "ProtocolError",
    "ProviderConfig",
    "ProviderError",
    "ReconnectConfig",
    "ReconnectPolicy",
    "RpcRequest",
    "RpcResponseError",
    "RpcTimeoutError",
    "SubscriptionEvent",
    "TransportError",
    "get_websocket_url",
    "load_config",
]
