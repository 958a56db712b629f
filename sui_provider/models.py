"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import urlsplit, urlunsplit

SubscriptionId = Union[int, str]

# Full node websocket port.
DEFAULT_WS_PORT = 9001

_WS_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def get_websocket_url(rpc_url: str, port: int | None = None) -> str:
    """Derive the streaming URL from a request/response URL.

    The scheme is swapped (``http`` → ``ws``, ``https`` → ``wss``), any
    explicit port is dropped and ``port`` (default 9001) is appended. Path and
    query are kept as they are.
    """
    parts = urlsplit(rpc_url)
    scheme = _WS_SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        raise ValueError(f"Unsupported URL scheme for websocket derivation: {rpc_url!r}")
    if not parts.hostname:
        raise ValueError(f"URL has no host: {rpc_url!r}")

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    userinfo = parts.netloc.rpartition("@")[0]
    netloc = f"{host}:{port if port is not None else DEFAULT_WS_PORT}"
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


@dataclass(frozen=True)
class Endpoint:
    """Request/response URL paired with its streaming URL."""

    rpc_url: str
    ws_url: str

    @classmethod
    def from_url(cls, rpc_url: str, ws_port: int | None = None) -> Endpoint:
        return cls(rpc_url=rpc_url, ws_url=get_websocket_url(rpc_url, ws_port))


@dataclass(frozen=True)
class RpcRequest:
    """Single method invocation, used as a batch member."""

    method: str
    params: tuple[Any, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SubscriptionEvent:
    """Push frame delivered for an active subscription."""

    subscription: SubscriptionId
    result: Any
