"""Provider exceptions — shared by the HTTP and WebSocket transports."""
from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """Base class for every error raised by the provider core."""

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class TransportError(ProviderError):
    """The exchange could not complete: unreachable, reset, handshake failure."""


class ProtocolError(ProviderError):
    """A reply arrived but does not have the expected shape."""


class RpcResponseError(ProtocolError):
    """The node answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message, method=method)
        self.code = code
        self.data = data


class BatchError(ProtocolError):
    """At least one member of a batch failed, so the whole batch failed."""

    def __init__(
        self,
        message: str,
        *,
        failures: dict[int, Exception],
        methods: dict[int, str],
    ) -> None:
        super().__init__(message)
        self.failures = failures
        self.methods = methods


class RpcTimeoutError(ProviderError, TimeoutError):
    """No reply on the stream within the allotted window."""

    def __init__(self, message: str, *, method: str | None = None, timeout: float | None = None) -> None:
        super().__init__(message, method=method)
        self.timeout = timeout


class IllegalStateError(ProviderError):
    """A stream operation was attempted while the stream is not connected."""

    def __init__(self, message: str, *, method: str | None = None, state: Any = None) -> None:
        super().__init__(message, method=method)
        self.state = state


__all__ = [
    "BatchError",
    "IllegalStateError",
    "ProtocolError",
    "ProviderError",
    "RpcResponseError",
    "RpcTimeoutError",
    "TransportError",
]
