"""Request client protocol — request/response RPC abstraction."""
from typing import Any, Callable, Protocol, Sequence

from ..models import RpcRequest


class RequestClient(Protocol):
    """Abstract interface for request/response calls against a node."""

    async def call(
        self,
        method: str,
        params: Sequence[Any] = (),
        validate: Callable[[Any], bool] | None = None,
    ) -> Any: ...

    async def batch_call(
        self,
        requests: Sequence[RpcRequest],
        validate: Callable[[Any], bool] | None = None,
    ) -> list[Any]: ...
