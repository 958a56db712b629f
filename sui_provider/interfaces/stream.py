"""Stream transport protocol — what the subscription registry needs from a connection."""
from typing import Any, Callable, Protocol, Sequence

from ..rpc.state import ConnectionState


class StreamTransport(Protocol):
    """Abstract interface for a connection that can carry calls and push events."""

    @property
    def state(self) -> ConnectionState: ...

    def add_state_listener(self, listener: Callable[[ConnectionState], Any]) -> None: ...

    async def rpc_call(
        self,
        method: str,
        params: Sequence[Any] = (),
        timeout: float | None = None,
        validate: Callable[[Any], bool] | None = None,
        on_result: Callable[[Any], None] | None = None,
    ) -> Any: ...
