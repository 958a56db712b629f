"""Stream connection state machine and reconnect policy."""
from __future__ import annotations

import enum
import random
from dataclasses import dataclass

from ..config import ReconnectConfig


class ConnectionState(enum.Enum):
    NOT_CONNECTED = "not_connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.NOT_CONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.NOT_CONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.NOT_CONNECTED}),
}


class InvalidTransition(RuntimeError):
    """Raised for a state change the machine does not allow."""


def transition(current: ConnectionState, target: ConnectionState) -> ConnectionState:
    """Return ``target`` if moving there from ``current`` is allowed."""
    if target not in _TRANSITIONS[current]:
        raise InvalidTransition(f"{current.name} -> {target.name}")
    return target


@dataclass(frozen=True)
class ReconnectPolicy:
    """Delay schedule for reconnect attempts.

    ``attempt`` counts consecutive failures starting at 1. With the default
    ``backoff_factor`` of 1.0 every attempt waits ``interval`` seconds.
    """

    interval: float = 3.0
    backoff_factor: float = 1.0
    max_interval: float = 30.0
    jitter: float = 0.0
    max_attempts: int | None = None

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> ReconnectPolicy:
        return cls(
            interval=config.interval,
            backoff_factor=config.backoff_factor,
            max_interval=config.max_interval,
            jitter=config.jitter,
            max_attempts=config.max_attempts,
        )

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay(self, attempt: int) -> float:
        base = self.interval * self.backoff_factor ** max(attempt - 1, 0)
        base = min(base, max(self.max_interval, self.interval))
        if self.jitter:
            base += base * self.jitter * random.uniform(-1.0, 1.0)
        return max(base, 0.0)
