"""Subscription registry — routes push events to caller callbacks by subscription id."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import ProtocolError, TransportError
from ..interfaces.stream import StreamTransport
from ..models import SubscriptionEvent, SubscriptionId
from .state import ConnectionState

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], Any]
ErrorCallback = Callable[[Exception], Any]


@dataclass
class _Subscription:
    event_filter: Any
    on_event: EventCallback
    on_error: ErrorCallback | None = None
    confirmed: bool = False


class SubscriptionRegistry:
    """Maps peer-issued subscription ids to callbacks.

    The registry outlives any single connection. Entries are dropped when
    the stream leaves CONNECTED because the peer may hand the same id to a
    different subscription after a reconnect; each dropped subscription's
    ``on_error`` callback receives a ``TransportError``.
    """

    def __init__(
        self,
        stream: StreamTransport,
        subscribe_method: str = "sui_subscribeEvent",
        timeout: float | None = None,
    ) -> None:
        self._stream = stream
        self.subscribe_method = subscribe_method
        self.timeout = timeout
        self._subscriptions: dict[SubscriptionId, _Subscription] = {}
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        stream.add_state_listener(self._on_state_change)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, subscription_id: object) -> bool:
        try:
            return subscription_id in self._subscriptions
        except TypeError:
            return False

    def active_ids(self) -> list[SubscriptionId]:
        return list(self._subscriptions)

    async def subscribe(
        self,
        event_filter: Any,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionId:
        """Subscribe to events matching ``event_filter``.

        The entry is installed as soon as the reply is read, so events that
        follow the reply on the wire reach ``on_event``. Fails with whatever
        the stream call fails with, including ``IllegalStateError`` while
        disconnected.
        """
        generation = self._generation
        entry = _Subscription(event_filter, on_event, on_error)

        def install(result: Any) -> None:
            self._subscriptions[self._check_id(result)] = entry

        try:
            result = await self._stream.rpc_call(
                self.subscribe_method, [event_filter], self.timeout, on_result=install
            )
        except BaseException:
            self._discard(entry)
            raise

        subscription_id = self._check_id(result)
        if generation != self._generation:
            self._discard(entry)
            raise TransportError(
                f"Connection lost while subscribing with filter {event_filter!r}",
                method=self.subscribe_method,
            )

        self._subscriptions[subscription_id] = entry
        entry.confirmed = True
        logger.info("Subscribed %s with filter %s", subscription_id, event_filter)
        return subscription_id

    def unsubscribe(self, subscription_id: SubscriptionId) -> bool:
        """Remove the callback for ``subscription_id``. Returns whether one was removed."""
        try:
            removed = self._subscriptions.pop(subscription_id, None) is not None
        except TypeError:
            return False
        if removed:
            logger.info("Unsubscribed %s", subscription_id)
        return removed

    def dispatch(self, event: SubscriptionEvent) -> None:
        """Deliver ``event.result`` to the callback registered for its subscription."""
        try:
            entry = self._subscriptions.get(event.subscription)
        except TypeError:
            entry = None
        if entry is None:
            logger.debug("Discarding event for unknown subscription %r", event.subscription)
            return
        self._invoke(entry.on_event, event.result, event.subscription)

    def clear(self) -> None:
        self._subscriptions.clear()

    async def aclose(self) -> None:
        """Drop all entries and cancel callback tasks still running."""
        self.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_id(self, subscription_id: Any) -> SubscriptionId:
        if isinstance(subscription_id, bool) or not isinstance(subscription_id, (int, str)):
            raise ProtocolError(
                f"{self.subscribe_method} returned an invalid subscription id: {subscription_id!r}",
                method=self.subscribe_method,
            )
        return subscription_id

    def _discard(self, entry: _Subscription) -> None:
        for subscription_id, existing in list(self._subscriptions.items()):
            if existing is entry:
                del self._subscriptions[subscription_id]

    def _on_state_change(self, state: ConnectionState) -> None:
        if state is not ConnectionState.NOT_CONNECTED:
            return
        self._generation += 1
        if not self._subscriptions:
            return

        dropped, self._subscriptions = self._subscriptions, {}
        logger.warning(
            "Connection lost; dropping %d subscription(s): %s",
            len(dropped),
            ", ".join(str(sid) for sid in dropped),
        )
        for subscription_id, entry in dropped.items():
            if entry.confirmed and entry.on_error is not None:
                error = TransportError(
                    f"Subscription {subscription_id} ended: connection lost",
                    method=self.subscribe_method,
                )
                self._invoke(entry.on_error, error, subscription_id)

    def _invoke(self, callback: Callable[[Any], Any], arg: Any, subscription_id: SubscriptionId) -> None:
        try:
            result = callback(arg)
        except Exception:
            logger.exception("Callback for subscription %s failed", subscription_id)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async subscription callback failed: %s", task.exception())
