"""WebSocket stream — connection lifecycle, auto-reconnect and reply correlation."""
from __future__ import annotations

import asyncio
import itertools
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import aiohttp
import certifi

from ..errors import IllegalStateError, ProtocolError, RpcTimeoutError, TransportError
from ..models import SubscriptionEvent
from . import codec
from .codec import Validator
from .state import ConnectionState, ReconnectPolicy, transition

logger = logging.getLogger(__name__)

EventHandler = Callable[[SubscriptionEvent], Any]
StateListener = Callable[[ConnectionState], Any]
ResultHook = Callable[[Any], None]


@dataclass
class _PendingCall:
    future: asyncio.Future[Any]
    method: str
    validate: Validator | None = None
    on_result: ResultHook | None = None


class StreamConnection:
    """Owns one long-lived websocket to the node.

    The connection moves NOT_CONNECTED → CONNECTING → CONNECTED and back to
    NOT_CONNECTED when the socket closes, after which a reconnect is scheduled
    according to ``policy``. Push frames are handed to ``on_event`` from a
    single dispatch task, in arrival order. Every other frame is treated as a
    reply to an outstanding :meth:`rpc_call`.
    """

    def __init__(
        self,
        url: str,
        *,
        policy: ReconnectPolicy | None = None,
        call_timeout: float = 30.0,
        heartbeat: float | None = None,
        on_event: EventHandler | None = None,
    ) -> None:
        self.url = url
        self.policy = policy or ReconnectPolicy()
        self.call_timeout = call_timeout
        self.heartbeat = heartbeat
        self.on_event = on_event

        self._state = ConnectionState.NOT_CONNECTED
        self._listeners: list[StateListener] = []
        self._pending: dict[int, _PendingCall] = {}
        self._ids = itertools.count(1)

        self._session: aiohttp.ClientSession | None = None
        self._ws: Any = None
        self._supervisor: asyncio.Task[None] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._events: asyncio.Queue[SubscriptionEvent] | None = None
        self._connected: asyncio.Event | None = None
        self._torn_down = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        """True once torn down, or once the reconnect policy has given up."""
        return self._torn_down or (self._supervisor is not None and self._supervisor.done())

    def add_state_listener(self, listener: StateListener) -> None:
        """Register ``listener`` to be called with every new state."""
        self._listeners.append(listener)

    def _set_state(self, target: ConnectionState, force: bool = False) -> None:
        self._state = target if force else transition(self._state, target)
        logger.info("Stream %s: %s", self.url, target.name)

        if self._connected is not None:
            if target is ConnectionState.CONNECTED:
                self._connected.set()
            else:
                self._connected.clear()

        for listener in list(self._listeners):
            try:
                listener(target)
            except Exception:
                logger.exception("State listener failed on %s", target.name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start connecting. No effect while connecting, connected or waiting to retry."""
        if self._torn_down:
            raise IllegalStateError(
                f"Stream {self.url} has been torn down", state=self._state
            )
        if self._supervisor is not None and not self._supervisor.done():
            return

        if self._events is None:
            self._events = asyncio.Queue()
            self._connected = asyncio.Event()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch_loop(self._events))

        self._set_state(ConnectionState.CONNECTING)
        self._supervisor = asyncio.create_task(self._run())

    async def wait_until_connected(self, timeout: float | None = None) -> None:
        """Wait for the next CONNECTED state."""
        if self._connected is None:
            raise IllegalStateError("connect() has not been called", state=self._state)
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise RpcTimeoutError(
                f"Stream {self.url} not connected within {timeout}s", timeout=timeout
            ) from e

    async def teardown(self) -> None:
        """Close the socket, stop reconnecting and fail outstanding calls."""
        self._torn_down = True

        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.debug("Error closing websocket %s: %s", self.url, e)

        tasks = [t for t in (self._supervisor, self._dispatcher) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._supervisor = self._dispatcher = None

        self._fail_pending(f"Stream {self.url} torn down")
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._state is not ConnectionState.NOT_CONNECTED:
            self._set_state(ConnectionState.NOT_CONNECTED, force=True)

    async def __aenter__(self) -> StreamConnection:
        self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.teardown()

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------

    async def _open(self) -> Any:
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self._session = aiohttp.ClientSession(connector=connector)
        return await asyncio.wait_for(
            self._session.ws_connect(self.url, heartbeat=self.heartbeat),
            timeout=self.call_timeout,
        )

    async def _run(self) -> None:
        attempt = 0
        while True:
            if self._state is ConnectionState.NOT_CONNECTED:
                self._set_state(ConnectionState.CONNECTING)

            try:
                ws = await self._open()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Stream connect to %s failed: %s", self.url, e)
                self._set_state(ConnectionState.NOT_CONNECTED)
            else:
                attempt = 0
                await self._serve(ws)

            if self._torn_down:
                return
            attempt += 1
            if not self.policy.should_retry(attempt):
                logger.error(
                    "Giving up on %s after %d reconnect attempts",
                    self.url,
                    self.policy.max_attempts,
                )
                return

            delay = self.policy.delay(attempt)
            logger.info("Reconnecting to %s in %.2fs (attempt %d)", self.url, delay, attempt)
            await asyncio.sleep(delay)

    async def _serve(self, ws: Any) -> None:
        self._ws = ws
        self._set_state(ConnectionState.CONNECTED)
        try:
            await self._read_loop(ws)
        except Exception:
            logger.exception("Read loop for %s failed", self.url)
        finally:
            self._ws = None
            self._fail_pending(f"Connection to {self.url} closed")
            if self._state is ConnectionState.CONNECTED:
                self._set_state(ConnectionState.NOT_CONNECTED)

        if not ws.closed:
            await ws.close()

    async def _read_loop(self, ws: Any) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("Stream %s error: %s", self.url, ws.exception())
                break

    def _handle_frame(self, data: str | bytes) -> None:
        try:
            frame = codec.decode_frame(data)
        except ProtocolError as e:
            logger.warning("Dropping malformed frame from %s: %s", self.url, e)
            return

        event = codec.parse_subscription_event(frame)
        if event is not None:
            if self._events is not None:
                self._events.put_nowait(event)
            return

        if isinstance(frame, dict) and "id" in frame:
            self._complete(frame)
            return

        logger.debug("Ignoring unrecognized frame: %r", frame)

    def _complete(self, frame: dict[str, Any]) -> None:
        """Resolve the call waiting on ``frame``.

        The result hook runs here, before the next frame is read, so state it
        installs is visible to events that follow the reply.
        """
        request_id = frame["id"]
        if isinstance(request_id, bool) or not isinstance(request_id, (int, str)):
            logger.warning("Dropping reply with invalid id %r from %s", request_id, self.url)
            return

        call = self._pending.pop(request_id, None)
        if call is None or call.future.done():
            logger.debug("No pending call for reply id %r", request_id)
            return

        try:
            result = codec.parse_response(frame, call.method, call.validate)
            if call.on_result is not None:
                call.on_result(result)
        except Exception as e:
            call.future.set_exception(e)
        else:
            call.future.set_result(result)

    async def _dispatch_loop(self, events: asyncio.Queue[SubscriptionEvent]) -> None:
        while True:
            event = await events.get()
            handler = self.on_event
            if handler is None:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for subscription %s", event.subscription)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for call in pending.values():
            if not call.future.done():
                call.future.set_exception(TransportError(reason))

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def rpc_call(
        self,
        method: str,
        params: Sequence[Any] = (),
        timeout: float | None = None,
        validate: Validator | None = None,
        on_result: ResultHook | None = None,
    ) -> Any:
        """Issue one request over the open stream and wait for its reply.

        ``on_result`` is called with the validated result as soon as the
        reply is read, before any later frame is handled. If it raises, the
        call fails with that exception.

        Raises:
            IllegalStateError: the stream is not CONNECTED. Nothing is sent.
            RpcTimeoutError: no reply within ``timeout`` seconds.
            TransportError: the send failed or the connection dropped.
            ProtocolError: the reply is an error or fails ``validate``.
        """
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            raise IllegalStateError(
                f"Cannot call {method}: stream is {self._state.name}",
                method=method,
                state=self._state,
            )

        if timeout is None:
            timeout = self.call_timeout
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingCall(future, method, validate, on_result)

        try:
            try:
                await ws.send_str(codec.encode(codec.build_request(method, params, request_id)))
            except (aiohttp.ClientError, ConnectionError) as e:
                raise TransportError(f"Failed to send {method}: {e}", method=method) from e

            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError as e:
                raise RpcTimeoutError(
                    f"No reply to {method} within {timeout}s", method=method, timeout=timeout
                ) from e
            except TransportError as e:
                e.method = method
                raise
        finally:
            self._pending.pop(request_id, None)
