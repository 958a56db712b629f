"""Integration tests for the websocket stream — lifecycle, reconnect and correlation."""
from __future__ import annotations

import asyncio

import aiohttp
import pytest

from sui_provider.errors import (
    IllegalStateError,
    ProtocolError,
    RpcResponseError,
    RpcTimeoutError,
    TransportError,
)
from sui_provider.models import SubscriptionEvent
from sui_provider.rpc.state import ConnectionState, ReconnectPolicy
from sui_provider.rpc.stream import StreamConnection

WS_URL = "ws://node.example.com:9001"


def _stream(policy: ReconnectPolicy, **kwargs) -> tuple[StreamConnection, list[ConnectionState]]:
    stream = StreamConnection(WS_URL, policy=policy, call_timeout=1.0, **kwargs)
    states: list[ConnectionState] = []
    stream.add_state_listener(states.append)
    return stream, states


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_starts_not_connected(self, fast_policy: ReconnectPolicy) -> None:
        stream, states = _stream(fast_policy)
        assert stream.state is ConnectionState.NOT_CONNECTED
        assert not stream.is_connected
        assert not stream.is_closed
        assert states == []

    @pytest.mark.asyncio
    async def test_connect_reaches_connected(
        self, fast_policy, install_session, make_socket
    ) -> None:
        session = install_session(make_socket())
        stream, states = _stream(fast_policy)
        try:
            stream.connect()
            assert stream.state is ConnectionState.CONNECTING
            await stream.wait_until_connected(timeout=1)

            assert stream.state is ConnectionState.CONNECTED
            assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
            assert session.urls == [WS_URL]
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(
        self, fast_policy, install_session, make_socket
    ) -> None:
        session = install_session(make_socket(), make_socket())
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            stream.connect()
            await stream.wait_until_connected(timeout=1)
            stream.connect()
            await asyncio.sleep(0.02)

            assert session.connect_attempts == 1
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_wait_before_connect_raises(self, fast_policy) -> None:
        stream, _ = _stream(fast_policy)
        with pytest.raises(IllegalStateError):
            await stream.wait_until_connected(timeout=0.1)

    @pytest.mark.asyncio
    async def test_teardown_stops_everything(
        self, fast_policy, install_session, make_socket
    ) -> None:
        socket = make_socket()
        session = install_session(socket)
        stream, states = _stream(fast_policy)
        stream.connect()
        await stream.wait_until_connected(timeout=1)

        await stream.teardown()

        assert stream.state is ConnectionState.NOT_CONNECTED
        assert stream.is_closed
        assert states[-1] is ConnectionState.NOT_CONNECTED
        assert socket.closed
        assert session.closed
        await asyncio.sleep(0.05)
        assert session.connect_attempts == 1
        with pytest.raises(IllegalStateError):
            stream.connect()

    @pytest.mark.asyncio
    async def test_async_context_manager(
        self, fast_policy, install_session, make_socket
    ) -> None:
        install_session(make_socket())
        async with StreamConnection(WS_URL, policy=fast_policy) as stream:
            await stream.wait_until_connected(timeout=1)
            assert stream.is_connected
        assert stream.state is ConnectionState.NOT_CONNECTED


class TestReconnect:
    @pytest.mark.asyncio
    async def test_abrupt_close_reconnects_and_resumes_dispatch(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        first, second = make_socket(), make_socket()
        session = install_session(first, second)
        events: list[SubscriptionEvent] = []
        stream, states = _stream(fast_policy, on_event=events.append)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            first.drop()
            await wait_until(lambda: session.connect_attempts == 2 and stream.is_connected)

            assert states == [
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.NOT_CONNECTED,
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ]

            second.push({"subscription": 7, "result": {"seq": 1}})
            await wait_until(lambda: len(events) == 1)
            assert events[0] == SubscriptionEvent(subscription=7, result={"seq": 1})
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_failed_handshake_is_retried(
        self, fast_policy, install_session, make_socket
    ) -> None:
        session = install_session(
            aiohttp.ClientConnectionError("refused"),
            aiohttp.ClientConnectionError("refused"),
            make_socket(),
        )
        stream, states = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            assert session.connect_attempts == 3
            assert states.count(ConnectionState.NOT_CONNECTED) == 2
            assert states[-1] is ConnectionState.CONNECTED
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, install_session, wait_until) -> None:
        session = install_session(*[aiohttp.ClientConnectionError("refused")] * 5)
        stream, _ = _stream(ReconnectPolicy(interval=0.01, max_attempts=2))
        try:
            stream.connect()
            await wait_until(lambda: stream._supervisor is not None and stream._supervisor.done())

            # first attempt plus two retries
            assert session.connect_attempts == 3
            assert stream.state is ConnectionState.NOT_CONNECTED
            assert stream.is_closed
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_pending_call_fails_on_drop(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        first, second = make_socket(), make_socket()
        session = install_session(first, second)
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            call = asyncio.ensure_future(stream.rpc_call("sui_slow", [], timeout=1.0))
            await wait_until(lambda: len(first.sent) == 1)
            first.drop()

            with pytest.raises(TransportError) as exc_info:
                await call
            assert exc_info.value.method == "sui_slow"

            await wait_until(lambda: session.connect_attempts == 2 and stream.is_connected)
            # a late reply for the old id must not be delivered anywhere
            second.push({"jsonrpc": "2.0", "id": first.sent[0]["id"], "result": "late"})
            await asyncio.sleep(0.02)
            assert stream._pending == {}
        finally:
            await stream.teardown()


    @pytest.mark.asyncio
    async def test_read_error_reconnects(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        first, second = make_socket(), make_socket()
        session = install_session(first, second)
        stream, states = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            first.fail(RuntimeError("decoder bug"))
            await wait_until(lambda: session.connect_attempts == 2 and stream.is_connected)

            assert first.closed
            assert states.count(ConnectionState.CONNECTED) == 2
        finally:
            await stream.teardown()


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_not_connected_fails_before_any_send(
        self, fast_policy, install_session, make_socket
    ) -> None:
        socket = make_socket()
        session = install_session(socket)
        stream, _ = _stream(fast_policy)

        with pytest.raises(IllegalStateError) as exc_info:
            await stream.rpc_call("sui_subscribeEvent", [{"All": []}])

        assert exc_info.value.state is ConnectionState.NOT_CONNECTED
        assert exc_info.value.method == "sui_subscribeEvent"
        assert session.connect_attempts == 0
        assert socket.sent == []

    @pytest.mark.asyncio
    async def test_returns_result(
        self, fast_policy, install_session, make_socket, responder
    ) -> None:
        socket = make_socket(responder({"sui_getTotalTransactionNumber": 42}))
        install_session(socket)
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            result = await stream.rpc_call("sui_getTotalTransactionNumber")

            assert result == 42
            assert socket.sent[0]["method"] == "sui_getTotalTransactionNumber"
            assert socket.sent[0]["jsonrpc"] == "2.0"
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_correlated_by_id(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        socket = make_socket()
        install_session(socket)
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            calls = asyncio.gather(
                stream.rpc_call("method_a", ["a"]),
                stream.rpc_call("method_b", ["b"]),
            )
            await wait_until(lambda: len(socket.sent) == 2)
            ids = {env["method"]: env["id"] for env in socket.sent}
            assert ids["method_a"] != ids["method_b"]

            # reply out of order
            socket.push({"jsonrpc": "2.0", "id": ids["method_b"], "result": "B"})
            socket.push({"jsonrpc": "2.0", "id": ids["method_a"], "result": "A"})

            assert await calls == ["A", "B"]
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_timeout(self, fast_policy, install_session, make_socket) -> None:
        install_session(make_socket())
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            with pytest.raises(RpcTimeoutError) as exc_info:
                await stream.rpc_call("sui_subscribeEvent", [{}], timeout=0.05)

            assert isinstance(exc_info.value, TimeoutError)
            assert exc_info.value.timeout == 0.05
            assert stream._pending == {}
            assert stream.is_connected
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_error_reply(self, fast_policy, install_session, make_socket) -> None:
        socket = make_socket(
            lambda env: {
                "jsonrpc": "2.0",
                "id": env["id"],
                "error": {"code": -32602, "message": "invalid filter"},
            }
        )
        install_session(socket)
        stream, _ = _stream(fast_policy)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            with pytest.raises(RpcResponseError) as exc_info:
                await stream.rpc_call("sui_subscribeEvent", [{"bad": True}])

            assert exc_info.value.code == -32602
            assert exc_info.value.method == "sui_subscribeEvent"
        finally:
            await stream.teardown()


    @pytest.mark.asyncio
    async def test_result_hook_runs_before_next_frame(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        socket = make_socket()
        install_session(socket)
        order: list[tuple[str, object]] = []
        stream, _ = _stream(fast_policy, on_event=lambda e: order.append(("event", e.result)))
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            def respond(envelope: dict) -> None:
                socket.push({"jsonrpc": "2.0", "id": envelope["id"], "result": 7})
                socket.push({"subscription": 7, "result": "first"})

            socket.responder = respond
            result = await stream.rpc_call(
                "sui_subscribeEvent", [{}], on_result=lambda r: order.append(("hook", r))
            )

            assert result == 7
            await wait_until(lambda: len(order) == 2)
            assert order == [("hook", 7), ("event", "first")]
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_result_hook_error_fails_call(
        self, fast_policy, install_session, make_socket, responder
    ) -> None:
        install_session(make_socket(responder({"m": "value"})))
        stream, _ = _stream(fast_policy)

        def reject(result: object) -> None:
            raise ProtocolError(f"rejected {result}")

        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            with pytest.raises(ProtocolError, match="rejected value"):
                await stream.rpc_call("m", on_result=reject)
            assert stream._pending == {}
            assert stream.is_connected
        finally:
            await stream.teardown()


class TestInboundDispatch:
    @pytest.mark.asyncio
    async def test_events_dispatched_in_arrival_order(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        socket = make_socket()
        install_session(socket)
        events: list[SubscriptionEvent] = []
        stream, _ = _stream(fast_policy, on_event=events.append)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            socket.push({"subscription": 1, "result": "first"})
            socket.push(
                {
                    "jsonrpc": "2.0",
                    "method": "sui_subscribeEvent",
                    "params": {"subscription": 2, "result": "second"},
                }
            )
            socket.push({"subscription": 1, "result": "third"})
            await wait_until(lambda: len(events) == 3)

            assert [e.result for e in events] == ["first", "second", "third"]
            assert [e.subscription for e in events] == [1, 2, 1]
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(
        self, fast_policy, install_session, make_socket, responder, wait_until
    ) -> None:
        socket = make_socket(responder({"ping": "pong"}))
        install_session(socket)
        events: list[SubscriptionEvent] = []
        stream, _ = _stream(fast_policy, on_event=events.append)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            socket.push("{not json")
            socket.push({"unrelated": True})
            socket.push([1, 2, 3])
            socket.push({"subscription": 3, "result": "ok"})

            assert await stream.rpc_call("ping") == "pong"
            await wait_until(lambda: len(events) == 1)
            assert stream.is_connected
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_handler_exception_does_not_stop_dispatch(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        socket = make_socket()
        install_session(socket)
        seen: list[object] = []

        def handler(event: SubscriptionEvent) -> None:
            seen.append(event.result)
            if event.result == "boom":
                raise ValueError("handler bug")

        stream, _ = _stream(fast_policy, on_event=handler)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            socket.push({"subscription": 1, "result": "boom"})
            socket.push({"subscription": 1, "result": "after"})
            await wait_until(lambda: len(seen) == 2)

            assert seen == ["boom", "after"]
        finally:
            await stream.teardown()

    @pytest.mark.asyncio
    async def test_invalid_reply_ids_while_call_pending(
        self, fast_policy, install_session, make_socket, wait_until
    ) -> None:
        socket = make_socket()
        session = install_session(socket, make_socket())
        events: list[SubscriptionEvent] = []
        stream, _ = _stream(fast_policy, on_event=events.append)
        try:
            stream.connect()
            await stream.wait_until_connected(timeout=1)

            call = asyncio.ensure_future(stream.rpc_call("sui_getTotalTransactionNumber"))
            await wait_until(lambda: len(socket.sent) == 1)
            request_id = socket.sent[0]["id"]

            socket.push({"jsonrpc": "2.0", "id": [request_id], "result": 5})
            socket.push({"jsonrpc": "2.0", "id": {"n": request_id}, "result": 5})
            socket.push({"jsonrpc": "2.0", "id": True, "result": 5})
            socket.push({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "parse"}})
            socket.push("{not json")
            socket.push({"subscription": 3, "result": "ok"})
            socket.push({"jsonrpc": "2.0", "id": request_id, "result": 42})

            assert await call == 42
            await wait_until(lambda: len(events) == 1)
            assert events[0].result == "ok"
            assert stream.is_connected
            assert session.connect_attempts == 1
        finally:
            await stream.teardown()
