"""Shared test fixtures, sample data and websocket fakes."""
from __future__ import annotations

import asyncio
import itertools
import json
import textwrap
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable

import aiohttp
import pytest

from sui_provider.config import AppConfig, ProviderConfig, ReconnectConfig
from sui_provider.rpc.state import ReconnectPolicy


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_provider_config() -> ProviderConfig:
    return ProviderConfig(
        endpoint="https://node.example.com:443",
        ws_port=9001,
        request_timeout=5.0,
        call_timeout=1.0,
        heartbeat=None,
    )


@pytest.fixture()
def sample_reconnect_config() -> ReconnectConfig:
    return ReconnectConfig(interval=0.01, backoff_factor=1.0, max_interval=0.05)


@pytest.fixture()
def sample_app_config(
    sample_provider_config: ProviderConfig,
    sample_reconnect_config: ReconnectConfig,
) -> AppConfig:
    return AppConfig(provider=sample_provider_config, reconnect=sample_reconnect_config)


@pytest.fixture()
def fast_policy() -> ReconnectPolicy:
    return ReconnectPolicy(interval=0.01, max_interval=0.05)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    provider:
      endpoint: "https://node.example.com"
      ws_port: 7000
      request_timeout: 10
      call_timeout: 15
      heartbeat: null
    reconnect:
      interval: 0.5
      backoff_factor: 2.0
      max_interval: 8
      jitter: 0.1
      max_attempts: 5
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Websocket fakes
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """In-memory stand-in for aiohttp's client websocket.

    ``responder`` receives every sent envelope and may return a frame to push
    back. ``drop()`` ends the socket as if the peer went away.
    """

    def __init__(self, responder: Callable[[dict[str, Any]], Any] | None = None) -> None:
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, frame: Any) -> None:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    def fail(self, error: BaseException) -> None:
        """Make the next read raise ``error``."""
        self._inbox.put_nowait(error)

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        envelope = json.loads(data)
        self.sent.append(envelope)
        if self.responder is not None:
            reply = self.responder(envelope)
            if reply is not None:
                self.push(reply)

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)
        return True

    def exception(self) -> BaseException | None:
        return None

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> Any:
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        if isinstance(msg, BaseException):
            raise msg
        return msg


class FakeSession:
    """Hands out the given sockets (or raises the given errors) in order.

    Once exhausted, further connects hang until cancelled.
    """

    def __init__(self, *sockets: FakeWebSocket | BaseException) -> None:
        self._sockets = list(sockets)
        self.closed = False
        self.connect_attempts = 0
        self.urls: list[str] = []

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.connect_attempts += 1
        self.urls.append(url)
        if not self._sockets:
            await asyncio.Event().wait()
        item = self._sockets.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


def subscription_responder(
    results: dict[str, Any] | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Answer ``sui_subscribeEvent`` with fresh ids and other methods from ``results``."""
    ids = itertools.count(100)
    results = results or {}

    def respond(envelope: dict[str, Any]) -> dict[str, Any]:
        method = envelope["method"]
        if method == "sui_subscribeEvent":
            result: Any = next(ids)
        else:
            result = results.get(method, envelope["params"])
        return {"jsonrpc": "2.0", "id": envelope["id"], "result": result}

    return respond


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture()
def wait_until() -> Callable[..., Any]:
    return _wait_until


@pytest.fixture()
def make_socket() -> Callable[..., FakeWebSocket]:
    return FakeWebSocket


@pytest.fixture()
def responder() -> Callable[..., Any]:
    return subscription_responder


@pytest.fixture()
def install_session(monkeypatch: pytest.MonkeyPatch) -> Callable[..., FakeSession]:
    """Route the stream's aiohttp session to a ``FakeSession``."""

    def _install(*sockets: FakeWebSocket | BaseException) -> FakeSession:
        session = FakeSession(*sockets)
        monkeypatch.setattr(
            "sui_provider.rpc.stream.aiohttp.ClientSession", lambda *a, **kw: session
        )
        monkeypatch.setattr(
            "sui_provider.rpc.stream.aiohttp.TCPConnector", lambda *a, **kw: None
        )
        return session

    return _install
