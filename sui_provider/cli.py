"""Command-line interface for the Sui JSON-RPC provider."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from .config import AppConfig, ProviderConfig, load_config, validate
from .errors import ProviderError, TransportError
from .logging_setup import configure_logging
from .models import RpcRequest, get_websocket_url
from .provider import JsonRpcProvider

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="sui-provider",
        description="Sui JSON-RPC client with websocket event subscriptions",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Node RPC URL (overrides provider.endpoint from the config)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    call_parser = sub.add_parser("call", help="Single JSON-RPC call over HTTP")
    call_parser.add_argument("method", help="RPC method name")
    call_parser.add_argument(
        "params", nargs="?", default="[]", help="JSON array of parameters (default: [])"
    )

    batch_parser = sub.add_parser("batch", help="Batched JSON-RPC calls over HTTP")
    batch_parser.add_argument(
        "requests", help='JSON array of {"method": ..., "params": [...]} objects'
    )

    ws_parser = sub.add_parser("ws-url", help="Print the websocket URL derived from an RPC URL")
    ws_parser.add_argument("url", help="Node RPC URL")
    ws_parser.add_argument("--port", type=int, default=None, help="Websocket port (default: 9001)")

    watch_parser = sub.add_parser("watch", help="Subscribe to events and print them")
    watch_parser.add_argument(
        "filter", nargs="?", default='{"All": []}', help='JSON event filter (default: {"All": []})'
    )
    watch_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    return parser


def _parse_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise SystemExit(f"Invalid JSON for {what}: {e}") from e


def _parse_requests(text: str) -> list[RpcRequest]:
    raw = _parse_json(text, "requests")
    if not isinstance(raw, list):
        raise SystemExit("requests must be a JSON array")
    requests: list[RpcRequest] = []
    for item in raw:
        if not isinstance(item, dict) or "method" not in item:
            raise SystemExit(f"Invalid request entry: {item!r}")
        requests.append(RpcRequest(item["method"], tuple(item.get("params", []))))
    return requests


def _load(args: argparse.Namespace) -> AppConfig:
    if args.endpoint and not args.config:
        cfg = AppConfig(provider=ProviderConfig(endpoint=args.endpoint))
    else:
        cfg = load_config(args.config)
        if args.endpoint:
            cfg = replace(cfg, provider=replace(cfg.provider, endpoint=args.endpoint))
    validate(cfg)
    return cfg


def _print(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str))


async def _watch(
    provider: JsonRpcProvider,
    event_filter: Any,
    duration: float | None,
    connect_timeout: float,
) -> None:
    """Print events until ``duration`` elapses, re-subscribing after reconnects.

    Raises ``TransportError`` once the stream closes for good.
    """
    closed = asyncio.Event()

    def on_event(event: Any) -> None:
        _print(event)

    async def on_error(error: Exception) -> None:
        logger.warning("%s; re-subscribing once reconnected", error)
        while not provider.stream_closed:
            try:
                await provider.wait_until_connected(connect_timeout)
                await provider.subscribe(event_filter, on_event, on_error)
                return
            except ProviderError as e:
                logger.warning("Re-subscribe failed: %s", e)
                await asyncio.sleep(1)
        closed.set()

    provider.connect_stream()
    await provider.wait_until_connected(connect_timeout)
    subscription_id = await provider.subscribe(event_filter, on_event, on_error)
    logger.info("Watching subscription %s", subscription_id)

    try:
        await asyncio.wait_for(closed.wait(), duration)
    except asyncio.TimeoutError:
        return
    raise TransportError("Stream closed; stopped watching", method="watch")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    config = _load(args)
    provider = JsonRpcProvider.from_config(config)

    try:
        if args.command == "call":
            params = _parse_json(args.params, "params")
            if not isinstance(params, list):
                params = [params]
            _print(await provider.call(args.method, params))
        elif args.command == "batch":
            _print(await provider.batch_call(_parse_requests(args.requests)))
        elif args.command == "watch":
            await _watch(
                provider,
                _parse_json(args.filter, "filter"),
                args.duration,
                config.provider.call_timeout,
            )
    finally:
        await provider.close()


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)

    try:
        if args.command == "ws-url":
            print(get_websocket_url(args.url, args.port))
        else:
            asyncio.run(_run(args))
    except (ProviderError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
