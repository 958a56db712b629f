"""JSON-RPC over HTTP — single and batched request/response calls."""
from __future__ import annotations

import asyncio
import itertools
import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi

from ..errors import BatchError, ProtocolError, TransportError
from ..models import RpcRequest
from . import codec
from .codec import Validator

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """Request/response client bound to one node endpoint.

    Every failure propagates to the caller; this layer never retries.
    """

    def __init__(self, endpoint: str, timeout: float = 30.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._ids = itertools.count(1)

    async def _post(self, payload: Any, method: str) -> Any:
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        try:
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(
                    self.endpoint,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 400:
                        raise TransportError(
                            f"HTTP {response.status} from {self.endpoint} for {method}",
                            method=method,
                        )
                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise ProtocolError(
                            f"Invalid JSON in response for {method}: {e}", method=method
                        ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("RPC endpoint %s failed for %s: %s", self.endpoint, method, e)
            raise TransportError(
                f"Request {method} to {self.endpoint} failed: {e}", method=method
            ) from e

    async def call(
        self,
        method: str,
        params: Sequence[Any] = (),
        validate: Validator | None = None,
    ) -> Any:
        """Send one request and return its validated result."""
        request_id = next(self._ids)
        envelope = codec.build_request(method, params, request_id)
        logger.debug("-> %s %s", method, envelope["params"])

        reply = await self._post(envelope, method)
        if isinstance(reply, dict) and reply.get("id") not in (None, request_id):
            raise ProtocolError(
                f"Response id {reply.get('id')!r} does not match request {request_id} for {method}",
                method=method,
            )
        return codec.parse_response(reply, method, validate)

    async def batch_call(
        self,
        requests: Sequence[RpcRequest],
        validate: Validator | None = None,
    ) -> list[Any]:
        """Send ``requests`` as one exchange; return results in request order.

        The batch fails as a whole if any member is missing, errored or fails
        validation. No partial results are returned.
        """
        if not requests:
            return []

        first_id = next(self._ids)
        self._ids = itertools.count(first_id + len(requests))
        envelopes = codec.build_batch(requests, first_id)
        methods = {env["id"]: env["method"] for env in envelopes}
        label = f"batch[{', '.join(sorted(set(methods.values())))}]"

        replies = await self._post(envelopes, label)
        if not isinstance(replies, list):
            # A single error object is what most nodes return for a rejected batch.
            if isinstance(replies, dict) and replies.get("error") is not None:
                codec.parse_response(replies, label)
            raise ProtocolError(
                f"Expected a list of responses for {label}, got {type(replies).__name__}",
                method=label,
            )

        by_id: dict[Any, Any] = {}
        for reply in replies:
            if not isinstance(reply, dict):
                logger.warning("Ignoring non-object member in %s: %r", label, reply)
                continue
            reply_id = reply.get("id")
            if isinstance(reply_id, bool) or not isinstance(reply_id, (int, str)):
                logger.warning("Ignoring member with invalid id %r in %s", reply_id, label)
                continue
            by_id[reply_id] = reply

        results: list[Any] = []
        failures: dict[int, Exception] = {}
        for env in envelopes:
            request_id = env["id"]
            method = env["method"]
            if request_id not in by_id:
                failures[request_id] = ProtocolError(
                    f"No response for {method} (id {request_id})", method=method
                )
                continue
            try:
                results.append(codec.parse_response(by_id[request_id], method, validate))
            except ProtocolError as e:
                failures[request_id] = e

        if failures:
            detail = "; ".join(f"id {rid} ({methods[rid]}): {exc}" for rid, exc in failures.items())
            raise BatchError(
                f"Batch of {len(envelopes)} failed for {len(failures)} request(s): {detail}",
                failures=failures,
                methods={rid: methods[rid] for rid in failures},
            )
        return results
