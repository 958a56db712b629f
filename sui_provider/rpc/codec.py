"""JSON-RPC 2.0 envelope encoding and decoding. Stateless."""
from __future__ import annotations

import json
from typing import Any, Callable, Sequence

from ..errors import ProtocolError, RpcResponseError
from ..models import RpcRequest, SubscriptionEvent

Validator = Callable[[Any], bool]


def build_request(method: str, params: Sequence[Any], request_id: int) -> dict[str, Any]:
    """Build a single request envelope."""
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}


def build_batch(
    requests: Sequence[RpcRequest], first_id: int = 0
) -> list[dict[str, Any]]:
    """Build a batch of envelopes with consecutive ids starting at ``first_id``."""
    return [
        build_request(req.method, req.params, first_id + index)
        for index, req in enumerate(requests)
    ]


def encode(envelope: dict[str, Any] | list[dict[str, Any]]) -> str:
    return json.dumps(envelope, separators=(",", ":"))


def decode_frame(raw: str | bytes) -> Any:
    """Parse one inbound frame. Raises ``ProtocolError`` on invalid JSON."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed frame: {e}") from e


def parse_response(
    envelope: Any,
    method: str,
    validate: Validator | None = None,
) -> Any:
    """Extract and validate the result of one response envelope.

    Raises:
        RpcResponseError: the envelope carries an ``error`` member.
        ProtocolError: the envelope is not a response, or the result fails
            ``validate``.
    """
    if not isinstance(envelope, dict):
        raise ProtocolError(
            f"Expected a response object for {method}, got {type(envelope).__name__}",
            method=method,
        )

    if envelope.get("error") is not None:
        error = envelope["error"]
        if isinstance(error, dict):
            raise RpcResponseError(
                f"RPC Error in {method}: {error.get('message', error)}",
                method=method,
                code=error.get("code"),
                data=error.get("data"),
            )
        raise RpcResponseError(f"RPC Error in {method}: {error}", method=method)

    if "result" not in envelope:
        raise ProtocolError(f"Response for {method} has neither result nor error", method=method)

    result = envelope["result"]
    if validate is not None and not validate(result):
        raise ProtocolError(
            f"Response for {method} failed validation: {_preview(result)}",
            method=method,
        )
    return result


def parse_subscription_event(frame: Any) -> SubscriptionEvent | None:
    """Return the push event carried by ``frame``, or None if it is not one.

    Accepts the bare ``{"subscription", "result"}`` shape as well as a
    JSON-RPC notification whose ``params`` hold it.
    """
    if not isinstance(frame, dict):
        return None
    if "id" not in frame and isinstance(frame.get("params"), dict):
        frame = frame["params"]
    if "subscription" not in frame or "result" not in frame:
        return None
    subscription = frame["subscription"]
    if isinstance(subscription, bool) or not isinstance(subscription, (int, str)):
        return None
    return SubscriptionEvent(subscription=subscription, result=frame["result"])


def is_subscription_event(frame: Any) -> bool:
    return parse_subscription_event(frame) is not None


def _preview(value: Any, limit: int = 200) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[:limit] + "..."
