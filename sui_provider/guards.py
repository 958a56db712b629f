"""Response shape checks passed to the transports as validators."""
from __future__ import annotations

from typing import Any

OBJECT_STATUSES = ("Exists", "NotExists", "Deleted")
SUI_COIN_TYPE = "0x2::coin::Coin<0x2::sui::SUI>"


def is_any(value: Any) -> bool:
    return True


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_object_data_response(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("status") in OBJECT_STATUSES
        and "details" in value
    )


def is_object_info(value: Any) -> bool:
    return isinstance(value, dict) and all(
        key in value for key in ("objectId", "version", "digest", "type")
    )


def is_owned_objects_response(value: Any) -> bool:
    return isinstance(value, list) and all(is_object_info(item) for item in value)


def is_txn_digests_response(value: Any) -> bool:
    """Digests come either bare or as ``[sequence, digest]`` pairs."""
    if not isinstance(value, list):
        return False
    for item in value:
        if isinstance(item, str):
            continue
        if (
            isinstance(item, (list, tuple))
            and len(item) == 2
            and is_number(item[0])
            and isinstance(item[1], str)
        ):
            continue
        return False
    return True


def is_transaction_response(value: Any) -> bool:
    return isinstance(value, dict) and "certificate" in value and "effects" in value


def is_move_function_arg_types(value: Any) -> bool:
    """Each entry is ``"Pure"`` or an ``{"Object": <mutability>}`` mapping."""
    return isinstance(value, list) and all(
        isinstance(item, (str, dict)) for item in value
    )


def is_normalized_module(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("name"), str)
        and isinstance(value.get("address"), str)
    )


def is_normalized_modules(value: Any) -> bool:
    return isinstance(value, dict) and all(
        is_normalized_module(module) for module in value.values()
    )


def is_normalized_function(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("parameters"), list)


def is_normalized_struct(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("fields"), list)


def is_sui_coin(object_info: dict[str, Any]) -> bool:
    return object_info.get("type") == SUI_COIN_TYPE


def get_object_reference(response: dict[str, Any]) -> dict[str, Any] | None:
    """Return ``{objectId, version, digest}`` for an existing object, else None."""
    if response.get("status") != "Exists":
        return None
    details = response.get("details") or {}
    reference = details.get("reference")
    return reference if isinstance(reference, dict) else None
