"""Sui JSON-RPC provider — request/response calls plus websocket event subscriptions."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from . import guards
from .config import AppConfig, ProviderConfig, ReconnectConfig
from .interfaces import RequestClient
from .models import Endpoint, RpcRequest, SubscriptionEvent, SubscriptionId
from .rpc.codec import Validator
from .rpc.http_client import JsonRpcClient
from .rpc.state import ConnectionState, ReconnectPolicy
from .rpc.stream import StreamConnection
from .rpc.subscriptions import ErrorCallback, EventCallback, SubscriptionRegistry

logger = logging.getLogger(__name__)


class JsonRpcProvider:
    """Talks to one Sui node over HTTP and a websocket.

    Construction opens nothing. Call :meth:`connect_stream` (or use the
    provider as an async context manager) before subscribing.
    """

    def __init__(
        self,
        config: ProviderConfig,
        reconnect: ReconnectConfig | None = None,
    ) -> None:
        self._config = config
        if config.ws_endpoint:
            self.endpoint = Endpoint(rpc_url=config.endpoint, ws_url=config.ws_endpoint)
        else:
            self.endpoint = Endpoint.from_url(config.endpoint, config.ws_port)

        self._client: RequestClient = JsonRpcClient(
            self.endpoint.rpc_url, timeout=config.request_timeout
        )
        self._stream = StreamConnection(
            self.endpoint.ws_url,
            policy=ReconnectPolicy.from_config(reconnect or ReconnectConfig()),
            call_timeout=config.call_timeout,
            heartbeat=config.heartbeat,
        )
        self._subscriptions = SubscriptionRegistry(
            self._stream,
            subscribe_method=config.subscribe_method,
            timeout=config.call_timeout,
        )
        self._stream.on_event = self._subscriptions.dispatch

    @classmethod
    def from_config(cls, config: AppConfig) -> JsonRpcProvider:
        return cls(config.provider, config.reconnect)

    @classmethod
    def from_url(cls, endpoint: str, ws_port: int | None = None) -> JsonRpcProvider:
        return cls(ProviderConfig(endpoint=endpoint, ws_port=ws_port or ProviderConfig.ws_port))

    async def __aenter__(self) -> JsonRpcProvider:
        self.connect_stream()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core surface
    # ------------------------------------------------------------------

    @property
    def stream_state(self) -> ConnectionState:
        return self._stream.state

    @property
    def stream_closed(self) -> bool:
        return self._stream.is_closed

    async def call(
        self, method: str, params: Sequence[Any] = (), validate: Validator | None = None
    ) -> Any:
        return await self._client.call(method, params, validate)

    async def batch_call(
        self, requests: Sequence[RpcRequest], validate: Validator | None = None
    ) -> list[Any]:
        return await self._client.batch_call(requests, validate)

    def connect_stream(self) -> None:
        self._stream.connect()

    async def wait_until_connected(self, timeout: float | None = None) -> None:
        await self._stream.wait_until_connected(timeout)

    async def rpc_call(
        self, method: str, params: Sequence[Any] = (), timeout: float | None = None
    ) -> Any:
        return await self._stream.rpc_call(method, params, timeout)

    async def subscribe(
        self,
        event_filter: Any,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionId:
        return await self._subscriptions.subscribe(event_filter, on_event, on_error)

    def unsubscribe(self, subscription_id: SubscriptionId) -> bool:
        return self._subscriptions.unsubscribe(subscription_id)

    def dispatch(self, event: SubscriptionEvent) -> None:
        self._subscriptions.dispatch(event)

    async def close(self) -> None:
        await self._stream.teardown()
        await self._subscriptions.aclose()
        logger.info("Provider for %s closed", self.endpoint.rpc_url)

    # ------------------------------------------------------------------
    # Move info
    # ------------------------------------------------------------------

    async def get_move_function_arg_types(
        self, package_id: str, module_name: str, function_name: str
    ) -> list[Any]:
        return await self.call(
            "sui_getMoveFunctionArgTypes",
            [package_id, module_name, function_name],
            guards.is_move_function_arg_types,
        )

    async def get_normalized_move_modules_by_package(
        self, package_id: str
    ) -> dict[str, dict[str, Any]]:
        return await self.call(
            "sui_getNormalizedMoveModulesByPackage", [package_id], guards.is_normalized_modules
        )

    async def get_normalized_move_module(
        self, package_id: str, module_name: str
    ) -> dict[str, Any]:
        return await self.call(
            "sui_getNormalizedMoveModule",
            [package_id, module_name],
            guards.is_normalized_module,
        )

    async def get_normalized_move_function(
        self, package_id: str, module_name: str, function_name: str
    ) -> dict[str, Any]:
        return await self.call(
            "sui_getNormalizedMoveFunction",
            [package_id, module_name, function_name],
            guards.is_normalized_function,
        )

    async def get_normalized_move_struct(
        self, package_id: str, module_name: str, struct_name: str
    ) -> dict[str, Any]:
        return await self.call(
            "sui_getNormalizedMoveStruct",
            [package_id, module_name, struct_name],
            guards.is_normalized_struct,
        )

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def get_objects_owned_by_address(self, address: str) -> list[dict[str, Any]]:
        return await self.call(
            "sui_getObjectsOwnedByAddress", [address], guards.is_owned_objects_response
        )

    async def get_gas_objects_owned_by_address(self, address: str) -> list[dict[str, Any]]:
        objects = await self.get_objects_owned_by_address(address)
        return [obj for obj in objects if guards.is_sui_coin(obj)]

    async def get_objects_owned_by_object(self, object_id: str) -> list[dict[str, Any]]:
        return await self.call(
            "sui_getObjectsOwnedByObject", [object_id], guards.is_owned_objects_response
        )

    async def get_object(self, object_id: str) -> dict[str, Any]:
        return await self.call("sui_getObject", [object_id], guards.is_object_data_response)

    async def get_object_ref(self, object_id: str) -> dict[str, Any] | None:
        return guards.get_object_reference(await self.get_object(object_id))

    async def get_object_batch(self, object_ids: Sequence[str]) -> list[dict[str, Any]]:
        requests = [RpcRequest("sui_getObject", (object_id,)) for object_id in object_ids]
        return await self.batch_call(requests, guards.is_object_data_response)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transactions_for_object(self, object_id: str) -> list[Any]:
        requests = [
            RpcRequest("sui_getTransactionsByInputObject", (object_id,)),
            RpcRequest("sui_getTransactionsByMutatedObject", (object_id,)),
        ]
        results = await self.batch_call(requests, guards.is_txn_digests_response)
        return [*results[0], *results[1]]

    async def get_transactions_for_address(self, address: str) -> list[Any]:
        requests = [
            RpcRequest("sui_getTransactionsToAddress", (address,)),
            RpcRequest("sui_getTransactionsFromAddress", (address,)),
        ]
        results = await self.batch_call(requests, guards.is_txn_digests_response)
        return [*results[0], *results[1]]

    async def get_transaction_with_effects(self, digest: str) -> dict[str, Any]:
        return await self.call("sui_getTransaction", [digest], guards.is_transaction_response)

    async def get_transaction_with_effects_batch(
        self, digests: Sequence[str]
    ) -> list[dict[str, Any]]:
        requests = [RpcRequest("sui_getTransaction", (digest,)) for digest in digests]
        return await self.batch_call(requests, guards.is_transaction_response)

    async def execute_transaction(
        self, tx_bytes: str, signature_scheme: str, signature: str, pubkey: str
    ) -> dict[str, Any]:
        return await self.call(
            "sui_executeTransaction",
            [tx_bytes, signature_scheme, signature, pubkey],
            guards.is_transaction_response,
        )

    async def get_total_transaction_number(self) -> int:
        return await self.call("sui_getTotalTransactionNumber", [], guards.is_number)

    async def get_transaction_digests_in_range(self, start: int, end: int) -> list[Any]:
        return await self.call(
            "sui_getTransactionsInRange", [start, end], guards.is_txn_digests_response
        )

    async def get_recent_transactions(self, count: int) -> list[Any]:
        return await self.call(
            "sui_getRecentTransactions", [count], guards.is_txn_digests_response
        )

    async def sync_account_state(self, address: str) -> Any:
        return await self.call("sui_syncAccountState", [address], guards.is_any)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def subscribe_event(
        self,
        event_filter: Any,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ) -> SubscriptionId:
        return await self.subscribe(event_filter, on_event, on_error)

    def unsubscribe_event(self, subscription_id: SubscriptionId) -> bool:
        return self.unsubscribe(subscription_id)
