"""
chains/providers.py - Upstream JSON-RPC client.

Thin async client to the real node:
- Single endpoint, no automatic retry (callers decide)
- Request timeout handling and abort signals
- Connection pooling
- Latency tracking
- Batched block simulation via eth_simulateV1
"""

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

import httpx
from dotenv import load_dotenv

from core.abort import AbortController, run_abortable
from core.constants import MOCK_ADDRESS, MOCK_ADDRESS_BALANCE, SIMULATED_PREV_RANDAO
from core.encoding import hex_to_data, hex_to_quantity, quantity_to_hex
from core.exceptions import JsonRpcResponseError, TransportError
from core.logging import get_logger
from core.models import (
    AccountOverride,
    Block,
    SimulateBlockResult,
    SimulationStateInputBlock,
    merge_state_overrides,
    state_overrides_to_rpc,
)

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

BlockTag = Union[int, str]


def block_param(tag: BlockTag) -> str:
    """Encode a block number or tag for the wire."""
    if isinstance(tag, int):
        return quantity_to_hex(tag)
    return tag


@dataclass
class RPCStats:
    """Statistics for the RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


class RPCProvider:
    """
    JSON-RPC client for the real node.

    Protocol errors surface as JsonRpcResponseError with the node's code,
    message and data preserved. Network failures, timeouts and non-2xx
    statuses surface as TransportError.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int = 1,
        timeout_seconds: float = 30,
        simulation_validation: bool = False,
        trace_transfers: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self.simulation_validation = simulation_validation
        self.trace_transfers = trace_transfers
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0
        self.stats = RPCStats(url=rpc_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        """Generate next request ID."""
        self._request_id += 1
        return self._request_id

    def _fail(self, message: str) -> None:
        self.stats.failed_requests += 1
        self.stats.last_error = message

    async def call(
        self,
        method: str,
        params: list | None = None,
        abort: AbortController | None = None,
    ) -> RPCResponse:
        """
        Make an RPC call.

        Args:
            method: RPC method name
            params: Method parameters
            abort: Optional abort signal raced against the request

        Returns:
            RPCResponse with result and metadata

        Raises:
            JsonRpcResponseError: The node returned an error object
            TransportError: Network failure, timeout or bad HTTP status
            RequestAbortedError: The abort signal fired first
        """
        client = await self._get_client()
        request_id = self._next_request_id()
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": request_id,
        }

        self.stats.total_requests += 1
        start_ms = int(time.time() * 1000)

        try:
            resp = await run_abortable(client.post(self.rpc_url, json=payload), abort)
        except httpx.TimeoutException as e:
            latency_ms = int(time.time() * 1000) - start_ms
            self._fail(f"Timeout after {latency_ms}ms")
            logger.debug(
                f"RPC timeout for {method}",
                extra={"context": {"method": method, "latency_ms": latency_ms}},
            )
            raise TransportError(
                f"Timeout calling {method} after {latency_ms}ms",
                details={"url": self.rpc_url, "method": method},
            ) from e
        except httpx.HTTPError as e:
            self._fail(str(e))
            logger.debug(
                f"RPC transport failure for {method}: {e}",
                extra={"context": {"method": method}},
            )
            raise TransportError(
                f"Transport failure calling {method}: {e}",
                details={"url": self.rpc_url, "method": method},
            ) from e

        latency_ms = int(time.time() * 1000) - start_ms

        if not resp.is_success:
            self._fail(f"HTTP {resp.status_code}")
            raise TransportError(
                f"HTTP {resp.status_code} calling {method}",
                details={"url": self.rpc_url, "method": method, "status_code": resp.status_code},
            )

        try:
            body = resp.json()
        except ValueError as e:
            self._fail("Invalid JSON response")
            raise TransportError(
                f"Invalid JSON response to {method}",
                details={"url": self.rpc_url, "method": method},
            ) from e

        if "error" in body and body["error"] is not None:
            error = body["error"]
            message = error.get("message", str(error))
            self._fail(message)
            logger.debug(
                f"RPC error for {method}: {message}",
                extra={"context": {"method": method, "code": error.get("code")}},
            )
            raise JsonRpcResponseError(
                message,
                code=error.get("code"),
                data=error.get("data"),
                request_id=body.get("id", request_id),
                details={"method": method},
            )

        self.stats.successful_requests += 1
        self.stats.total_latency_ms += latency_ms
        self.stats.last_success_ts = int(time.time() * 1000)

        return RPCResponse(
            result=body.get("result"),
            latency_ms=latency_ms,
            endpoint_used=self.rpc_url,
        )

    async def _result(self, method: str, params: list | None = None, abort: AbortController | None = None) -> Any:
        response = await self.call(method, params, abort)
        return response.result

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def get_chain_id(self, abort: AbortController | None = None) -> int:
        """Get chain ID from RPC."""
        return hex_to_quantity(await self._result("eth_chainId", [], abort))

    async def get_block_number(self, abort: AbortController | None = None) -> int:
        """Get latest block number."""
        return hex_to_quantity(await self._result("eth_blockNumber", [], abort))

    async def get_block(
        self,
        tag: BlockTag = "latest",
        full_transactions: bool = False,
        abort: AbortController | None = None,
    ) -> Optional[Block]:
        """Get a block by number or tag; None when the node has no such block."""
        result = await self._result("eth_getBlockByNumber", [block_param(tag), full_transactions], abort)
        return Block.from_rpc(result) if result else None

    async def get_block_by_hash(
        self,
        block_hash: str,
        full_transactions: bool = False,
        abort: AbortController | None = None,
    ) -> Optional[Block]:
        result = await self._result("eth_getBlockByHash", [block_hash, full_transactions], abort)
        return Block.from_rpc(result) if result else None

    async def get_balance(self, address: str, tag: BlockTag = "latest", abort: AbortController | None = None) -> int:
        return hex_to_quantity(await self._result("eth_getBalance", [address, block_param(tag)], abort))

    async def get_code(self, address: str, tag: BlockTag = "latest", abort: AbortController | None = None) -> bytes:
        return hex_to_data(await self._result("eth_getCode", [address, block_param(tag)], abort))

    async def get_transaction_count(
        self,
        address: str,
        tag: BlockTag = "latest",
        abort: AbortController | None = None,
    ) -> int:
        return hex_to_quantity(await self._result("eth_getTransactionCount", [address, block_param(tag)], abort))

    async def get_transaction_by_hash(self, tx_hash: str, abort: AbortController | None = None) -> Optional[dict]:
        return await self._result("eth_getTransactionByHash", [tx_hash], abort)

    async def get_transaction_receipt(self, tx_hash: str, abort: AbortController | None = None) -> Optional[dict]:
        return await self._result("eth_getTransactionReceipt", [tx_hash], abort)

    async def get_logs(self, log_filter: dict, abort: AbortController | None = None) -> list[dict]:
        return await self._result("eth_getLogs", [log_filter], abort) or []

    async def get_gas_price(self, abort: AbortController | None = None) -> int:
        """Get current gas price in wei."""
        return hex_to_quantity(await self._result("eth_gasPrice", [], abort))

    async def eth_call(
        self,
        transaction: dict,
        tag: BlockTag = "latest",
        abort: AbortController | None = None,
    ) -> str:
        """
        Make eth_call.

        Args:
            transaction: Call object in wire form
            tag: Block number or tag

        Returns:
            Hex encoded return data
        """
        return await self._result("eth_call", [transaction, block_param(tag)], abort)

    async def simulate(
        self,
        input_blocks: Sequence[SimulationStateInputBlock],
        parent_block: Block,
        abort: AbortController | None = None,
    ) -> list[SimulateBlockResult]:
        """
        Execute blocks on top of parent_block with eth_simulateV1.

        Block i is numbered parent + i + 1 and stamped with the parent
        timestamp plus the cumulative time deltas of blocks 0..i. The mock
        sender is funded in the first block.

        Returns:
            One SimulateBlockResult per returned block (count is not checked here)
        """
        block_state_calls = []
        timestamp = parent_block.timestamp
        for index, block in enumerate(input_blocks):
            timestamp += block.time_increase_delta
            overrides = block.state_overrides
            if index == 0 and MOCK_ADDRESS not in overrides:
                overrides = merge_state_overrides(
                    {MOCK_ADDRESS: AccountOverride(balance=MOCK_ADDRESS_BALANCE)}, overrides
                )
            block_state_calls.append({
                "blockOverrides": {
                    "number": quantity_to_hex(parent_block.number + index + 1),
                    "time": quantity_to_hex(timestamp),
                    "gasLimit": quantity_to_hex(parent_block.gas_limit),
                    "feeRecipient": parent_block.miner,
                    "prevRandao": SIMULATED_PREV_RANDAO,
                },
                "stateOverrides": state_overrides_to_rpc(overrides),
                "calls": [tx.transaction.to_rpc() for tx in block.transactions],
            })

        params = [
            {
                "blockStateCalls": block_state_calls,
                "traceTransfers": self.trace_transfers,
                "validation": self.simulation_validation,
            },
            quantity_to_hex(parent_block.number),
        ]
        response = await self.call("eth_simulateV1", params, abort)
        logger.debug(
            "eth_simulateV1 completed",
            extra={"context": {
                "parent_block": parent_block.number,
                "blocks": len(input_blocks),
                "latency_ms": response.latency_ms,
            }},
        )
        return [SimulateBlockResult.from_rpc(block) for block in response.result or []]

    def get_stats_summary(self) -> dict:
        """Get statistics summary for the endpoint."""
        return {
            "url": self.stats.url,
            "total_requests": self.stats.total_requests,
            "success_rate": round(self.stats.success_rate, 3),
            "avg_latency_ms": self.stats.avg_latency_ms,
            "last_error": self.stats.last_error,
        }
