"""
harness/provider.py - EIP-1193 style provider over the simulation overlay.

The facade owns the single live SimulationState reference. Writes
(transaction sends, overrides, time advances, message signing) are
serialized by one asyncio.Lock and swap the reference only after the new
state is fully built. Reads take the reference once at entry and work on
that snapshot.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from chains.providers import RPCProvider
from config import SimulatorConfig
from core.abort import AbortController
from core.constants import (
    CANNOT_SIMULATE_OFF_LEGACY_BLOCK,
    DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
    DEFAULT_TIME_INCREASE_DELTA,
    NEW_BLOCK_ABORT,
    NO_ACTIVE_ADDRESS_MESSAGE,
    ProviderStatus,
    TransactionType,
)
from core.encoding import data_to_hex, normalize_address, quantity_to_hex
from core.exceptions import ExecutionRevertedError, LegacyBlockError, NoActiveAddressError
from core.logging import get_logger, log_transaction
from core.models import (
    AccountOverride,
    SimulatedTransaction,
    SimulationState,
    TransactionRequest,
    UnsignedTransaction,
    state_overrides_from_rpc,
)
from core.time import now_utc, to_datetime
from harness.rpc_types import (
    AddressAtBlockParams,
    BlockByHashParams,
    BlockByNumberParams,
    CallParams,
    FeeHistoryParams,
    GetLogsParams,
    PersonalSignParams,
    RpcParams,
    SendTransactionParams,
    SignTypedDataParams,
    TransactionHashParams,
    parse_request,
)
from simulation.fees import get_simulated_fee_history
from simulation.gas import simulate_estimate_gas
from simulation.queries import (
    get_simulated_balance,
    get_simulated_block,
    get_simulated_block_by_hash,
    get_simulated_block_number,
    get_simulated_code,
    get_simulated_logs,
    get_simulated_transaction_by_hash,
    get_simulated_transaction_count_over_stack,
    get_simulated_transaction_receipt,
    has_overlay,
    simulated_call,
)
from simulation.signer import MockSigner, SimulationSigner
from simulation.state import (
    append_block,
    append_signed_message,
    append_transaction,
    get_parent_block,
    refresh_simulation_state,
)

logger = get_logger(__name__)

AfterSendCallback = Callable[[SendTransactionParams, SimulatedTransaction], Any]


class MockEthereumProvider:
    """
    Provider facade that answers JSON-RPC requests against the overlay.

    Usage:
        provider = MockEthereumProvider.from_config(load_simulator_config())
        await provider.advance_time(7200)
        tx_hash = await provider.request({"method": "eth_sendTransaction", "params": [tx]})
    """

    def __init__(
        self,
        upstream: RPCProvider,
        signer: Optional[SimulationSigner] = None,
        active_address: Optional[str] = None,
        default_max_priority_fee_per_gas: int = DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
        time_increase_delta: int = DEFAULT_TIME_INCREASE_DELTA,
    ):
        self.upstream = upstream
        self.signer = signer or MockSigner()
        self.active_address = normalize_address(active_address) if active_address else None
        self.default_max_priority_fee_per_gas = default_max_priority_fee_per_gas
        self.time_increase_delta = time_increase_delta
        self.simulation_state: Optional[SimulationState] = None
        self._lock = asyncio.Lock()
        self._after_send_callback: Optional[AfterSendCallback] = None
        self._refresh_abort: Optional[AbortController] = None

        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "eth_chainId": self._chain_id,
            "eth_blockNumber": self._block_number,
            "eth_gasPrice": self._gas_price,
            "eth_accounts": self._accounts,
            "eth_requestAccounts": self._accounts,
            "eth_getBalance": self._get_balance,
            "eth_getCode": self._get_code,
            "eth_getTransactionCount": self._get_transaction_count,
            "eth_call": self._call,
            "eth_estimateGas": self._estimate_gas,
            "eth_sendTransaction": self.send_transaction,
            "wallet_sendTransaction": self.send_transaction,
            "eth_getLogs": self._get_logs,
            "eth_getBlockByNumber": self._get_block_by_number,
            "eth_getBlockByHash": self._get_block_by_hash,
            "eth_getTransactionByHash": self._get_transaction_by_hash,
            "eth_getTransactionReceipt": self._get_transaction_receipt,
            "eth_feeHistory": self._fee_history,
        }

    @classmethod
    def from_config(cls, config: SimulatorConfig, signer: Optional[SimulationSigner] = None) -> "MockEthereumProvider":
        upstream = RPCProvider(
            rpc_url=config.rpc.url,
            chain_id=config.rpc.chain_id,
            timeout_seconds=config.rpc.timeout_seconds,
            simulation_validation=config.simulation.validation,
            trace_transfers=config.simulation.trace_transfers,
        )
        return cls(
            upstream,
            signer=signer,
            active_address=config.accounts.active_address,
            default_max_priority_fee_per_gas=config.simulation.default_max_priority_fee_per_gas,
            time_increase_delta=config.simulation.time_increase_delta,
        )

    @property
    def status(self) -> ProviderStatus:
        if has_overlay(self.simulation_state):
            return ProviderStatus.OVERLAID
        return ProviderStatus.UNINITIALIZED

    async def close(self) -> None:
        await self.upstream.close()

    # ------------------------------------------------------------------
    # EIP-1193 entry point
    # ------------------------------------------------------------------

    async def request(self, args: Mapping[str, Any]) -> Any:
        """
        Dispatch a {"method", "params"} request.

        Raises:
            UnknownMethodError: If the method is not served
            InvalidParamsError: If params fail validation
            OverlayError: Any structured failure of the handler
        """
        method = args["method"]
        parsed = parse_request(method, args.get("params"))
        logger.debug(f"Request {method}", extra={"context": {"method": method}})
        if isinstance(parsed, (PersonalSignParams, SignTypedDataParams)):
            return await self._sign_message(method, parsed)
        return await self._handlers[method](parsed)

    # ------------------------------------------------------------------
    # Delegated reads
    # ------------------------------------------------------------------

    async def _chain_id(self, params: RpcParams) -> str:
        return quantity_to_hex(await self.upstream.get_chain_id())

    async def _gas_price(self, params: RpcParams) -> str:
        return quantity_to_hex(await self.upstream.get_gas_price())

    async def _accounts(self, params: RpcParams) -> list[str]:
        return [self.active_address] if self.active_address else []

    # ------------------------------------------------------------------
    # Overlay-aware reads
    # ------------------------------------------------------------------

    async def _block_number(self, params: RpcParams) -> str:
        state = self.simulation_state
        if state is None:
            return quantity_to_hex(await self.upstream.get_block_number())
        return quantity_to_hex(get_simulated_block_number(state))

    async def _get_balance(self, params: AddressAtBlockParams) -> str:
        balance = await get_simulated_balance(
            self.upstream, self.simulation_state, params.address, params.block_tag, self.signer
        )
        return quantity_to_hex(balance)

    async def _get_code(self, params: AddressAtBlockParams) -> str:
        code = await get_simulated_code(
            self.upstream, self.simulation_state, params.address, params.block_tag, self.signer
        )
        return data_to_hex(code)

    async def _get_transaction_count(self, params: AddressAtBlockParams) -> str:
        count = await get_simulated_transaction_count_over_stack(
            self.upstream, self.simulation_state, params.address, params.block_tag
        )
        return quantity_to_hex(count)

    async def _call(self, params: CallParams) -> str:
        return await simulated_call(
            self.upstream,
            self.simulation_state,
            params.transaction.to_request(),
            params.block_tag,
            self.signer,
        )

    async def _estimate_gas(self, params: CallParams) -> str:
        state = self.simulation_state
        block_delta = len(state.blocks) if state is not None else 0
        gas = await simulate_estimate_gas(
            self.upstream, state, params.transaction.to_request(), block_delta, self.signer
        )
        return quantity_to_hex(gas)

    async def _get_logs(self, params: GetLogsParams) -> list[dict]:
        return await get_simulated_logs(self.upstream, self.simulation_state, params.filter.to_rpc())

    async def _get_block_by_number(self, params: BlockByNumberParams) -> Optional[dict]:
        return await get_simulated_block(
            self.upstream, self.simulation_state, params.block_tag, params.full_transactions
        )

    async def _get_block_by_hash(self, params: BlockByHashParams) -> Optional[dict]:
        return await get_simulated_block_by_hash(
            self.upstream, self.simulation_state, params.block_hash, params.full_transactions
        )

    async def _get_transaction_by_hash(self, params: TransactionHashParams) -> Optional[dict]:
        return await get_simulated_transaction_by_hash(self.upstream, self.simulation_state, params.tx_hash)

    async def _get_transaction_receipt(self, params: TransactionHashParams) -> Optional[dict]:
        return await get_simulated_transaction_receipt(self.upstream, self.simulation_state, params.tx_hash)

    async def _fee_history(self, params: FeeHistoryParams) -> dict:
        return await get_simulated_fee_history(self.upstream, params.newest_block, params.reward_percentiles)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _form_send_transaction(
        self,
        state: Optional[SimulationState],
        block_delta: int,
        request: TransactionRequest,
    ) -> UnsignedTransaction:
        """Fill from, nonce, fee fields and gas of a send request."""
        if self.active_address is None:
            raise NoActiveAddressError(NO_ACTIVE_ADDRESS_MESSAGE)
        from_address = request.from_address or self.active_address

        parent_block = await get_parent_block(self.upstream)
        if parent_block.base_fee_per_gas is None:
            raise LegacyBlockError(
                CANNOT_SIMULATE_OFF_LEGACY_BLOCK,
                details={"block_number": parent_block.number},
            )

        max_priority_fee_per_gas = (
            request.max_priority_fee_per_gas
            if request.max_priority_fee_per_gas is not None
            else self.default_max_priority_fee_per_gas
        )
        max_fee_per_gas = (
            request.max_fee_per_gas
            if request.max_fee_per_gas is not None
            else 2 * parent_block.base_fee_per_gas + max_priority_fee_per_gas
        )
        nonce = request.nonce
        if nonce is None:
            nonce = await get_simulated_transaction_count_over_stack(self.upstream, state, from_address)

        gas = request.gas
        if gas is None:
            gas = await simulate_estimate_gas(
                self.upstream,
                state,
                TransactionRequest(
                    from_address=from_address,
                    to=request.to,
                    value=request.value,
                    input=request.input,
                    max_fee_per_gas=max_fee_per_gas,
                    max_priority_fee_per_gas=max_priority_fee_per_gas,
                ),
                block_delta,
                self.signer,
            )

        return UnsignedTransaction(
            type=TransactionType.EIP1559,
            from_address=from_address,
            nonce=nonce,
            gas=gas,
            to=request.to,
            value=request.value or 0,
            input=request.input,
            chain_id=self.upstream.chain_id,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
        )

    async def send_transaction(self, params: SendTransactionParams) -> str:
        """
        Append the transaction as a new block and return its hash.

        The overlay keeps the transaction even when it fails; the failure is
        then raised as ExecutionRevertedError with the revert data.
        """
        async with self._lock:
            state = self.simulation_state
            block_delta = len(state.blocks) if state is not None else 0
            transaction = await self._form_send_transaction(state, block_delta, params.transaction.to_request())
            new_state = await append_transaction(
                self.upstream, state, [transaction], block_delta, signer=self.signer
            )
            self.simulation_state = new_state

        simulated = new_state.blocks[-1].simulated_transactions[-1]
        signed = simulated.pre_simulation_transaction
        result = simulated.call_result
        log_transaction(
            logger,
            tx_hash=signed.hash,
            status=result.status,
            block_delta=block_delta,
            gas_used=result.gas_used,
        )

        if not result.success:
            raise ExecutionRevertedError(
                result.error.message if result.error else "execution reverted",
                code=result.error.code if result.error else None,
                data=result.revert_data,
                details={"tx_hash": signed.hash},
            )

        if self._after_send_callback is not None:
            callback_result = self._after_send_callback(params, simulated)
            if asyncio.iscoroutine(callback_result):
                await callback_result
        return signed.hash

    async def _sign_message(self, method: str, params: Union[PersonalSignParams, SignTypedDataParams]) -> str:
        if isinstance(params, PersonalSignParams):
            raw_params = [params.message, params.address]
        else:
            raw_params = [params.address, params.typed_data]
        signed_message = self.signer.sign_message(method, raw_params)
        async with self._lock:
            self.simulation_state = await append_signed_message(
                self.upstream, self.simulation_state, signed_message
            )
        return signed_message.signature

    async def add_state_overrides(self, state_overrides: Mapping[str, Union[AccountOverride, dict]]) -> None:
        """Append a block that applies state_overrides (wire dicts or AccountOverride)."""
        overrides = {
            normalize_address(address): override
            for address, override in state_overrides.items()
            if isinstance(override, AccountOverride)
        }
        overrides.update(state_overrides_from_rpc({
            address: override
            for address, override in state_overrides.items()
            if not isinstance(override, AccountOverride)
        }))
        async with self._lock:
            self.simulation_state = await append_block(
                self.upstream, self.simulation_state, overrides, self.time_increase_delta
            )
        logger.info(
            f"Added state overrides for {len(overrides)} account(s)",
            extra={"context": {"accounts": list(overrides), "blocks": len(self.simulation_state.blocks)}},
        )

    async def advance_time(self, seconds: int) -> None:
        """Append an empty block seconds after the current tip."""
        async with self._lock:
            self.simulation_state = await append_block(
                self.upstream, self.simulation_state, None, seconds
            )
        logger.info(
            f"Advanced time by {seconds}s",
            extra={"context": {"seconds": seconds, "blocks": len(self.simulation_state.blocks)}},
        )

    async def sync_to_latest_block(self) -> None:
        """
        Re-base the pending chain onto the current real head.

        A sync still in flight is aborted with the new-block reason and its
        caller receives NewBlockAbortError.
        """
        if self._refresh_abort is not None:
            self._refresh_abort.abort(NEW_BLOCK_ABORT)
        abort = AbortController()
        self._refresh_abort = abort
        try:
            async with self._lock:
                abort.raise_if_aborted()
                self.simulation_state = await refresh_simulation_state(
                    self.upstream, self.simulation_state, self.signer, abort
                )
        finally:
            if self._refresh_abort is abort:
                self._refresh_abort = None

    def set_after_transaction_send_callback(self, callback: Optional[AfterSendCallback]) -> None:
        self._after_send_callback = callback

    async def get_time(self) -> datetime:
        """Timestamp of the real baseline block (now when not overlaid)."""
        state = self.simulation_state
        if state is None:
            return now_utc()
        return to_datetime(state.block_timestamp)

    async def get_block(self) -> int:
        """Number of the real baseline block."""
        state = self.simulation_state
        if state is None:
            return await self.upstream.get_block_number()
        return state.block_number

    def is_overlaid(self) -> bool:
        return has_overlay(self.simulation_state)
