"""
simulation/gas.py - Gas estimation on top of the pending chain.
"""

from typing import Optional, Sequence

from chains.providers import RPCProvider
from core.abort import AbortController
from core.constants import (
    GAS_ESTIMATE_MULTIPLIER_DENOMINATOR,
    GAS_ESTIMATE_MULTIPLIER_NUMERATOR,
    GAS_ESTIMATION_FAILED_CODE,
    MOCK_ADDRESS,
    TransactionType,
)
from core.exceptions import GasEstimationError, JsonRpcResponseError
from core.logging import get_logger
from core.models import SimulatedTransaction, SimulationState, TransactionRequest, UnsignedTransaction
from simulation.queries import (
    get_simulated_transaction_count_over_stack,
    simulated_multicall,
)
from simulation.signer import SimulationSigner
from simulation.state import get_parent_block

logger = get_logger(__name__)


def simulation_gas_left(simulated_transactions: Sequence[SimulatedTransaction], gas_limit: int) -> int:
    """Gas left in a block of gas_limit after the queued gas limits."""
    queued_gas = sum(tx.pre_simulation_transaction.gas for tx in simulated_transactions)
    return max(gas_limit * 1023 // 1024 - queued_gas, 0)


def _fee_fields(request: TransactionRequest) -> tuple[int, int]:
    """(maxFeePerGas, maxPriorityFeePerGas) for the estimation transaction."""
    if request.gas_price is not None:
        return request.gas_price, request.gas_price
    if request.max_fee_per_gas is not None and request.max_priority_fee_per_gas is not None:
        return request.max_fee_per_gas, request.max_priority_fee_per_gas
    return 0, 0


async def simulate_estimate_gas(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    request: TransactionRequest,
    block_delta: int,
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> int:
    """
    Estimate gas for request as if it ran after the pending chain.

    The gas used in simulation is padded by 35% for refunds and by 64/63 for
    the all-but-one-64th forwarding rule, then capped at the gas left in the
    target block.

    Returns:
        Gas limit estimate

    Raises:
        GasEstimationError: If the simulated execution fails; carries the
            node's code, message and revert data
    """
    from_address = request.from_address or MOCK_ADDRESS
    parent_block = await get_parent_block(upstream, abort)
    queued = ()
    if state is not None and 0 <= block_delta < len(state.blocks):
        queued = state.blocks[block_delta].simulated_transactions
    max_gas = simulation_gas_left(queued, parent_block.gas_limit)

    max_fee_per_gas, max_priority_fee_per_gas = _fee_fields(request)
    estimate_transaction = UnsignedTransaction(
        type=TransactionType.EIP1559,
        from_address=from_address,
        nonce=await get_simulated_transaction_count_over_stack(upstream, state, from_address, "latest", abort),
        gas=request.gas if request.gas is not None else max_gas,
        to=request.to,
        value=request.value or 0,
        input=request.input,
        chain_id=upstream.chain_id,
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
    )

    try:
        result_state = await simulated_multicall(upstream, state, [estimate_transaction], None, signer, abort)
    except JsonRpcResponseError as e:
        raise GasEstimationError(
            e.message,
            code=e.code,
            data=e.data if isinstance(e.data, str) else "0x",
        ) from e

    if not result_state.blocks or not result_state.blocks[-1].simulated_transactions:
        raise GasEstimationError(
            "ETH Simulate Failed to estimate gas",
            code=GAS_ESTIMATION_FAILED_CODE,
            data="0x",
        )
    result = result_state.blocks[-1].simulated_transactions[-1].call_result

    if not result.success:
        error = result.error
        logger.debug(
            "Gas estimation failed in simulation",
            extra={"context": {"from": from_address, "to": request.to, "error": error.message if error else None}},
        )
        raise GasEstimationError(
            error.message if error else "ETH Simulate Failed to estimate gas",
            code=error.code if error else GAS_ESTIMATION_FAILED_CODE,
            data=result.revert_data,
        )

    gas_spent = result.gas_used * GAS_ESTIMATE_MULTIPLIER_NUMERATOR // GAS_ESTIMATE_MULTIPLIER_DENOMINATOR
    return min(gas_spent, max_gas)
