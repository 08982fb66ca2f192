"""
simulation/fees.py - EIP-1559 fee arithmetic and fee history.
"""

from typing import Optional, Sequence, Union

from chains.providers import BlockTag, RPCProvider
from core.abort import AbortController
from core.constants import BASE_FEE_CHANGE_DENOMINATOR, ELASTICITY_MULTIPLIER
from core.encoding import hex_to_quantity, quantity_to_hex
from core.exceptions import LegacyBlockError, TransportError
from core.logging import get_logger
from core.math import weighted_percentile
from core.models import SimulationStateInputBlock, UnsignedTransaction
from simulation.signer import SimulationSigner

logger = get_logger(__name__)


def get_next_base_fee_per_gas(gas_used: int, gas_limit: int, base_fee_per_gas: int) -> int:
    """
    EIP-1559 base fee of the child block.

    target = gas_limit / ELASTICITY_MULTIPLIER. At target the fee is
    unchanged; above it rises by at least 1; below it falls, floored at 0.
    """
    gas_target = gas_limit // ELASTICITY_MULTIPLIER
    if gas_target == 0 or gas_used == gas_target:
        return base_fee_per_gas
    if gas_used > gas_target:
        delta = base_fee_per_gas * (gas_used - gas_target) // gas_target // BASE_FEE_CHANGE_DENOMINATOR
        return base_fee_per_gas + max(1, delta)
    delta = base_fee_per_gas * (gas_target - gas_used) // gas_target // BASE_FEE_CHANGE_DENOMINATOR
    return max(0, base_fee_per_gas - delta)


def calculate_realized_effective_gas_price(tx: UnsignedTransaction, base_fee_per_gas: int) -> int:
    """Price actually paid per gas: gasPrice, or min(base + tip, maxFee)."""
    if not tx.is_fee_market:
        return tx.gas_price or 0
    max_fee = tx.max_fee_per_gas or 0
    priority_fee = tx.max_priority_fee_per_gas or 0
    return min(base_fee_per_gas + priority_fee, max_fee)


def get_base_fee_adjusted_transactions(
    parent_base_fee_per_gas: int,
    input_blocks: Sequence[SimulationStateInputBlock],
    signer: SimulationSigner,
) -> list[SimulationStateInputBlock]:
    """
    Raise maxFeePerGas of fee-market transactions to 2 * parent base fee + tip.

    Used when the pending chain is re-based onto a newer real block whose
    base fee may have moved. Affected transactions are re-signed, so their
    hashes change.
    """
    adjusted = []
    for block in input_blocks:
        transactions = []
        for signed in block.transactions:
            tx = signed.transaction
            if not tx.is_fee_market:
                transactions.append(signed)
                continue
            max_fee = 2 * parent_base_fee_per_gas + (tx.max_priority_fee_per_gas or 0)
            transactions.append(signer.sign_transaction(tx.replace(max_fee_per_gas=max_fee)))
        adjusted.append(SimulationStateInputBlock(
            state_overrides=block.state_overrides,
            transactions=tuple(transactions),
            signed_messages=block.signed_messages,
            time_increase_delta=block.time_increase_delta,
        ))
    return adjusted


def _priority_fee_data_point(tx: dict, base_fee_per_gas: int) -> tuple[int, int]:
    """(effective priority fee, gas) of a full upstream transaction object."""
    if not isinstance(tx, dict) or "gas" not in tx:
        return 0, 0
    gas = hex_to_quantity(tx["gas"])
    if "maxPriorityFeePerGas" in tx and "maxFeePerGas" in tx:
        priority_fee = hex_to_quantity(tx["maxPriorityFeePerGas"])
        max_fee = hex_to_quantity(tx["maxFeePerGas"])
        return min(priority_fee, max_fee - base_fee_per_gas), gas
    if "gasPrice" in tx:
        return hex_to_quantity(tx["gasPrice"]) - base_fee_per_gas, gas
    return 0, 0


async def get_simulated_fee_history(
    upstream: RPCProvider,
    block_tag: BlockTag,
    reward_percentiles: Optional[Sequence[Union[int, float]]] = None,
    abort: Optional[AbortController] = None,
) -> dict:
    """
    Single-block fee history of the newest real block at or below block_tag.

    Rewards are weighted by transaction gas limit; negative effective tips
    are clamped to zero.

    Raises:
        LegacyBlockError: If the block has no base fee
    """
    current_block_number = await upstream.get_block_number(abort)
    if isinstance(block_tag, int) and block_tag > current_block_number:
        logger.debug(
            f"Fee history requested past head, clamping {block_tag} to {current_block_number}",
            extra={"context": {"requested": block_tag, "head": current_block_number}},
        )
        block_tag = current_block_number

    newest_block = await upstream.get_block(block_tag, full_transactions=True, abort=abort)
    if newest_block is None:
        raise TransportError(f"Upstream returned no block for {block_tag}")
    base_fee = newest_block.base_fee_per_gas
    if base_fee is None:
        raise LegacyBlockError(
            f"Block {newest_block.number} has no base fee per gas",
            details={"block_number": newest_block.number},
        )

    result = {
        "baseFeePerGas": [
            quantity_to_hex(base_fee),
            quantity_to_hex(get_next_base_fee_per_gas(newest_block.gas_used, newest_block.gas_limit, base_fee)),
        ],
        "gasUsedRatio": [
            newest_block.gas_used / newest_block.gas_limit if newest_block.gas_limit else 0.0
        ],
        "oldestBlock": quantity_to_hex(newest_block.number),
    }

    if reward_percentiles is not None:
        points = [
            _priority_fee_data_point(tx, base_fee)
            for tx in newest_block.raw.get("transactions", [])
        ]
        points = [(max(0, value), weight) for value, weight in points]
        result["reward"] = [[
            quantity_to_hex(weighted_percentile(points, percentile))
            for percentile in reward_percentiles
        ]]

    return result
