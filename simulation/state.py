"""
simulation/state.py - Layered simulation state.

A SimulationState is an ordered stack of pending blocks on top of a real
baseline block. Every mutation rebuilds the whole stack with one batched
eth_simulateV1 call and returns a fresh state; callers swap their reference
only after the call succeeds, so a failed rebuild leaves the old state intact.
"""

from typing import Mapping, Optional, Sequence

from chains.providers import RPCProvider
from core.abort import AbortController
from core.constants import DEFAULT_TIME_INCREASE_DELTA, NONCE_ERROR_CODES, NONCE_ERROR_MESSAGES
from core.exceptions import LegacyBlockError, SimulationIntegrityError, TransportError
from core.logging import get_logger, log_error, log_simulation
from core.models import (
    AccountOverride,
    Block,
    SimulatedTransaction,
    SimulationBlock,
    SimulationState,
    SimulationStateInputBlock,
    SignedMessage,
    UnsignedTransaction,
    merge_state_overrides,
)
from core.time import elapsed_ms, now_ms
from simulation.fees import calculate_realized_effective_gas_price, get_base_fee_adjusted_transactions
from simulation.signer import MockSigner, SimulationSigner

logger = get_logger(__name__)


async def get_parent_block(upstream: RPCProvider, abort: Optional[AbortController] = None) -> Block:
    """Latest real block; the baseline every simulation builds on."""
    block = await upstream.get_block("latest", abort=abort)
    if block is None:
        raise TransportError("Upstream returned no latest block")
    return block


async def create_simulation_state(
    upstream: RPCProvider,
    input_blocks: Sequence[SimulationStateInputBlock],
    abort: Optional[AbortController] = None,
    parent_block: Optional[Block] = None,
) -> SimulationState:
    """
    Simulate input_blocks on top of the latest real block.

    With no input blocks the upstream simulate call is skipped and an empty
    state at the baseline is returned.

    Raises:
        SimulationIntegrityError: If the node returns a different number of
            blocks, or of calls within a block, than was requested
    """
    if parent_block is None:
        parent_block = await get_parent_block(upstream, abort)

    if not input_blocks:
        return SimulationState(
            blocks=(),
            block_number=parent_block.number,
            block_timestamp=parent_block.timestamp,
            base_fee_per_gas=parent_block.base_fee_per_gas or 0,
            simulation_conducted_timestamp=now_ms(),
        )

    start_ms = now_ms()
    results = await upstream.simulate(input_blocks, parent_block, abort)

    if len(results) != len(input_blocks):
        log_error(
            logger,
            "SIMULATION_INTEGRITY",
            "Block count mismatch in simulation result",
            requested=len(input_blocks),
            returned=len(results),
        )
        raise SimulationIntegrityError(
            f"Simulation returned {len(results)} blocks, expected {len(input_blocks)}",
            details={"requested": len(input_blocks), "returned": len(results)},
        )

    blocks = []
    for block_delta, (input_block, result) in enumerate(zip(input_blocks, results)):
        if len(result.calls) != len(input_block.transactions):
            log_error(
                logger,
                "SIMULATION_INTEGRITY",
                "Call count mismatch in simulated block",
                block_delta=block_delta,
                requested=len(input_block.transactions),
                returned=len(result.calls),
            )
            raise SimulationIntegrityError(
                f"Simulated block {block_delta} returned {len(result.calls)} calls, "
                f"expected {len(input_block.transactions)}",
                details={"block_delta": block_delta},
            )
        blocks.append(SimulationBlock(
            state_overrides=input_block.state_overrides,
            simulated_transactions=tuple(
                SimulatedTransaction(
                    pre_simulation_transaction=signed,
                    call_result=call_result,
                    realized_gas_price=calculate_realized_effective_gas_price(
                        signed.transaction, result.base_fee_per_gas
                    ),
                )
                for signed, call_result in zip(input_block.transactions, result.calls)
            ),
            signed_messages=input_block.signed_messages,
            time_increase_delta=input_block.time_increase_delta,
        ))

    log_simulation(
        logger,
        block_number=parent_block.number,
        blocks=len(blocks),
        transactions=sum(len(block.transactions) for block in input_blocks),
        latency_ms=elapsed_ms(start_ms),
    )

    return SimulationState(
        blocks=tuple(blocks),
        block_number=parent_block.number,
        block_timestamp=parent_block.timestamp,
        base_fee_per_gas=results[0].base_fee_per_gas,
        simulation_conducted_timestamp=now_ms(),
    )


def _input_blocks(state: Optional[SimulationState]) -> list[SimulationStateInputBlock]:
    if state is None:
        return []
    return list(state.to_input_blocks())


async def append_transaction(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    transactions: Sequence[UnsignedTransaction],
    block_delta: int,
    state_overrides: Optional[Mapping[str, AccountOverride]] = None,
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> SimulationState:
    """
    Queue transactions in the block at block_delta and rebuild the stack.

    The overrides merge into the target block only. When block_delta is past
    the tip, a new trailing block with the default time delta is created for
    the transactions and overrides.
    """
    signer = signer or MockSigner()
    state_overrides = state_overrides or {}
    new_transactions = tuple(signer.sign_transaction(tx) for tx in transactions)

    input_blocks = _input_blocks(state)
    if 0 <= block_delta < len(input_blocks):
        target = input_blocks[block_delta]
        input_blocks[block_delta] = SimulationStateInputBlock(
            state_overrides=merge_state_overrides(target.state_overrides, state_overrides),
            transactions=target.transactions + new_transactions,
            signed_messages=target.signed_messages,
            time_increase_delta=target.time_increase_delta,
        )
    else:
        input_blocks.append(SimulationStateInputBlock(
            state_overrides=merge_state_overrides({}, state_overrides),
            transactions=new_transactions,
            time_increase_delta=DEFAULT_TIME_INCREASE_DELTA,
        ))

    return await create_simulation_state(upstream, input_blocks, abort)


async def append_block(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    state_overrides: Optional[Mapping[str, AccountOverride]] = None,
    time_increase_delta: int = DEFAULT_TIME_INCREASE_DELTA,
    abort: Optional[AbortController] = None,
) -> SimulationState:
    """Append a block holding only overrides and/or a time delta, then rebuild."""
    if time_increase_delta < 0:
        raise ValueError(f"Time increase cannot be negative: {time_increase_delta}")
    input_blocks = _input_blocks(state)
    input_blocks.append(SimulationStateInputBlock(
        state_overrides=merge_state_overrides({}, state_overrides or {}),
        time_increase_delta=time_increase_delta,
    ))
    return await create_simulation_state(upstream, input_blocks, abort)


async def append_signed_message(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    message: SignedMessage,
    abort: Optional[AbortController] = None,
) -> SimulationState:
    """Record a signed message in the tip block (a new block when empty)."""
    input_blocks = _input_blocks(state)
    if input_blocks:
        tip = input_blocks[-1]
        input_blocks[-1] = SimulationStateInputBlock(
            state_overrides=tip.state_overrides,
            transactions=tip.transactions,
            signed_messages=tip.signed_messages + (message,),
            time_increase_delta=tip.time_increase_delta,
        )
    else:
        input_blocks.append(SimulationStateInputBlock(signed_messages=(message,)))
    return await create_simulation_state(upstream, input_blocks, abort)


def is_fixable_nonce_error(simulated: SimulatedTransaction) -> bool:
    """Failure caused by a wrong nonce (structured code first, message second)."""
    result = simulated.call_result
    if result.success or result.error is None:
        return False
    if result.error.code in NONCE_ERROR_CODES:
        return True
    return result.error.message.lower().startswith(NONCE_ERROR_MESSAGES)


async def get_nonce_fixed_input_blocks(
    upstream: RPCProvider,
    state: SimulationState,
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> Optional[list[SimulationStateInputBlock]]:
    """
    Re-nonce transactions that failed on a wrong nonce.

    Transactions are scanned in commit order. A fixable one gets the
    sender's previous nonce in this scan plus one, or the sender's real
    'latest' transaction count when it is the sender's first. Fixed
    transactions are re-signed.

    Returns:
        Revised input blocks, or None when nothing needed fixing
    """
    if not any(
        is_fixable_nonce_error(tx) for block in state.blocks for tx in block.simulated_transactions
    ):
        return None

    signer = signer or MockSigner()
    known_previous_nonce: dict[str, int] = {}
    fixed_blocks = []
    fixed_count = 0

    for block in state.blocks:
        transactions = []
        for simulated in block.simulated_transactions:
            signed = simulated.pre_simulation_transaction
            sender = signed.from_address
            if is_fixable_nonce_error(simulated):
                if sender in known_previous_nonce:
                    nonce = known_previous_nonce[sender] + 1
                else:
                    nonce = await upstream.get_transaction_count(sender, "latest", abort)
                signed = signer.sign_transaction(signed.transaction.replace(nonce=nonce))
                fixed_count += 1
            transactions.append(signed)
            known_previous_nonce[sender] = signed.nonce
        fixed_blocks.append(SimulationStateInputBlock(
            state_overrides=block.state_overrides,
            transactions=tuple(transactions),
            signed_messages=block.signed_messages,
            time_increase_delta=block.time_increase_delta,
        ))

    logger.info(
        f"Fixed {fixed_count} nonce error(s)",
        extra={"context": {"fixed": fixed_count, "block_number": state.block_number}},
    )
    return fixed_blocks


async def refresh_simulation_state(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> SimulationState:
    """
    Re-base the pending chain onto the current real head.

    Fee-market transactions get their max fee raised for the new parent base
    fee, the stack is re-simulated, and if any transaction now fails on a
    wrong nonce it is re-nonced and simulated once more.

    Raises:
        LegacyBlockError: If the new head has no base fee and fee-market
            transactions are pending
    """
    signer = signer or MockSigner()
    parent_block = await get_parent_block(upstream, abort)

    if state is None or not state.blocks:
        return await create_simulation_state(upstream, (), abort, parent_block)
    if parent_block.number == state.block_number:
        return state

    input_blocks = list(state.to_input_blocks())
    if parent_block.base_fee_per_gas is not None:
        input_blocks = get_base_fee_adjusted_transactions(parent_block.base_fee_per_gas, input_blocks, signer)
    elif any(tx.transaction.is_fee_market for block in input_blocks for tx in block.transactions):
        raise LegacyBlockError(
            f"Block {parent_block.number} has no base fee per gas",
            details={"block_number": parent_block.number},
        )

    logger.info(
        f"Re-basing {len(input_blocks)} simulated block(s) onto {parent_block.number}",
        extra={"context": {"old_block_number": state.block_number, "block_number": parent_block.number}},
    )

    new_state = await create_simulation_state(upstream, input_blocks, abort, parent_block)
    fixed_blocks = await get_nonce_fixed_input_blocks(upstream, new_state, signer, abort)
    if fixed_blocks is None:
        return new_state
    return await create_simulation_state(upstream, fixed_blocks, abort, parent_block)
