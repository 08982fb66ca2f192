"""
simulation/queries.py - Overlay-aware reads.

Each query answers from the pending blocks when the requested position is
simulated and falls through to the real node otherwise. Results are in
JSON-RPC wire form.
"""

from typing import Any, Optional, Sequence, Union

import rlp
from eth_utils import encode_hex, keccak

from chains.providers import BlockTag, RPCProvider, block_param
from core.abort import AbortController
from core.constants import (
    BLOCK_HASH_MULTIPLIER,
    CANNOT_SIMULATE_OFF_LEGACY_BLOCK,
    DEFAULT_CALL_ADDRESS,
    GAS_PER_BLOB,
    GET_CODE_FAILED_CODE,
    MOCK_ADDRESS,
    PROXY_DEPLOYER_ADDRESS,
    TEMP_CONTRACT_ADDRESS,
    TransactionType,
    ZERO_HASH,
)
from core.encoding import (
    address_to_bytes,
    data_to_hex,
    hex_to_quantity,
    int_to_bytes32_hex,
    normalize_address,
    quantity_to_hex,
)
from core.exceptions import (
    ExecutionRevertedError,
    JsonRpcResponseError,
    LegacyBlockError,
    SimulationIntegrityError,
    UserInputError,
)
from core.logging import get_logger
from core.models import (
    AccountOverride,
    Block,
    CallResult,
    SignedTransaction,
    SimulatedTransaction,
    SimulationState,
    TransactionRequest,
    UnsignedTransaction,
)
from simulation.bytecodes import (
    BALANCE_READER_CODE,
    CODE_READER_CODE,
    decode_balance_result,
    decode_code_result,
    encode_address_argument,
)
from simulation.fees import get_next_base_fee_per_gas
from simulation.signer import SimulationSigner
from simulation.state import append_transaction, get_parent_block

logger = get_logger(__name__)

DIRECT_QUERY_TAGS = ("finalized", "safe", "earliest")
TIP_TAGS = ("latest", "pending")
EMPTY_LOGS_BLOOM = "0x" + "00" * 256


# ============================================================================
# STACK POSITION
# ============================================================================

def has_overlay(state: Optional[SimulationState]) -> bool:
    return state is not None and len(state.blocks) > 0


def can_query_node_directly(state: Optional[SimulationState], block_tag: BlockTag = "latest") -> bool:
    """True when the requested position is not affected by pending blocks."""
    if not has_overlay(state):
        return True
    if block_tag in DIRECT_QUERY_TAGS:
        return True
    return isinstance(block_tag, int) and block_tag <= state.block_number


def get_simulated_block_number(state: SimulationState) -> int:
    return state.tip_block_number


def get_hash_of_simulated_block(state: SimulationState, block_delta: int) -> str:
    """Deterministic per session: conducted timestamp and delta."""
    return int_to_bytes32_hex(state.simulation_conducted_timestamp * BLOCK_HASH_MULTIPLIER + block_delta)


def find_simulated_block_by_hash(state: Optional[SimulationState], block_hash: str) -> Optional[int]:
    if not has_overlay(state):
        return None
    block_hash = block_hash.lower()
    for block_delta in range(len(state.blocks)):
        if get_hash_of_simulated_block(state, block_delta) == block_hash:
            return block_delta
    return None


async def get_simulated_transaction_count_over_stack(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    address: str,
    block_tag: BlockTag = "latest",
    abort: Optional[AbortController] = None,
) -> int:
    """
    Transaction count of address at block_tag, including queued transactions.

    Historical positions (at or below the baseline) and the finalized, safe
    and earliest tags are answered by the node alone.
    """
    address = normalize_address(address)
    if can_query_node_directly(state, block_tag):
        return await upstream.get_transaction_count(address, block_tag, abort)

    target_block_number = state.tip_block_number if block_tag in TIP_TAGS else block_tag
    added_transactions = 0
    for block_delta, block in enumerate(state.blocks):
        if state.simulated_block_number(block_delta) > target_block_number:
            break
        added_transactions += sum(
            1 for tx in block.simulated_transactions
            if tx.pre_simulation_transaction.from_address == address
        )

    real_count = await upstream.get_transaction_count(address, state.block_number, abort)
    return real_count + added_transactions


def get_deployed_contract_address(from_address: str, nonce: int) -> str:
    """CREATE address: keccak(rlp([sender, nonce]))[12:]."""
    return encode_hex(keccak(rlp.encode([address_to_bytes(from_address), nonce]))[12:])


# ============================================================================
# MULTICALL / CALL
# ============================================================================

async def simulated_multicall(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    transactions: Sequence[UnsignedTransaction],
    state_overrides: Optional[dict[str, AccountOverride]] = None,
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> SimulationState:
    """Run transactions in a new trailing block on a disposable copy of state."""
    block_delta = len(state.blocks) if state is not None else 0
    return await append_transaction(
        upstream, state, transactions, block_delta, state_overrides, signer, abort
    )


def last_call_result(state: SimulationState) -> CallResult:
    if not state.blocks or not state.blocks[-1].simulated_transactions:
        raise SimulationIntegrityError("Simulation returned no result for the appended call")
    return state.blocks[-1].simulated_transactions[-1].call_result


async def _read_with_helper(
    upstream: RPCProvider,
    state: SimulationState,
    helper_code: bytes,
    address: str,
    signer: Optional[SimulationSigner],
    abort: Optional[AbortController],
) -> CallResult:
    parent_block = await get_parent_block(upstream, abort)
    read_transaction = UnsignedTransaction(
        type=TransactionType.EIP1559,
        from_address=MOCK_ADDRESS,
        nonce=await get_simulated_transaction_count_over_stack(upstream, state, MOCK_ADDRESS, "latest", abort),
        gas=parent_block.gas_limit,
        to=TEMP_CONTRACT_ADDRESS,
        input=encode_address_argument(address),
        chain_id=upstream.chain_id,
        max_fee_per_gas=0,
        max_priority_fee_per_gas=0,
    )
    result_state = await simulated_multicall(
        upstream,
        state,
        [read_transaction],
        {TEMP_CONTRACT_ADDRESS: AccountOverride(code=helper_code)},
        signer,
        abort,
    )
    return last_call_result(result_state)


async def get_simulated_balance(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    address: str,
    block_tag: BlockTag = "latest",
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> int:
    """Balance at the tip of the pending chain (or from the node directly)."""
    if can_query_node_directly(state, block_tag):
        return await upstream.get_balance(address, block_tag, abort)

    result = await _read_with_helper(upstream, state, BALANCE_READER_CODE, address, signer, abort)
    if not result.success:
        raise ExecutionRevertedError(
            f"Balance read failed: {result.error.message if result.error else 'unknown error'}",
            data=result.revert_data,
        )
    return decode_balance_result(result.return_data)


async def get_simulated_code(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    address: str,
    block_tag: BlockTag = "latest",
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> bytes:
    """Code at the tip of the pending chain (or from the node directly)."""
    if can_query_node_directly(state, block_tag):
        return await upstream.get_code(address, block_tag, abort)

    result = await _read_with_helper(upstream, state, CODE_READER_CODE, address, signer, abort)
    if not result.success:
        raise ExecutionRevertedError(
            "Failed to get code",
            code=GET_CODE_FAILED_CODE,
            data=result.revert_data,
        )
    return decode_code_result(result.return_data)


async def simulated_call(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    request: TransactionRequest,
    block_tag: BlockTag = "latest",
    signer: Optional[SimulationSigner] = None,
    abort: Optional[AbortController] = None,
) -> str:
    """
    eth_call on top of the pending chain.

    The call executes as a fee-market transaction in a throwaway trailing
    block; from defaults to 0x...01 and gas to the block gas limit.

    Returns:
        Hex encoded return data

    Raises:
        ExecutionRevertedError: If the call fails, with revert data attached
    """
    if block_tag == "finalized":
        call_object: dict[str, Any] = {"data": data_to_hex(request.input)}
        if request.from_address is not None:
            call_object["from"] = request.from_address
        if request.to is not None:
            call_object["to"] = request.to
        if request.value is not None:
            call_object["value"] = quantity_to_hex(request.value)
        if request.gas is not None:
            call_object["gas"] = quantity_to_hex(request.gas)
        try:
            return await upstream.eth_call(call_object, "finalized", abort)
        except JsonRpcResponseError as e:
            raise ExecutionRevertedError(e.message, code=e.code, data=e.data if isinstance(e.data, str) else "0x") from e

    from_address = request.from_address or DEFAULT_CALL_ADDRESS
    parent_block = await get_parent_block(upstream, abort)
    gas_price = request.gas_price if request.gas_price is not None else 0
    call_transaction = UnsignedTransaction(
        type=TransactionType.EIP1559,
        from_address=from_address,
        nonce=await get_simulated_transaction_count_over_stack(upstream, state, from_address, block_tag, abort),
        gas=request.gas if request.gas is not None else parent_block.gas_limit,
        to=request.to,
        value=request.value or 0,
        input=request.input,
        chain_id=upstream.chain_id,
        max_fee_per_gas=gas_price,
        max_priority_fee_per_gas=0,
    )

    try:
        result_state = await simulated_multicall(upstream, state, [call_transaction], None, signer, abort)
    except JsonRpcResponseError as e:
        raise ExecutionRevertedError(e.message, code=e.code, data=e.data if isinstance(e.data, str) else "0x") from e

    result = last_call_result(result_state)
    if not result.success:
        error = result.error
        raise ExecutionRevertedError(
            error.message if error else "execution reverted",
            code=error.code if error else None,
            data=result.revert_data,
        )
    return data_to_hex(result.return_data)


# ============================================================================
# BLOCKS
# ============================================================================

def _block_gas_used(state: SimulationState, block_delta: int) -> int:
    return sum(tx.call_result.gas_used for tx in state.blocks[block_delta].simulated_transactions)


def get_simulated_base_fee(state: SimulationState, parent_block: Block, block_delta: int) -> int:
    """EIP-1559 base fee of a simulated block, chained from the real parent."""
    if parent_block.base_fee_per_gas is None:
        raise LegacyBlockError(CANNOT_SIMULATE_OFF_LEGACY_BLOCK, details={"block_number": parent_block.number})
    base_fee = get_next_base_fee_per_gas(
        parent_block.gas_used, parent_block.gas_limit, parent_block.base_fee_per_gas
    )
    for previous_delta in range(block_delta):
        base_fee = get_next_base_fee_per_gas(
            _block_gas_used(state, previous_delta), parent_block.gas_limit, base_fee
        )
    return base_fee


def transaction_with_block_data(
    state: SimulationState,
    block_delta: int,
    transaction_index: int,
    simulated: SimulatedTransaction,
) -> dict:
    """Signed transaction in eth_getTransactionByHash form."""
    signed = simulated.pre_simulation_transaction
    result = signed.to_rpc()
    result.update({
        "blockHash": get_hash_of_simulated_block(state, block_delta),
        "blockNumber": quantity_to_hex(state.simulated_block_number(block_delta)),
        "transactionIndex": quantity_to_hex(transaction_index),
        "data": result["input"],
    })
    if signed.transaction.is_fee_market:
        result["gasPrice"] = quantity_to_hex(simulated.realized_gas_price)
    return result


def synthesize_block(
    state: SimulationState,
    parent_block: Block,
    block_delta: int,
    full_transactions: bool,
) -> dict:
    """
    Header for a simulated block.

    Number, hash, parent hash, timestamp, gas fields, base fee and the
    transaction list are accurate. Roots, bloom, mix hash and size are
    copied from the real parent and only placeholders.
    """
    raw = dict(parent_block.raw)
    block = state.blocks[block_delta]

    if full_transactions:
        transactions: list[Any] = [
            transaction_with_block_data(state, block_delta, index, simulated)
            for index, simulated in enumerate(block.simulated_transactions)
        ]
    else:
        transactions = [tx.pre_simulation_transaction.hash for tx in block.simulated_transactions]

    parent_hash = parent_block.hash if block_delta == 0 else get_hash_of_simulated_block(state, block_delta - 1)
    difficulty = hex_to_quantity(raw.get("difficulty", "0x0"))
    total_difficulty = hex_to_quantity(raw.get("totalDifficulty", "0x0")) + difficulty * (block_delta + 1)

    raw.update({
        "number": quantity_to_hex(state.simulated_block_number(block_delta)),
        "hash": get_hash_of_simulated_block(state, block_delta),
        "parentHash": parent_hash,
        "timestamp": quantity_to_hex(state.block_time(block_delta)),
        "gasLimit": quantity_to_hex(parent_block.gas_limit),
        "gasUsed": quantity_to_hex(_block_gas_used(state, block_delta)),
        "baseFeePerGas": quantity_to_hex(get_simulated_base_fee(state, parent_block, block_delta)),
        "miner": parent_block.miner,
        "difficulty": quantity_to_hex(difficulty),
        "totalDifficulty": quantity_to_hex(total_difficulty),
        "transactions": transactions,
        "uncles": [],
        "withdrawals": [],
        "withdrawalsRoot": ZERO_HASH,
    })
    return raw


def resolve_simulated_block_delta(state: SimulationState, block_tag: BlockTag) -> Optional[int]:
    """Delta of the simulated block at block_tag; None when not simulated."""
    if block_tag in TIP_TAGS:
        return len(state.blocks) - 1
    if isinstance(block_tag, int):
        return state.block_delta_of(block_tag)
    return None


async def get_simulated_block(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    block_tag: BlockTag = "latest",
    full_transactions: bool = False,
    abort: Optional[AbortController] = None,
) -> Optional[dict]:
    """
    Block at block_tag in wire form.

    Numbers past the simulated tip do not exist yet and return None.
    """
    if can_query_node_directly(state, block_tag):
        block = await upstream.get_block(block_tag, full_transactions, abort)
        return dict(block.raw) if block is not None else None

    block_delta = resolve_simulated_block_delta(state, block_tag)
    if block_delta is None:
        return None
    parent_block = await get_parent_block(upstream, abort)
    return synthesize_block(state, parent_block, block_delta, full_transactions)


async def get_simulated_block_by_hash(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    block_hash: str,
    full_transactions: bool = False,
    abort: Optional[AbortController] = None,
) -> Optional[dict]:
    block_delta = find_simulated_block_by_hash(state, block_hash)
    if block_delta is None:
        block = await upstream.get_block_by_hash(block_hash, full_transactions, abort)
        return dict(block.raw) if block is not None else None
    parent_block = await get_parent_block(upstream, abort)
    return synthesize_block(state, parent_block, block_delta, full_transactions)


# ============================================================================
# LOGS
# ============================================================================

TopicFilter = Optional[Union[str, Sequence[Optional[str]]]]


def include_log_by_address(log_address: str, address_filter: Union[None, str, Sequence[str]]) -> bool:
    if address_filter is None:
        return True
    if isinstance(address_filter, str):
        return log_address == address_filter.lower()
    return log_address in {address.lower() for address in address_filter}


def include_log_by_topic(log_topics: Sequence[str], topic_filters: Optional[Sequence[TopicFilter]]) -> bool:
    """
    Positional topic matching.

    None matches anything, a string must match exactly and a list matches
    any of its members. A log with fewer topics than filters never matches.
    """
    if not topic_filters:
        return True
    if len(log_topics) < len(topic_filters):
        return False
    for index, topic_filter in enumerate(topic_filters):
        if topic_filter is None:
            continue
        if isinstance(topic_filter, str):
            if topic_filter.lower() != log_topics[index]:
                return False
        elif log_topics[index] not in {topic.lower() for topic in topic_filter if topic is not None}:
            return False
    return True


def get_logs_of_simulated_block(state: SimulationState, block_delta: int, log_filter: dict) -> list[dict]:
    """Logs of successful transactions in one simulated block, filtered."""
    logs = []
    block_hash = get_hash_of_simulated_block(state, block_delta)
    block_number = quantity_to_hex(state.simulated_block_number(block_delta))
    log_index = 0
    for transaction_index, simulated in enumerate(state.blocks[block_delta].simulated_transactions):
        if not simulated.call_result.success:
            continue
        for log in simulated.call_result.logs:
            entry = log.to_rpc()
            entry.update({
                "removed": False,
                "logIndex": quantity_to_hex(log_index),
                "transactionIndex": quantity_to_hex(transaction_index),
                "transactionHash": simulated.pre_simulation_transaction.hash,
                "blockHash": block_hash,
                "blockNumber": block_number,
            })
            log_index += 1
            if include_log_by_address(log.address, log_filter.get("address")) and include_log_by_topic(
                log.topics, log_filter.get("topics")
            ):
                logs.append(entry)
    return logs


def _resolve_log_block(state: SimulationState, tag: Any) -> int:
    if tag is None or tag in TIP_TAGS:
        return state.tip_block_number
    if tag == "earliest":
        return 0
    return hex_to_quantity(tag)


async def get_simulated_logs(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    log_filter: dict,
    abort: Optional[AbortController] = None,
) -> list[dict]:
    """
    eth_getLogs over the real chain and the pending blocks.

    The real part up to the baseline comes from the node; simulated blocks in
    range are appended after it in block order.

    Raises:
        UserInputError: If fromBlock is later than toBlock
    """
    if not has_overlay(state):
        return await upstream.get_logs(log_filter, abort)

    from_tag = log_filter.get("fromBlock", "latest")
    to_tag = log_filter.get("toBlock", "latest")
    if any(tag in ("pending", "finalized", "safe") for tag in (from_tag, to_tag)):
        return await upstream.get_logs(log_filter, abort)

    if log_filter.get("blockHash") is not None:
        block_delta = find_simulated_block_by_hash(state, log_filter["blockHash"])
        if block_delta is None:
            return await upstream.get_logs(log_filter, abort)
        return get_logs_of_simulated_block(state, block_delta, log_filter)

    from_block = _resolve_log_block(state, from_tag)
    to_block = _resolve_log_block(state, to_tag)
    if from_block > to_block:
        raise UserInputError(
            f"From block '{from_tag}' is later than to block '{to_tag}'",
            details={"fromBlock": from_block, "toBlock": to_block},
        )

    if to_block <= state.block_number:
        return await upstream.get_logs(log_filter, abort)

    logs = []
    if from_block <= state.block_number:
        node_filter = {
            **log_filter,
            "fromBlock": block_param(from_block),
            "toBlock": block_param(state.block_number),
        }
        logs.extend(await upstream.get_logs(node_filter, abort))

    for block_delta in range(len(state.blocks)):
        if from_block <= state.simulated_block_number(block_delta) <= to_block:
            logs.extend(get_logs_of_simulated_block(state, block_delta, log_filter))
    return logs


# ============================================================================
# TRANSACTIONS / RECEIPTS
# ============================================================================

async def get_simulated_transaction_by_hash(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    tx_hash: str,
    abort: Optional[AbortController] = None,
) -> Optional[dict]:
    if has_overlay(state):
        tx_hash = tx_hash.lower()
        for block_delta, block in enumerate(state.blocks):
            for transaction_index, simulated in enumerate(block.simulated_transactions):
                if simulated.pre_simulation_transaction.hash == tx_hash:
                    return transaction_with_block_data(state, block_delta, transaction_index, simulated)
    return await upstream.get_transaction_by_hash(tx_hash, abort)


def _receipt_contract_address(signed: SignedTransaction, result: CallResult) -> Optional[str]:
    if signed.to is None:
        return get_deployed_contract_address(signed.from_address, signed.nonce)
    if normalize_address(signed.to) == PROXY_DEPLOYER_ADDRESS and result.success and len(result.return_data) == 20:
        return encode_hex(result.return_data)
    return None


async def get_simulated_transaction_receipt(
    upstream: RPCProvider,
    state: Optional[SimulationState],
    tx_hash: str,
    abort: Optional[AbortController] = None,
) -> Optional[dict]:
    """
    Receipt for a queued transaction, or the node's receipt otherwise.

    Cumulative gas and log indices accumulate across the whole pending
    chain. A successful call to the CREATE2 proxy reports the deployed
    address it returned as contractAddress.
    """
    if not has_overlay(state):
        return await upstream.get_transaction_receipt(tx_hash, abort)

    tx_hash = tx_hash.lower()
    cumulative_gas = 0
    log_index = 0
    for block_delta, block in enumerate(state.blocks):
        block_hash = get_hash_of_simulated_block(state, block_delta)
        block_number = quantity_to_hex(state.simulated_block_number(block_delta))
        for transaction_index, simulated in enumerate(block.simulated_transactions):
            result = simulated.call_result
            signed = simulated.pre_simulation_transaction
            cumulative_gas += result.gas_used
            logs = result.logs if result.success else ()
            if signed.hash == tx_hash:
                receipt = {
                    "type": quantity_to_hex(signed.type.type_byte),
                    "blockHash": block_hash,
                    "blockNumber": block_number,
                    "transactionHash": signed.hash,
                    "transactionIndex": quantity_to_hex(transaction_index),
                    "from": signed.from_address,
                    "to": signed.to,
                    "contractAddress": _receipt_contract_address(signed, result),
                    "cumulativeGasUsed": quantity_to_hex(cumulative_gas),
                    "gasUsed": quantity_to_hex(result.gas_used),
                    "effectiveGasPrice": quantity_to_hex(simulated.realized_gas_price),
                    "logs": [
                        {
                            **log.to_rpc(),
                            "removed": False,
                            "logIndex": quantity_to_hex(log_index + offset),
                            "transactionIndex": quantity_to_hex(transaction_index),
                            "transactionHash": signed.hash,
                            "blockHash": block_hash,
                            "blockNumber": block_number,
                        }
                        for offset, log in enumerate(logs)
                    ],
                    "logsBloom": EMPTY_LOGS_BLOOM,
                    "status": "0x1" if result.success else "0x0",
                }
                if signed.type == TransactionType.EIP4844:
                    receipt["blobGasUsed"] = quantity_to_hex(
                        GAS_PER_BLOB * len(signed.transaction.blob_versioned_hashes)
                    )
                    receipt["blobGasPrice"] = quantity_to_hex(signed.transaction.max_fee_per_blob_gas or 0)
                return receipt
            log_index += len(logs)

    return await upstream.get_transaction_receipt(tx_hash, abort)
