# PATH: core/models.py
"""
Core data models for the simulation overlay.

All models are frozen. A SimulationState is replaced wholesale on every
mutation and never patched in place; sequences are tuples.

Representation:
  - addresses and hashes: lowercase 0x hex strings
  - quantities: int
  - byte payloads (input, code, return data, log data): bytes
"""

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from core.constants import (
    TransactionType,
    DEFAULT_TIME_INCREASE_DELTA,
    ZERO_ADDRESS,
    ZERO_HASH,
)
from core.encoding import (
    quantity_to_hex,
    hex_to_quantity,
    optional_quantity,
    data_to_hex,
    hex_to_data,
    normalize_address,
    normalize_hash,
    int_to_bytes32_hex,
)


# ============================================================================
# STATE OVERRIDES
# ============================================================================

def _normalize_slot(value: Any) -> str:
    if isinstance(value, int):
        return int_to_bytes32_hex(value)
    return int_to_bytes32_hex(hex_to_quantity(value))


@dataclass(frozen=True)
class AccountOverride:
    """
    Overrides applied to one account before a block executes.

    Fields left as None are untouched. state_diff maps storage slot to value,
    both as 32-byte hex strings.
    """

    balance: Optional[int] = None
    nonce: Optional[int] = None
    code: Optional[bytes] = None
    state_diff: Mapping[str, str] = field(default_factory=dict)

    def merged_with(self, other: "AccountOverride") -> "AccountOverride":
        """Return a copy where fields and slots set in other win."""
        return AccountOverride(
            balance=other.balance if other.balance is not None else self.balance,
            nonce=other.nonce if other.nonce is not None else self.nonce,
            code=other.code if other.code is not None else self.code,
            state_diff={**self.state_diff, **other.state_diff},
        )

    def to_rpc(self) -> dict:
        result: dict[str, Any] = {}
        if self.balance is not None:
            result["balance"] = quantity_to_hex(self.balance)
        if self.nonce is not None:
            result["nonce"] = quantity_to_hex(self.nonce)
        if self.code is not None:
            result["code"] = data_to_hex(self.code)
        if self.state_diff:
            result["stateDiff"] = dict(self.state_diff)
        return result

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "AccountOverride":
        code = data.get("code")
        return cls(
            balance=optional_quantity(data.get("balance")),
            nonce=optional_quantity(data.get("nonce")),
            code=hex_to_data(code) if code is not None else None,
            state_diff={
                _normalize_slot(slot): _normalize_slot(value)
                for slot, value in (data.get("stateDiff") or {}).items()
            },
        )


StateOverrides = Mapping[str, AccountOverride]


def merge_state_overrides(base: StateOverrides, new: StateOverrides) -> dict[str, AccountOverride]:
    """Merge per address; new values replace old ones field by field."""
    merged = dict(base)
    for address, override in new.items():
        address = normalize_address(address)
        merged[address] = merged[address].merged_with(override) if address in merged else override
    return merged


def state_overrides_to_rpc(overrides: StateOverrides) -> dict[str, dict]:
    return {address: override.to_rpc() for address, override in overrides.items()}


def state_overrides_from_rpc(data: Optional[Mapping[str, Any]]) -> dict[str, AccountOverride]:
    return {
        normalize_address(address): AccountOverride.from_rpc(override)
        for address, override in (data or {}).items()
    }


# ============================================================================
# TRANSACTIONS
# ============================================================================

AccessList = tuple[tuple[str, tuple[str, ...]], ...]


def access_list_to_rpc(access_list: AccessList) -> list[dict]:
    return [
        {"address": address, "storageKeys": list(keys)}
        for address, keys in access_list
    ]


def access_list_from_rpc(data: Optional[list]) -> AccessList:
    return tuple(
        (
            normalize_address(entry["address"]),
            tuple(normalize_hash(key) for key in entry.get("storageKeys", [])),
        )
        for entry in (data or [])
    )


@dataclass(frozen=True)
class UnsignedTransaction:
    """A fully populated transaction ready for mock signing."""

    type: TransactionType
    from_address: str
    nonce: int
    gas: int
    to: Optional[str]
    value: int = 0
    input: bytes = b""
    chain_id: int = 1
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    access_list: AccessList = ()
    max_fee_per_blob_gas: Optional[int] = None
    blob_versioned_hashes: tuple[str, ...] = ()

    @property
    def is_fee_market(self) -> bool:
        return self.type in (TransactionType.EIP1559, TransactionType.EIP4844)

    def replace(self, **changes: Any) -> "UnsignedTransaction":
        return replace(self, **changes)

    def to_rpc(self) -> dict:
        """Wire form as accepted by eth_simulateV1 and eth_call."""
        result: dict[str, Any] = {
            "type": quantity_to_hex(self.type.type_byte),
            "from": self.from_address,
            "nonce": quantity_to_hex(self.nonce),
            "gas": quantity_to_hex(self.gas),
            "value": quantity_to_hex(self.value),
            "input": data_to_hex(self.input),
            "chainId": quantity_to_hex(self.chain_id),
        }
        if self.to is not None:
            result["to"] = self.to
        if self.is_fee_market:
            result["maxFeePerGas"] = quantity_to_hex(self.max_fee_per_gas or 0)
            result["maxPriorityFeePerGas"] = quantity_to_hex(self.max_priority_fee_per_gas or 0)
        else:
            result["gasPrice"] = quantity_to_hex(self.gas_price or 0)
        if self.type != TransactionType.LEGACY:
            result["accessList"] = access_list_to_rpc(self.access_list)
        if self.type == TransactionType.EIP4844:
            result["maxFeePerBlobGas"] = quantity_to_hex(self.max_fee_per_blob_gas or 0)
            result["blobVersionedHashes"] = list(self.blob_versioned_hashes)
        return result


@dataclass(frozen=True)
class TransactionRequest:
    """Caller-supplied transaction; unset fields get defaults downstream."""

    from_address: Optional[str] = None
    to: Optional[str] = None
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    value: Optional[int] = None
    input: bytes = b""
    nonce: Optional[int] = None


@dataclass(frozen=True)
class SignedTransaction:
    """Transaction with a (placeholder) signature and its hash."""

    transaction: UnsignedTransaction
    r: int
    s: int
    y_parity: int
    v: int
    hash: str

    @property
    def type(self) -> TransactionType:
        return self.transaction.type

    @property
    def from_address(self) -> str:
        return self.transaction.from_address

    @property
    def nonce(self) -> int:
        return self.transaction.nonce

    @property
    def gas(self) -> int:
        return self.transaction.gas

    @property
    def to(self) -> Optional[str]:
        return self.transaction.to

    def to_rpc(self) -> dict:
        result = self.transaction.to_rpc()
        result.update({
            "hash": self.hash,
            "r": quantity_to_hex(self.r),
            "s": quantity_to_hex(self.s),
            "v": quantity_to_hex(self.v),
        })
        if self.type != TransactionType.LEGACY:
            result["yParity"] = quantity_to_hex(self.y_parity)
        return result


# ============================================================================
# CALL RESULTS
# ============================================================================

@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: tuple[str, ...]
    data: bytes

    def to_rpc(self) -> dict:
        return {
            "address": self.address,
            "topics": list(self.topics),
            "data": data_to_hex(self.data),
        }

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "LogEntry":
        return cls(
            address=normalize_address(data["address"]),
            topics=tuple(topic.lower() for topic in data.get("topics", [])),
            data=hex_to_data(data.get("data", "0x")),
        )


@dataclass(frozen=True)
class CallError:
    code: int
    message: str
    data: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "CallError":
        return cls(
            code=int(data.get("code", 0)),
            message=str(data.get("message", "")),
            data=data.get("data"),
        )


@dataclass(frozen=True)
class CallResult:
    """Outcome of one transaction inside a simulated block."""

    success: bool
    gas_used: int
    return_data: bytes = b""
    logs: tuple[LogEntry, ...] = ()
    error: Optional[CallError] = None

    @property
    def status(self) -> str:
        return "success" if self.success else "failure"

    @property
    def revert_data(self) -> str:
        """Revert payload: error data when given, else the raw return data."""
        if self.error is not None and self.error.data:
            return self.error.data
        return data_to_hex(self.return_data)

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "CallResult":
        error = data.get("error")
        return cls(
            success=hex_to_quantity(data["status"]) == 1,
            gas_used=hex_to_quantity(data.get("gasUsed", "0x0")),
            return_data=hex_to_data(data.get("returnData", "0x")),
            logs=tuple(LogEntry.from_rpc(log) for log in data.get("logs") or []),
            error=CallError.from_rpc(error) if error else None,
        )


@dataclass(frozen=True)
class SimulatedTransaction:
    pre_simulation_transaction: SignedTransaction
    call_result: CallResult
    realized_gas_price: int


@dataclass(frozen=True)
class SignedMessage:
    """Audit record of a message signed while overlaid."""

    method: str
    signer_address: str
    payload: Any
    signature: str


# ============================================================================
# SIMULATION STATE
# ============================================================================

@dataclass(frozen=True)
class SimulationStateInputBlock:
    """One block of input to the batched simulation call."""

    state_overrides: StateOverrides = field(default_factory=dict)
    transactions: tuple[SignedTransaction, ...] = ()
    signed_messages: tuple[SignedMessage, ...] = ()
    time_increase_delta: int = DEFAULT_TIME_INCREASE_DELTA


@dataclass(frozen=True)
class SimulationBlock:
    state_overrides: StateOverrides = field(default_factory=dict)
    simulated_transactions: tuple[SimulatedTransaction, ...] = ()
    signed_messages: tuple[SignedMessage, ...] = ()
    time_increase_delta: int = DEFAULT_TIME_INCREASE_DELTA

    def to_input_block(self) -> SimulationStateInputBlock:
        return SimulationStateInputBlock(
            state_overrides=self.state_overrides,
            transactions=tuple(
                tx.pre_simulation_transaction for tx in self.simulated_transactions
            ),
            signed_messages=self.signed_messages,
            time_increase_delta=self.time_increase_delta,
        )


@dataclass(frozen=True)
class SimulationState:
    """
    Pending blocks layered on top of a real baseline block.

    The block at delta i has number block_number + i + 1 and timestamp
    block_timestamp plus the deltas of blocks 0..i.
    """

    blocks: tuple[SimulationBlock, ...]
    block_number: int
    block_timestamp: int
    base_fee_per_gas: int
    simulation_conducted_timestamp: int

    @property
    def tip_block_number(self) -> int:
        return self.block_number + len(self.blocks)

    def simulated_block_number(self, block_delta: int) -> int:
        return self.block_number + block_delta + 1

    def block_delta_of(self, block_number: int) -> Optional[int]:
        """Delta of a simulated block number, None when not simulated."""
        delta = block_number - self.block_number - 1
        if 0 <= delta < len(self.blocks):
            return delta
        return None

    def block_time(self, block_delta: int) -> int:
        return self.block_timestamp + sum(
            block.time_increase_delta for block in self.blocks[: block_delta + 1]
        )

    def to_input_blocks(self) -> tuple[SimulationStateInputBlock, ...]:
        return tuple(block.to_input_block() for block in self.blocks)


# ============================================================================
# UPSTREAM BLOCKS
# ============================================================================

@dataclass(frozen=True)
class Block:
    """Parsed upstream block header; raw keeps the wire dict for passthrough."""

    number: int
    hash: str
    parent_hash: str
    timestamp: int
    gas_limit: int
    gas_used: int
    miner: str
    base_fee_per_gas: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "Block":
        return cls(
            number=hex_to_quantity(data["number"]),
            hash=data["hash"].lower(),
            parent_hash=data.get("parentHash", ZERO_HASH).lower(),
            timestamp=hex_to_quantity(data["timestamp"]),
            gas_limit=hex_to_quantity(data["gasLimit"]),
            gas_used=hex_to_quantity(data.get("gasUsed", "0x0")),
            miner=normalize_address(data.get("miner", ZERO_ADDRESS)),
            base_fee_per_gas=optional_quantity(data.get("baseFeePerGas")),
            raw=dict(data),
        )


@dataclass(frozen=True)
class SimulateBlockResult:
    """One block of an eth_simulateV1 response."""

    number: int
    hash: str
    timestamp: int
    gas_limit: int
    gas_used: int
    base_fee_per_gas: int
    calls: tuple[CallResult, ...]

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "SimulateBlockResult":
        return cls(
            number=hex_to_quantity(data["number"]),
            hash=str(data.get("hash", ZERO_HASH)).lower(),
            timestamp=hex_to_quantity(data["timestamp"]),
            gas_limit=hex_to_quantity(data.get("gasLimit", "0x0")),
            gas_used=hex_to_quantity(data.get("gasUsed", "0x0")),
            base_fee_per_gas=hex_to_quantity(data.get("baseFeePerGas", "0x0")),
            calls=tuple(CallResult.from_rpc(call) for call in data.get("calls", [])),
        )
