# PATH: core/constants.py
"""
Constants for the simulation overlay.

Contains enums, well-known addresses, EIP-1559 parameters and error codes.
"""

from enum import Enum
from typing import Final


# =============================================================================
# ENUMS
# =============================================================================

class ErrorKind(str, Enum):
    """Error taxonomy for overlay failures."""
    UNKNOWN = "UNKNOWN"
    UPSTREAM_RPC = "UPSTREAM_RPC"
    TRANSPORT = "TRANSPORT"
    SIMULATION_INTEGRITY = "SIMULATION_INTEGRITY"
    LEGACY_BLOCK = "LEGACY_BLOCK"
    USER_INPUT = "USER_INPUT"
    INVALID_PARAMS = "INVALID_PARAMS"
    GAS_ESTIMATION = "GAS_ESTIMATION"
    EXECUTION_REVERTED = "EXECUTION_REVERTED"
    UNKNOWN_METHOD = "UNKNOWN_METHOD"
    ABORTED = "ABORTED"
    NEW_BLOCK_ABORT = "NEW_BLOCK_ABORT"


class TransactionType(str, Enum):
    """Typed transaction envelopes (EIP-2718)."""
    LEGACY = "legacy"
    EIP2930 = "2930"
    EIP1559 = "1559"
    EIP4844 = "4844"

    @property
    def type_byte(self) -> int:
        return _TYPE_BYTES[self]

    @classmethod
    def from_type_byte(cls, value: int) -> "TransactionType":
        for tx_type, type_byte in _TYPE_BYTES.items():
            if type_byte == value:
                return tx_type
        raise ValueError(f"Unsupported transaction type: {value}")


_TYPE_BYTES = {
    TransactionType.LEGACY: 0,
    TransactionType.EIP2930: 1,
    TransactionType.EIP1559: 2,
    TransactionType.EIP4844: 3,
}


class ProviderStatus(str, Enum):
    """Lifecycle of the provider facade."""
    UNINITIALIZED = "UNINITIALIZED"
    OVERLAID = "OVERLAID"


# =============================================================================
# ADDRESSES
# =============================================================================

# Sender used for internal simulations (estimates, helper reads)
MOCK_ADDRESS: Final[str] = "0xdeadbeef00000000000000000000000000000000"

# Default `from` for eth_call
DEFAULT_CALL_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000001"

# Helper contracts are injected here via state override
TEMP_CONTRACT_ADDRESS: Final[str] = "0x1ce438391307f908756fefe0fe220c0f0d51508a"

# Deterministic deployment proxy (calldata = salt32 ++ initcode)
PROXY_DEPLOYER_ADDRESS: Final[str] = "0x4e59b44847b379578588920ca78fbf26c0b4956c"

# Default active account of the facade
DEFAULT_ACTIVE_ADDRESS: Final[str] = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"

# Address whose placeholder key is 0x01
MOCK_SIGNER_KEY_ONE_ADDRESS: Final[str] = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"

ZERO_HASH: Final[str] = "0x" + "00" * 32
ZERO_ADDRESS: Final[str] = "0x" + "00" * 20


# =============================================================================
# SIMULATION DEFAULTS
# =============================================================================

DEFAULT_TIME_INCREASE_DELTA: Final[int] = 12
DEFAULT_MAX_PRIORITY_FEE_PER_GAS: Final[int] = 10**8

# Balance granted to MOCK_ADDRESS in every simulated block
MOCK_ADDRESS_BALANCE: Final[int] = 2**128

# Block hashes are conducted_ms * multiplier + block delta
BLOCK_HASH_MULTIPLIER: Final[int] = 100000

# Fixed prevRandao for simulated blocks
SIMULATED_PREV_RANDAO: Final[str] = "0x" + "00" * 31 + "01"


# =============================================================================
# EIP-1559 / EIP-4844
# =============================================================================

ELASTICITY_MULTIPLIER: Final[int] = 4
BASE_FEE_CHANGE_DENOMINATOR: Final[int] = 8
GAS_PER_BLOB: Final[int] = 2**17

# Safety factors applied to simulated gas usage
GAS_ESTIMATE_MULTIPLIER_NUMERATOR: Final[int] = 135 * 64
GAS_ESTIMATE_MULTIPLIER_DENOMINATOR: Final[int] = 100 * 63


# =============================================================================
# ERROR CODES
# =============================================================================

GAS_ESTIMATION_FAILED_CODE: Final[int] = -40002
GET_CODE_FAILED_CODE: Final[int] = -40001
EXECUTION_REVERTED_CODE: Final[int] = 3
NO_ACTIVE_ADDRESS_CODE: Final[int] = 2
METHOD_NOT_FOUND_CODE: Final[int] = -32601
INVALID_PARAMS_CODE: Final[int] = -32602
INVALID_INPUT_CODE: Final[int] = -32000
INTERNAL_ERROR_CODE: Final[int] = -32603

# eth_simulateV1 structured nonce errors (too low / too high)
NONCE_ERROR_CODES: Final[frozenset[int]] = frozenset({-38010, -38011})
# Node messages for the same failures when no structured code is given
NONCE_ERROR_MESSAGES: Final[tuple[str, ...]] = ("wrong transaction nonce", "nonce too low", "nonce too high")

NEW_BLOCK_ABORT: Final[str] = "New Block Abort"
CANNOT_SIMULATE_OFF_LEGACY_BLOCK: Final[str] = "Cannot simulate off a legacy block"
NO_ACTIVE_ADDRESS_MESSAGE: Final[str] = "Access to active address is denied"
