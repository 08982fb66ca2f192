# PATH: core/__init__.py
"""
core - Shared types and utilities for the simulation overlay.

This package contains:
- models.py: Frozen data models (transactions, blocks, simulation state)
- constants.py: Enums, well-known addresses and protocol constants
- exceptions.py: Typed exceptions with JSON-RPC error codes
- encoding.py: JSON-RPC hex codecs
- math.py: Weighted percentile for fee history
- abort.py: Cooperative cancellation of upstream requests
- time.py: Clock helpers
- logging.py: Structured JSON logging
"""

from core.abort import AbortController
from core.constants import (
    ErrorKind,
    ProviderStatus,
    TransactionType,
    MOCK_ADDRESS,
    PROXY_DEPLOYER_ADDRESS,
)
from core.exceptions import (
    ExecutionRevertedError,
    GasEstimationError,
    InvalidParamsError,
    JsonRpcResponseError,
    LegacyBlockError,
    NewBlockAbortError,
    NoActiveAddressError,
    OverlayError,
    RequestAbortedError,
    SimulationIntegrityError,
    TransportError,
    UnknownMethodError,
    UserInputError,
)
from core.logging import get_logger, setup_logging
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

__all__ = [
    # Constants
    "ErrorKind",
    "ProviderStatus",
    "TransactionType",
    "MOCK_ADDRESS",
    "PROXY_DEPLOYER_ADDRESS",
    # Exceptions
    "ExecutionRevertedError",
    "GasEstimationError",
    "InvalidParamsError",
    "JsonRpcResponseError",
    "LegacyBlockError",
    "NewBlockAbortError",
    "NoActiveAddressError",
    "OverlayError",
    "RequestAbortedError",
    "SimulationIntegrityError",
    "TransportError",
    "UnknownMethodError",
    "UserInputError",
    # Models
    "AccountOverride",
    "Block",
    "CallResult",
    "SignedTransaction",
    "SimulatedTransaction",
    "SimulationState",
    "TransactionRequest",
    "UnsignedTransaction",
    # Misc
    "AbortController",
    "get_logger",
    "setup_logging",
]
