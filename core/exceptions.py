# PATH: core/exceptions.py
"""
Typed exceptions for the simulation overlay.

Every error carries a JSON-RPC style code and optional data so the provider
facade can surface it to callers unchanged.
"""

from typing import Any, Optional

from core.constants import (
    ErrorKind,
    GAS_ESTIMATION_FAILED_CODE,
    EXECUTION_REVERTED_CODE,
    METHOD_NOT_FOUND_CODE,
    INVALID_PARAMS_CODE,
    INVALID_INPUT_CODE,
    INTERNAL_ERROR_CODE,
    NO_ACTIVE_ADDRESS_CODE,
    NEW_BLOCK_ABORT,
)


class OverlayError(Exception):
    """Base exception for the overlay."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_code: int = INTERNAL_ERROR_CODE

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = self.default_code if code is None else code
        self.data = data
        self.details = details or {}

    def __str__(self):
        return f"[{self.kind.value}] {self.message}"

    def to_rpc_error(self) -> dict:
        """JSON-RPC error object for this exception."""
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class JsonRpcResponseError(OverlayError):
    """The upstream node answered with a JSON-RPC error object."""

    kind = ErrorKind.UPSTREAM_RPC

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        request_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, data, details)
        self.request_id = request_id


class TransportError(OverlayError):
    """Network failure, timeout or non-2xx HTTP status."""

    kind = ErrorKind.TRANSPORT


class SimulationIntegrityError(OverlayError):
    """Batched simulation returned a result of unexpected shape."""

    kind = ErrorKind.SIMULATION_INTEGRITY


class LegacyBlockError(OverlayError):
    """Parent block has no base fee."""

    kind = ErrorKind.LEGACY_BLOCK


class UserInputError(OverlayError):
    """Caller supplied invalid arguments."""

    kind = ErrorKind.USER_INPUT
    default_code = INVALID_INPUT_CODE


class NoActiveAddressError(UserInputError):
    """No active account to send from."""

    default_code = NO_ACTIVE_ADDRESS_CODE


class InvalidParamsError(OverlayError):
    """Request parameters failed schema validation."""

    kind = ErrorKind.INVALID_PARAMS
    default_code = INVALID_PARAMS_CODE


class GasEstimationError(OverlayError):
    """Gas estimation failed; carries revert data when available."""

    kind = ErrorKind.GAS_ESTIMATION
    default_code = GAS_ESTIMATION_FAILED_CODE


class ExecutionRevertedError(OverlayError):
    """A call or sent transaction failed in simulation."""

    kind = ErrorKind.EXECUTION_REVERTED
    default_code = EXECUTION_REVERTED_CODE


class UnknownMethodError(OverlayError):
    """Method is not served by the facade."""

    kind = ErrorKind.UNKNOWN_METHOD
    default_code = METHOD_NOT_FOUND_CODE

    def __init__(self, method: str):
        super().__init__(f"unknown method: {method}", details={"method": method})
        self.method = method


class RequestAbortedError(OverlayError):
    """Upstream request was cancelled by an abort signal."""

    kind = ErrorKind.ABORTED


class NewBlockAbortError(RequestAbortedError):
    """In-flight work was superseded by a newer real block."""

    kind = ErrorKind.NEW_BLOCK_ABORT

    def __init__(self, message: str = NEW_BLOCK_ABORT, details: Optional[dict] = None):
        super().__init__(message, details=details)
