"""
harness/rpc_types.py - Request schemas for the provider facade.

Each supported JSON-RPC method has a pydantic model describing its
positional params. Requests are validated and decoded (hex quantities to
int, data to bytes, addresses lowercased) before dispatch.
"""

from typing import Annotated, Any, ClassVar, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from core.encoding import hex_to_data, hex_to_quantity, normalize_address, normalize_hash, quantity_to_hex
from core.exceptions import InvalidParamsError, UnknownMethodError
from core.models import TransactionRequest

BLOCK_TAGS = ("latest", "pending", "finalized", "safe", "earliest")


def _parse_block_tag(value: Any) -> Union[int, str]:
    if isinstance(value, str) and value in BLOCK_TAGS:
        return value
    return hex_to_quantity(value)


Quantity = Annotated[int, BeforeValidator(hex_to_quantity)]
Address = Annotated[str, BeforeValidator(normalize_address)]
Data = Annotated[bytes, BeforeValidator(hex_to_data)]
Hash32 = Annotated[str, BeforeValidator(normalize_hash)]
BlockTag = Annotated[Union[int, str], BeforeValidator(_parse_block_tag)]


def block_tag_to_rpc(tag: Union[int, str]) -> str:
    return quantity_to_hex(tag) if isinstance(tag, int) else tag


class TransactionParams(BaseModel):
    """Transaction object of eth_call / eth_estimateGas / eth_sendTransaction."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_address: Optional[Address] = Field(None, alias="from")
    to: Optional[Address] = None
    gas: Optional[Quantity] = None
    gas_price: Optional[Quantity] = Field(None, alias="gasPrice")
    max_fee_per_gas: Optional[Quantity] = Field(None, alias="maxFeePerGas")
    max_priority_fee_per_gas: Optional[Quantity] = Field(None, alias="maxPriorityFeePerGas")
    value: Optional[Quantity] = None
    data: Optional[Data] = None
    input: Optional[Data] = None
    nonce: Optional[Quantity] = None

    def to_request(self) -> TransactionRequest:
        """Decoded request; data wins over input when both are given."""
        return TransactionRequest(
            from_address=self.from_address,
            to=self.to,
            gas=self.gas,
            gas_price=self.gas_price,
            max_fee_per_gas=self.max_fee_per_gas,
            max_priority_fee_per_gas=self.max_priority_fee_per_gas,
            value=self.value,
            input=self.data if self.data is not None else (self.input or b""),
            nonce=self.nonce,
        )


class LogFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_block: Optional[BlockTag] = Field(None, alias="fromBlock")
    to_block: Optional[BlockTag] = Field(None, alias="toBlock")
    address: Optional[Union[Address, list[Address]]] = None
    topics: Optional[list[Optional[Union[Hash32, list[Hash32]]]]] = None
    block_hash: Optional[Hash32] = Field(None, alias="blockHash")

    def to_rpc(self) -> dict:
        result: dict[str, Any] = {}
        if self.from_block is not None:
            result["fromBlock"] = block_tag_to_rpc(self.from_block)
        if self.to_block is not None:
            result["toBlock"] = block_tag_to_rpc(self.to_block)
        if self.address is not None:
            result["address"] = self.address
        if self.topics is not None:
            result["topics"] = self.topics
        if self.block_hash is not None:
            result["blockHash"] = self.block_hash
        return result


class RpcParams(BaseModel):
    """Base for positional params; positional lists field names in order."""

    model_config = ConfigDict(frozen=True)

    positional: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_params(cls, params: Optional[list]) -> "RpcParams":
        params = list(params or [])
        if len(params) > len(cls.positional):
            raise ValueError(f"Expected at most {len(cls.positional)} params, got {len(params)}")
        return cls.model_validate(dict(zip(cls.positional, params)))


class NoParams(RpcParams):
    pass


class AddressAtBlockParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("address", "block_tag")

    address: Address
    block_tag: BlockTag = "latest"


class CallParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("transaction", "block_tag")

    transaction: TransactionParams
    block_tag: BlockTag = "latest"


class SendTransactionParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("transaction",)

    transaction: TransactionParams


class GetLogsParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("filter",)

    filter: LogFilter


class BlockByNumberParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("block_tag", "full_transactions")

    block_tag: BlockTag = "latest"
    full_transactions: bool = False


class BlockByHashParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("block_hash", "full_transactions")

    block_hash: Hash32
    full_transactions: bool = False


class TransactionHashParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("tx_hash",)

    tx_hash: Hash32


class FeeHistoryParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("block_count", "newest_block", "reward_percentiles")

    block_count: Quantity
    newest_block: BlockTag = "latest"
    reward_percentiles: Optional[list[float]] = None


class PersonalSignParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("message", "address")

    message: str
    address: Address


class SignTypedDataParams(RpcParams):
    positional: ClassVar[tuple[str, ...]] = ("address", "typed_data")

    address: Address
    typed_data: Union[str, dict]


METHOD_PARAMS: dict[str, type[RpcParams]] = {
    "eth_chainId": NoParams,
    "eth_blockNumber": NoParams,
    "eth_gasPrice": NoParams,
    "eth_accounts": NoParams,
    "eth_requestAccounts": NoParams,
    "eth_getBalance": AddressAtBlockParams,
    "eth_getCode": AddressAtBlockParams,
    "eth_getTransactionCount": AddressAtBlockParams,
    "eth_call": CallParams,
    "eth_estimateGas": CallParams,
    "eth_sendTransaction": SendTransactionParams,
    "wallet_sendTransaction": SendTransactionParams,
    "eth_getLogs": GetLogsParams,
    "eth_getBlockByNumber": BlockByNumberParams,
    "eth_getBlockByHash": BlockByHashParams,
    "eth_getTransactionByHash": TransactionHashParams,
    "eth_getTransactionReceipt": TransactionHashParams,
    "eth_feeHistory": FeeHistoryParams,
    "personal_sign": PersonalSignParams,
    "eth_signTypedData_v4": SignTypedDataParams,
}


def parse_request(method: str, params: Optional[list]) -> RpcParams:
    """
    Validate params for method.

    Raises:
        UnknownMethodError: If the method is not served
        InvalidParamsError: If params fail validation
    """
    model = METHOD_PARAMS.get(method)
    if model is None:
        raise UnknownMethodError(method)
    try:
        return model.from_params(params)
    except (ValidationError, ValueError) as e:
        raise InvalidParamsError(
            f"Invalid params for {method}: {e}",
            details={"method": method},
        ) from e
