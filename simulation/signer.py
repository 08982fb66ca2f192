"""
simulation/signer.py - Placeholder signing for simulated transactions.

Transactions are serialized in their EIP-2718 envelope with a zero signature
(r = s = 0, yParity = v = 0) and hashed with keccak-256, so identical
transactions always get identical hashes. Messages are signed with fixed
placeholder keys; none of these signatures are valid on a real chain.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

import rlp
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import encode_hex, is_hex, keccak

from core.constants import MOCK_SIGNER_KEY_ONE_ADDRESS, TransactionType
from core.encoding import address_to_bytes, hex_to_data, normalize_address
from core.logging import get_logger
from core.models import SignedMessage, SignedTransaction, UnsignedTransaction

logger = get_logger(__name__)

MOCK_KEY_ONE = "0x" + "00" * 31 + "01"
MOCK_KEY_TWO = "0x" + "00" * 31 + "02"

SUPPORTED_MESSAGE_METHODS = ("personal_sign", "eth_signTypedData_v4")


def _access_list_fields(tx: UnsignedTransaction) -> list:
    return [
        [address_to_bytes(address), [hex_to_data(key) for key in keys]]
        for address, keys in tx.access_list
    ]


def transaction_fields(tx: UnsignedTransaction, r: int = 0, s: int = 0, y_parity: int = 0) -> list:
    """
    RLP field list of a transaction envelope (without the type byte).

    Raises:
        ValueError: If a fee field required by the type is missing
    """
    to = address_to_bytes(tx.to) if tx.to is not None else b""

    if tx.type == TransactionType.LEGACY:
        return [tx.nonce, _require(tx.gas_price, "gas_price"), tx.gas, to, tx.value, tx.input, y_parity, r, s]

    if tx.type == TransactionType.EIP2930:
        return [
            tx.chain_id, tx.nonce, _require(tx.gas_price, "gas_price"), tx.gas, to, tx.value, tx.input,
            _access_list_fields(tx), y_parity, r, s,
        ]

    fee_fields = [
        tx.chain_id,
        tx.nonce,
        _require(tx.max_priority_fee_per_gas, "max_priority_fee_per_gas"),
        _require(tx.max_fee_per_gas, "max_fee_per_gas"),
        tx.gas,
        to,
        tx.value,
        tx.input,
        _access_list_fields(tx),
    ]
    if tx.type == TransactionType.EIP1559:
        return fee_fields + [y_parity, r, s]

    return fee_fields + [
        _require(tx.max_fee_per_blob_gas, "max_fee_per_blob_gas"),
        [hex_to_data(blob_hash) for blob_hash in tx.blob_versioned_hashes],
        y_parity,
        r,
        s,
    ]


def _require(value: Optional[int], name: str) -> int:
    if value is None:
        raise ValueError(f"Transaction is missing {name}")
    return value


def serialize_transaction(tx: UnsignedTransaction, r: int = 0, s: int = 0, y_parity: int = 0) -> bytes:
    """Typed envelope: type byte ++ rlp(fields); legacy is bare rlp."""
    payload = rlp.encode(transaction_fields(tx, r, s, y_parity))
    if tx.type == TransactionType.LEGACY:
        return payload
    return bytes([tx.type.type_byte]) + payload


class SimulationSigner(ABC):
    """Signs transactions and messages on behalf of simulated accounts."""

    @abstractmethod
    def sign_transaction(self, tx: UnsignedTransaction) -> SignedTransaction:
        ...

    @abstractmethod
    def sign_message(self, method: str, params: list) -> SignedMessage:
        ...


class MockSigner(SimulationSigner):
    """
    Zero-signature transaction signer and placeholder-key message signer.

    Message signatures use private key 1 when the requested signer is the
    address of key 1, and private key 2 for any other address.
    """

    def sign_transaction(self, tx: UnsignedTransaction) -> SignedTransaction:
        tx_hash = encode_hex(keccak(serialize_transaction(tx)))
        return SignedTransaction(
            transaction=tx,
            r=0,
            s=0,
            y_parity=0,
            v=0,
            hash=tx_hash,
        )

    def sign_message(self, method: str, params: list) -> SignedMessage:
        """
        Sign a personal_sign or eth_signTypedData_v4 request.

        Args:
            method: RPC method name
            params: personal_sign: [message, address]; typed data: [address, data]

        Raises:
            ValueError: If the method is not a supported signing method
        """
        if method == "personal_sign":
            message, address = params[0], params[1]
            if message.startswith("0x") and is_hex(message):
                signable = encode_defunct(hexstr=message)
            else:
                signable = encode_defunct(text=message)
            payload: Any = message
        elif method == "eth_signTypedData_v4":
            address, typed_data = params[0], params[1]
            payload = json.loads(typed_data) if isinstance(typed_data, str) else typed_data
            signable = encode_typed_data(full_message=payload)
        else:
            raise ValueError(f"Unsupported signing method: {method}")

        address = normalize_address(address)
        private_key = MOCK_KEY_ONE if address == MOCK_SIGNER_KEY_ONE_ADDRESS else MOCK_KEY_TWO
        signed = Account.sign_message(signable, private_key=private_key)
        signature = encode_hex(signed.signature)

        logger.debug(
            f"Mock signed {method}",
            extra={"context": {"signer": address, "method": method}},
        )
        return SignedMessage(
            method=method,
            signer_address=address,
            payload=payload,
            signature=signature,
        )
