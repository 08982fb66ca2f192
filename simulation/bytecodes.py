"""
simulation/bytecodes.py - Read-only helper contracts.

Injected at TEMP_CONTRACT_ADDRESS via state override so that balances and
code can be read at the tip of the pending chain through the batched
simulation call. Both take a single 32-byte left-padded address as calldata.
"""

from eth_abi import decode
from eth_utils import decode_hex

from core.encoding import address_to_bytes, bytes_to_int

# PUSH1 0 CALLDATALOAD BALANCE PUSH1 0 MSTORE PUSH1 32 PUSH1 0 RETURN
BALANCE_READER_CODE = decode_hex("0x6000353160005260206000f3")

# Returns abi.encode(bytes extcode):
#   mem[0x00] = 0x20, mem[0x20] = size, mem[0x40:] = EXTCODECOPY(addr, 0x40, 0, size)
#   RETURN(0, 0x40 + ceil32(size))
CODE_READER_CODE = decode_hex(
    "0x600035803b8060205260206000528060006040843c601f01602090046020026040016000f3"
)


def encode_address_argument(address: str) -> bytes:
    return address_to_bytes(address).rjust(32, b"\x00")


def decode_balance_result(return_data: bytes) -> int:
    if len(return_data) != 32:
        raise ValueError(f"Balance reader returned {len(return_data)} bytes, expected 32")
    return bytes_to_int(return_data)


def decode_code_result(return_data: bytes) -> bytes:
    (code,) = decode(["bytes"], return_data)
    return code
