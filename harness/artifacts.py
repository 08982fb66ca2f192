"""
harness/artifacts.py - Contract artifacts and test-fixture helpers.

Deployments go through the salt-less CREATE2 proxy at PROXY_DEPLOYER_ADDRESS:
calldata is the init code, and the contract lands at the CREATE2 address for
salt 0. Funding helpers write balances and ERC-20 storage slots as state
overrides on the pending chain.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence, Union

from eth_abi import encode
from eth_utils import encode_hex, keccak

from core.constants import PROXY_DEPLOYER_ADDRESS
from core.encoding import address_to_bytes, data_to_hex, hex_to_data, int_to_bytes, int_to_bytes32_hex, normalize_address
from core.logging import get_logger
from core.models import AccountOverride

if TYPE_CHECKING:
    from harness.provider import MockEthereumProvider

logger = get_logger(__name__)

PROXY_DEPLOYER_CODE = hex_to_data("0x60003681823780368234f58015156014578182fd5b80825250506014600cf3")
DEFAULT_ERC20_BALANCE_SLOT = 2


@dataclass(frozen=True)
class ContractArtifact:
    """Compiled contract: creation and runtime bytecode plus the ABI."""

    name: str
    bytecode: bytes
    deployed_bytecode: bytes
    abi: tuple = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "ContractArtifact":
        """
        Parse a solc standard-json contract entry.

        Expected shape: {"abi": [...], "evm": {"bytecode": {"object": hex},
        "deployedBytecode": {"object": hex}}}. Objects may omit the 0x prefix.
        """
        evm = data.get("evm", {})
        return cls(
            name=name,
            bytecode=_object_bytes(evm.get("bytecode", {}).get("object", "")),
            deployed_bytecode=_object_bytes(evm.get("deployedBytecode", {}).get("object", "")),
            abi=tuple(data.get("abi", [])),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path], name: str) -> "ContractArtifact":
        """Load contract name from a standard-json output file ({"contracts": {source: {name: ...}}})."""
        with open(path) as f:
            output = json.load(f)
        for contracts in output.get("contracts", {}).values():
            if name in contracts:
                return cls.from_dict(name, contracts[name])
        raise KeyError(f"Contract {name} not found in {path}")


def _object_bytes(value: str) -> bytes:
    if not value:
        return b""
    return hex_to_data(value if value.startswith("0x") else "0x" + value)


def get_create2_address(deployer: str, salt: Union[int, bytes], init_code: bytes) -> str:
    """keccak(0xff ++ deployer ++ salt ++ keccak(init_code))[12:]."""
    salt_bytes = int_to_bytes(salt, 32) if isinstance(salt, int) else salt
    if len(salt_bytes) != 32:
        raise ValueError(f"Salt must be 32 bytes, got {len(salt_bytes)}")
    digest = keccak(b"\xff" + address_to_bytes(deployer) + salt_bytes + keccak(init_code))
    return encode_hex(digest[12:])


def get_deployment_address(artifact: ContractArtifact) -> str:
    return get_create2_address(PROXY_DEPLOYER_ADDRESS, 0, artifact.bytecode)


def deployment_transaction(artifact: ContractArtifact) -> dict:
    """eth_sendTransaction params object deploying artifact through the proxy."""
    return {"to": PROXY_DEPLOYER_ADDRESS, "data": data_to_hex(artifact.bytecode)}


async def ensure_proxy_deployer_deployed(provider: "MockEthereumProvider") -> None:
    """Install the proxy deployer's runtime code when the chain lacks it."""
    code = await provider.request({"method": "eth_getCode", "params": [PROXY_DEPLOYER_ADDRESS, "latest"]})
    if hex_to_data(code) == PROXY_DEPLOYER_CODE:
        return
    await provider.add_state_overrides({PROXY_DEPLOYER_ADDRESS: AccountOverride(code=PROXY_DEPLOYER_CODE)})


async def is_deployed(provider: "MockEthereumProvider", artifact: ContractArtifact) -> bool:
    """True when the runtime code at the deployment address matches the artifact."""
    code = await provider.request({
        "method": "eth_getCode",
        "params": [get_deployment_address(artifact), "latest"],
    })
    return hex_to_data(code) == artifact.deployed_bytecode


async def ensure_deployed(provider: "MockEthereumProvider", artifact: ContractArtifact) -> str:
    """
    Deploy artifact on the pending chain unless it is already there.

    Returns:
        Deployment address
    """
    address = get_deployment_address(artifact)
    await ensure_proxy_deployer_deployed(provider)
    if await is_deployed(provider, artifact):
        return address
    tx_hash = await provider.request({
        "method": "eth_sendTransaction",
        "params": [deployment_transaction(artifact)],
    })
    logger.info(
        f"Deployed {artifact.name} at {address}",
        extra={"context": {"contract": artifact.name, "address": address, "tx_hash": tx_hash}},
    )
    return address


async def mint_eth(provider: "MockEthereumProvider", amounts: Mapping[str, int]) -> None:
    """Set the ETH balance of each address."""
    await provider.add_state_overrides({
        normalize_address(address): AccountOverride(balance=amount)
        for address, amount in amounts.items()
    })


def erc20_balance_slot(holder: str, balance_slot: int = DEFAULT_ERC20_BALANCE_SLOT) -> str:
    """Storage slot of balances[holder] for a mapping at balance_slot."""
    return encode_hex(keccak(encode(["address", "uint256"], [normalize_address(holder), balance_slot])))


async def mint_erc20(
    provider: "MockEthereumProvider",
    token: str,
    amounts: Mapping[str, int],
    balance_slot: int = DEFAULT_ERC20_BALANCE_SLOT,
) -> None:
    """Write token balances directly into the token's balance mapping."""
    state_diff = {
        erc20_balance_slot(holder, balance_slot): int_to_bytes32_hex(amount)
        for holder, amount in amounts.items()
    }
    await provider.add_state_overrides({normalize_address(token): AccountOverride(state_diff=state_diff)})


async def setup_test_accounts(
    provider: "MockEthereumProvider",
    addresses: Sequence[str],
    amount: int,
) -> None:
    await mint_eth(provider, {address: amount for address in addresses})
