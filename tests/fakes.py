# PATH: tests/fakes.py
"""
In-memory Ethereum node for tests.

FakeNode answers JSON-RPC over httpx.MockTransport, so RPCProvider is
exercised end to end. eth_simulateV1 is interpreted with a tiny execution
model: plain transfers, CREATE, the salt-less CREATE2 proxy, the balance and
code reader helpers, and a timelock contract that releases its balance once
block time passes UNLOCK_TIME.
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
import rlp
from eth_abi import encode
from eth_utils import encode_hex, keccak

from chains.providers import RPCProvider
from core.constants import DEFAULT_ACTIVE_ADDRESS, PROXY_DEPLOYER_ADDRESS
from core.encoding import hex_to_data, hex_to_quantity, int_to_bytes, quantity_to_hex
from harness.artifacts import PROXY_DEPLOYER_CODE, ContractArtifact
from simulation.bytecodes import BALANCE_READER_CODE, CODE_READER_CODE

# ============================================================================
# CHAIN FIXTURE VALUES
# ============================================================================

HEAD_NUMBER = 100
HEAD_TIMESTAMP = 1_700_000_000
GAS_LIMIT = 30_000_000
BASE_FEE = 10 * 10**9
MINER = "0x95222290dd7278aa3ddd389cc1e1d165cc4bafe5"
ACTIVE_ADDRESS = DEFAULT_ACTIVE_ADDRESS
ACTIVE_BALANCE = 10 * 10**18
RECIPIENT = "0x1000000000000000000000000000000000000012"

GWEI = 10**9

# Real transactions in the head block (used by fee history)
HEAD_TRANSACTIONS = [
    {
        "hash": "0x" + "aa" * 32,
        "from": "0x2000000000000000000000000000000000000001",
        "gas": quantity_to_hex(21000),
        "maxFeePerGas": quantity_to_hex(2 * BASE_FEE + 2 * GWEI),
        "maxPriorityFeePerGas": quantity_to_hex(1 * GWEI),
        "type": "0x2",
    },
    {
        "hash": "0x" + "bb" * 32,
        "from": "0x2000000000000000000000000000000000000002",
        "gas": quantity_to_hex(21000),
        "gasPrice": quantity_to_hex(BASE_FEE + 3 * GWEI),
        "type": "0x0",
    },
]

# ============================================================================
# TIMELOCK TEST CONTRACT
# ============================================================================

UNLOCK_DELAY = 3600
UNLOCK_TIME = HEAD_TIMESTAMP + UNLOCK_DELAY
TIMELOCK_RUNTIME = hex_to_data("0x6080604052348015600f57600080fd5b5060043610603c5760003560e01c80633ccfd60b14604157fe")
TIMELOCK_INIT = hex_to_data("0x608060405234801561001057600080fd5b50610e10420160005560") + TIMELOCK_RUNTIME
WITHDRAW_SELECTOR = keccak(text="withdraw()")[:4]
WITHDRAWN_TOPIC = encode_hex(keccak(text="Withdrawn(address,uint256)"))
LOCKED_REVERT_DATA = encode_hex(keccak(text="Error(string)")[:4] + encode(["string"], ["locked"]))

TIMELOCK_ARTIFACT = ContractArtifact(
    name="Timelock",
    bytecode=TIMELOCK_INIT,
    deployed_bytecode=TIMELOCK_RUNTIME,
)

NONCE_TOO_LOW = -38010
NONCE_TOO_HIGH = -38011
INSUFFICIENT_FUNDS = -38014
INTRINSIC_GAS_TOO_LOW = -38013
OUT_OF_GAS = -32015


def next_base_fee(gas_used: int, gas_limit: int, base_fee: int) -> int:
    target = gas_limit // 4
    if gas_used == target:
        return base_fee
    if gas_used > target:
        return base_fee + max(1, base_fee * (gas_used - target) // target // 8)
    return max(0, base_fee - base_fee * (target - gas_used) // target // 8)


def pad_address(address: str) -> str:
    return "0x" + address[2:].rjust(64, "0")


@dataclass
class FakeAccount:
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: dict = field(default_factory=dict)


class FakeNode:
    """
    JSON-RPC node with a single mutable world state.

    Attributes useful to tests:
        requests: every (method, params) received, in order
        drop_simulated_blocks: blocks removed from the tail of simulate results
        errors: method -> JSON-RPC error object returned instead of a result
    """

    def __init__(self, legacy: bool = False):
        self.legacy = legacy
        self.world: dict[str, FakeAccount] = {
            ACTIVE_ADDRESS: FakeAccount(balance=ACTIVE_BALANCE),
        }
        self.blocks: dict[int, dict] = {}
        self.head = HEAD_NUMBER
        self.logs: list[dict] = []
        self.transactions: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.requests: list[tuple[str, list]] = []
        self.errors: dict[str, dict] = {}
        self.drop_simulated_blocks = 0
        self.runtime_code: dict[bytes, bytes] = {TIMELOCK_INIT: TIMELOCK_RUNTIME}
        self.gas_price = 12 * GWEI

        for number in range(HEAD_NUMBER - 2, HEAD_NUMBER + 1):
            self._add_block(number, HEAD_TIMESTAMP - 12 * (HEAD_NUMBER - number), BASE_FEE)
        self.blocks[HEAD_NUMBER]["transactions"] = copy.deepcopy(HEAD_TRANSACTIONS)
        for tx in HEAD_TRANSACTIONS:
            self.transactions[tx["hash"]] = {**tx, "blockNumber": quantity_to_hex(HEAD_NUMBER)}

    # ------------------------------------------------------------------
    # Chain manipulation
    # ------------------------------------------------------------------

    def _add_block(self, number: int, timestamp: int, base_fee: Optional[int]) -> dict:
        block = {
            "number": quantity_to_hex(number),
            "hash": encode_hex(keccak(text=f"block-{number}")),
            "parentHash": encode_hex(keccak(text=f"block-{number - 1}")),
            "timestamp": quantity_to_hex(timestamp),
            "gasLimit": quantity_to_hex(GAS_LIMIT),
            "gasUsed": quantity_to_hex(GAS_LIMIT // 4),
            "miner": MINER,
            "difficulty": "0x0",
            "totalDifficulty": quantity_to_hex(58750003716598352816469),
            "stateRoot": encode_hex(keccak(text=f"state-{number}")),
            "logsBloom": "0x" + "00" * 256,
            "transactions": [],
        }
        if not self.legacy and base_fee is not None:
            block["baseFeePerGas"] = quantity_to_hex(base_fee)
        self.blocks[number] = block
        return block

    def mine(self, base_fee: Optional[int] = BASE_FEE, nonce_bumps: Optional[dict[str, int]] = None) -> dict:
        """Append a real block 12s after the head; nonce_bumps simulates landed transactions."""
        head = self.blocks[self.head]
        self.head += 1
        block = self._add_block(self.head, hex_to_quantity(head["timestamp"]) + 12, base_fee)
        for address, count in (nonce_bumps or {}).items():
            self.account(address).nonce += count
        return block

    def account(self, address: str) -> FakeAccount:
        return self.world.setdefault(address.lower(), FakeAccount())

    def add_log(self, block_number: int, address: str, topics: list[str], data: str = "0x") -> dict:
        log = {
            "address": address.lower(),
            "topics": topics,
            "data": data,
            "blockNumber": quantity_to_hex(block_number),
            "blockHash": self.blocks[block_number]["hash"],
            "transactionHash": "0x" + "cc" * 32,
            "transactionIndex": "0x0",
            "logIndex": quantity_to_hex(len(self.logs)),
            "removed": False,
        }
        self.logs.append(log)
        return log

    def methods(self) -> list[str]:
        return [method for method, _ in self.requests]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def provider(self, **kwargs: Any) -> RPCProvider:
        return RPCProvider("http://fake-node", transport=httpx.MockTransport(self.handle), **kwargs)

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body.get("params") or []
        self.requests.append((method, params))

        if method in self.errors:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": self.errors[method]})

        handler: Optional[Callable[[list], Any]] = getattr(self, "rpc_" + method, None)
        if handler is None:
            error = {"code": -32601, "message": f"the method {method} does not exist/is not available"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})
        try:
            result = handler(params)
        except RpcFailure as e:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": e.error})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    # ------------------------------------------------------------------
    # Plain reads
    # ------------------------------------------------------------------

    def _resolve(self, tag: Any) -> int:
        if tag in ("latest", "pending", None):
            return self.head
        if tag in ("finalized", "safe"):
            return self.head - 2
        if tag == "earliest":
            return min(self.blocks)
        return hex_to_quantity(tag)

    def rpc_eth_chainId(self, params: list) -> str:
        return "0x1"

    def rpc_eth_blockNumber(self, params: list) -> str:
        return quantity_to_hex(self.head)

    def rpc_eth_gasPrice(self, params: list) -> str:
        return quantity_to_hex(self.gas_price)

    def rpc_eth_getBlockByNumber(self, params: list) -> Optional[dict]:
        block = self.blocks.get(self._resolve(params[0]))
        if block is None:
            return None
        block = copy.deepcopy(block)
        if not params[1]:
            block["transactions"] = [tx["hash"] for tx in block["transactions"]]
        return block

    def rpc_eth_getBlockByHash(self, params: list) -> Optional[dict]:
        for number, block in self.blocks.items():
            if block["hash"] == params[0].lower():
                return self.rpc_eth_getBlockByNumber([quantity_to_hex(number), params[1]])
        return None

    def rpc_eth_getBalance(self, params: list) -> str:
        return quantity_to_hex(self.account(params[0]).balance)

    def rpc_eth_getCode(self, params: list) -> str:
        return encode_hex(self.account(params[0]).code)

    def rpc_eth_getTransactionCount(self, params: list) -> str:
        return quantity_to_hex(self.account(params[0]).nonce)

    def rpc_eth_getTransactionByHash(self, params: list) -> Optional[dict]:
        return self.transactions.get(params[0].lower())

    def rpc_eth_getTransactionReceipt(self, params: list) -> Optional[dict]:
        return self.receipts.get(params[0].lower())

    def rpc_eth_getLogs(self, params: list) -> list[dict]:
        log_filter = params[0]
        from_block = self._resolve(log_filter.get("fromBlock", "latest"))
        to_block = self._resolve(log_filter.get("toBlock", "latest"))
        address = log_filter.get("address")
        return [
            log for log in self.logs
            if from_block <= hex_to_quantity(log["blockNumber"]) <= to_block
            and (address is None or log["address"] == address.lower())
        ]

    def rpc_eth_call(self, params: list) -> str:
        world = copy.deepcopy(self.world)
        call = dict(params[0])
        call.setdefault("from", "0x" + "00" * 19 + "01")
        call.setdefault("gas", quantity_to_hex(GAS_LIMIT))
        env = {"number": self._resolve(params[1]), "timestamp": hex_to_quantity(self.blocks[self.head]["timestamp"])}
        result = self._execute(world, call, env, check_nonce=False)
        if result["status"] != "0x1":
            raise RpcFailure({"code": 3, "message": result["error"]["message"], "data": result["returnData"]})
        return result["returnData"]

    # ------------------------------------------------------------------
    # eth_simulateV1
    # ------------------------------------------------------------------

    def rpc_eth_simulateV1(self, params: list) -> list[dict]:
        payload, parent_tag = params
        parent = self.blocks[self._resolve(parent_tag)]
        world = copy.deepcopy(self.world)
        base_fee = next_base_fee(
            hex_to_quantity(parent["gasUsed"]),
            hex_to_quantity(parent["gasLimit"]),
            hex_to_quantity(parent.get("baseFeePerGas", "0x0")),
        )

        results = []
        for block_call in payload["blockStateCalls"]:
            self._apply_overrides(world, block_call.get("stateOverrides") or {})
            overrides = block_call["blockOverrides"]
            env = {"number": hex_to_quantity(overrides["number"]), "timestamp": hex_to_quantity(overrides["time"])}
            calls = [self._execute(world, call, env) for call in block_call.get("calls", [])]
            gas_used = sum(hex_to_quantity(call["gasUsed"]) for call in calls)
            results.append({
                "number": overrides["number"],
                "hash": encode_hex(keccak(text=f"simulated-{env['number']}")),
                "timestamp": overrides["time"],
                "gasLimit": overrides["gasLimit"],
                "gasUsed": quantity_to_hex(gas_used),
                "baseFeePerGas": quantity_to_hex(base_fee),
                "miner": overrides["feeRecipient"],
                "calls": calls,
            })
            base_fee = next_base_fee(gas_used, hex_to_quantity(overrides["gasLimit"]), base_fee)

        if self.drop_simulated_blocks:
            results = results[: -self.drop_simulated_blocks]
        return results

    def _apply_overrides(self, world: dict[str, FakeAccount], overrides: dict) -> None:
        for address, override in overrides.items():
            account = world.setdefault(address.lower(), FakeAccount())
            if "balance" in override:
                account.balance = hex_to_quantity(override["balance"])
            if "nonce" in override:
                account.nonce = hex_to_quantity(override["nonce"])
            if "code" in override:
                account.code = hex_to_data(override["code"])
            for slot, value in (override.get("stateDiff") or {}).items():
                account.storage[slot.lower()] = value.lower()

    def _execute(self, world: dict[str, FakeAccount], call: dict, env: dict, check_nonce: bool = True) -> dict:
        sender = call["from"].lower()
        to = call.get("to")
        value = hex_to_quantity(call.get("value", "0x0"))
        gas = hex_to_quantity(call.get("gas", quantity_to_hex(GAS_LIMIT)))
        data = hex_to_data(call.get("input") or call.get("data") or "0x")
        account = world.setdefault(sender, FakeAccount())

        if check_nonce and "nonce" in call:
            nonce = hex_to_quantity(call["nonce"])
            if nonce != account.nonce:
                code = NONCE_TOO_LOW if nonce < account.nonce else NONCE_TOO_HIGH
                word = "low" if nonce < account.nonce else "high"
                return _failure(code, f"nonce too {word}: address {sender}, tx: {nonce} state: {account.nonce}")
        if value > account.balance:
            return _failure(INSUFFICIENT_FUNDS, "insufficient funds for gas * price + value")
        if gas < 21000:
            return _failure(INTRINSIC_GAS_TOO_LOW, "intrinsic gas too low")

        nonce = account.nonce
        account.nonce += 1
        scratch = copy.deepcopy(world)
        outcome = self._run(scratch, sender, to, value, data, nonce, env)
        if outcome["status"] == "0x1" and hex_to_quantity(outcome["gasUsed"]) > gas:
            return _failure(OUT_OF_GAS, "out of gas", gas_used=gas)
        if outcome["status"] == "0x1":
            world.clear()
            world.update(scratch)
        return outcome

    def _run(
        self,
        world: dict[str, FakeAccount],
        sender: str,
        to: Optional[str],
        value: int,
        data: bytes,
        nonce: int,
        env: dict,
    ) -> dict:
        world[sender].balance -= value

        if to is None:
            address = encode_hex(keccak(rlp.encode([bytes.fromhex(sender[2:]), nonce]))[12:])
            created = world.setdefault(address, FakeAccount())
            created.code = self.runtime_code.get(data, data)
            created.balance += value
            return _success(53000 + 200 * len(data))

        target = world.setdefault(to.lower(), FakeAccount())
        target.balance += value
        code = target.code

        if code == BALANCE_READER_CODE:
            address = "0x" + data[12:32].hex()
            balance = world[address].balance if address in world else 0
            return _success(23000, int_to_bytes(balance, 32))

        if code == CODE_READER_CODE:
            address = "0x" + data[12:32].hex()
            target_code = world[address].code if address in world else b""
            return _success(25000, encode(["bytes"], [target_code]))

        if code == PROXY_DEPLOYER_CODE:
            digest = keccak(b"\xff" + bytes.fromhex(PROXY_DEPLOYER_ADDRESS[2:]) + b"\x00" * 32 + keccak(data))
            address = encode_hex(digest[12:])
            if address in world and world[address].code:
                return _failure(3, "execution reverted", gas_used=32000)
            world.setdefault(address, FakeAccount()).code = self.runtime_code.get(data, data)
            return _success(32000 + 200 * len(data), digest[12:])

        if code == TIMELOCK_RUNTIME:
            if data[:4] != WITHDRAW_SELECTOR:
                return _failure(3, "execution reverted", gas_used=22000)
            if env["timestamp"] < UNLOCK_TIME:
                return _failure(3, "execution reverted: locked", data=LOCKED_REVERT_DATA, gas_used=24000)
            amount = target.balance
            target.balance = 0
            world[sender].balance += amount
            log = {
                "address": to.lower(),
                "topics": [WITHDRAWN_TOPIC, pad_address(sender)],
                "data": encode_hex(int_to_bytes(amount, 32)),
            }
            return _success(35000, logs=[log])

        return _success(21000 + 16 * len(data))


class RpcFailure(Exception):
    def __init__(self, error: dict):
        super().__init__(error.get("message"))
        self.error = error


def _success(gas_used: int, return_data: bytes = b"", logs: Optional[list] = None) -> dict:
    return {
        "status": "0x1",
        "gasUsed": quantity_to_hex(gas_used),
        "returnData": encode_hex(return_data),
        "logs": logs or [],
    }


def _failure(code: int, message: str, data: Optional[str] = None, gas_used: int = 0) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {
        "status": "0x0",
        "gasUsed": quantity_to_hex(gas_used),
        "returnData": data or "0x",
        "logs": [],
        "error": error,
    }
