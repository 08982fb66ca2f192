# PATH: tests/unit/test_rpc_types.py
"""
Tests for harness/rpc_types.py request validation.
"""

import pytest

from core.constants import INVALID_PARAMS_CODE, METHOD_NOT_FOUND_CODE
from core.exceptions import InvalidParamsError, UnknownMethodError
from harness.rpc_types import (
    AddressAtBlockParams,
    BlockByNumberParams,
    CallParams,
    FeeHistoryParams,
    GetLogsParams,
    NoParams,
    SendTransactionParams,
    parse_request,
)

ADDRESS = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
TOPIC = "0x" + "ab" * 32


class TestDispatchTable:
    def test_unknown_method(self):
        with pytest.raises(UnknownMethodError) as exc_info:
            parse_request("eth_mining", [])
        assert exc_info.value.code == METHOD_NOT_FOUND_CODE
        assert exc_info.value.method == "eth_mining"

    def test_no_params(self):
        assert isinstance(parse_request("eth_chainId", None), NoParams)

    def test_too_many_params(self):
        with pytest.raises(InvalidParamsError) as exc_info:
            parse_request("eth_chainId", ["0x1"])
        assert exc_info.value.code == INVALID_PARAMS_CODE


class TestAddressAtBlock:
    def test_defaults_to_latest(self):
        params = parse_request("eth_getBalance", [ADDRESS])
        assert isinstance(params, AddressAtBlockParams)
        assert params.address == ADDRESS.lower()
        assert params.block_tag == "latest"

    def test_hex_block_number(self):
        params = parse_request("eth_getCode", [ADDRESS, "0x65"])
        assert params.block_tag == 101

    def test_named_tags(self):
        for tag in ("pending", "finalized", "safe", "earliest"):
            assert parse_request("eth_getTransactionCount", [ADDRESS, tag]).block_tag == tag

    def test_bad_address(self):
        with pytest.raises(InvalidParamsError):
            parse_request("eth_getBalance", ["0x1234", "latest"])

    def test_bad_tag(self):
        with pytest.raises(InvalidParamsError):
            parse_request("eth_getBalance", [ADDRESS, "tomorrow"])


class TestTransactionParams:
    def test_call_decodes_fields(self):
        params = parse_request(
            "eth_call",
            [{"from": ADDRESS, "to": ADDRESS, "value": "0x10", "gas": "0x5208", "data": "0xdeadbeef"}],
        )
        assert isinstance(params, CallParams)
        request = params.transaction.to_request()
        assert request.from_address == ADDRESS.lower()
        assert request.value == 16
        assert request.gas == 21000
        assert request.input == bytes.fromhex("deadbeef")
        assert params.block_tag == "latest"

    def test_data_wins_over_input(self):
        params = parse_request("eth_estimateGas", [{"to": ADDRESS, "data": "0x01", "input": "0x02"}])
        assert params.transaction.to_request().input == b"\x01"

    def test_input_alone(self):
        params = parse_request("eth_estimateGas", [{"to": ADDRESS, "input": "0x02"}])
        assert params.transaction.to_request().input == b"\x02"

    def test_missing_input_is_empty(self):
        params = parse_request("eth_sendTransaction", [{"to": ADDRESS}])
        assert isinstance(params, SendTransactionParams)
        request = params.transaction.to_request()
        assert request.input == b""
        assert request.from_address is None
        assert request.nonce is None

    def test_fee_fields(self):
        params = parse_request(
            "wallet_sendTransaction",
            [{"maxFeePerGas": "0x3b9aca00", "maxPriorityFeePerGas": "0x1", "nonce": "0x7"}],
        )
        request = params.transaction.to_request()
        assert request.max_fee_per_gas == 10**9
        assert request.max_priority_fee_per_gas == 1
        assert request.nonce == 7

    def test_bad_quantity(self):
        with pytest.raises(InvalidParamsError):
            parse_request("eth_call", [{"to": ADDRESS, "value": "ten"}])

    def test_send_requires_transaction(self):
        with pytest.raises(InvalidParamsError):
            parse_request("eth_sendTransaction", [])


class TestLogFilter:
    def test_round_trip_to_wire(self):
        params = parse_request(
            "eth_getLogs",
            [{"fromBlock": "0x64", "toBlock": "latest", "address": ADDRESS, "topics": [TOPIC, None, [TOPIC]]}],
        )
        assert isinstance(params, GetLogsParams)
        assert params.filter.to_rpc() == {
            "fromBlock": "0x64",
            "toBlock": "latest",
            "address": ADDRESS.lower(),
            "topics": [TOPIC, None, [TOPIC]],
        }

    def test_block_hash_only(self):
        params = parse_request("eth_getLogs", [{"blockHash": TOPIC}])
        assert params.filter.to_rpc() == {"blockHash": TOPIC}

    def test_short_topic_rejected(self):
        with pytest.raises(InvalidParamsError):
            parse_request("eth_getLogs", [{"topics": ["0x01"]}])


class TestOtherMethods:
    def test_block_by_number(self):
        params = parse_request("eth_getBlockByNumber", ["0x10", True])
        assert isinstance(params, BlockByNumberParams)
        assert params.block_tag == 16
        assert params.full_transactions is True

    def test_fee_history(self):
        params = parse_request("eth_feeHistory", ["0x4", "latest", [10, 50]])
        assert isinstance(params, FeeHistoryParams)
        assert params.block_count == 4
        assert params.reward_percentiles == [10.0, 50.0]

    def test_receipt_hash_lowercased(self):
        params = parse_request("eth_getTransactionReceipt", ["0x" + "AB" * 32])
        assert params.tx_hash == TOPIC

    def test_personal_sign(self):
        params = parse_request("personal_sign", ["0x68656c6c6f", ADDRESS])
        assert params.message == "0x68656c6c6f"
        assert params.address == ADDRESS.lower()
