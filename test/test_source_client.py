#!/usr/bin/env python3
"""Tests for decoding presale logs into RawEvents."""

import pytest
from web3 import Web3

from presale_bridge.utils.contract_utility import ContractUtility
from presale_bridge.utils.source_client import SourceChainClient

from conftest import BUYER

CONTRACT = "0x9f983F759d511D0f404582b0bdc1994edb5db856"
TX_HASH = "0x" + "ab" * 32


def _word(value: int) -> str:
    return value.to_bytes(32, "big").hex()


@pytest.fixture
def client():
    return SourceChainClient(
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT,
        abi=ContractUtility().get_contract_abi("Presale"),
    )


def _bought_log(amount: int = 5 * 10**11, paid: int = 10**18) -> dict:
    """TokensBought log the way a WebSocket subscription delivers it."""
    return {
        "address": CONTRACT,
        "blockHash": "0x" + "01" * 32,
        "blockNumber": "0x3c0",
        "data": "0x" + _word(amount) + _word(paid),
        "logIndex": "0x2",
        "topics": [
            Web3.to_hex(Web3.keccak(text="TokensBought(address,uint256,uint256,uint256)")),
            "0x" + "00" * 12 + BUYER[2:].lower(),
            "0x" + _word(3),
        ],
        "transactionHash": TX_HASH,
        "transactionIndex": "0x0",
    }


class TestDecodeLog:
    """Tests for SourceChainClient.decode_log."""

    def test_tokens_bought(self, client):
        raw = client.decode_log(_bought_log())

        assert raw.event_type == "TokensBought"
        assert raw.block_number == 960
        assert raw.log_index == 2
        assert raw.transaction_hash == TX_HASH
        assert raw.event_id == f"{TX_HASH}-2"
        assert raw.args == (BUYER, 3, 5 * 10**11, 10**18)

    def test_unknown_topic_is_ignored(self, client):
        log = _bought_log()
        log["topics"][0] = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

        assert client.decode_log(log) is None

    def test_log_without_topics(self, client):
        assert client.decode_log({"topics": []}) is None

    def test_round_created_argument_order(self, client):
        log = {
            "address": CONTRACT,
            "blockHash": "0x" + "01" * 32,
            "blockNumber": 12,
            "data": "0x" + _word(100) + _word(200) + _word(1000),
            "logIndex": 0,
            "topics": [
                Web3.to_hex(Web3.keccak(text="RoundCreated(uint256,uint256,uint256,uint256)")),
                "0x" + _word(4),
            ],
            "transactionHash": TX_HASH,
            "transactionIndex": 0,
        }

        raw = client.decode_log(log)

        assert raw.event_type == "RoundCreated"
        assert raw.args == (4, 100, 200, 1000)
