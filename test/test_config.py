#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from presale_bridge.config import (
    BridgeConfig,
    DatabaseConfig,
    DestinationChainConfig,
    MonitoringConfig,
    SecurityConfig,
    SourceChainConfig,
)

CONTRACT = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
MNEMONIC = "this is a top secret passphrase"


def _env(**overrides) -> dict[str, str]:
    env = {
        "SOURCE_RPC_URL": "https://bsc.publicnode.com",
        "PRESALE_CONTRACT_ADDRESS": CONTRACT,
        "DESTINATION_NODE_URL": "https://node.example.org/",
        "BRIDGE_MNEMONIC": MNEMONIC,
        "DATABASE_URL": "postgresql://bridge:pw@db:5432/bridge",
        "WALLET_ENCRYPTION_KEY": Fernet.generate_key().decode(),
    }
    env.update(overrides)
    return env


class TestSourceChainConfig:
    """Tests for SourceChainConfig."""

    def test_checksum_address_conversion(self):
        """Lowercase addresses are converted to checksum format."""
        config = SourceChainConfig(rpc_url="https://test.rpc", contract_address=CONTRACT.lower())

        assert config.contract_address == CONTRACT

    def test_websocket_url_derived(self):
        """The WebSocket URL defaults to the RPC URL with a ws scheme."""
        config = SourceChainConfig(rpc_url="https://test.rpc", contract_address=CONTRACT)

        assert config.ws_url == "wss://test.rpc"

    def test_invalid_rpc_url_scheme(self):
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            SourceChainConfig(rpc_url="ftp://invalid.scheme", contract_address=CONTRACT)

    def test_invalid_websocket_scheme(self):
        with pytest.raises(ValueError, match="Invalid WebSocket URL scheme"):
            SourceChainConfig(
                rpc_url="https://test.rpc", contract_address=CONTRACT, ws_url="https://x"
            )

    def test_invalid_contract_address(self):
        with pytest.raises(ValueError, match="Invalid presale contract address"):
            SourceChainConfig(rpc_url="https://test.rpc", contract_address="0xnope")


class TestDestinationChainConfig:
    """Tests for DestinationChainConfig."""

    def test_network_selects_address_version(self):
        devnet = DestinationChainConfig(node_url="http://node", bridge_mnemonic=MNEMONIC)
        mainnet = DestinationChainConfig(
            node_url="http://node", bridge_mnemonic=MNEMONIC, network="mainnet"
        )

        assert devnet.address_version == 30
        assert mainnet.address_version == 23

    def test_unsupported_network(self):
        with pytest.raises(ValueError, match="Unsupported network"):
            DestinationChainConfig(node_url="http://node", bridge_mnemonic=MNEMONIC, network="x")

    def test_missing_mnemonic(self):
        with pytest.raises(ValueError, match="BRIDGE_MNEMONIC"):
            DestinationChainConfig(node_url="http://node", bridge_mnemonic="  ")

    def test_mnemonic_hidden_from_repr(self):
        config = DestinationChainConfig(node_url="http://node", bridge_mnemonic=MNEMONIC)

        assert MNEMONIC not in repr(config)


class TestStorageAndSecurityConfig:
    """Tests for DatabaseConfig and SecurityConfig."""

    def test_postgres_url_uses_asyncpg(self):
        config = DatabaseConfig(url="postgresql://u:p@localhost/db")

        assert config.url == "postgresql+asyncpg://u:p@localhost/db"

    def test_async_url_kept(self):
        config = DatabaseConfig(url="sqlite+aiosqlite:///queue.db")

        assert config.url == "sqlite+aiosqlite:///queue.db"

    def test_invalid_encryption_key(self):
        with pytest.raises(ValueError, match="Invalid WALLET_ENCRYPTION_KEY"):
            SecurityConfig(wallet_encryption_key="short")


class TestMonitoringConfig:
    """Tests for MonitoringConfig."""

    def test_defaults(self):
        config = MonitoringConfig()

        assert config.polling_interval == 10
        assert config.reconnect_delay == 10
        assert config.max_block_range == 2000
        assert config.dedupe_window == 1000

    @pytest.mark.parametrize("field,value,message", [
        ("polling_interval", 0, "Polling interval must be positive"),
        ("max_block_range", 20_000, "Max block range too high"),
        ("dedupe_window", 1, "Dedupe window must be at least 2"),
        ("dispatch_batch_size", 0, "Dispatch batch size must be positive"),
    ])
    def test_range_checks(self, field, value, message):
        with pytest.raises(ValueError, match=message):
            MonitoringConfig(**{field: value})


class TestBridgeConfig:
    """Tests for loading the full configuration."""

    def test_from_env(self):
        with patch.dict(os.environ, _env(POLLING_INTERVAL="15"), clear=True):
            config = BridgeConfig.from_env()

        assert config.source_chain.contract_address == CONTRACT
        assert config.destination_chain.node_url == "https://node.example.org"
        assert config.database.url.startswith("postgresql+asyncpg://")
        assert config.monitoring.polling_interval == 15
        assert config.amounts.source_decimals == 18

    def test_non_integer_env_names_variable(self):
        with patch.dict(os.environ, _env(MAX_BLOCK_RANGE="lots"), clear=True):
            with pytest.raises(ValueError, match="MAX_BLOCK_RANGE must be an integer"):
                BridgeConfig.from_env()

    def test_missing_required(self):
        with patch.dict(os.environ, _env(DATABASE_URL=""), clear=True):
            with pytest.raises(ValueError, match="DATABASE_URL"):
                BridgeConfig.from_env()

    def test_log_config_hides_secrets(self, caplog):
        env = _env()
        with patch.dict(os.environ, env, clear=True):
            config = BridgeConfig.from_env()

        with caplog.at_level(logging.INFO):
            config.log_config()

        assert MNEMONIC not in caplog.text
        assert env["WALLET_ENCRYPTION_KEY"] not in caplog.text
        assert "bridge:pw" not in caplog.text
        assert "[SET]" in caplog.text
