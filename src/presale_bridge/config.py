#!/usr/bin/env python3
"""Configuration management for the presale bridge.

This module provides type-safe configuration dataclasses with validation
for the bridge. Configuration is loaded from environment variables with
sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from cryptography.fernet import Fernet
from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def _convert_to_websocket_url(http_url: str) -> str:
    """Convert HTTP RPC URL to WebSocket URL."""
    if http_url.startswith("https://"):
        return http_url.replace("https://", "wss://", 1)
    if http_url.startswith("http://"):
        return http_url.replace("http://", "ws://", 1)
    return http_url


@dataclass(frozen=True, slots=True)
class SourceChainConfig:
    """Configuration for the source chain hosting the presale contract.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint used for polling and contract calls
        contract_address: Checksummed address of the presale contract
        ws_url: WebSocket endpoint for the live subscription (derived from
            rpc_url when not given)
    """

    rpc_url: str
    contract_address: str
    ws_url: str = ""

    def __post_init__(self) -> None:
        """Validate source chain configuration."""
        if not self.rpc_url:
            raise ValueError("Source RPC URL is required (SOURCE_RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not self.ws_url:
            object.__setattr__(self, 'ws_url', _convert_to_websocket_url(self.rpc_url))
        elif urlparse(self.ws_url).scheme not in ('ws', 'wss'):
            raise ValueError(
                f"Invalid WebSocket URL scheme: {urlparse(self.ws_url).scheme}. "
                "Expected ws or wss"
            )

        if not self.contract_address:
            raise ValueError(
                "Presale contract address is required (PRESALE_CONTRACT_ADDRESS)"
            )

        if not Web3.is_address(self.contract_address):
            raise ValueError(
                f"Invalid presale contract address: {self.contract_address}"
            )

        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed != self.contract_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'contract_address', checksummed)


@dataclass(frozen=True, slots=True)
class DestinationChainConfig:
    """Configuration for the destination chain node.

    Attributes:
        node_url: Base URL of the node REST API
        bridge_mnemonic: Passphrase of the bridge wallet that signs mints
        network: Network name, selects the address version byte
        transaction_fee: Fixed fee attached to every transaction
        token_symbol: Token name written into the memo of mint/burn transfers
    """

    node_url: str
    bridge_mnemonic: str = field(repr=False)
    network: str = "devnet"
    transaction_fee: int = 10_000_000
    token_symbol: str = "HMESH"

    # Address version byte per network
    NETWORK_VERSIONS: ClassVar[dict[str, int]] = {
        'mainnet': 23,
        'devnet': 30,
    }

    def __post_init__(self) -> None:
        """Validate destination chain configuration."""
        if not self.node_url:
            raise ValueError("Destination node URL is required (DESTINATION_NODE_URL)")

        parsed = urlparse(self.node_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid node URL scheme: {parsed.scheme}. Expected http or https"
            )
        object.__setattr__(self, 'node_url', self.node_url.rstrip('/'))

        if self.network not in self.NETWORK_VERSIONS:
            raise ValueError(
                f"Unsupported network: {self.network}. "
                f"Supported networks: {', '.join(sorted(self.NETWORK_VERSIONS))}"
            )

        if not self.bridge_mnemonic or not self.bridge_mnemonic.strip():
            raise ValueError("Bridge wallet mnemonic is required (BRIDGE_MNEMONIC)")

        if self.transaction_fee <= 0:
            raise ValueError(f"Transaction fee must be positive, got {self.transaction_fee}")

    @property
    def address_version(self) -> int:
        """Address version byte for the configured network."""
        return self.NETWORK_VERSIONS[self.network]


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Configuration for the durable event queue.

    Attributes:
        url: SQLAlchemy async database URL
    """

    url: str = field(repr=False)

    def __post_init__(self) -> None:
        """Validate the database URL and pick the async driver."""
        if not self.url:
            raise ValueError("Database URL is required (DATABASE_URL)")

        # Plain postgres URLs are served through asyncpg
        for prefix in ("postgresql://", "postgres://"):
            if self.url.startswith(prefix):
                object.__setattr__(
                    self, 'url', "postgresql+asyncpg://" + self.url[len(prefix):]
                )
                break


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Configuration for at-rest encryption of custodial wallet secrets."""

    wallet_encryption_key: str = field(repr=False)

    def __post_init__(self) -> None:
        """Validate the Fernet key."""
        if not self.wallet_encryption_key:
            raise ValueError(
                "Wallet encryption key is required (WALLET_ENCRYPTION_KEY). "
                "Generate one with cryptography.fernet.Fernet.generate_key()"
            )
        try:
            Fernet(self.wallet_encryption_key)
        except (ValueError, TypeError):
            raise ValueError(
                "Invalid WALLET_ENCRYPTION_KEY: must be 32 url-safe base64-encoded bytes"
            ) from None


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for event monitoring and dispatching."""
    polling_interval: int = 10  # seconds between pull-channel scans
    reconnect_delay: int = 10  # seconds before re-establishing the subscription
    max_block_range: int = 2000  # blocks per queryRange batch
    max_consecutive_errors: int = 3  # pull errors tolerated before a forced skip
    skip_blocks: int = 100  # blocks skipped once the error threshold is exceeded
    lookback_blocks: int = 100  # blocks to look back on first start
    dedupe_window: int = 1000  # event ids held in the in-memory fast path
    dispatch_interval: int = 5  # seconds between dispatch passes
    dispatch_batch_size: int = 10  # unprocessed records fetched per pass
    request_timeout: int = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.reconnect_delay <= 0:
            raise ValueError(f"Reconnect delay must be positive, got {self.reconnect_delay}")

        if self.max_block_range <= 0:
            raise ValueError(f"Max block range must be positive, got {self.max_block_range}")
        if self.max_block_range > 10_000:
            raise ValueError(f"Max block range too high (max 10000), got {self.max_block_range}")

        if self.max_consecutive_errors < 0:
            raise ValueError(
                f"Max consecutive errors must be non-negative, got {self.max_consecutive_errors}"
            )

        if self.skip_blocks <= 0:
            raise ValueError(f"Skip blocks must be positive, got {self.skip_blocks}")

        if self.lookback_blocks < 0:
            raise ValueError(f"Lookback blocks must be non-negative, got {self.lookback_blocks}")

        if self.dedupe_window < 2:
            raise ValueError(f"Dedupe window must be at least 2, got {self.dedupe_window}")

        if self.dispatch_interval <= 0:
            raise ValueError(f"Dispatch interval must be positive, got {self.dispatch_interval}")

        if self.dispatch_batch_size <= 0:
            raise ValueError(
                f"Dispatch batch size must be positive, got {self.dispatch_batch_size}"
            )

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class AmountConfig:
    """Decimal convention shared by the mint and burn paths."""
    source_decimals: int = 18
    destination_decimals: int = 8

    def __post_init__(self) -> None:
        """Validate the decimal convention."""
        if not 0 <= self.source_decimals <= 36:
            raise ValueError(f"Source decimals out of range, got {self.source_decimals}")
        if not 0 <= self.destination_decimals <= 36:
            raise ValueError(
                f"Destination decimals out of range, got {self.destination_decimals}"
            )


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Main configuration for the presale bridge.

    Attributes:
        source_chain: Configuration for the source chain
        destination_chain: Configuration for the destination chain
        database: Configuration for the durable queue
        security: Configuration for wallet secret encryption
        monitoring: Configuration for ingestion and dispatch loops
        amounts: Decimal convention for mint/burn amounts
    """

    source_chain: SourceChainConfig
    destination_chain: DestinationChainConfig
    database: DatabaseConfig
    security: SecurityConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    amounts: AmountConfig = field(default_factory=AmountConfig)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load configuration from environment variables.

        Returns:
            BridgeConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        source_config = SourceChainConfig(
            rpc_url=os.environ.get("SOURCE_RPC_URL", ""),
            contract_address=os.environ.get("PRESALE_CONTRACT_ADDRESS", ""),
            ws_url=os.environ.get("SOURCE_WS_URL", ""),
        )

        destination_config = DestinationChainConfig(
            node_url=os.environ.get("DESTINATION_NODE_URL", ""),
            bridge_mnemonic=os.environ.get("BRIDGE_MNEMONIC", ""),
            network=os.environ.get("DESTINATION_NETWORK", "devnet"),
            transaction_fee=_int_env("TRANSACTION_FEE", 10_000_000),
            token_symbol=os.environ.get("TOKEN_SYMBOL", "HMESH"),
        )

        database_config = DatabaseConfig(url=os.environ.get("DATABASE_URL", ""))

        security_config = SecurityConfig(
            wallet_encryption_key=os.environ.get("WALLET_ENCRYPTION_KEY", "")
        )

        monitoring_config = MonitoringConfig(
            polling_interval=_int_env("POLLING_INTERVAL", 10),
            reconnect_delay=_int_env("RECONNECT_DELAY", 10),
            max_block_range=_int_env("MAX_BLOCK_RANGE", 2000),
            max_consecutive_errors=_int_env("MAX_CONSECUTIVE_ERRORS", 3),
            skip_blocks=_int_env("SKIP_BLOCKS", 100),
            lookback_blocks=_int_env("LOOKBACK_BLOCKS", 100),
            dedupe_window=_int_env("DEDUPE_WINDOW", 1000),
            dispatch_interval=_int_env("DISPATCH_INTERVAL", 5),
            dispatch_batch_size=_int_env("DISPATCH_BATCH_SIZE", 10),
            request_timeout=_int_env("REQUEST_TIMEOUT", 30),
        )

        amount_config = AmountConfig(
            source_decimals=_int_env("SOURCE_DECIMALS", 18),
            destination_decimals=_int_env("DESTINATION_DECIMALS", 8),
        )

        return cls(
            source_chain=source_config,
            destination_chain=destination_config,
            database=database_config,
            security=security_config,
            monitoring=monitoring_config,
            amounts=amount_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format, hiding secrets."""
        logger.info("=" * 60)
        logger.info("Presale Bridge Configuration")
        logger.info("=" * 60)

        logger.info("Source Chain:")
        logger.info(f"  RPC URL: {self.source_chain.rpc_url}")
        logger.info(f"  WebSocket URL: {self.source_chain.ws_url}")
        logger.info(f"  Presale Contract: {self.source_chain.contract_address}")

        logger.info("Destination Chain:")
        logger.info(f"  Node URL: {self.destination_chain.node_url}")
        logger.info(f"  Network: {self.destination_chain.network}")
        logger.info(f"  Token: {self.destination_chain.token_symbol}")
        logger.info(f"  Fee: {self.destination_chain.transaction_fee}")
        logger.info(
            f"  Bridge Mnemonic: {'[SET]' if self.destination_chain.bridge_mnemonic else '[NOT SET]'}"
        )

        logger.info("Storage:")
        logger.info(f"  Database: {self.database.url.split('://', 1)[0]}://[HIDDEN]")
        logger.info(
            f"  Encryption Key: {'[SET]' if self.security.wallet_encryption_key else '[NOT SET]'}"
        )

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Reconnect Delay: {self.monitoring.reconnect_delay} seconds")
        logger.info(f"  Max Block Range: {self.monitoring.max_block_range}")
        logger.info(f"  Dispatch Interval: {self.monitoring.dispatch_interval} seconds")
        logger.info(f"  Dispatch Batch Size: {self.monitoring.dispatch_batch_size}")

        logger.info("Amounts:")
        logger.info(
            f"  Decimals: source={self.amounts.source_decimals} "
            f"destination={self.amounts.destination_decimals}"
        )

        logger.info("=" * 60)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
