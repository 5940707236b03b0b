#!/usr/bin/env python3
"""Entry point for the presale bridge relayer.

Loads configuration from the environment and runs the relayer until it is
interrupted or one of its tasks fails.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from presale_bridge.relayer import PresaleRelayer  # noqa: E402


async def main() -> None:
    """Main entry point for the presale bridge relayer.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Presale Bridge Relayer - Mirror presale events onto the destination chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  SOURCE_RPC_URL            - HTTP RPC endpoint of the source chain
  SOURCE_WS_URL             - WebSocket endpoint (default: derived from SOURCE_RPC_URL)
  PRESALE_CONTRACT_ADDRESS  - Presale contract address
  DESTINATION_NODE_URL      - Destination node REST API base URL
  DESTINATION_NETWORK       - mainnet or devnet (default: devnet)
  BRIDGE_MNEMONIC           - Passphrase of the bridge wallet
  DATABASE_URL              - Queue database URL
  WALLET_ENCRYPTION_KEY     - Fernet key for custodial wallet secrets
  POLLING_INTERVAL          - Pull channel interval in seconds (default: 10)
  DISPATCH_INTERVAL         - Dispatch pass interval in seconds (default: 5)
  LOG_LEVEL                 - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== Presale Bridge Relayer Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        relayer: PresaleRelayer = PresaleRelayer.from_env()
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - SOURCE_RPC_URL: HTTP RPC endpoint of the source chain")
        logger.error("  - PRESALE_CONTRACT_ADDRESS: Presale contract address")
        logger.error("  - DESTINATION_NODE_URL: Destination node REST API base URL")
        logger.error("  - BRIDGE_MNEMONIC: Passphrase of the bridge wallet")
        logger.error("  - DATABASE_URL: Queue database URL")
        logger.error("  - WALLET_ENCRYPTION_KEY: Fernet key for custodial wallet secrets")
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)

    try:
        await relayer.run()
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
