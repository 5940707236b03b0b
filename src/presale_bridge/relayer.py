"""
Presale bridge relayer.

This module contains the main service that wires the ingestion, queue and
dispatch components together and manages their lifecycle.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .config import BridgeConfig
from .event_ingestor import EventIngestor
from .event_queue import EventQueue
from .identity import IdentityBinder, ScopedSecret, SecretBox
from .relay_dispatcher import RelayDispatcher
from .storage import init_storage
from .utils.account_locks import AccountLocks
from .utils.amounts import AmountConverter
from .utils.ark_crypto import keys_from_passphrase
from .utils.contract_utility import ContractUtility
from .utils.destination_client import DestinationChainClient, HttpDestinationChainClient
from .utils.source_client import SourceChainClient
from .wallet_actions import WalletActions

logger = logging.getLogger(__name__)


class PresaleRelayer:
    """
    Main service that orchestrates event ingestion and relay dispatch.

    This class focuses on coordination and lifecycle management; ingestion
    and dispatch only talk to each other through the durable queue.
    """

    STATUS_LOG_INTERVAL = 30  # seconds
    SHUTDOWN_GRACE_PERIOD = 60  # seconds granted to the in-flight dispatch pass

    def __init__(
        self,
        config: BridgeConfig,
        engine: AsyncEngine | None = None,
        source_client: SourceChainClient | None = None,
        destination_client: DestinationChainClient | None = None,
    ):
        """
        Initialize the relayer.

        Args:
            config: Bridge configuration
            engine: Database engine, created from config when omitted
            source_client: Source chain client, created from config when omitted
            destination_client: Destination chain client, created from config when omitted
        """
        self.config = config
        self.running = False

        self._init_utilities(engine, source_client, destination_client)
        self._init_components()

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _init_utilities(
        self,
        engine: AsyncEngine | None,
        source_client: SourceChainClient | None,
        destination_client: DestinationChainClient | None,
    ) -> None:
        """Initialize chain clients and storage."""
        self.contract_util = ContractUtility()

        self.source_client = source_client or SourceChainClient(
            rpc_url=self.config.source_chain.rpc_url,
            contract_address=self.config.source_chain.contract_address,
            abi=self.contract_util.get_contract_abi("Presale"),
            ws_url=self.config.source_chain.ws_url,
            request_timeout=self.config.monitoring.request_timeout,
        )
        self.destination_client = destination_client or HttpDestinationChainClient(
            self.config.destination_chain,
            timeout=self.config.monitoring.request_timeout,
        )

        self.engine = engine or create_async_engine(self.config.database.url, pool_pre_ping=True)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    def _init_components(self) -> None:
        """Initialize the queue, binder, ingestor, dispatcher and wallet actions."""
        destination = self.config.destination_chain
        secret_box = SecretBox(self.config.security.wallet_encryption_key)

        self.binder = IdentityBinder(secret_box, destination.address_version)
        self.queue = EventQueue(self.session_factory, self.binder)
        self.account_locks = AccountLocks()

        self.bridge_address = keys_from_passphrase(
            destination.bridge_mnemonic, destination.address_version
        ).address
        bridge_secret = ScopedSecret.from_plaintext(secret_box, destination.bridge_mnemonic)

        self.ingestor = EventIngestor(
            source_client=self.source_client,
            queue=self.queue,
            contract_address=self.config.source_chain.contract_address,
            monitoring=self.config.monitoring,
        )
        self.dispatcher = RelayDispatcher(
            queue=self.queue,
            binder=self.binder,
            destination_client=self.destination_client,
            account_locks=self.account_locks,
            amounts=AmountConverter(
                source_decimals=self.config.amounts.source_decimals,
                destination_decimals=self.config.amounts.destination_decimals,
            ),
            bridge_address=self.bridge_address,
            bridge_secret=bridge_secret,
            token_symbol=destination.token_symbol,
            batch_size=self.config.monitoring.dispatch_batch_size,
        )
        self.wallet_actions = WalletActions(
            queue=self.queue,
            binder=self.binder,
            destination_client=self.destination_client,
            account_locks=self.account_locks,
        )

        logger.info(f"Bridge wallet on {destination.network}: {self.bridge_address}")

    @classmethod
    def from_env(cls) -> "PresaleRelayer":
        """
        Create a PresaleRelayer instance from environment variables.

        Returns:
            Configured PresaleRelayer instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = BridgeConfig.from_env()
        config.log_config()
        return cls(config)

    async def startup_checks(self) -> None:
        """Create missing tables and make sure the presale contract exists."""
        await init_storage(self.engine)
        logger.info("Queue storage ready")

        contract_address = self.config.source_chain.contract_address
        if not await self.source_client.has_contract_code():
            raise RuntimeError(f"No contract code found at {contract_address}")
        logger.info(f"Presale contract verified at {contract_address}")

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            try:
                pending = await self.queue.unprocessed_count()
            except Exception as e:
                logger.warning(f"Could not read queue depth: {e}")
                continue

            ingest = self.ingestor.get_stats()
            dispatch = self.dispatcher.get_stats()
            logger.info(
                f"Status: {pending} events pending, "
                f"cursor at block {ingest['last_checked_block']}, "
                f"{ingest['events_ingested']} ingested, "
                f"{ingest['events_duplicated']} duplicates, "
                f"{ingest['enrichment_failures']} enrichment failures, "
                f"{ingest['forced_skips']} forced skips, "
                f"{dispatch['events_processed']} processed, "
                f"{dispatch['events_failed']} failed, "
                f"{dispatch['events_held_back']} held back"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop ingestion, let the dispatcher finish its current event, then cancel the rest."""
        self.ingestor.stop()
        self.dispatcher.request_stop()

        dispatch_task = tasks.get("dispatch")
        if dispatch_task is not None and not dispatch_task.done():
            logger.info("Waiting for the in-flight dispatch pass to finish...")
            await asyncio.wait({dispatch_task}, timeout=self.SHUTDOWN_GRACE_PERIOD)

        # Cancel all running tasks
        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

    async def _close_resources(self) -> None:
        await self.destination_client.aclose()
        await self.source_client.close()
        await self.engine.dispose()

    async def run(self) -> None:
        """Main event loop for the relayer service."""
        self.running = True
        logger.info("Presale Relayer starting...")
        logger.info(f"Polling interval: {self.config.monitoring.polling_interval}s")
        logger.info(f"Dispatch interval: {self.config.monitoring.dispatch_interval}s")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.startup_checks()

            tasks = {
                "subscription": asyncio.create_task(self.ingestor.run_subscription()),
                "polling": asyncio.create_task(self.ingestor.run_polling()),
                "dispatch": asyncio.create_task(
                    self.dispatcher.run(self.config.monitoring.dispatch_interval)
                ),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }

            logger.info("Event monitoring started, waiting for events...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            await self._close_resources()
            logger.info("Presale Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()
