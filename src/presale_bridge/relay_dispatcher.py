"""
Relay dispatcher.

Drains unprocessed queue entries oldest first and turns each into its
destination-chain effect. An entry is marked processed only after the
destination node accepted the transaction; anything else leaves it queued for
the next pass. Once an entry for an account fails, later entries for the same
account are held back for the rest of the pass.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .errors import DestinationChainError, SecretDecryptionError, StaleSequence
from .event_queue import normalize_address
from .models import (
    EventRecord,
    MalformedEventError,
    RoundCreated,
    TokensBought,
    TokensClaimed,
    UnknownEvent,
    decode_event,
)
from .utils.transaction_builder import build_memo

if TYPE_CHECKING:
    from .event_queue import EventQueue
    from .identity import IdentityBinder, ScopedSecret
    from .utils.account_locks import AccountLocks
    from .utils.amounts import AmountConverter
    from .utils.destination_client import DestinationChainClient

logger = logging.getLogger(__name__)


async def submit_with_sequence(
    client: "DestinationChainClient",
    address: str,
    submit: Callable[[int], Awaitable[str]],
) -> str:
    """
    Fetch the account's next sequence number and submit.

    A stale-sequence rejection is retried exactly once with a freshly fetched
    sequence number; the caller must hold the account's lock.
    """
    sequence = await client.get_next_sequence_number(address)
    try:
        return await submit(sequence)
    except StaleSequence as e:
        logger.warning(f"Stale sequence {sequence} for {address} ({e.reason}), refetching")

    sequence = await client.get_next_sequence_number(address)
    return await submit(sequence)


class RelayDispatcher:
    """
    Converts queued events into mint and burn transfers on the destination chain.
    """

    def __init__(
        self,
        queue: "EventQueue",
        binder: "IdentityBinder",
        destination_client: "DestinationChainClient",
        account_locks: "AccountLocks",
        amounts: "AmountConverter",
        bridge_address: str,
        bridge_secret: "ScopedSecret",
        token_symbol: str = "HMESH",
        batch_size: int = 10,
    ):
        """
        Initialize the dispatcher.

        Args:
            queue: Durable event queue
            binder: Hands out signing secrets for bound wallets
            destination_client: Destination chain client
            account_locks: Per-account locks shared with wallet actions
            amounts: Decimal convention for mint/burn amounts
            bridge_address: Destination address of the bridge wallet
            bridge_secret: Signing secret of the bridge wallet, used for mints
            token_symbol: Token name written into transfer memos
            batch_size: Records fetched per page and processed per pass
        """
        self.queue = queue
        self.binder = binder
        self.destination_client = destination_client
        self.account_locks = account_locks
        self.amounts = amounts
        self.bridge_address = bridge_address
        self.bridge_secret = bridge_secret
        self.token_symbol = token_symbol
        self.batch_size = batch_size

        # Task currently draining the queue, None between passes
        self._owner: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

        # Statistics
        self.passes = 0
        self.events_processed = 0
        self.events_failed = 0
        self.events_held_back = 0
        self.missing_bindings = 0

    @property
    def pass_in_progress(self) -> bool:
        return self._owner is not None and not self._owner.done()

    async def dispatch_pass(self) -> int:
        """
        Run one sweep over the unprocessed entries.

        Non-reentrant: returns 0 immediately if another pass still owns the
        queue.

        Returns:
            Number of entries marked processed in this pass
        """
        if self.pass_in_progress:
            logger.debug("Dispatch pass already in progress, skipping")
            return 0

        self._owner = asyncio.current_task()
        try:
            return await self._drain()
        finally:
            self._owner = None

    async def _drain(self) -> int:
        """
        Walk the queue in pages of ``batch_size`` until a batch worth of
        entries was processed or the queue is exhausted.

        Entries left unprocessed stay ahead of the rest in FIFO order, so the
        next page starts after them; stuck entries never starve other
        accounts.
        """
        held_accounts: set[str] = set()
        processed = 0
        remaining = 0  # entries seen this pass that are still unprocessed
        pages = 0

        while processed < self.batch_size and not self._stop_event.is_set():
            records = await self.queue.unprocessed(self.batch_size, offset=remaining)
            if not records:
                break

            pages += 1
            if pages == 1:
                self.passes += 1
            logger.info(f"Dispatching {len(records)} queued events")

            for record in records:
                if self._stop_event.is_set():
                    logger.info("Stop requested, ending dispatch pass early")
                    break

                account = record.source_address
                account = normalize_address(account) if account else None
                if account is not None and account in held_accounts:
                    self.events_held_back += 1
                    remaining += 1
                    logger.debug(
                        f"Holding back {record.event_id}: earlier event for {account} failed"
                    )
                    continue

                if await self.dispatch(record):
                    processed += 1
                    self.events_processed += 1
                else:
                    self.events_failed += 1
                    remaining += 1
                    if account is not None:
                        held_accounts.add(account)

        return processed

    async def dispatch(self, record: EventRecord) -> bool:
        """
        Apply one queued event.

        Returns:
            True if the event is now processed, False if it stays queued
        """
        try:
            event = decode_event(record)
        except MalformedEventError as e:
            logger.error(f"ALERT: cannot interpret queued event {record.event_id}: {e}")
            return False

        try:
            match event:
                case RoundCreated():
                    logger.info(f"Round event {record.event_id} needs no destination action")
                    return await self._mark(record)
                case TokensBought():
                    return await self._mint(event)
                case TokensClaimed():
                    return await self._burn(event)
                case UnknownEvent():
                    logger.warning(
                        f"Unknown event type {record.event_type} for {record.event_id}, "
                        "marking processed without action"
                    )
                    return await self._mark(record)
        except asyncio.CancelledError:
            raise
        except DestinationChainError as e:
            logger.warning(f"Destination chain failure for {record.event_id}, will retry: {e}")
        except SecretDecryptionError as e:
            logger.error(f"Cannot decrypt signing secret for {record.event_id}: {e}")
        except Exception as e:
            logger.error(f"Error dispatching {record.event_id}: {e}", exc_info=True)
        return False

    async def _mint(self, event: TokensBought) -> bool:
        record = event.record
        binding = await self.queue.binding_for(record.source_address or event.buyer)
        if binding is None:
            return self._missing_binding(record, event.buyer)

        amount = self.amounts.to_destination(event.amount)
        if amount == 0:
            logger.warning(f"Purchase {record.event_id} converts to zero units, nothing to mint")
            return await self._mark(record)

        logger.info(f"Minting {amount} to {binding.destination_address} for {record.event_id}")
        tx_id = await self._transfer(
            sender=self.bridge_address,
            signing_secret=self.bridge_secret,
            recipient=binding.destination_address,
            amount=amount,
            memo=build_memo("mint", self.token_symbol, record.event_id),
        )
        return await self._mark(record, tx_id)

    async def _burn(self, event: TokensClaimed) -> bool:
        record = event.record
        binding = await self.queue.binding_for(record.source_address or event.user)
        if binding is None:
            return self._missing_binding(record, event.user)

        amount = self.amounts.to_destination(event.amount)
        if amount == 0:
            logger.warning(f"Claim {record.event_id} converts to zero units, nothing to burn")
            return await self._mark(record)

        logger.info(f"Burning {amount} from {binding.destination_address} for {record.event_id}")
        tx_id = await self._transfer(
            sender=binding.destination_address,
            signing_secret=self.binder.signing_secret(binding),
            recipient=self.bridge_address,
            amount=amount,
            memo=build_memo("burn", self.token_symbol, record.event_id),
        )
        return await self._mark(record, tx_id)

    async def _transfer(
        self,
        sender: str,
        signing_secret: "ScopedSecret",
        recipient: str,
        amount: int,
        memo: str,
    ) -> str:
        async with self.account_locks.for_account(sender):
            return await submit_with_sequence(
                self.destination_client,
                sender,
                lambda sequence: self.destination_client.submit_transfer(
                    recipient, amount, memo, sequence, signing_secret
                ),
            )

    def _missing_binding(self, record: EventRecord, address: str) -> bool:
        self.missing_bindings += 1
        logger.error(
            f"ALERT: no destination wallet bound to {address} for event {record.event_id}; "
            "leaving it unprocessed"
        )
        return False

    async def _mark(self, record: EventRecord, destination_tx_id: str | None = None) -> bool:
        try:
            await self.queue.mark_processed(record.event_id, destination_tx_id)
        except Exception:
            if destination_tx_id:
                # The transfer is on chain; the next pass would send it again
                logger.error(
                    f"ALERT: event {record.event_id} was relayed in transaction "
                    f"{destination_tx_id} but could not be marked processed"
                )
            raise
        if destination_tx_id:
            logger.info(f"Event {record.event_id} relayed in transaction {destination_tx_id}")
        return True

    async def run(self, interval: float) -> None:
        """Run dispatch passes every ``interval`` seconds until stopped."""
        logger.info(f"Starting dispatcher, pass interval {interval}s, batch size {self.batch_size}")

        while not self._stop_event.is_set():
            try:
                await self.dispatch_pass()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dispatch pass failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Dispatcher stopped")

    def request_stop(self) -> None:
        """Finish the event in flight, then stop."""
        self._stop_event.set()

    def get_stats(self) -> dict[str, Any]:
        return {
            "passes": self.passes,
            "events_processed": self.events_processed,
            "events_failed": self.events_failed,
            "events_held_back": self.events_held_back,
            "missing_bindings": self.missing_bindings,
        }
