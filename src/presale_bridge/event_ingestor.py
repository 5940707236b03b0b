"""
Event ingestion from the source chain.

Two channels feed the queue: a live WebSocket subscription and a periodic
block-range scan that reconciles whatever the subscription missed. An
in-memory window of recently seen event ids short-circuits events already
delivered by the other channel; the queue's idempotent insert remains the
authority on duplicates.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

from .models import USER_EVENTS, EventRecord, EventType, RawEvent, RoundPurchase, UserContext

if TYPE_CHECKING:
    from .config import MonitoringConfig
    from .event_queue import EventQueue
    from .utils.source_client import SourceChainClient


class EventIngestor:
    """
    Merges the push and pull channels into one deduplicated, enriched stream.
    """

    EVENT_TYPES: tuple[str, ...] = tuple(event_type.value for event_type in EventType)

    def __init__(
        self,
        source_client: "SourceChainClient",
        queue: "EventQueue",
        contract_address: str,
        monitoring: "MonitoringConfig",
    ):
        """
        Initialize the ingestor.

        Args:
            source_client: Client for the presale contract
            queue: Durable event queue
            contract_address: Presale contract address, keys the ingestion cursor
            monitoring: Polling, batching and dedupe settings
        """
        self.source_client = source_client
        self.queue = queue
        self.contract_address = contract_address
        self.monitoring = monitoring

        # Fast-path dedupe, oldest first
        self.seen_events: OrderedDict[str, None] = OrderedDict()

        self.last_checked_block: int | None = None
        self.consecutive_errors = 0

        # Statistics
        self.events_ingested = 0
        self.events_duplicated = 0
        self.enrichment_failures = 0
        self.forced_skips = 0
        self.subscription_reconnects = 0

        self._stop_event = asyncio.Event()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # Dedupe window

    def _is_seen(self, event_id: str) -> bool:
        return event_id in self.seen_events

    def _remember(self, event_id: str) -> None:
        """Record an event id once it is durably queued, evicting the oldest half when full."""
        self.seen_events[event_id] = None
        self.seen_events.move_to_end(event_id)
        if len(self.seen_events) > self.monitoring.dedupe_window:
            for _ in range(len(self.seen_events) // 2):
                self.seen_events.popitem(last=False)
            self.logger.debug(f"Dedupe window trimmed to {len(self.seen_events)} entries")

    # Enrichment

    async def enrich(self, raw: RawEvent) -> UserContext | None:
        """
        Fetch the acting user's presale state for purchase/claim events.

        Best effort: any failure is logged and the event is ingested without
        a context.
        """
        if raw.event_type not in USER_EVENTS or not raw.args:
            return None

        address = str(raw.args[0])
        try:
            rounds = await self.source_client.get_user_rounds(address)
            details: dict[str, RoundPurchase] = {}
            for round_id in rounds:
                details[str(round_id)] = await self.source_client.get_user_round_purchase(
                    address, round_id
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.enrichment_failures += 1
            self.logger.warning(f"Enrichment failed for {address} ({raw.event_id}): {e}")
            return None

        return UserContext(address=address, rounds=tuple(rounds), purchase_details=details)

    # Push channel

    async def handle_raw_event(self, raw: RawEvent) -> bool:
        """
        Ingest a single event delivered by the subscription.

        Returns:
            True if the event was newly queued
        """
        if self._is_seen(raw.event_id):
            self.events_duplicated += 1
            self.logger.debug(f"Skipping already seen event {raw.event_id}")
            return False

        record = EventRecord.from_raw(raw, await self.enrich(raw))
        inserted = await self.queue.enqueue(record)
        self._remember(raw.event_id)

        if inserted:
            self.events_ingested += 1
            self.logger.info(
                f"Ingested {raw.event_type} {raw.event_id} from subscription "
                f"(block {raw.block_number})"
            )
        else:
            self.events_duplicated += 1
        return inserted

    async def run_subscription(self) -> None:
        """Keep the live subscription up, reconnecting after a fixed delay."""
        self.logger.info(
            f"Starting subscription for {', '.join(self.EVENT_TYPES)} "
            f"on {self.contract_address}"
        )

        while not self._stop_event.is_set():
            try:
                await self.source_client.subscribe(self.EVENT_TYPES, self.handle_raw_event)
                self.logger.warning("Subscription closed by remote")
            except asyncio.CancelledError:
                self.logger.info("Subscription cancelled")
                raise
            except Exception as e:
                self.logger.warning(f"Subscription failed: {e}")

            if await self._wait_for_stop(self.monitoring.reconnect_delay):
                break
            self.subscription_reconnects += 1
            self.logger.info(
                f"Reconnecting subscription (attempt {self.subscription_reconnects})"
            )

    # Pull channel

    async def initialize_cursor(self) -> None:
        """Resume from the persisted cursor, or look back from the current head."""
        stored = await self.queue.last_checked_block(self.contract_address)
        if stored is not None:
            self.last_checked_block = stored
            self.logger.info(f"Resuming polling after block {stored}")
            return

        head = await self.source_client.block_number()
        self.last_checked_block = max(0, head - self.monitoring.lookback_blocks)
        self.logger.info(
            f"No stored cursor, starting after block {self.last_checked_block} "
            f"(head {head}, lookback {self.monitoring.lookback_blocks})"
        )

    async def poll_once(self) -> bool:
        """
        Scan one capped batch of blocks after the cursor.

        Returns:
            True if more blocks remain behind the head and the next batch
            should run immediately
        """
        try:
            if self.last_checked_block is None:
                await self.initialize_cursor()
            assert self.last_checked_block is not None

            head = await self.source_client.block_number()
            if head <= self.last_checked_block:
                self.consecutive_errors = 0
                return False

            from_block = self.last_checked_block + 1
            to_block = min(head, from_block + self.monitoring.max_block_range - 1)

            raw_events: list[RawEvent] = []
            for event_type in self.EVENT_TYPES:
                raw_events.extend(
                    await self.source_client.query_range(from_block, to_block, event_type)
                )
            raw_events.sort(key=lambda e: (e.block_number, e.log_index))

            records: list[EventRecord] = []
            for raw in raw_events:
                if self._is_seen(raw.event_id):
                    self.events_duplicated += 1
                    continue
                records.append(EventRecord.from_raw(raw, await self.enrich(raw)))

            inserted = await self.queue.enqueue_batch(
                records, self.contract_address, checkpoint_block=to_block
            )
            for record in records:
                self._remember(record.event_id)

            self.events_ingested += inserted
            self.events_duplicated += len(records) - inserted
            self.last_checked_block = to_block
            self.consecutive_errors = 0

            if raw_events:
                self.logger.info(
                    f"Found {len(raw_events)} events in blocks {from_block}-{to_block}, "
                    f"{inserted} new"
                )
            return to_block < head

        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_poll_error(e)
            return False

    async def _handle_poll_error(self, error: Exception) -> None:
        self.consecutive_errors += 1
        self.logger.error(
            f"Error polling blocks after {self.last_checked_block} "
            f"({self.consecutive_errors} consecutive): {error}",
            exc_info=True,
        )

        # Nothing to skip from until the cursor has been initialized
        if (
            self.consecutive_errors <= self.monitoring.max_consecutive_errors
            or self.last_checked_block is None
        ):
            return

        target = self.last_checked_block + self.monitoring.skip_blocks
        try:
            target = min(target, await self.source_client.block_number())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Could not read head before forced skip: {e}")

        self.consecutive_errors = 0
        if target <= self.last_checked_block:
            return

        self.logger.error(
            f"ALERT: forcing cursor from block {self.last_checked_block} to {target} "
            f"after repeated polling errors; events in blocks "
            f"{self.last_checked_block + 1}-{target} may be missing"
        )
        self.last_checked_block = target
        self.forced_skips += 1
        try:
            await self.queue.save_checkpoint(self.contract_address, target)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to persist forced cursor {target}: {e}")

    async def run_polling(self) -> None:
        """Poll every interval, draining backlogs batch after batch without waiting."""
        interval = self.monitoring.polling_interval
        self.logger.info(
            f"Starting polling on {self.contract_address} every {interval} seconds "
            f"(max {self.monitoring.max_block_range} blocks per batch)"
        )

        while not self._stop_event.is_set():
            if await self.poll_once():
                continue
            if await self._wait_for_stop(interval):
                break

        self.logger.info("Polling stopped")

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds; True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def stop(self) -> None:
        """Stop both channels after their current step."""
        self.logger.info("Stopping event ingestion")
        self._stop_event.set()

    def get_stats(self) -> dict[str, Any]:
        return {
            "last_checked_block": self.last_checked_block,
            "events_ingested": self.events_ingested,
            "events_duplicated": self.events_duplicated,
            "enrichment_failures": self.enrichment_failures,
            "forced_skips": self.forced_skips,
            "subscription_reconnects": self.subscription_reconnects,
            "dedupe_window_size": len(self.seen_events),
        }
