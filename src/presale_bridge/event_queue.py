"""
Durable event queue.

The queue is the single source of truth for what was observed on the source
chain and what has been acted on. Inserts are idempotent on ``event_id``, and
an event insert and its identity-binding mutation always commit together.
"""

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from web3 import Web3

from .errors import QueueWriteConflict
from .models import (
    DestinationWallet,
    EventRecord,
    IdentityBinding,
    UserContext,
    parse_purchase_details,
    parse_rounds,
)
from .storage import IdentityBindingRow, IngestionCursor, QueuedEvent, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .identity import IdentityBinder

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    """Checksum EVM addresses so lookups are case-insensitive."""
    if Web3.is_address(address):
        return Web3.to_checksum_address(address)
    return address


def _load_json(raw: str | None, default: Any, what: str, key: str) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Malformed {what} JSON for {key}, using empty default")
        return default


class EventQueue:
    """Append-only store of ingested events and their identity bindings."""

    def __init__(
        self,
        session_factory: "async_sessionmaker[AsyncSession]",
        binder: "IdentityBinder",
    ) -> None:
        """
        Initialize the queue.

        Args:
            session_factory: Async session factory for the queue database
            binder: Issues custodial wallets for first-seen source addresses
        """
        self._session_factory = session_factory
        self.binder = binder
        # Serializes writers from the two ingestion channels
        self._write_lock = asyncio.Lock()

    async def enqueue(self, record: EventRecord) -> bool:
        """
        Durably insert an event, provisioning or refreshing its binding.

        Returns:
            True if the event was inserted, False if it was already present

        Raises:
            WalletGenerationError: If a new binding could not be issued; nothing
                is recorded in that case
        """
        async with self._write_lock:
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        inserted = await self._insert_record(session, record)
                except IntegrityError:
                    logger.debug(f"Event {record.event_id} inserted concurrently, skipping")
                    return False

        if inserted:
            logger.info(f"Event {record.event_id} ({record.event_type}) saved to queue")
        return inserted

    async def enqueue_batch(
        self,
        records: Sequence[EventRecord],
        contract_address: str,
        checkpoint_block: int,
    ) -> int:
        """
        Insert a pull-channel batch and advance the ingestion cursor atomically.

        Returns:
            Number of newly inserted events

        Raises:
            QueueWriteConflict: If the batch lost a unique-key race; nothing
                was written and the cursor did not move
        """
        async with self._write_lock:
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        inserted = 0
                        for record in records:
                            if await self._insert_record(session, record):
                                inserted += 1
                        await self._set_cursor(session, contract_address, checkpoint_block)
                except IntegrityError as e:
                    raise QueueWriteConflict(
                        f"Batch ending at block {checkpoint_block} conflicted"
                    ) from e

        if inserted:
            logger.info(f"Saved {inserted} events to queue (checkpoint block {checkpoint_block})")
        return inserted

    async def _insert_record(self, session: "AsyncSession", record: EventRecord) -> bool:
        if await session.get(QueuedEvent, record.event_id) is not None:
            return False

        source_address = record.source_address
        if source_address:
            source_address = normalize_address(source_address)

        context = record.user_context
        session.add(
            QueuedEvent(
                event_id=record.event_id,
                transaction_hash=record.transaction_hash,
                block_number=record.block_number,
                log_index=record.log_index,
                event_type=record.event_type,
                args=json.dumps(list(record.args)),
                user_info=json.dumps(context.to_dict()) if context else None,
                user_address=source_address,
                processed=False,
                created_at=utcnow(),
            )
        )

        if source_address:
            await self._bind(session, source_address, context)

        await session.flush()
        return True

    async def _bind(
        self,
        session: "AsyncSession",
        source_address: str,
        context: UserContext | None,
    ) -> None:
        row = await session.get(IdentityBindingRow, source_address)
        now = utcnow()

        if row is None:
            wallet = self.binder.issue_wallet()
            session.add(
                IdentityBindingRow(
                    source_address=source_address,
                    destination_address=wallet.address,
                    public_key=wallet.public_key,
                    encrypted_mnemonic=wallet.encrypted_mnemonic,
                    encrypted_private_key=wallet.encrypted_private_key,
                    rounds=json.dumps(context.rounds_json() if context else []),
                    purchase_details=json.dumps(
                        context.purchase_details_json() if context else {}
                    ),
                    created_at=now,
                    last_updated=now,
                )
            )
            logger.info(
                f"Created binding for source address {source_address} "
                f"-> destination address {wallet.address}"
            )
        elif context is not None:
            # Enrichment snapshots refresh the cache; the wallet never changes
            row.rounds = json.dumps(context.rounds_json())
            row.purchase_details = json.dumps(context.purchase_details_json())
            row.last_updated = now
            logger.debug(f"Updated cached presale state for {source_address}")

    async def unprocessed(self, limit: int = 10, offset: int = 0) -> list[EventRecord]:
        """Unprocessed events, oldest first, skipping the first ``offset`` of them."""
        stmt = (
            select(QueuedEvent)
            .where(QueuedEvent.processed.is_(False))
            .order_by(
                QueuedEvent.created_at.asc(),
                QueuedEvent.block_number.asc(),
                QueuedEvent.log_index.asc(),
                QueuedEvent.event_id.asc(),
            )
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_record(row) for row in rows]

    async def unprocessed_count(self) -> int:
        stmt = select(func.count()).select_from(QueuedEvent).where(
            QueuedEvent.processed.is_(False)
        )
        async with self._session_factory() as session:
            return int(await session.scalar(stmt) or 0)

    async def mark_processed(self, event_id: str, destination_tx_id: str | None = None) -> bool:
        """
        Flip an event to processed, recording the destination transaction.

        Idempotent: a second call leaves processed_at and the recorded
        transaction untouched.

        Returns:
            True if this call performed the transition
        """
        stmt = (
            update(QueuedEvent)
            .where(QueuedEvent.event_id == event_id, QueuedEvent.processed.is_(False))
            .values(processed=True, processed_at=utcnow(), destination_tx_id=destination_tx_id)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)

        if result.rowcount:
            logger.info(f"Event {event_id} marked as processed")
            return True
        logger.debug(f"Event {event_id} was already processed")
        return False

    async def get(self, event_id: str) -> EventRecord | None:
        async with self._session_factory() as session:
            row = await session.get(QueuedEvent, event_id)
        return self._to_record(row) if row is not None else None

    async def events_for_address(self, source_address: str, limit: int = 100) -> list[EventRecord]:
        """Events recorded for a user, newest first."""
        stmt = (
            select(QueuedEvent)
            .where(QueuedEvent.user_address == normalize_address(source_address))
            .order_by(QueuedEvent.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._to_record(row) for row in rows]

    async def binding_for(self, source_address: str) -> IdentityBinding | None:
        async with self._session_factory() as session:
            row = await session.get(IdentityBindingRow, normalize_address(source_address))
        return self._to_binding(row) if row is not None else None

    async def binding_for_destination_address(
        self, destination_address: str
    ) -> IdentityBinding | None:
        stmt = select(IdentityBindingRow).where(
            IdentityBindingRow.destination_address == destination_address
        )
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return self._to_binding(row) if row is not None else None

    async def binding_count(self) -> int:
        async with self._session_factory() as session:
            return int(
                await session.scalar(select(func.count()).select_from(IdentityBindingRow)) or 0
            )

    async def last_checked_block(self, contract_address: str) -> int | None:
        async with self._session_factory() as session:
            cursor = await session.get(IngestionCursor, contract_address)
        return cursor.last_checked_block if cursor is not None else None

    async def save_checkpoint(self, contract_address: str, block: int) -> None:
        """Persist the pull cursor outside of a batch (startup or forced skip)."""
        async with self._write_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._set_cursor(session, contract_address, block)

    @staticmethod
    async def _set_cursor(session: "AsyncSession", contract_address: str, block: int) -> None:
        cursor = await session.get(IngestionCursor, contract_address)
        if cursor is None:
            session.add(IngestionCursor(contract_address=contract_address, last_checked_block=block))
        else:
            cursor.last_checked_block = block
            cursor.updated_at = utcnow()

    @staticmethod
    def _to_record(row: QueuedEvent) -> EventRecord:
        args = _load_json(row.args, [], "args", row.event_id)
        if not isinstance(args, list):
            logger.warning(f"Args for {row.event_id} is not a list, using empty default")
            args = []

        user_info = _load_json(row.user_info, {}, "user_info", row.event_id)
        context = UserContext.from_dict(user_info) if isinstance(user_info, dict) else None

        return EventRecord(
            event_id=row.event_id,
            transaction_hash=row.transaction_hash,
            block_number=int(row.block_number),
            log_index=int(row.log_index or 0),
            event_type=row.event_type,
            args=tuple(args),
            user_context=context,
            processed=bool(row.processed),
            created_at=row.created_at,
            processed_at=row.processed_at,
            destination_tx_id=row.destination_tx_id,
        )

    @staticmethod
    def _to_binding(row: IdentityBindingRow) -> IdentityBinding:
        key = row.source_address
        return IdentityBinding(
            source_address=row.source_address,
            wallet=DestinationWallet(
                address=row.destination_address,
                public_key=row.public_key,
                encrypted_mnemonic=row.encrypted_mnemonic,
                encrypted_private_key=row.encrypted_private_key,
            ),
            rounds=parse_rounds(_load_json(row.rounds, [], "rounds", key)),
            purchase_details=parse_purchase_details(
                _load_json(row.purchase_details, {}, "purchase_details", key)
            ),
            created_at=row.created_at,
            last_updated=row.last_updated,
        )
