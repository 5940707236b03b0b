"""
Persistence models for the durable event queue.

Three tables back the bridge: the append-only ``event_queue``, the
``identity_bindings`` table holding one custodial wallet per source address,
and ``ingestion_cursor`` holding the pull channel's last checked block.
JSON sub-fields are stored as text so a malformed value can be replaced by a
safe default on read instead of failing the whole row.
"""

import datetime as dt
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


def utcnow() -> dt.datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


class Base(DeclarativeBase):
    """Base declarative class for queue models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: "Dialect"
    ) -> dt.datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime values cannot be stored")
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: "Dialect"
    ) -> dt.datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class QueuedEvent(Base):
    """Append-only record of an observed presale event."""

    __tablename__ = "event_queue"
    __table_args__ = (
        Index("ix_event_queue_processed_created", "processed", "created_at"),
        Index("ix_event_queue_user_address", "user_address"),
    )

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    transaction_hash: Mapped[str] = mapped_column(String(255))
    block_number: Mapped[int] = mapped_column(BigInteger)
    log_index: Mapped[int] = mapped_column(Integer, default=0)
    event_type: Mapped[str] = mapped_column(String(50))
    args: Mapped[str] = mapped_column(Text, default="[]")
    user_info: Mapped[str | None] = mapped_column(Text, default=None)
    user_address: Mapped[str | None] = mapped_column(String(255), default=None)
    processed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    processed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    destination_tx_id: Mapped[str | None] = mapped_column(String(255), default=None)


class IdentityBindingRow(Base):
    """Custodial destination wallet bound to one source-chain address."""

    __tablename__ = "identity_bindings"

    source_address: Mapped[str] = mapped_column(String(255), primary_key=True)
    destination_address: Mapped[str] = mapped_column(String(255), unique=True)
    public_key: Mapped[str] = mapped_column(String(255))
    encrypted_mnemonic: Mapped[str] = mapped_column(Text)
    encrypted_private_key: Mapped[str] = mapped_column(Text)
    rounds: Mapped[str] = mapped_column(Text, default="[]")
    purchase_details: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_updated: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class IngestionCursor(Base):
    """Last source-chain block fully ingested by the pull channel."""

    __tablename__ = "ingestion_cursor"

    contract_address: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_checked_block: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_storage(engine: "AsyncEngine") -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
