"""Shared fixtures for the presale bridge test suite."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from presale_bridge.event_queue import EventQueue
from presale_bridge.identity import IdentityBinder, SecretBox
from presale_bridge.models import EventRecord, RawEvent, RoundPurchase, UserContext
from presale_bridge.storage import init_storage

DEVNET_VERSION = 30

BUYER = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
OTHER_BUYER = "0xDCC23A03E6b6aA254cA5B0be942dD5CafC9A2299"


def make_raw(
    event_type: str = "TokensBought",
    address: str = BUYER,
    amount: int = 5_000_000_000_00,
    round_id: int = 1,
    tx_hash: str = "0xabc",
    log_index: int = 0,
    block_number: int = 100,
) -> RawEvent:
    """Build a RawEvent with the presale argument layout."""
    if event_type == "RoundCreated":
        args: tuple = (round_id, 1_700_000_000, 1_700_086_400, 1000)
    elif event_type == "TokensBought":
        args = (address, round_id, amount, 10**18)
    else:
        args = (address, round_id, amount)
    return RawEvent(
        event_type=event_type,
        transaction_hash=tx_hash,
        log_index=log_index,
        block_number=block_number,
        args=args,
    )


def make_context(address: str = BUYER, rounds: tuple[int, ...] = (1,)) -> UserContext:
    return UserContext(
        address=address,
        rounds=rounds,
        purchase_details={
            str(r): RoundPurchase(amount_bought="500000000000", cliff_completed=True)
            for r in rounds
        },
    )


def make_record(context: UserContext | None = None, **kwargs) -> EventRecord:
    return EventRecord.from_raw(make_raw(**kwargs), context)


@pytest.fixture
def fernet_key() -> str:
    """Fresh Fernet key for wallet secret encryption."""
    return Fernet.generate_key().decode()


@pytest.fixture
def secret_box(fernet_key):
    return SecretBox(fernet_key)


@pytest.fixture
def binder(secret_box):
    """IdentityBinder issuing real devnet wallets."""
    return IdentityBinder(secret_box, DEVNET_VERSION)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite queue database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    await init_storage(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def queue(session_factory, binder):
    return EventQueue(session_factory, binder)


@pytest.fixture
def destination_client():
    """Destination client double that accepts every transaction."""
    client = AsyncMock()
    client.get_next_sequence_number.return_value = 7
    client.submit_transfer.return_value = "tx-1"
    client.submit_vote.return_value = "vote-tx-1"
    client.get_balance.return_value = 0
    client.get_delegate_votes.return_value = []
    return client
