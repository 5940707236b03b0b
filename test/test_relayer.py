#!/usr/bin/env python3
"""Tests for the PresaleRelayer service wiring and lifecycle."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from presale_bridge.config import (
    BridgeConfig,
    DatabaseConfig,
    DestinationChainConfig,
    MonitoringConfig,
    SecurityConfig,
    SourceChainConfig,
)
from presale_bridge.models import RoundPurchase
from presale_bridge.relayer import PresaleRelayer
from presale_bridge.utils.ark_crypto import keys_from_passphrase

from conftest import BUYER, make_raw

CONTRACT = "0x9f983F759d511D0f404582b0bdc1994edb5db856"
BRIDGE_PASSPHRASE = "bridge wallet passphrase"


@pytest.fixture
def config(tmp_path, fernet_key):
    return BridgeConfig(
        source_chain=SourceChainConfig(rpc_url="http://localhost:8545", contract_address=CONTRACT),
        destination_chain=DestinationChainConfig(
            node_url="http://localhost:4003", bridge_mnemonic=BRIDGE_PASSPHRASE
        ),
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'bridge.db'}"),
        security=SecurityConfig(wallet_encryption_key=fernet_key),
        monitoring=MonitoringConfig(polling_interval=1, dispatch_interval=1),
    )


@pytest.fixture
def source_client():
    """Source chain double holding one purchase at block 960."""
    client = AsyncMock()
    client.has_contract_code.return_value = True
    client.block_number.return_value = 1000
    client.query_range.side_effect = (
        lambda f, t, event_type: [make_raw(block_number=960)] if event_type == "TokensBought" else []
    )
    client.get_user_rounds.return_value = [1]
    client.get_user_round_purchase.return_value = RoundPurchase(amount_bought="500")

    async def subscribe(event_types, on_event):
        await asyncio.Event().wait()

    client.subscribe.side_effect = subscribe
    return client


@pytest_asyncio.fixture
async def relayer(config, source_client, destination_client):
    engine = create_async_engine(config.database.url)
    return PresaleRelayer(
        config, engine=engine, source_client=source_client, destination_client=destination_client
    )


class TestWiring:
    """Component construction."""

    def test_bridge_address_from_mnemonic(self, relayer):
        assert relayer.bridge_address == keys_from_passphrase(BRIDGE_PASSPHRASE, 30).address
        assert relayer.dispatcher.bridge_address == relayer.bridge_address

    def test_components_share_queue_and_locks(self, relayer):
        assert relayer.ingestor.queue is relayer.queue
        assert relayer.dispatcher.queue is relayer.queue
        assert relayer.wallet_actions.queue is relayer.queue
        assert relayer.dispatcher.account_locks is relayer.wallet_actions.account_locks


class TestLifecycle:
    """Startup checks and the run loop."""

    @pytest.mark.asyncio
    async def test_missing_contract_code_aborts(self, relayer, source_client, destination_client):
        source_client.has_contract_code.return_value = False

        with pytest.raises(RuntimeError, match="No contract code"):
            await relayer.run()

        destination_client.aclose.assert_awaited_once()
        source_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_purchase_flows_to_mint(self, relayer, destination_client):
        """A purchase found by the pull channel ends up minted and processed."""
        task = asyncio.create_task(relayer.run())

        for _ in range(100):
            if destination_client.submit_transfer.await_count:
                break
            await asyncio.sleep(0.1)

        relayer.stop()
        await asyncio.wait_for(task, timeout=10)

        destination_client.submit_transfer.assert_awaited_once()
        recipient, amount = destination_client.submit_transfer.await_args.args[:2]
        assert amount == 50
        binding = await relayer.queue.binding_for(BUYER)
        assert recipient == binding.destination_address
        assert await relayer.queue.unprocessed_count() == 0
