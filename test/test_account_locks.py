#!/usr/bin/env python3
"""Tests for per-account submission locks."""

import asyncio

import pytest

from presale_bridge.utils.account_locks import AccountLocks


class TestAccountLocks:
    """Tests for AccountLocks."""

    @pytest.mark.asyncio
    async def test_same_account_is_serialized(self):
        locks = AccountLocks()
        order = []

        async def worker(name: str):
            async with locks.for_account("Dabc"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.05)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_accounts_run_concurrently(self):
        locks = AccountLocks()
        release = asyncio.Event()

        async def hold():
            async with locks.for_account("Dabc"):
                await release.wait()

        task = asyncio.create_task(hold())
        await asyncio.sleep(0.01)

        async with locks.for_account("Dxyz"):
            assert len(locks) == 2

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        """Locks are released from memory once nobody holds or waits for them."""
        locks = AccountLocks()

        for i in range(50):
            async with locks.for_account(f"D{i}"):
                pass

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_dropped_after_error(self):
        locks = AccountLocks()

        with pytest.raises(RuntimeError):
            async with locks.for_account("Dabc"):
                raise RuntimeError("submit failed")

        assert len(locks) == 0
