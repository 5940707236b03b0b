"""Per-account serialization of destination-chain submissions."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class AccountLocks:
    """
    One asyncio lock per destination account.

    Whoever holds an account's lock owns its sequence number from fetch to
    submission, so the dispatcher and request-driven vote actions never sign
    two transactions with the same nonce. A lock only exists while someone
    holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def for_account(self, address: str) -> AsyncIterator[None]:
        """Hold the account's lock for the duration of the block."""
        lock = self._locks.setdefault(address, asyncio.Lock())
        self._holders[address] = self._holders.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[address] -= 1
            if self._holders[address] == 0:
                del self._holders[address]
                del self._locks[address]

    def __len__(self) -> int:
        return len(self._locks)
