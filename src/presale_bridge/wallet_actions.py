"""
Request-driven wallet actions.

These back the HTTP surface: every call carries a message signed by the
source-chain address it acts for, and nothing is read or submitted until that
signature checks out. Votes take the same per-account lock as the dispatcher
so they never race a burn for the wallet's sequence number.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from eth_account import Account
from eth_account.messages import encode_defunct

from .errors import BindingNotFoundError, SignatureMismatchError
from .models import DelegateVote, IdentityBinding
from .relay_dispatcher import submit_with_sequence

if TYPE_CHECKING:
    from .event_queue import EventQueue
    from .identity import IdentityBinder
    from .utils.account_locks import AccountLocks
    from .utils.destination_client import DestinationChainClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SignedRequest:
    """A message signed with the source-chain key of ``source_address``."""
    source_address: str
    message: str
    signature: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class WalletStatus:
    """Destination wallet overview returned to the caller."""
    address: str
    balance: int
    votes: tuple[DelegateVote, ...] = ()


def verify_source_signature(source_address: str, message: str, signature: str) -> None:
    """
    Check that ``message`` was signed (EIP-191) by ``source_address``.

    Raises:
        SignatureMismatchError: If the signature is malformed or recovers to
            another address
    """
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning(f"Unreadable signature for {source_address}: {e}")
        raise SignatureMismatchError(source_address) from e

    if recovered.lower() != source_address.lower():
        logger.warning(f"Signature for {source_address} recovered to {recovered}")
        raise SignatureMismatchError(source_address, recovered)


class WalletActions:
    """Authenticated wallet lookups and vote submission for bound users."""

    def __init__(
        self,
        queue: "EventQueue",
        binder: "IdentityBinder",
        destination_client: "DestinationChainClient",
        account_locks: "AccountLocks",
    ):
        self.queue = queue
        self.binder = binder
        self.destination_client = destination_client
        self.account_locks = account_locks

    async def _authenticated_binding(self, request: SignedRequest) -> IdentityBinding:
        verify_source_signature(request.source_address, request.message, request.signature)
        binding = await self.queue.binding_for(request.source_address)
        if binding is None:
            raise BindingNotFoundError(request.source_address)
        return binding

    async def destination_wallet(self, request: SignedRequest) -> str:
        """Destination address bound to the caller."""
        binding = await self._authenticated_binding(request)
        return binding.destination_address

    async def status(self, request: SignedRequest) -> WalletStatus:
        """Balance and current votes of the caller's destination wallet."""
        binding = await self._authenticated_binding(request)
        address = binding.destination_address
        balance = await self.destination_client.get_balance(address)
        votes = await self.destination_client.get_delegate_votes(address)
        return WalletStatus(address=address, balance=balance, votes=tuple(votes))

    async def vote(self, request: SignedRequest, delegate_public_key: str) -> str:
        """Vote for a delegate; returns the destination transaction id."""
        return await self._submit_vote(request, delegate_public_key, "+")

    async def unvote(self, request: SignedRequest, delegate_public_key: str) -> str:
        """Withdraw a vote; returns the destination transaction id."""
        return await self._submit_vote(request, delegate_public_key, "-")

    async def _submit_vote(
        self, request: SignedRequest, delegate_public_key: str, direction: str
    ) -> str:
        binding = await self._authenticated_binding(request)
        address = binding.destination_address
        signing_secret = self.binder.signing_secret(binding)

        async with self.account_locks.for_account(address):
            tx_id = await submit_with_sequence(
                self.destination_client,
                address,
                lambda sequence: self.destination_client.submit_vote(
                    signing_secret, sequence, delegate_public_key, direction
                ),
            )

        logger.info(
            f"{'Vote' if direction == '+' else 'Unvote'} for {delegate_public_key[:10]}... "
            f"from {address} submitted in {tx_id}"
        )
        return tx_id
