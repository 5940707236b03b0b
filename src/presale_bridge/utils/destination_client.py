"""
Destination-chain node client.

Talks to the node REST API over httpx. Transport failures and 5xx answers
surface as ``NodeUnavailable``; transactions refused by the pool surface as
``RejectedTransaction``, or ``StaleSequence`` when the refusal concerns the
nonce.
"""

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from ..errors import DestinationChainError, NodeUnavailable, RejectedTransaction, StaleSequence
from ..models import DelegateVote
from .transaction_builder import TransactionBuilder

if TYPE_CHECKING:
    from ..config import DestinationChainConfig
    from ..identity import ScopedSecret

logger = logging.getLogger(__name__)


class DestinationChainClient(Protocol):
    """Operations the bridge needs from the destination chain."""

    async def get_next_sequence_number(self, address: str) -> int: ...

    async def submit_transfer(
        self,
        recipient: str,
        amount: int,
        memo: str,
        sequence: int,
        signing_secret: "ScopedSecret",
    ) -> str: ...

    async def submit_vote(
        self,
        signing_secret: "ScopedSecret",
        sequence: int,
        delegate_public_key: str,
        direction: str,
    ) -> str: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_delegate_votes(self, address: str) -> list[DelegateVote]: ...

    async def aclose(self) -> None: ...


class HttpDestinationChainClient:
    """REST client for an ARK-style destination node."""

    CONNECT_RETRIES = 3

    def __init__(
        self,
        config: "DestinationChainConfig",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Destination chain configuration
            timeout: Per-request timeout in seconds
            transport: Custom transport, defaults to one retrying connects
        """
        self.node_url = config.node_url
        self.builder = TransactionBuilder(
            network_version=config.address_version,
            fee=config.transaction_fee,
        )
        self._client = httpx.AsyncClient(
            base_url=config.node_url,
            timeout=timeout,
            transport=transport or httpx.AsyncHTTPTransport(retries=self.CONNECT_RETRIES),
            headers={"Content-Type": "application/json"},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise NodeUnavailable(f"{method} {path} failed: {e}") from e

        if response.status_code >= 500:
            raise NodeUnavailable(f"{method} {path} returned HTTP {response.status_code}")
        return response

    async def get_wallet(self, address: str) -> dict[str, Any] | None:
        """Wallet as reported by the node, None if it has never been seen."""
        response = await self._request("GET", f"/api/wallets/{address}")
        if response.status_code == 404:
            return None
        if response.is_error:
            raise DestinationChainError(
                f"Wallet lookup for {address} returned HTTP {response.status_code}"
            )
        return response.json().get("data") or {}

    async def get_next_sequence_number(self, address: str) -> int:
        wallet = await self.get_wallet(address)
        if wallet is None:
            return 1
        return int(wallet.get("nonce", 0)) + 1

    async def get_balance(self, address: str) -> int:
        wallet = await self.get_wallet(address)
        if wallet is None:
            return 0
        return int(wallet.get("balance", 0))

    async def get_delegate_votes(self, address: str) -> list[DelegateVote]:
        """Delegates the wallet currently votes for."""
        wallet = await self.get_wallet(address)
        if not wallet:
            return []

        vote = wallet.get("attributes", {}).get("vote") or wallet.get("vote")
        if not vote:
            return []

        response = await self._request("GET", f"/api/delegates/{vote}")
        if response.status_code == 404:
            logger.warning(f"Wallet {address} votes for unknown delegate {vote}")
            return [DelegateVote(delegate_address="", delegate_public_key=vote, name="", weight=0)]
        if response.is_error:
            raise DestinationChainError(
                f"Delegate lookup for {vote} returned HTTP {response.status_code}"
            )

        delegate = response.json().get("data") or {}
        return [
            DelegateVote(
                delegate_address=delegate.get("address", ""),
                delegate_public_key=delegate.get("publicKey", vote),
                name=delegate.get("username", ""),
                weight=int(delegate.get("votes", 0)),
            )
        ]

    async def submit_transfer(
        self,
        recipient: str,
        amount: int,
        memo: str,
        sequence: int,
        signing_secret: "ScopedSecret",
    ) -> str:
        with signing_secret.reveal() as passphrase:
            tx = self.builder.transfer(
                passphrase=passphrase,
                recipient=recipient,
                amount=amount,
                nonce=sequence,
                vendor_field=memo,
            )
        logger.info(f"Submitting transfer of {amount} to {recipient} (nonce {sequence})")
        return await self.broadcast(tx)

    async def submit_vote(
        self,
        signing_secret: "ScopedSecret",
        sequence: int,
        delegate_public_key: str,
        direction: str,
    ) -> str:
        if direction not in ("+", "-"):
            raise ValueError(f"Vote direction must be '+' or '-', got {direction!r}")

        with signing_secret.reveal() as passphrase:
            tx = self.builder.vote(
                passphrase=passphrase,
                nonce=sequence,
                votes=[f"{direction}{delegate_public_key}"],
            )
        logger.info(f"Submitting vote {direction}{delegate_public_key[:10]}... (nonce {sequence})")
        return await self.broadcast(tx)

    async def broadcast(self, tx: dict[str, Any]) -> str:
        """
        Post a signed transaction to the pool.

        Returns:
            The accepted transaction id

        Raises:
            StaleSequence: If the node refused the nonce
            RejectedTransaction: For any other refusal
        """
        response = await self._request("POST", "/api/transactions", json={"transactions": [tx]})

        try:
            body = response.json()
        except ValueError:
            raise RejectedTransaction(
                f"Unreadable response (HTTP {response.status_code})"
            ) from None

        tx_id = tx["id"]
        accepted = (body.get("data") or {}).get("accept") or []
        if response.is_success and tx_id in accepted:
            logger.info(f"Transaction {tx_id} accepted by node")
            return tx_id

        messages = self._error_messages(body, tx_id)
        reason = "; ".join(messages) or f"HTTP {response.status_code}"
        logger.warning(f"Transaction {tx_id} rejected: {reason}")
        if any("nonce" in message.lower() for message in messages):
            raise StaleSequence(reason)
        raise RejectedTransaction(reason)

    @staticmethod
    def _error_messages(body: dict[str, Any], tx_id: str) -> list[str]:
        errors = body.get("errors")
        messages: list[str] = []
        if isinstance(errors, dict):
            entries = errors.get(tx_id) or [
                e for group in errors.values() if isinstance(group, list) for e in group
            ]
            for entry in entries:
                if isinstance(entry, dict):
                    messages.append(str(entry.get("message") or entry.get("type") or entry))
                else:
                    messages.append(str(entry))
        if body.get("message"):
            messages.append(str(body["message"]))
        return messages

    async def aclose(self) -> None:
        await self._client.aclose()
