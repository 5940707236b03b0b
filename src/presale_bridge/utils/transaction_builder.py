"""
Destination-chain transaction building and signing.

Transactions use the ARK version-2 wire layout:

    0xff | version | network | typeGroup u32 | type u16 | nonce u64
         | senderPublicKey (33) | fee u64 | vendorField (u8 len + bytes)
         | asset

All integers are little-endian. The signature is a low-S DER ECDSA signature
over SHA-256 of the unsigned bytes, and the transaction id is SHA-256 of the
signed bytes.
"""

import hashlib
import json
import logging
import struct
from typing import Any

from .ark_crypto import (
    decode_address,
    private_key_from_passphrase,
    public_key_from_private_key,
    sign_hash,
)

logger = logging.getLogger(__name__)

TRANSACTION_VERSION = 2
CORE_TYPE_GROUP = 1
TRANSFER_TYPE = 0
VOTE_TYPE = 3
MAX_VENDOR_FIELD_BYTES = 255


def build_memo(action: str, token_symbol: str, ref: str | None = None) -> str:
    """
    Compact JSON memo written into the vendor field of mint/burn transfers.

    ``ref`` carries the source event id so an on-chain transfer can be matched
    back to the queue entry that caused it.
    """
    memo = {"action": action, "token": token_symbol}
    if ref:
        memo["ref"] = ref
    return json.dumps(memo, separators=(",", ":"))


class TransactionBuilder:
    """Builds signed transfer and vote transactions for one network."""

    def __init__(self, network_version: int, fee: int):
        """
        Initialize the builder.

        Args:
            network_version: Address version byte of the target network
            fee: Fixed fee attached to every transaction
        """
        self.network_version = network_version
        self.fee = fee

    def transfer(
        self,
        passphrase: str,
        recipient: str,
        amount: int,
        nonce: int,
        vendor_field: str = "",
    ) -> dict[str, Any]:
        """Build and sign a transfer transaction."""
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")

        recipient_bytes = decode_address(recipient)
        asset = struct.pack("<QI", amount, 0) + recipient_bytes

        tx = self._sign(passphrase, TRANSFER_TYPE, nonce, vendor_field, asset)
        tx.update({
            "amount": str(amount),
            "expiration": 0,
            "recipientId": recipient,
        })
        return tx

    def vote(self, passphrase: str, nonce: int, votes: list[str]) -> dict[str, Any]:
        """
        Build and sign a vote transaction.

        Args:
            passphrase: Mnemonic of the voting wallet
            nonce: Sequence number to use
            votes: Entries of the form "+<publicKey>" or "-<publicKey>"
        """
        if not votes:
            raise ValueError("Vote transaction needs at least one vote")

        asset = bytearray([len(votes)])
        for vote in votes:
            direction, public_key = vote[:1], vote[1:]
            if direction not in ("+", "-"):
                raise ValueError(f"Vote must start with + or -, got {vote!r}")
            key_bytes = bytes.fromhex(public_key)
            if len(key_bytes) != 33:
                raise ValueError(f"Delegate public key must be 33 bytes, got {len(key_bytes)}")
            asset += (b"\x01" if direction == "+" else b"\x00") + key_bytes

        tx = self._sign(passphrase, VOTE_TYPE, nonce, "", bytes(asset))
        tx.update({
            "amount": "0",
            "asset": {"votes": list(votes)},
        })
        return tx

    def _sign(
        self,
        passphrase: str,
        tx_type: int,
        nonce: int,
        vendor_field: str,
        asset: bytes,
    ) -> dict[str, Any]:
        private_key = private_key_from_passphrase(passphrase)
        public_key = public_key_from_private_key(private_key)

        unsigned = self.serialize(tx_type, nonce, public_key, vendor_field, asset)
        signature = sign_hash(hashlib.sha256(unsigned).digest(), private_key)
        tx_id = hashlib.sha256(unsigned + signature).hexdigest()

        logger.debug(f"Built type {tx_type} transaction {tx_id} with nonce {nonce}")

        tx: dict[str, Any] = {
            "id": tx_id,
            "version": TRANSACTION_VERSION,
            "network": self.network_version,
            "typeGroup": CORE_TYPE_GROUP,
            "type": tx_type,
            "nonce": str(nonce),
            "senderPublicKey": public_key.hex(),
            "fee": str(self.fee),
            "signature": signature.hex(),
        }
        if vendor_field:
            tx["vendorField"] = vendor_field
        return tx

    def serialize(
        self,
        tx_type: int,
        nonce: int,
        sender_public_key: bytes,
        vendor_field: str,
        asset: bytes,
    ) -> bytes:
        """Serialize the unsigned part of a transaction."""
        vendor_bytes = vendor_field.encode("utf-8")
        if len(vendor_bytes) > MAX_VENDOR_FIELD_BYTES:
            raise ValueError(f"Vendor field too long ({len(vendor_bytes)} bytes)")

        buffer = bytearray(b"\xff")
        buffer += bytes([TRANSACTION_VERSION, self.network_version])
        buffer += struct.pack("<IHQ", CORE_TYPE_GROUP, tx_type, nonce)
        buffer += sender_public_key
        buffer += struct.pack("<Q", self.fee)
        buffer += bytes([len(vendor_bytes)]) + vendor_bytes
        buffer += asset
        return bytes(buffer)
