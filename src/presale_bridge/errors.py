"""
Exception types shared across the presale bridge.

Destination-chain failures are split by how the dispatcher reacts to them:
``NodeUnavailable`` and ``RejectedTransaction`` defer the event to the next
dispatch pass, ``StaleSequence`` triggers one immediate retry with a fresh
sequence number.
"""


class BridgeError(Exception):
    """Base class for all presale bridge errors."""


class DestinationChainError(BridgeError):
    """Raised when the destination chain cannot accept an operation."""


class NodeUnavailable(DestinationChainError):
    """The destination node could not be reached or answered with a 5xx."""


class RejectedTransaction(DestinationChainError):
    """The destination node refused a transaction."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Transaction rejected: {reason}")


class StaleSequence(RejectedTransaction):
    """The transaction was rejected because its sequence number was already used."""


class WalletGenerationError(BridgeError):
    """Custodial wallet key material could not be generated."""


class SecretDecryptionError(BridgeError):
    """An encrypted wallet secret could not be decrypted with the configured key."""


class QueueWriteConflict(BridgeError):
    """A batch write lost a unique-key race and was rolled back."""


class BindingNotFoundError(BridgeError):
    """No custodial wallet is bound to the given source address."""

    def __init__(self, source_address: str) -> None:
        self.source_address = source_address
        super().__init__(f"No destination wallet bound to {source_address}")


class SignatureMismatchError(BridgeError):
    """A signed message was not produced by the claimed source address."""

    def __init__(self, claimed: str, recovered: str | None = None) -> None:
        self.claimed = claimed
        self.recovered = recovered
        super().__init__(f"Signature does not match address {claimed}")
