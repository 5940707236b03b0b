"""
Custodial identity binding.

Issues one destination-chain wallet per source-chain address. The mnemonic
and private key are encrypted with a process-wide Fernet key before they
leave this module, and are only decrypted inside a signing call through a
``ScopedSecret``.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from cryptography.fernet import Fernet, InvalidToken

from .errors import SecretDecryptionError, WalletGenerationError
from .models import DestinationWallet, IdentityBinding
from .utils.ark_crypto import WalletKeys, generate_wallet_keys

logger = logging.getLogger(__name__)


class SecretBox:
    """Symmetric at-rest encryption for wallet secrets."""

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            raise SecretDecryptionError("wallet secret could not be decrypted") from e


class ScopedSecret:
    """Opaque handle to an encrypted secret.

    The plaintext only exists inside a ``reveal()`` block; the handle itself
    never renders its content in reprs or log lines.
    """

    __slots__ = ("_box", "_ciphertext")

    def __init__(self, box: SecretBox, ciphertext: str) -> None:
        self._box = box
        self._ciphertext = ciphertext

    @classmethod
    def from_plaintext(cls, box: SecretBox, plaintext: str) -> "ScopedSecret":
        return cls(box, box.encrypt(plaintext))

    @contextmanager
    def reveal(self) -> Iterator[str]:
        plaintext = self._box.decrypt(self._ciphertext)
        try:
            yield plaintext
        finally:
            del plaintext

    def __repr__(self) -> str:
        return "ScopedSecret(***)"

    __str__ = __repr__


class IdentityBinder:
    """Issues custodial wallets and hands out their signing secrets."""

    def __init__(
        self,
        secret_box: SecretBox,
        address_version: int,
        key_generator: Callable[[int], WalletKeys] = generate_wallet_keys,
    ) -> None:
        """
        Initialize the binder.

        Args:
            secret_box: Encryption used for mnemonics and private keys at rest
            address_version: Destination network address version byte
            key_generator: Source of fresh wallet key material
        """
        self.secret_box = secret_box
        self.address_version = address_version
        self._key_generator = key_generator

    def issue_wallet(self) -> DestinationWallet:
        """
        Generate and encrypt a new custodial wallet.

        Raises:
            WalletGenerationError: If key generation or encryption fails; the
                caller's transaction must be rolled back
        """
        try:
            wallet_keys = self._key_generator(self.address_version)
            wallet = DestinationWallet(
                address=wallet_keys.address,
                public_key=wallet_keys.public_key,
                encrypted_mnemonic=self.secret_box.encrypt(wallet_keys.mnemonic),
                encrypted_private_key=self.secret_box.encrypt(wallet_keys.private_key),
            )
        except Exception as e:
            raise WalletGenerationError(f"Failed to generate custodial wallet: {e}") from e

        if not wallet.address or not wallet.public_key:
            raise WalletGenerationError("Generated wallet is missing its address or public key")

        logger.debug(f"Issued custodial wallet {wallet.address}")
        return wallet

    def signing_secret(self, binding: IdentityBinding) -> ScopedSecret:
        """Signing handle for a bound wallet; decrypted only when revealed."""
        return ScopedSecret(self.secret_box, binding.wallet.encrypted_mnemonic)
