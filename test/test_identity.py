#!/usr/bin/env python3
"""Tests for custodial wallet issuance and secret handling."""

import pytest
from cryptography.fernet import Fernet

from presale_bridge.errors import SecretDecryptionError, WalletGenerationError
from presale_bridge.identity import IdentityBinder, ScopedSecret, SecretBox
from presale_bridge.models import IdentityBinding
from presale_bridge.utils.ark_crypto import keys_from_passphrase

from conftest import BUYER, DEVNET_VERSION


class TestSecretBox:
    """Tests for at-rest encryption."""

    def test_wrong_key_is_rejected(self, secret_box):
        token = secret_box.encrypt("word " * 24)
        other = SecretBox(Fernet.generate_key())

        with pytest.raises(SecretDecryptionError):
            other.decrypt(token)

    def test_tampered_token_is_rejected(self, secret_box):
        with pytest.raises(SecretDecryptionError):
            secret_box.decrypt("not-a-token")


class TestScopedSecret:
    """Tests for the opaque signing handle."""

    def test_reveal_yields_plaintext(self, secret_box):
        secret = ScopedSecret.from_plaintext(secret_box, "top secret")

        with secret.reveal() as plaintext:
            assert plaintext == "top secret"

    def test_never_renders_plaintext(self, secret_box):
        secret = ScopedSecret.from_plaintext(secret_box, "top secret")

        assert "top secret" not in repr(secret)
        assert "top secret" not in f"{secret}"


class TestIdentityBinder:
    """Tests for IdentityBinder."""

    def test_issue_wallet_encrypts_secrets(self, binder, secret_box):
        wallet = binder.issue_wallet()

        mnemonic = secret_box.decrypt(wallet.encrypted_mnemonic)
        private_key = secret_box.decrypt(wallet.encrypted_private_key)
        derived = keys_from_passphrase(mnemonic, DEVNET_VERSION)

        assert wallet.address == derived.address
        assert wallet.public_key == derived.public_key
        assert private_key == derived.private_key
        assert wallet.address.startswith("D")

    def test_wallets_are_fresh(self, binder):
        addresses = {binder.issue_wallet().address for _ in range(5)}

        assert len(addresses) == 5

    def test_generation_failure(self, secret_box):
        def broken(version):
            raise RuntimeError("entropy source unavailable")

        binder = IdentityBinder(secret_box, DEVNET_VERSION, key_generator=broken)

        with pytest.raises(WalletGenerationError, match="entropy source unavailable"):
            binder.issue_wallet()

    def test_signing_secret_wraps_mnemonic(self, binder, secret_box):
        wallet = binder.issue_wallet()
        binding = IdentityBinding(source_address=BUYER, wallet=wallet)

        with binder.signing_secret(binding).reveal() as mnemonic:
            assert mnemonic == secret_box.decrypt(wallet.encrypted_mnemonic)
