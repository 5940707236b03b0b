#!/usr/bin/env python3
"""Tests for signed wallet requests and vote actions."""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from presale_bridge.errors import BindingNotFoundError, SignatureMismatchError, StaleSequence
from presale_bridge.models import DelegateVote
from presale_bridge.utils.account_locks import AccountLocks
from presale_bridge.wallet_actions import SignedRequest, WalletActions, verify_source_signature

from conftest import make_context, make_record

DELEGATE_KEY = "02" + "22" * 32


@pytest.fixture
def user():
    return Account.create()


def _signed(account, message: str = "vote request") -> SignedRequest:
    signed = account.sign_message(encode_defunct(text=message))
    return SignedRequest(
        source_address=account.address,
        message=message,
        signature="0x" + bytes(signed.signature).hex(),
    )


@pytest.fixture
def actions(queue, binder, destination_client):
    return WalletActions(queue, binder, destination_client, AccountLocks())


class TestSignatureVerification:
    """Tests for verify_source_signature."""

    def test_valid_signature(self, user):
        request = _signed(user)

        verify_source_signature(request.source_address.lower(), request.message,
                                request.signature)

    def test_other_signer_rejected(self, user):
        request = _signed(Account.create())

        with pytest.raises(SignatureMismatchError) as exc_info:
            verify_source_signature(user.address, request.message, request.signature)

        assert exc_info.value.recovered == request.source_address

    def test_garbage_signature_rejected(self, user):
        with pytest.raises(SignatureMismatchError):
            verify_source_signature(user.address, "hello", "0x1234")


class TestWalletActions:
    """Tests for WalletActions."""

    @pytest.mark.asyncio
    async def test_destination_wallet(self, actions, queue, user):
        await queue.enqueue(make_record(make_context(user.address), address=user.address))

        address = await actions.destination_wallet(_signed(user))

        assert address == (await queue.binding_for(user.address)).destination_address

    @pytest.mark.asyncio
    async def test_unbound_user(self, actions, user):
        with pytest.raises(BindingNotFoundError):
            await actions.destination_wallet(_signed(user))

    @pytest.mark.asyncio
    async def test_bad_signature_touches_nothing(self, actions, queue, user, destination_client):
        await queue.enqueue(make_record(make_context(user.address), address=user.address))
        forged = SignedRequest(user.address, "vote request", _signed(Account.create()).signature)

        with pytest.raises(SignatureMismatchError):
            await actions.vote(forged, DELEGATE_KEY)

        assert destination_client.method_calls == []

    @pytest.mark.asyncio
    async def test_vote(self, actions, queue, user, destination_client, secret_box):
        await queue.enqueue(make_record(make_context(user.address), address=user.address))
        binding = await queue.binding_for(user.address)

        tx_id = await actions.vote(_signed(user), DELEGATE_KEY)

        assert tx_id == "vote-tx-1"
        destination_client.get_next_sequence_number.assert_awaited_once_with(
            binding.destination_address
        )
        secret, sequence, delegate, direction = destination_client.submit_vote.await_args.args
        assert (sequence, delegate, direction) == (7, DELEGATE_KEY, "+")
        with secret.reveal() as passphrase:
            assert passphrase == secret_box.decrypt(binding.wallet.encrypted_mnemonic)

    @pytest.mark.asyncio
    async def test_unvote_retries_stale_sequence(self, actions, queue, user, destination_client):
        await queue.enqueue(make_record(make_context(user.address), address=user.address))
        destination_client.get_next_sequence_number.side_effect = [3, 4]
        destination_client.submit_vote.side_effect = [StaleSequence("nonce"), "vote-tx-2"]

        tx_id = await actions.unvote(_signed(user), DELEGATE_KEY)

        assert tx_id == "vote-tx-2"
        args = destination_client.submit_vote.await_args.args
        assert (args[1], args[3]) == (4, "-")

    @pytest.mark.asyncio
    async def test_status(self, actions, queue, user, destination_client):
        await queue.enqueue(make_record(make_context(user.address), address=user.address))
        vote = DelegateVote("Ddelegate", DELEGATE_KEY, "genesis_1", 1000)
        destination_client.get_balance.return_value = 50
        destination_client.get_delegate_votes.return_value = [vote]

        status = await actions.status(_signed(user))

        assert status.balance == 50
        assert status.votes == (vote,)
        assert status.address == (await queue.binding_for(user.address)).destination_address
