#!/usr/bin/env python3
"""Tests for event records and their typed variants."""

import pytest

from presale_bridge.models import (
    EventRecord,
    MalformedEventError,
    RoundCreated,
    TokensBought,
    TokensClaimed,
    UnknownEvent,
    UserContext,
    decode_event,
    parse_purchase_details,
    parse_rounds,
)

from conftest import BUYER, make_context, make_record


class TestEventRecord:
    """Tests for EventRecord."""

    def test_event_id_from_log_position(self):
        record = make_record(tx_hash="0xabc", log_index=3)

        assert record.event_id == "0xabc-3"

    def test_source_address_prefers_context(self):
        record = make_record(make_context("0x1111111111111111111111111111111111111111"))

        assert record.source_address == "0x1111111111111111111111111111111111111111"

    def test_source_address_falls_back_to_args(self):
        assert make_record(None).source_address == BUYER

    def test_round_created_has_no_source_address(self):
        assert make_record(event_type="RoundCreated").source_address is None

    def test_str_is_short(self):
        assert "TokensBought" in str(make_record())


class TestDecodeEvent:
    """Tests for the closed set of event variants."""

    def test_tokens_bought(self):
        event = decode_event(make_record(amount=42, round_id=2))

        assert isinstance(event, TokensBought)
        assert event.buyer == BUYER
        assert event.round_id == 2
        assert event.amount == 42

    def test_tokens_claimed(self):
        event = decode_event(make_record(event_type="TokensClaimed", amount=7))

        assert isinstance(event, TokensClaimed)
        assert event.user == BUYER
        assert event.amount == 7

    def test_round_created(self):
        assert isinstance(decode_event(make_record(event_type="RoundCreated")), RoundCreated)

    def test_unknown_type(self):
        record = EventRecord(
            event_id="0x1-0", transaction_hash="0x1", block_number=1, log_index=0,
            event_type="PresalePaused",
        )

        assert isinstance(decode_event(record), UnknownEvent)

    def test_short_args_are_malformed(self):
        record = EventRecord(
            event_id="0x1-0", transaction_hash="0x1", block_number=1, log_index=0,
            event_type="TokensBought", args=(BUYER,),
        )

        with pytest.raises(MalformedEventError):
            decode_event(record)

    def test_string_amounts_are_accepted(self):
        record = EventRecord(
            event_id="0x1-0", transaction_hash="0x1", block_number=1, log_index=0,
            event_type="TokensClaimed", args=(BUYER, "1", "500"),
        )

        assert decode_event(record).amount == 500


class TestUserContext:
    """Tests for enrichment snapshots."""

    def test_dict_round_trip(self):
        context = make_context(rounds=(1, 3))

        restored = UserContext.from_dict(context.to_dict())

        assert restored == context

    def test_camel_case_keys(self):
        data = make_context().to_dict()

        assert set(data["purchaseDetails"]["1"]) == {
            "amountBought", "amountClaimed", "totalClaimable",
            "cliffCompleted", "lastClaimTime", "unclaimedPeriodsPassed",
        }

    def test_missing_address_gives_none(self):
        assert UserContext.from_dict({"rounds": [1]}) is None

    def test_parse_helpers_tolerate_bad_input(self):
        assert parse_rounds("nope") == ()
        assert parse_rounds([1, "x"]) == ()
        assert parse_purchase_details([1]) == {}
        assert parse_purchase_details({"1": "bad", "2": {}})["2"].amount_bought == "0"
