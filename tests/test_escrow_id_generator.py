"""
Identifier generation tests
"""

import re
from datetime import datetime, timezone

import pytest

from services.escrow_id_generator import generate_dispute_id, generate_transaction_id


class TestTransactionIds:

    def test_format(self):
        now = datetime(2024, 3, 1, 12, 0, 0)
        transaction_id = generate_transaction_id("B1", now)

        expected_millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
        assert re.fullmatch(rf"TXN-B1-{expected_millis}-[0-9a-f]{{8}}", transaction_id)

    def test_aware_and_naive_times_agree(self):
        naive = datetime(2024, 3, 1, 12, 0, 0)
        aware = naive.replace(tzinfo=timezone.utc)

        assert generate_transaction_id("B1", naive).split("-")[2] == generate_transaction_id("B1", aware).split("-")[2]

    def test_ids_are_unique_within_one_millisecond(self):
        now = datetime(2024, 3, 1, 12, 0, 0)
        ids = {generate_transaction_id("B1", now) for _ in range(200)}
        assert len(ids) == 200

    def test_booking_id_required(self):
        with pytest.raises(ValueError):
            generate_transaction_id("")


class TestDisputeIds:

    def test_dispute_id_is_128_bit_hex(self):
        dispute_id = generate_dispute_id()
        assert re.fullmatch(r"[0-9a-f]{32}", dispute_id)
        assert generate_dispute_id() != dispute_id
