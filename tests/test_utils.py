import json
import logging
import re

import pytest

from showpass.core.logging import JsonFormatter, TextFormatter, build_formatter
from showpass.utils.ratings import recompute_average_rating
from showpass.utils.references import booking_reference, gateway_order_id, make_reference, ticket_number
from showpass.utils.security import hash_password, verify_password


class TestReferences:
    def test_prefixes(self):
        assert booking_reference().startswith("BK")
        assert ticket_number().startswith("TK")
        assert gateway_order_id("ccavenue").startswith("CC")

    def test_upper_base36(self):
        assert re.fullmatch(r"VPR[0-9A-Z]+", make_reference("vpr"))

    def test_unique(self):
        assert len({booking_reference() for _ in range(200)}) == 200


class TestPasswords:
    def test_round_trip(self):
        hashed = hash_password("s3cret!", rounds=4)
        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)
        assert not verify_password("wrong", hashed)

    def test_long_passwords_truncate_consistently(self):
        hashed = hash_password("x" * 100, rounds=4)
        assert verify_password("x" * 72, hashed)

    def test_garbage_hash(self):
        assert verify_password("a", "not-a-hash") is False
        assert verify_password("a", "") is False


class TestRatings:
    def test_average_rounds_to_one_decimal(self):
        assert recompute_average_rating([5, 4, 4]) == 4.3
        assert recompute_average_rating([4, 5]) == 4.5

    def test_empty(self):
        assert recompute_average_rating([]) == 0.0


class TestLogFormatting:
    def _record(self, **extra):
        return logging.makeLogRecord({
            "name": "showpass.services.wallet_service", "levelname": "INFO", "levelno": logging.INFO,
            "msg": "Withdrawal %s paid out", "args": (7,), **extra,
        })

    def test_json_carries_payout_identifiers(self):
        line = JsonFormatter().format(self._record(withdrawal_id=7, transfer_id="WD_7", purchase_id=None))
        payload = json.loads(line)
        assert payload["message"] == "Withdrawal 7 paid out"
        assert payload["withdrawal_id"] == 7
        assert payload["transfer_id"] == "WD_7"
        assert "purchase_id" not in payload

    def test_text_appends_identifiers(self):
        line = TextFormatter().format(self._record(purchase_id=3, gateway="razorpay"))
        assert line.endswith("Withdrawal 7 paid out [purchase_id=3 gateway=razorpay]")

    def test_format_selection(self):
        assert isinstance(build_formatter("TEXT"), TextFormatter)
        assert isinstance(build_formatter("json"), JsonFormatter)
        with pytest.raises(ValueError):
            build_formatter("xml")
