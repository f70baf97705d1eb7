# tests/test_io.py
import pathlib
from datetime import datetime

import pytest

from backend.lib.token_core.errors import MalformedRecord
from backend.lib.token_core.io import coerce_readings, parse_csv_string, reading_from_dict
from backend.lib.token_core.models import Reading


def test_parse_sample_csv():
    p = pathlib.Path(__file__).parent / "sample.csv"
    text = p.read_text()
    readings = parse_csv_string(text)
    assert len(readings) == 3
    assert readings[0].user_id == "user-1"
    assert readings[0].kwh_value == 50.0
    assert not readings[0].is_top_up
    assert readings[2].is_top_up
    assert readings[2].token_amount == 150000.0
    assert readings[2].notes == "bought token"


def test_parse_csv_without_user_column_uses_given_user():
    text = "timestamp,kwh\n2025-11-01T07:00:00,12.5\n"
    readings = parse_csv_string(text, user_id="user-9")
    assert readings[0].user_id == "user-9"
    assert readings[0].timestamp == datetime(2025, 11, 1, 7, 0)


def test_parse_csv_rejects_bad_rows():
    with pytest.raises(MalformedRecord) as exc:
        parse_csv_string("user_id,timestamp,kwh\nu,2025-11-01T07:00:00,abc\n")
    assert exc.value.field == "kwh"

    with pytest.raises(MalformedRecord):
        parse_csv_string("user_id,timestamp,kwh\nu,yesterday,3\n")

    with pytest.raises(MalformedRecord):
        parse_csv_string("user_id,timestamp,kwh\nu,2025-11-01T07:00:00,-1\n")


def test_reading_from_dict_accepts_aliases_and_utc_suffix():
    r = reading_from_dict({"reading_id": "r1", "created_at": "2025-11-01T00:00:00Z",
                           "kwhValue": "7.5", "isTopUp": "true", "tokenAmount": 20000})
    assert r.id == "r1"
    assert r.timestamp.utcoffset().total_seconds() == 0
    assert r.kwh_value == 7.5
    assert r.is_top_up
    assert r.token_amount == 20000.0


def test_reading_from_dict_zeroes_bad_numbers_and_flags_legacy_top_up():
    r = reading_from_dict({"id": "r2", "timestamp": "2025-11-01T08:00:00", "kwh": None})
    assert r.kwh_value == 0.0

    r = reading_from_dict({"id": "r3", "timestamp": "2025-11-01T08:00:00", "kwh": -4})
    assert r.kwh_value == 0.0

    # only a purchase amount marks the row as a top-up
    r = reading_from_dict({"id": "r4", "timestamp": "2025-11-01T08:00:00", "kwh": 90,
                           "token_amount": 100000})
    assert r.is_top_up

    # an explicit flag wins over a leftover purchase amount
    r = reading_from_dict({"id": "r4", "timestamp": "2025-11-01T08:00:00", "kwh": 90,
                           "is_top_up": False, "token_amount": 100000, "effective_tariff": 1444.7})
    assert not r.is_top_up
    assert (r.token_amount, r.effective_tariff) == (None, None)

    r = reading_from_dict({"id": "r6", "timestamp": "2025-11-01T08:00:00", "kwh": "inf", "sequence": "-inf"},
                          sequence=7)
    assert (r.kwh_value, r.sequence) == (0.0, 7)


def test_reading_from_dict_needs_a_timestamp():
    with pytest.raises(MalformedRecord) as exc:
        reading_from_dict({"id": "r5", "kwh": 3})
    assert exc.value.record_id == "r5"
    assert exc.value.field == "timestamp"


def test_coerce_readings_skips_malformed_without_mutating_input():
    original = Reading("ok", "u", datetime(2025, 11, 1, 8), -2.0)
    records = [
        original,
        {"id": "bad", "kwh": 5},
        "not a record",
        {"id": "good", "timestamp": "2025-11-02T08:00:00", "kwh": 4},
    ]
    readings = coerce_readings(records, user_id="u")
    assert [r.id for r in readings] == ["ok", "good"]
    assert readings[0].kwh_value == 0.0
    assert original.kwh_value == -2.0
    assert readings[1].user_id == "u"
