# tests/test_processor_estimator.py
from datetime import date, datetime, timezone

from backend.lib.token_core.estimator import BillingEstimator
from backend.lib.token_core.models import Reading
from backend.lib.token_core.processor import (
    EnergyAnalyzer,
    aggregate_monthly,
    aggregate_weekly,
    derive_daily_usage,
)
from backend.lib.token_core.settings import EngineSettings


def reading(rid, ts, kwh, top_up=False, seq=0):
    return Reading(rid, "u1", ts, kwh, is_top_up=top_up, sequence=seq)


def make_readings():
    return [
        reading("a", datetime(2024, 1, 1, 8), 100),
        reading("b", datetime(2024, 1, 2, 8), 90),
        reading("c", datetime(2024, 1, 3, 8), 190, top_up=True),
        reading("d", datetime(2024, 1, 4, 8), 170),
    ]


def test_daily_usage_across_a_top_up():
    daily = derive_daily_usage(make_readings())
    assert [(d.date, d.usage_kwh, d.is_top_up) for d in daily] == [
        (date(2024, 1, 1), 0.0, False),
        (date(2024, 1, 2), 10.0, False),
        (date(2024, 1, 3), 0.0, True),
        (date(2024, 1, 4), 20.0, False),
    ]
    assert daily[-1].meter_value == 170


def test_daily_usage_is_order_independent():
    shuffled = list(reversed(make_readings()))
    assert derive_daily_usage(shuffled) == derive_daily_usage(make_readings())


def test_same_day_readings_around_a_top_up():
    readings = [
        reading("a", datetime(2024, 2, 1, 6), 30),
        reading("b", datetime(2024, 2, 2, 6), 25),   # 5 used overnight
        reading("c", datetime(2024, 2, 2, 9), 22),   # 3 more before buying
        reading("d", datetime(2024, 2, 2, 10), 122, top_up=True),
        reading("e", datetime(2024, 2, 2, 21), 118),  # 4 after the top-up
    ]
    day = derive_daily_usage(readings)[1]
    assert day.usage_kwh == 12.0
    assert day.meter_value == 118
    assert day.is_top_up
    assert day.reading_count == 4


def test_multiple_top_ups_in_one_day_are_sequential_resets():
    readings = [
        reading("a", datetime(2024, 3, 1, 6), 10),
        reading("b", datetime(2024, 3, 1, 8), 60, top_up=True),
        reading("c", datetime(2024, 3, 1, 12), 55),
        reading("d", datetime(2024, 3, 1, 13), 105, top_up=True),
        reading("e", datetime(2024, 3, 1, 20), 101),
    ]
    day = derive_daily_usage(readings)[0]
    assert day.usage_kwh == 9.0
    assert day.is_top_up


def test_unflagged_increase_resets_baseline_without_negative_usage():
    readings = [
        reading("a", datetime(2024, 3, 1, 6), 10),
        reading("b", datetime(2024, 3, 2, 6), 80),
        reading("c", datetime(2024, 3, 3, 6), 70),
    ]
    daily = derive_daily_usage(readings)
    assert [d.usage_kwh for d in daily] == [0.0, 0.0, 10.0]
    assert not daily[1].is_top_up


def test_timestamp_ties_keep_insertion_order():
    ts = datetime(2024, 4, 1, 7)
    readings = [
        reading("second", ts, 40, seq=1),
        reading("first", ts, 45, seq=0),
        reading("next", datetime(2024, 4, 2, 7), 38, seq=2),
    ]
    daily = derive_daily_usage(readings)
    assert daily[0].usage_kwh == 5.0
    assert daily[0].meter_value == 40
    assert daily[1].usage_kwh == 2.0


def test_malformed_records_never_raise():
    records = [
        {"id": "x", "timestamp": "2024-01-01T08:00:00", "kwh": 50},
        {"id": "no-ts", "kwh": 45},
        {"id": "y", "timestamp": "2024-01-02T08:00:00", "kwh": "oops"},
        {"id": "z", "timestamp": "2024-01-03T08:00:00", "kwh": "inf", "sequence": "inf"},
    ]
    daily = derive_daily_usage(records)
    assert len(daily) == 3
    assert daily[2].meter_value == 0.0
    assert all(d.usage_kwh >= 0 for d in daily)
    assert derive_daily_usage([]) == []


def test_aware_timestamps_use_the_configured_local_date():
    jakarta = EngineSettings(timezone="Asia/Jakarta")
    # 18:30 UTC on Jan 1 is 01:30 on Jan 2 in Jakarta (UTC+7)
    readings = [
        reading("a", datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc), 50),
        reading("b", datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc), 47),
    ]
    daily = derive_daily_usage(readings, jakarta)
    assert [d.date for d in daily] == [date(2024, 1, 1), date(2024, 1, 2)]
    assert daily[1].to_dict()["date"] == "2024-01-02"


def test_weekly_buckets_use_iso_year_at_the_boundary():
    readings = [
        reading("a", datetime(2024, 12, 29, 8), 100),  # Sunday, 2024-W52
        reading("b", datetime(2024, 12, 30, 8), 95),   # Monday, 2025-W01
        reading("c", datetime(2025, 1, 2, 8), 85),
    ]
    weekly = aggregate_weekly(derive_daily_usage(readings))
    assert [w.week for w in weekly] == ["2025-W01", "2024-W52"]
    assert weekly[0].start_date == date(2024, 12, 30)
    assert weekly[0].end_date == date(2025, 1, 5)
    assert weekly[0].usage_kwh == 15.0


def test_aggregates_conserve_the_daily_total_and_respect_limit():
    readings = []
    value = 500.0
    day = date(2024, 1, 1)
    seq = 0
    while day < date(2024, 4, 15):
        readings.append(reading(f"r{seq}", datetime(day.year, day.month, day.day, 8), value, seq=seq))
        value -= 1.5 + (seq % 3)
        seq += 1
        day = date.fromordinal(day.toordinal() + 1)

    daily = derive_daily_usage(readings)
    total = round(sum(d.usage_kwh for d in daily), 4)
    weekly = aggregate_weekly(daily, limit=None)
    monthly = aggregate_monthly(daily, limit=None)
    assert round(sum(w.usage_kwh for w in weekly), 4) == total
    assert round(sum(m.usage_kwh for m in monthly), 4) == total

    recent = aggregate_monthly(daily, limit=2)
    assert [m.month for m in recent] == ["2024-04", "2024-03"]
    assert recent[1].month_name == "Mar"
    assert recent[1].end_date == date(2024, 3, 31)
    assert len(aggregate_weekly(daily, limit=3)) == 3
    assert aggregate_weekly(daily, limit=0) == []


def test_usage_by_period_keys():
    analyzer = EnergyAnalyzer(make_readings())
    assert analyzer.usage_by_period("day")["2024-01-04"] == 20.0
    assert analyzer.usage_by_period("week") == {"2024-W01": 30.0}
    assert analyzer.usage_by_period("month") == {"2024-01": 30.0}
    assert analyzer.latest_reading().id == "d"


def test_estimator():
    estimator = BillingEstimator(tariff_rate_per_kwh=0.25)
    usage = {"2025-11-01": 2.5, "2025-11-02": 7.0}
    cost = estimator.estimate_cost(usage)
    # total kwh = 9.5 * 0.25 = 2.375 -> rounds to 2.38
    assert cost == 2.38


def test_estimator_default_rate_in_rupiah():
    assert BillingEstimator().cost_of(10) == 14447.0
