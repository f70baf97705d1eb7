# tests/test_predictor.py
from datetime import date, datetime, timedelta

from backend.lib.token_core.models import Reading
from backend.lib.token_core.predictor import predict_depletion, project_burn_rate
from backend.lib.token_core.settings import EngineSettings

TODAY = date(2025, 11, 10)


def daily_readings(start_value, per_day, days, end=TODAY):
    """One reading a day ending on `end`, dropping `per_day` each day."""
    readings = []
    first = end - timedelta(days=days - 1)
    for i in range(days):
        d = first + timedelta(days=i)
        readings.append(Reading(f"r{i}", "u1", datetime(d.year, d.month, d.day, 7),
                                start_value - per_day * i, sequence=i))
    return readings


def test_average_ten_remaining_thirty_five():
    # 95 -> 35 over 7 days at 10 kWh/day
    prediction = predict_depletion(daily_readings(95, 10, 7), today=TODAY)
    assert prediction.has_data
    assert prediction.remaining_kwh == 35
    assert prediction.avg_daily_usage == 10
    assert prediction.days_until_depletion == 4
    assert prediction.predicted_depletion_date == date(2025, 11, 14)
    assert prediction.to_dict()["predicted_depletion_date"] == "2025-11-14"
    assert not prediction.is_critical
    assert prediction.is_warning
    assert prediction.critical_kwh == 30
    assert prediction.warning_kwh == 70
    assert prediction.days_to_critical == 1
    assert prediction.days_to_warning == 0


def test_critical_at_three_days():
    prediction = predict_depletion(daily_readings(80, 10, 6), today=TODAY)
    assert prediction.remaining_kwh == 30
    assert prediction.days_until_depletion == 3
    assert prediction.is_critical
    assert not prediction.is_warning


def test_no_readings_means_no_data():
    prediction = predict_depletion([], today=TODAY)
    assert not prediction.has_data
    assert prediction.days_until_depletion is None
    assert prediction.remaining_kwh == 0
    assert not project_burn_rate(None, today=TODAY).has_data


def test_zero_usage_gives_no_depletion_date():
    readings = daily_readings(50, 0, 5)
    prediction = predict_depletion(readings, today=TODAY)
    assert prediction.has_data
    assert prediction.avg_daily_usage == 0
    assert prediction.days_until_depletion is None
    assert prediction.predicted_depletion_date is None
    assert not prediction.is_critical and not prediction.is_warning


def test_average_ignores_zero_days_and_old_history():
    readings = daily_readings(400, 20, 5, end=TODAY - timedelta(days=60))
    readings += [
        Reading("a", "u1", datetime(2025, 11, 1, 7), 100, is_top_up=True, sequence=10),
        Reading("b", "u1", datetime(2025, 11, 2, 7), 94, sequence=11),
        Reading("c", "u1", datetime(2025, 11, 3, 7), 94, sequence=12),   # zero day
        Reading("d", "u1", datetime(2025, 11, 4, 7), 90, sequence=13),
    ]
    prediction = predict_depletion(readings, today=TODAY)
    assert prediction.avg_daily_usage == 5
    assert prediction.remaining_kwh == 90
    assert prediction.days_until_depletion == 18


def test_remaining_comes_from_latest_reading_not_last_purchase():
    readings = [
        Reading("t", "u1", datetime(2025, 11, 5, 7), 200, is_top_up=True,
                token_amount=200000, token_kwh=138.44, effective_tariff=1444.7),
        Reading("m", "u1", datetime(2025, 11, 6, 7), 188, sequence=1),
        Reading("n", "u1", datetime(2025, 11, 7, 7), 176, sequence=2),
    ]
    prediction = predict_depletion(readings, today=TODAY)
    assert prediction.remaining_kwh == 176
    assert prediction.current_token_kwh == 138.44
    assert prediction.token_cost == 200000
    assert prediction.cost_per_kwh == 1444.7
    assert prediction.current_month_usage == 24
    assert prediction.estimated_monthly_cost == 34672.8


def test_cost_falls_back_to_configured_tariff():
    settings = EngineSettings(tariff_per_kwh=1000.0)
    prediction = predict_depletion(daily_readings(95, 10, 7), settings, today=TODAY)
    assert prediction.cost_per_kwh == 1000.0
    assert prediction.estimated_monthly_cost == 60000.0


def test_projection_points():
    projection = project_burn_rate(daily_readings(95, 10, 7), today=TODAY)
    assert projection.days_until_depletion == 4
    assert [p.remaining_kwh for p in projection.points] == [35, 25, 15, 5, 0]
    assert [p.is_projected for p in projection.points] == [False, True, True, True, True]
    assert projection.points[0].date == TODAY
    assert projection.points[-1].to_dict()["date"] == "2025-11-14"


def test_projection_is_capped():
    readings = [
        Reading("a", "u1", datetime(2025, 11, 9, 7), 1001),
        Reading("b", "u1", datetime(2025, 11, 10, 7), 1000, sequence=1),
    ]
    projection = project_burn_rate(readings, today=TODAY)
    assert projection.days_until_depletion == 1000
    assert len(projection.points) == 61
    assert projection.points[-1].day_index == 60
    assert projection.points[-1].remaining_kwh == 940

    short = project_burn_rate(readings, EngineSettings(projection_horizon_days=10), today=TODAY)
    assert len(short.points) == 11
