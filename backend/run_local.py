# backend/run_local.py
import sys
from pathlib import Path

from backend.lib.token_core.io import parse_csv_string
from backend.lib.token_core.pipeline import compute_snapshot
from backend.lib.token_core.settings import EngineSettings


def main(csv_path, user_id=None):
    text = Path(csv_path).read_text()
    readings = parse_csv_string(text, user_id=user_id)
    print(f"Parsed {len(readings)} readings:")
    for r in readings:
        flag = " (top-up)" if r.is_top_up else ""
        print(f" - {r.user_id} @ {r.timestamp.isoformat()} : {r.kwh_value} kWh{flag}")

    settings = EngineSettings.from_env()
    for owner in sorted({r.user_id for r in readings}):
        snapshot = compute_snapshot(owner, [r for r in readings if r.user_id == owner], settings)
        print(f"\nDaily usage for {owner}:")
        for d in snapshot.daily:
            print(f" - {d.to_dict()['date']} : {d.usage_kwh} kWh (meter {d.meter_value})")
        p = snapshot.prediction
        print(f"Remaining {p.remaining_kwh} kWh at {p.avg_daily_usage} kWh/day; "
              f"days until depletion: {p.days_until_depletion}")


if __name__ == "__main__":
    csv = sys.argv[1] if len(sys.argv) > 1 else "tests/sample.csv"
    main(csv)
