from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
import sys


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import pytest
from pydantic import ValidationError as PydanticValidationError

from stockplan.models.schemas import DemandEvent, DemandObservation, DemandSeries
from stockplan.services.demand_service import aggregate_demand, load_demand_series
from stockplan.services.stores import InMemoryDemandHistory


def test_events_in_same_month_are_summed_and_gaps_are_zero() -> None:
    events = [
        DemandEvent(timestamp=datetime(2023, 1, 10), quantity=5),
        DemandEvent(timestamp=datetime(2023, 1, 20), quantity=7),
        DemandEvent(timestamp=datetime(2023, 2, 3), quantity=9, fulfilled=False),
        DemandEvent(timestamp=datetime(2023, 3, 1), quantity=4),
    ]

    series = aggregate_demand(events, item_id="SKU-1")

    assert series.item_id == "SKU-1"
    assert [(o.period, o.quantity) for o in series.observations] == [
        ("2023-01", 12.0),
        ("2023-02", 0.0),
        ("2023-03", 4.0),
    ]


def test_unordered_events_and_mappings_are_accepted() -> None:
    events = [
        {"timestamp": "2023-05-02T08:00:00", "quantity": 3},
        {"timestamp": date(2023, 4, 28), "quantity": 2, "fulfilled": True},
    ]

    series = aggregate_demand(events)

    assert series.values == [2.0, 3.0]
    assert series.last_period == "2023-05"


def test_empty_or_unfulfilled_history_gives_empty_series() -> None:
    assert len(aggregate_demand([])) == 0
    unfulfilled = [DemandEvent(timestamp=datetime(2023, 1, 1), quantity=10, fulfilled=False)]
    assert len(aggregate_demand(unfulfilled)) == 0


def test_gap_filling_can_be_disabled() -> None:
    events = [
        DemandEvent(timestamp=datetime(2023, 1, 10), quantity=5),
        DemandEvent(timestamp=datetime(2023, 4, 10), quantity=6),
    ]

    series = aggregate_demand(events, fill_gaps=False)

    assert [o.period for o in series.observations] == ["2023-01", "2023-04"]


def test_series_rejects_out_of_order_periods() -> None:
    with pytest.raises(PydanticValidationError, match="strictly increasing"):
        DemandSeries(
            observations=[
                DemandObservation(period="2023-02", quantity=1),
                DemandObservation(period="2023-01", quantity=1),
            ]
        )


def test_load_demand_series_filters_by_window() -> None:
    history = InMemoryDemandHistory(
        {
            "SKU-1": [
                DemandEvent(timestamp=datetime(2022, 12, 5), quantity=50),
                DemandEvent(timestamp=datetime(2023, 1, 5), quantity=10),
                DemandEvent(timestamp=datetime(2023, 2, 5), quantity=20),
            ]
        }
    )

    series = load_demand_series(history, "SKU-1", start=date(2023, 1, 1), end=date(2023, 12, 31))

    assert series.values[:2] == [10.0, 20.0]
    assert len(series) == 12
    assert series.last_period == "2023-12"
    assert series.to_series().index.freqstr == "M"


def test_offset_timestamps_bucket_on_their_own_calendar_date() -> None:
    eastern = timezone(timedelta(hours=-5))
    events = [
        DemandEvent(timestamp=datetime(2024, 1, 31, 22, 0, tzinfo=eastern), quantity=7),
        DemandEvent(timestamp=datetime(2024, 2, 1, 0, 30, tzinfo=timezone(timedelta(hours=9))), quantity=2),
    ]

    series = aggregate_demand(events)

    assert [(o.period, o.quantity) for o in series.observations] == [
        ("2024-01", 7.0),
        ("2024-02", 2.0),
    ]


def test_trailing_silent_months_are_zero_up_to_end() -> None:
    events = [
        DemandEvent(timestamp=datetime(2023, 11, 3), quantity=10),
        DemandEvent(timestamp=datetime(2023, 12, 3), quantity=12),
    ]

    series = aggregate_demand(events, end=date(2024, 3, 20))

    assert [o.period for o in series.observations] == [
        "2023-11",
        "2023-12",
        "2024-01",
        "2024-02",
        "2024-03",
    ]
    assert series.values[2:] == [0.0, 0.0, 0.0]
