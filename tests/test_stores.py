from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
import sys


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import pandas as pd
import pytest

from stockplan.core.errors import NotFoundError
from stockplan.models.schemas import (
    Action,
    ForecastParameters,
    ForecastPoint,
    ForecastResult,
    PlanningRecommendation,
    Priority,
    RecommendationStatus,
)
from stockplan.services.collaborators import (
    CatalogSource,
    DemandHistorySource,
    ForecastStore,
    RecommendationStore,
    StockSource,
)
from stockplan.services.stores import (
    InMemoryRecommendationStore,
    JsonlForecastStore,
    JsonlRecommendationStore,
    TableCatalog,
    latest_by_key,
    load_table_sources,
)


def _recommendation(item_id: str, generated_at: datetime) -> PlanningRecommendation:
    return PlanningRecommendation(
        item_id=item_id,
        current_stock=300,
        reserved_stock=0,
        available_stock=300,
        forecasted_demand=0,
        projected_stock=300,
        action=Action.HOLD,
        recommended_quantity=0,
        recommended_date=date(2024, 1, 8),
        priority=Priority.LOW,
        reason="Stock levels are healthy.",
        generated_at=generated_at,
    )


def _forecast(item_id: str, generated_at: datetime, qty: int) -> ForecastResult:
    return ForecastResult(
        item_id=item_id,
        generated_parameters=ForecastParameters(),
        points=[
            ForecastPoint(period_offset=1, period="2024-01", point_forecast=qty, lower_bound=qty, upper_bound=qty)
        ],
        history_periods=24,
        generated_at=generated_at,
    )


def test_latest_by_key_prefers_later_record_on_ties() -> None:
    records = [("a", 1, "first"), ("b", 1, "only"), ("a", 2, "newest"), ("a", 2, "tie")]

    latest = latest_by_key(records, key=lambda r: r[0], stamp=lambda r: r[1])

    assert latest["a"][2] == "tie"
    assert latest["b"][2] == "only"


def test_jsonl_recommendation_store_persists_status_updates(tmp_path: Path) -> None:
    path = tmp_path / "recs" / "recommendations.jsonl"
    store = JsonlRecommendationStore(path)
    first = _recommendation("SKU-1", datetime(2024, 1, 1, tzinfo=timezone.utc))
    second = _recommendation("SKU-1", datetime(2024, 1, 2, tzinfo=timezone.utc))
    store.save_recommendation(first)
    store.save_recommendation(second)
    store.update_status(first.id, RecommendationStatus.APPROVED)

    with path.open("a", encoding="utf-8") as handle:
        handle.write("not json\n")

    reopened = JsonlRecommendationStore(path)
    assert reopened.get(first.id).status == RecommendationStatus.APPROVED
    assert len(reopened.all()) == 2
    assert [r.id for r in reopened.get_latest_by_item()] == [second.id]

    with pytest.raises(NotFoundError):
        reopened.update_status("missing", RecommendationStatus.APPROVED)


def test_jsonl_forecast_store_returns_newest_per_item(tmp_path: Path) -> None:
    store = JsonlForecastStore(tmp_path / "forecasts.jsonl")
    store.save_forecast(_forecast("SKU-1", datetime(2024, 1, 2, tzinfo=timezone.utc), 20))
    store.save_forecast(_forecast("SKU-1", datetime(2024, 1, 1, tzinfo=timezone.utc), 10))
    store.save_forecast(_forecast("SKU-2", datetime(2024, 1, 1, tzinfo=timezone.utc), 5))

    latest = store.get_latest_forecast("SKU-1")

    assert latest.points[0].point_forecast == 20
    assert store.get_latest_forecast("SKU-9") is None


def test_in_memory_store_rejects_unknown_ids() -> None:
    store = InMemoryRecommendationStore()

    with pytest.raises(NotFoundError):
        store.update_status("nope", RecommendationStatus.REJECTED)


def _write_tables(root: Path) -> None:
    pd.DataFrame(
        {
            "item_id": ["A", "B", "C"],
            "name": ["Widget", "Gadget", "Retired"],
            "uom": ["pcs", None, "pcs"],
            "min_stock": [10, 20, 5],
            "max_stock": [100, 200, 50],
            "safety_stock": [15, 25, 5],
            "reorder_point": [30, None, None],
            "lead_time_days": [7, 14, 3],
            "is_active": [True, True, False],
        }
    ).to_csv(root / "items.csv", index=False)
    pd.DataFrame(
        {
            "item_id": ["A", "B"],
            "available_stock": [80, 15],
            "reserved_stock": [5, 0],
            "in_transit_stock": [10, None],
        }
    ).to_csv(root / "inventory.csv", index=False)
    pd.DataFrame(
        {
            "item_id": ["A", "A", "A"],
            "timestamp": ["2023-01-05", "2023-02-10", "2023-03-15"],
            "quantity": [4, 6, 8],
            "fulfilled": ["yes", "no", "delivered"],
        }
    ).to_csv(root / "demand_events.csv", index=False)


def test_table_sources_read_csv_tables(tmp_path: Path) -> None:
    _write_tables(tmp_path)

    catalog, stock, history = load_table_sources(tmp_path)

    assert isinstance(catalog, CatalogSource)
    assert isinstance(stock, StockSource)
    assert isinstance(history, DemandHistorySource)

    items = {item.item_id: item for item in catalog.get_active_items()}
    assert sorted(items) == ["A", "B"]
    assert items["A"].reorder_point == 30
    assert items["B"].reorder_point is None
    assert items["B"].uom == "units"
    assert items["A"].lead_time_days == 7

    snapshot = stock.get_stock_snapshot("A")
    assert snapshot.available_stock == 80
    assert snapshot.in_transit_stock == 10
    assert stock.get_stock_snapshot("B").in_transit_stock == 0
    assert stock.get_stock_snapshot("Z") is None

    events = history.get_demand_events("A", start=date(2023, 2, 1))
    assert [(e.quantity, e.fulfilled) for e in events] == [(6.0, False), (8.0, True)]


def test_stores_satisfy_protocols(tmp_path: Path) -> None:
    assert isinstance(JsonlForecastStore(tmp_path / "f.jsonl"), ForecastStore)
    assert isinstance(JsonlRecommendationStore(tmp_path / "r.jsonl"), RecommendationStore)
    assert isinstance(InMemoryRecommendationStore(), RecommendationStore)


def test_missing_tables_raise(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_table_sources(tmp_path)


def test_catalog_reads_text_active_flags(tmp_path: Path) -> None:
    _write_tables(tmp_path)
    items = pd.read_csv(tmp_path / "items.csv")
    items["is_active"] = ["yes", "no", None]
    items.to_csv(tmp_path / "items.csv", index=False)

    catalog, _, _ = load_table_sources(tmp_path)

    assert [item.item_id for item in catalog.get_active_items()] == ["A", "C"]


def test_catalog_treats_false_strings_as_inactive() -> None:
    frame = pd.DataFrame(
        {
            "item_id": ["A", "B", "C"],
            "min_stock": [1, 1, 1],
            "max_stock": [5, 5, 5],
            "safety_stock": [2, 2, 2],
            "lead_time_days": [1, 1, 1],
            "is_active": ["false", "FALSE ", "True"],
        }
    )

    assert [item.item_id for item in TableCatalog(frame).get_active_items()] == ["C"]
