r"""stockplan\services\stores.py

In-memory and file-backed implementations of the collaborator protocols.

The JSON-lines stores are append-only: every save or status change writes a
new line, and readers keep the last line seen for each record id.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Hashable, Iterable, List, Optional, TypeVar

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import NotFoundError
from ..models.schemas import (
    DemandEvent,
    ForecastResult,
    ItemPolicy,
    PlanningRecommendation,
    RecommendationStatus,
    StockSnapshot,
)
from .io_utils import read_table

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def latest_by_key(
    records: Iterable[T],
    key: Callable[[T], Hashable],
    stamp: Callable[[T], object],
) -> Dict[Hashable, T]:
    """Reduce ``records`` to the most recent one per key in a single pass.

    On equal stamps the record seen last wins.
    """

    latest: Dict[Hashable, T] = {}
    for record in records:
        record_key = key(record)
        current = latest.get(record_key)
        if current is None or stamp(record) >= stamp(current):
            latest[record_key] = record
    return latest


# ---------------------------------------------------------------------------
# In-memory collaborators


class InMemoryCatalog:
    def __init__(self, items: Iterable[ItemPolicy] = ()) -> None:
        self._items: Dict[str, ItemPolicy] = {item.item_id: item for item in items}

    def add(self, item: ItemPolicy) -> None:
        self._items[item.item_id] = item

    def get_active_items(self) -> List[ItemPolicy]:
        return [item for item in self._items.values() if item.is_active]


class InMemoryStockSource:
    def __init__(self, snapshots: Iterable[StockSnapshot] = ()) -> None:
        self._snapshots: Dict[str, StockSnapshot] = {s.item_id: s for s in snapshots}

    def set(self, snapshot: StockSnapshot) -> None:
        self._snapshots[snapshot.item_id] = snapshot

    def get_stock_snapshot(self, item_id: str) -> Optional[StockSnapshot]:
        return self._snapshots.get(item_id)


class InMemoryDemandHistory:
    def __init__(self, events: Optional[Dict[str, List[DemandEvent]]] = None) -> None:
        self._events: Dict[str, List[DemandEvent]] = {
            item_id: list(item_events) for item_id, item_events in (events or {}).items()
        }

    def add(self, item_id: str, event: DemandEvent) -> None:
        self._events.setdefault(item_id, []).append(event)

    def get_demand_events(
        self, item_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[DemandEvent]:
        return [
            event
            for event in self._events.get(item_id, [])
            if _within(_as_date(event.timestamp), start, end)
        ]


class InMemoryForecastStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: List[ForecastResult] = []

    def save_forecast(self, result: ForecastResult) -> None:
        with self._lock:
            self._results.append(result)

    def get_latest_forecast(self, item_id: str) -> Optional[ForecastResult]:
        with self._lock:
            matches = [r for r in self._results if r.item_id == item_id]
        return latest_by_key(matches, lambda r: r.item_id, lambda r: r.generated_at).get(item_id)

    def all(self) -> List[ForecastResult]:
        with self._lock:
            return list(self._results)


class InMemoryRecommendationStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, PlanningRecommendation] = {}

    def save_recommendation(self, recommendation: PlanningRecommendation) -> None:
        with self._lock:
            self._records[recommendation.id] = recommendation

    def get(self, recommendation_id: str) -> Optional[PlanningRecommendation]:
        with self._lock:
            return self._records.get(recommendation_id)

    def all(self) -> List[PlanningRecommendation]:
        with self._lock:
            return list(self._records.values())

    def get_latest_by_item(self) -> List[PlanningRecommendation]:
        latest = latest_by_key(self.all(), lambda r: r.item_id, lambda r: r.generated_at)
        return list(latest.values())

    def update_status(self, recommendation_id: str, status: RecommendationStatus) -> None:
        with self._lock:
            current = self._records.get(recommendation_id)
            if current is None:
                raise NotFoundError("Recommendation", recommendation_id)
            self._records[recommendation_id] = current.with_status(status)


# ---------------------------------------------------------------------------
# JSON-lines stores


class _JsonlLog:
    """Append-only JSON-lines file guarded by a lock."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, payload: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(payload + "\n")

    def read(self) -> List[dict]:
        with self._lock:
            if not self.path.exists():
                return []
            events: List[dict] = []
            with self.path.open("r", encoding="utf-8") as handle:
                for number, line in enumerate(handle, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(json.loads(line))
                    except json.JSONDecodeError:
                        LOGGER.warning("Skipping malformed line %d in %s", number, self.path)
            return events


class JsonlForecastStore:
    def __init__(self, path: str | Path) -> None:
        self._log = _JsonlLog(path)

    def save_forecast(self, result: ForecastResult) -> None:
        self._log.append(result.model_dump_json())

    def all(self) -> List[ForecastResult]:
        return _parse_records(self._log.read(), ForecastResult, self._log.path)

    def get_latest_forecast(self, item_id: str) -> Optional[ForecastResult]:
        matches = [r for r in self.all() if r.item_id == item_id]
        return latest_by_key(matches, lambda r: r.item_id, lambda r: r.generated_at).get(item_id)


class JsonlRecommendationStore:
    def __init__(self, path: str | Path) -> None:
        self._log = _JsonlLog(path)

    def save_recommendation(self, recommendation: PlanningRecommendation) -> None:
        self._log.append(recommendation.model_dump_json())

    def all(self) -> List[PlanningRecommendation]:
        records = _parse_records(self._log.read(), PlanningRecommendation, self._log.path)
        # Later lines for the same id carry status updates.
        by_id: Dict[str, PlanningRecommendation] = {}
        for record in records:
            by_id[record.id] = record
        return list(by_id.values())

    def get(self, recommendation_id: str) -> Optional[PlanningRecommendation]:
        for record in self.all():
            if record.id == recommendation_id:
                return record
        return None

    def get_latest_by_item(self) -> List[PlanningRecommendation]:
        latest = latest_by_key(self.all(), lambda r: r.item_id, lambda r: r.generated_at)
        return list(latest.values())

    def update_status(self, recommendation_id: str, status: RecommendationStatus) -> None:
        current = self.get(recommendation_id)
        if current is None:
            raise NotFoundError("Recommendation", recommendation_id)
        self._log.append(current.with_status(status).model_dump_json())


def _parse_records(rows: List[dict], model: type, path: Path) -> list:
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except PydanticValidationError:
            LOGGER.warning("Skipping invalid %s record in %s", model.__name__, path)
    return parsed


# ---------------------------------------------------------------------------
# Table-backed sources (CSV or Parquet)


ITEM_COLUMNS = ["item_id", "min_stock", "max_stock", "safety_stock", "lead_time_days"]
INVENTORY_COLUMNS = ["item_id", "available_stock", "reserved_stock"]
DEMAND_COLUMNS = ["item_id", "timestamp", "quantity"]


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _within(day: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _optional_float(value: object) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _text(value: object, default: str = "") -> str:
    if value is None or pd.isna(value) or str(value).strip() == "":
        return default
    return str(value)


def _flag_column(column: pd.Series, true_values: set, default: bool = True) -> pd.Series:
    """Parse a yes/no column; text values outside ``true_values`` read as false."""

    if pd.api.types.is_numeric_dtype(column):
        return column.fillna(default).astype(bool)
    text = column.astype(str).str.strip().str.lower()
    return text.isin(true_values).where(column.notna(), default).astype(bool)


class TableCatalog:
    """Catalog backed by an ``items`` table with one row per item."""

    def __init__(self, frame: pd.DataFrame) -> None:
        missing = [col for col in ITEM_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"items table is missing columns: {missing}")
        self._frame = frame

    def get_active_items(self) -> List[ItemPolicy]:
        frame = self._frame
        if "is_active" in frame.columns:
            frame = frame[_flag_column(frame["is_active"], {"true", "1", "yes", "y", "active"})]
        items: List[ItemPolicy] = []
        for rec in frame.to_dict(orient="records"):
            items.append(
                ItemPolicy(
                    item_id=str(rec["item_id"]),
                    name=_text(rec.get("name")),
                    uom=_text(rec.get("uom"), "units"),
                    min_stock=float(rec["min_stock"]),
                    max_stock=float(rec["max_stock"]),
                    safety_stock=float(rec["safety_stock"]),
                    reorder_point=_optional_float(rec.get("reorder_point")),
                    lead_time_days=int(rec["lead_time_days"]),
                )
            )
        return items


class TableStockSource:
    """Inventory snapshots backed by an ``inventory`` table."""

    def __init__(self, frame: pd.DataFrame) -> None:
        missing = [col for col in INVENTORY_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"inventory table is missing columns: {missing}")
        indexed = frame.copy()
        indexed["item_id"] = indexed["item_id"].astype(str)
        self._frame = indexed.set_index("item_id")

    def get_stock_snapshot(self, item_id: str) -> Optional[StockSnapshot]:
        if item_id not in self._frame.index:
            return None
        row = self._frame.loc[item_id]
        if isinstance(row, pd.DataFrame):
            row = row.iloc[-1]
        in_transit = row.get("in_transit_stock", 0.0)
        return StockSnapshot(
            item_id=item_id,
            available_stock=float(row["available_stock"]),
            reserved_stock=float(row["reserved_stock"]),
            in_transit_stock=0.0 if pd.isna(in_transit) else float(in_transit),
        )


class TableDemandHistory:
    """Delivery events backed by a ``demand_events`` table."""

    def __init__(self, frame: pd.DataFrame) -> None:
        missing = [col for col in DEMAND_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"demand_events table is missing columns: {missing}")
        events = frame.copy()
        events["item_id"] = events["item_id"].astype(str)
        events["timestamp"] = pd.to_datetime(events["timestamp"], errors="coerce")
        events = events.dropna(subset=["timestamp"])
        if "fulfilled" not in events.columns:
            events["fulfilled"] = True
        else:
            events["fulfilled"] = _flag_column(events["fulfilled"], {"true", "1", "yes", "delivered"})
        self._frame = events

    def get_demand_events(
        self, item_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[DemandEvent]:
        rows = self._frame[self._frame["item_id"] == item_id]
        if start is not None:
            rows = rows[rows["timestamp"].dt.date >= start]
        if end is not None:
            rows = rows[rows["timestamp"].dt.date <= end]
        return [
            DemandEvent(
                timestamp=ts.to_pydatetime(),
                quantity=float(qty),
                fulfilled=bool(fulfilled),
            )
            for ts, qty, fulfilled in zip(rows["timestamp"], rows["quantity"], rows["fulfilled"])
        ]


def load_table_sources(data_dir: str | Path) -> tuple[TableCatalog, TableStockSource, TableDemandHistory]:
    """Build catalog, inventory and demand sources from ``data_dir``.

    Each table is read from ``<name>.parquet`` when present, else ``<name>.csv``.
    """

    items = read_table(data_dir, "items")
    inventory = read_table(data_dir, "inventory")
    demand = read_table(data_dir, "demand_events")
    return TableCatalog(items), TableStockSource(inventory), TableDemandHistory(demand)
