"""
Collaborator protocols consumed by the forecasting and planning services.

The engine never talks to a database directly.  The surrounding service
passes in objects satisfying these protocols; ``stores.py`` ships in-memory
and file-backed implementations.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Protocol, runtime_checkable

from ..models.schemas import (
    DemandEvent,
    ForecastResult,
    ItemPolicy,
    PlanningRecommendation,
    RecommendationStatus,
    StockSnapshot,
)


@runtime_checkable
class CatalogSource(Protocol):
    """Item lookup: active items and their replenishment policy."""

    def get_active_items(self) -> List[ItemPolicy]:
        ...


@runtime_checkable
class StockSource(Protocol):
    """Stock lookup: the current snapshot for an item, ``None`` when unknown."""

    def get_stock_snapshot(self, item_id: str) -> Optional[StockSnapshot]:
        ...


@runtime_checkable
class DemandHistorySource(Protocol):
    """Demand history: raw delivery events for an item within a date range."""

    def get_demand_events(
        self, item_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[DemandEvent]:
        ...


@runtime_checkable
class ForecastStore(Protocol):
    def save_forecast(self, result: ForecastResult) -> None:
        ...

    def get_latest_forecast(self, item_id: str) -> Optional[ForecastResult]:
        ...


@runtime_checkable
class RecommendationStore(Protocol):
    """Recommendation persistence.

    ``update_status`` belongs to the external approval workflow; the engine
    itself only inserts.
    """

    def save_recommendation(self, recommendation: PlanningRecommendation) -> None:
        ...

    def get_latest_by_item(self) -> List[PlanningRecommendation]:
        ...

    def get(self, recommendation_id: str) -> Optional[PlanningRecommendation]:
        ...

    def update_status(self, recommendation_id: str, status: RecommendationStatus) -> None:
        ...
