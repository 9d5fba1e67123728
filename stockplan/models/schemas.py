r"""stockplan\models\schemas.py

Pydantic models used throughout the engine.

These models describe demand history, forecasts, stock snapshots, item
policies and planning recommendations.  Results (forecasts and
recommendations) are frozen: later runs supersede them with new records
rather than mutating old ones.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, model_validator

PERIOD_PATTERN = r"^\d{4}-\d{2}$"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Action(str, Enum):
    HOLD = "HOLD"
    PRODUCE = "PRODUCE"
    CRITICAL = "CRITICAL"
    REDUCE = "REDUCE"


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class RecommendationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


# ---------------------------------------------------------------------------
# Demand history


class DemandEvent(BaseModel):
    """A single delivery/shipment drawn from the demand-history collaborator."""

    timestamp: Union[datetime, date]
    quantity: float = Field(..., ge=0, description="Delivered quantity in units")
    fulfilled: bool = Field(True, description="Only fulfilled events count as demand")


class DemandObservation(BaseModel):
    """Total demand for one period bucket."""

    model_config = ConfigDict(frozen=True)

    period: str = Field(..., pattern=PERIOD_PATTERN, description="Period key, YYYY-MM")
    quantity: float = Field(..., ge=0)


class DemandSeries(BaseModel):
    """Ordered per-period demand for one item."""

    model_config = ConfigDict(frozen=True)

    item_id: str = ""
    observations: List[DemandObservation] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_strictly_increasing(self) -> "DemandSeries":
        periods = [obs.period for obs in self.observations]
        for previous, current in zip(periods, periods[1:]):
            if current <= previous:
                raise ValueError(
                    f"Demand periods must be strictly increasing; '{current}' follows '{previous}'"
                )
        return self

    def __len__(self) -> int:
        return len(self.observations)

    @property
    def values(self) -> List[float]:
        return [float(obs.quantity) for obs in self.observations]

    @property
    def last_period(self) -> Optional[str]:
        return self.observations[-1].period if self.observations else None

    def to_series(self) -> pd.Series:
        """Return the demand as a ``pd.Series`` indexed by monthly periods."""
        index = pd.PeriodIndex([obs.period for obs in self.observations], freq="M", name="period")
        return pd.Series(self.values, index=index, name=self.item_id or None, dtype=float)

    @classmethod
    def from_values(cls, values: List[float], start_period: str = "2020-01", item_id: str = "") -> "DemandSeries":
        """Build a series of consecutive monthly periods starting at ``start_period``."""
        periods = pd.period_range(start=start_period, periods=len(values), freq="M")
        return cls(
            item_id=item_id,
            observations=[
                DemandObservation(period=str(period), quantity=float(value))
                for period, value in zip(periods, values)
            ],
        )


# ---------------------------------------------------------------------------
# Forecasts


class ForecastParameters(BaseModel):
    """Smoothing coefficients used to generate a forecast."""

    model_config = ConfigDict(frozen=True)

    alpha: float = Field(0.2, gt=0, le=1, description="Level smoothing")
    beta: float = Field(0.1, gt=0, le=1, description="Trend smoothing")
    gamma: float = Field(0.3, gt=0, le=1, description="Seasonal smoothing")
    seasonal_period: int = Field(12, ge=2, description="Periods per seasonal cycle")


class ForecastPoint(BaseModel):
    """A single period ahead of the end of the demand history."""

    model_config = ConfigDict(frozen=True)

    period_offset: int = Field(..., ge=1, description="Periods ahead of the series end")
    period: str = Field(..., pattern=PERIOD_PATTERN, description="Calendar period, YYYY-MM")
    point_forecast: int = Field(..., ge=0)
    lower_bound: int = Field(..., ge=0)
    upper_bound: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ForecastPoint":
        if not self.lower_bound <= self.point_forecast <= self.upper_bound:
            raise ValueError("Forecast bounds must satisfy lower <= point <= upper")
        return self

    @property
    def period_start(self) -> date:
        return pd.Period(self.period, freq="M").start_time.date()


class ForecastResult(BaseModel):
    """Holt-Winters forecast for one item, immutable once generated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    item_id: str
    generated_parameters: ForecastParameters
    points: List[ForecastPoint]
    mean_error: float = Field(0.0, ge=0, description="Mean absolute one-step fitting error")
    std_error: float = Field(0.0, ge=0, description="Population std of the fitting errors")
    history_periods: int = Field(..., ge=0)
    generated_at: datetime = Field(default_factory=_utcnow)
    model: str = "HOLT_WINTERS"

    @property
    def horizon(self) -> int:
        return len(self.points)

    @property
    def frame(self) -> pd.DataFrame:
        """Return the forecast as a ``pd.DataFrame`` with the canonical schema."""
        return pd.DataFrame(
            [
                {
                    "period": point.period,
                    "offset": point.period_offset,
                    "mean": float(point.point_forecast),
                    "lo": float(point.lower_bound),
                    "hi": float(point.upper_bound),
                    "model": self.model,
                }
                for point in self.points
            ]
        )


class ForecastAccuracy(BaseModel):
    """Comparison of a forecast period with the demand that actually occurred."""

    item_id: str
    period: str
    forecast: float
    actual: float
    accuracy_pct: float = Field(..., ge=0, le=100)


class BacktestResult(BaseModel):
    """Hold-out evaluation of the forecaster on an item's own history."""

    item_id: str
    holdout: int
    periods: List[str]
    actual: List[float]
    predicted: List[float]
    mape: float
    coverage: float


# ---------------------------------------------------------------------------
# Stock and policy


class ItemPolicy(BaseModel):
    """Replenishment thresholds for one catalog item."""

    item_id: str = Field(..., min_length=1)
    name: str = ""
    uom: str = "units"
    min_stock: float = Field(0.0, ge=0)
    max_stock: float = Field(0.0, ge=0)
    safety_stock: float = Field(0.0, ge=0)
    reorder_point: Optional[float] = Field(None, ge=0)
    lead_time_days: int = Field(0, ge=0)
    is_active: bool = True


class StockSnapshot(BaseModel):
    """Current quantities held for one item."""

    item_id: str
    available_stock: float = 0.0
    reserved_stock: float = 0.0
    in_transit_stock: float = 0.0


class StockPosition(BaseModel):
    """Stock usable for planning, derived from a snapshot."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    current_stock: float
    reserved_stock: float
    net_available: float
    in_transit_stock: float = 0.0

    @property
    def reported_net_available(self) -> float:
        """Net available clamped at zero for display; planning uses the raw value."""
        return max(self.net_available, 0.0)


# ---------------------------------------------------------------------------
# Recommendations


class PlanningRecommendation(BaseModel):
    """Outcome of planning one item; history is append-only."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    item_id: str
    current_stock: float
    reserved_stock: float
    available_stock: float = Field(..., description="Net available stock (current - reserved)")
    forecasted_demand: float
    projected_stock: float
    action: Action
    recommended_quantity: int = Field(..., ge=0)
    recommended_date: date
    priority: Priority
    reason: str
    status: RecommendationStatus = RecommendationStatus.PENDING
    generated_at: datetime = Field(default_factory=_utcnow)
    planning_horizon_days: int = Field(90, ge=1)
    min_stock: float = 0.0
    max_stock: float = 0.0
    safety_stock: float = 0.0
    reorder_point: Optional[float] = None
    lead_time_days: int = 0

    def with_status(self, status: RecommendationStatus) -> "PlanningRecommendation":
        return self.model_copy(update={"status": RecommendationStatus(status)})


class PlanningFailure(BaseModel):
    """An item the batch run could not plan, with its cause."""

    item_id: str
    error: str
    message: str


class PlanningRunResult(BaseModel):
    """Successful recommendations and isolated failures of one planning run."""

    recommendations: List[PlanningRecommendation] = Field(default_factory=list)
    failures: List[PlanningFailure] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> int:
        return len(self.recommendations)

    @property
    def failed_item_ids(self) -> List[str]:
        return [failure.item_id for failure in self.failures]
