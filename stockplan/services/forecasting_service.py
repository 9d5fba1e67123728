r"""stockplan\services\forecasting_service.py

Demand forecasting with Holt-Winters triple exponential smoothing.

The model keeps three components per period: a level, an additive trend and
a multiplicative seasonal index for each position in the seasonal cycle.
Intervals come from the spread of the one-step-ahead fitting errors and widen
with the square root of the horizon.

The fitting routine is kept top-level so it can be unit tested without a
service instance; ``ForecastingService`` wires it to the demand-history and
forecast-store collaborators.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.config import ForecastConfig, load_forecast_config
from ..core.errors import InsufficientHistoryError, StockPlanError, ValidationError
from ..core.observability import record_forecast_outcome
from ..models.schemas import (
    BacktestResult,
    DemandSeries,
    ForecastAccuracy,
    ForecastParameters,
    ForecastPoint,
    ForecastResult,
    PlanningFailure,
)
from .collaborators import DemandHistorySource, ForecastStore
from .demand_service import load_demand_series

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities


def round_units(value: float) -> int:
    """Round to the nearest whole unit, halves rounding up."""

    return int(math.floor(value + 0.5))


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator != 0 else 0.0


def minimum_history(seasonal_period: int) -> int:
    """Periods needed to initialise one seasonal cycle and fit another."""

    return 2 * int(seasonal_period)


@dataclass(slots=True)
class HoltWintersFit:
    level: np.ndarray
    trend: np.ndarray
    seasonal: np.ndarray
    forecast: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    mean_error: float
    std_error: float


def holt_winters(
    values: Sequence[float],
    alpha: float,
    beta: float,
    gamma: float,
    seasonal_period: int,
    horizon: int,
    z_value: float = 1.96,
) -> HoltWintersFit:
    """Fit Holt-Winters to ``values`` and project ``horizon`` periods.

    Returns the fitted level/trend arrays, the final seasonal indices and the
    rounded point forecasts with their lower/upper bounds.
    """

    data = np.asarray(values, dtype=float)
    n = data.size
    m = int(seasonal_period)
    required = minimum_history(m)
    if n < required:
        raise InsufficientHistoryError(required=required, provided=n)
    if horizon < 1:
        raise ValidationError("horizon must be a positive integer")

    level = np.zeros(n, dtype=float)
    trend = np.zeros(n, dtype=float)

    mean_demand = float(data.mean())
    if mean_demand > 0:
        seasonal = data[:m] / mean_demand
    else:
        seasonal = np.ones(m, dtype=float)

    level[0] = data[0]
    trend[0] = (data[m] - data[0]) / m if n > m else 0.0

    for t in range(1, n):
        s = t % m
        prev_level = level[t - 1]
        prev_trend = trend[t - 1]
        prev_seasonal = seasonal[s]

        level[t] = alpha * _ratio(data[t], prev_seasonal) + (1 - alpha) * (prev_level + prev_trend)
        trend[t] = beta * (level[t] - prev_level) + (1 - beta) * prev_trend
        seasonal[s] = gamma * _ratio(data[t], level[t]) + (1 - gamma) * prev_seasonal

    # One-step-ahead errors, scored against the final seasonal indices.
    steps = np.arange(m, n)
    predicted = (level[steps - 1] + trend[steps - 1]) * seasonal[steps % m]
    errors = np.abs(data[steps] - predicted)
    mean_error = float(errors.mean())
    std_error = float(errors.std(ddof=0))

    final_level = level[-1]
    final_trend = trend[-1]
    forecast = np.zeros(horizon, dtype=float)
    lower = np.zeros(horizon, dtype=float)
    upper = np.zeros(horizon, dtype=float)

    for h in range(1, horizon + 1):
        raw = max(0.0, (final_level + h * final_trend) * seasonal[(n + h - 1) % m])
        margin = z_value * std_error * math.sqrt(h)
        point = round_units(raw)
        lo = max(0, round_units(raw - margin))
        hi = round_units(raw + margin)
        forecast[h - 1] = point
        lower[h - 1] = min(lo, point)
        upper[h - 1] = max(hi, point)

    return HoltWintersFit(
        level=level,
        trend=trend,
        seasonal=seasonal,
        forecast=forecast,
        lower=lower,
        upper=upper,
        mean_error=mean_error,
        std_error=std_error,
    )


def forecast_accuracy(result: ForecastResult, actual: DemandSeries) -> List[ForecastAccuracy]:
    """Score each forecast period against the demand that was later observed.

    Accuracy is ``(1 - |actual - forecast| / actual) * 100`` clamped to
    ``[0, 100]``; periods with zero actual demand score 0.  Periods without an
    observation yet are skipped.
    """

    observed = {obs.period: float(obs.quantity) for obs in actual.observations}
    scores: List[ForecastAccuracy] = []
    for point in result.points:
        if point.period not in observed:
            continue
        actual_qty = observed[point.period]
        if actual_qty > 0:
            accuracy = (1.0 - abs(actual_qty - point.point_forecast) / actual_qty) * 100.0
        else:
            accuracy = 0.0
        scores.append(
            ForecastAccuracy(
                item_id=result.item_id,
                period=point.period,
                forecast=float(point.point_forecast),
                actual=actual_qty,
                accuracy_pct=max(0.0, min(100.0, accuracy)),
            )
        )
    return scores


# ---------------------------------------------------------------------------
# Core service implementation


class ForecastingService:
    """Generate per-item Holt-Winters forecasts from monthly demand history."""

    def __init__(
        self,
        config: ForecastConfig | None = None,
        config_root: str | None = None,
        history: DemandHistorySource | None = None,
        store: ForecastStore | None = None,
    ) -> None:
        self.config = config or load_forecast_config(config_root)
        self.history = history
        self.store = store

    # ------------------------------------------------------------------
    def parameters(
        self,
        alpha: float | None = None,
        beta: float | None = None,
        gamma: float | None = None,
        seasonal_period: int | None = None,
    ) -> ForecastParameters:
        """Return validated coefficients, falling back to configured values."""

        alpha = self.config.alpha if alpha is None else float(alpha)
        beta = self.config.beta if beta is None else float(beta)
        gamma = self.config.gamma if gamma is None else float(gamma)
        period = self.config.seasonal_period if seasonal_period is None else int(seasonal_period)

        for name, value in (("alpha", alpha), ("beta", beta), ("gamma", gamma)):
            if not 0.0 < value <= 1.0:
                raise ValidationError(f"{name} must be in (0, 1], got {value}")
        if period < 2:
            raise ValidationError(f"seasonal_period must be at least 2, got {period}")

        return ForecastParameters(alpha=alpha, beta=beta, gamma=gamma, seasonal_period=period)

    # ------------------------------------------------------------------
    def forecast(
        self,
        series: DemandSeries,
        horizon: int | None = None,
        params: ForecastParameters | None = None,
        item_id: str | None = None,
    ) -> ForecastResult:
        """Forecast ``horizon`` periods past the end of ``series``.

        Raises ``InsufficientHistoryError`` when the series holds fewer than
        two seasonal cycles.
        """

        horizon = self.config.horizon_periods if horizon is None else int(horizon)
        if horizon <= 0:
            raise ValidationError("horizon must be a positive integer")
        params = params or self.parameters()
        item_id = item_id or series.item_id

        try:
            fit = holt_winters(
                series.values,
                alpha=params.alpha,
                beta=params.beta,
                gamma=params.gamma,
                seasonal_period=params.seasonal_period,
                horizon=horizon,
                z_value=self.config.z_value,
            )
        except InsufficientHistoryError:
            record_forecast_outcome("insufficient_history")
            raise

        last_period = pd.Period(series.last_period, freq="M")
        points = [
            ForecastPoint(
                period_offset=h,
                period=str(last_period + h),
                point_forecast=int(fit.forecast[h - 1]),
                lower_bound=int(fit.lower[h - 1]),
                upper_bound=int(fit.upper[h - 1]),
            )
            for h in range(1, horizon + 1)
        ]

        LOGGER.info(
            "Forecast for item %s: periods=%d horizon=%d std_error=%.2f",
            item_id,
            len(series),
            horizon,
            fit.std_error,
        )
        record_forecast_outcome("ok")

        return ForecastResult(
            item_id=item_id,
            generated_parameters=params,
            points=points,
            mean_error=fit.mean_error,
            std_error=fit.std_error,
            history_periods=len(series),
        )

    # ------------------------------------------------------------------
    def forecast_item(
        self,
        item_id: str,
        horizon: int | None = None,
        today: date | None = None,
    ) -> ForecastResult:
        """Load an item's demand history, forecast it and save the result.

        History runs through the month containing ``today``, so the first
        forecast period is the following month.  Months without deliveries
        up to ``today`` count as zero demand.
        """

        if self.history is None:
            raise ValidationError("A demand history source is required to forecast by item id")

        end = today or date.today()
        start = (pd.Timestamp(end) - pd.DateOffset(months=self.config.history_months)).date()
        series = load_demand_series(self.history, item_id, start=start, end=end)
        result = self.forecast(series, horizon=horizon, item_id=item_id)

        if self.store is not None:
            self.store.save_forecast(result)
        return result

    # ------------------------------------------------------------------
    def forecast_items(
        self,
        item_ids: Iterable[str],
        horizon: int | None = None,
        today: date | None = None,
    ) -> Tuple[List[ForecastResult], List[PlanningFailure]]:
        """Forecast several items; one item's failure never stops the others."""

        results: List[ForecastResult] = []
        failures: List[PlanningFailure] = []
        for item_id in item_ids:
            try:
                results.append(self.forecast_item(item_id, horizon=horizon, today=today))
            except StockPlanError as exc:
                LOGGER.warning("Forecast skipped for item %s: %s", item_id, exc)
                failures.append(
                    PlanningFailure(item_id=item_id, error=type(exc).__name__, message=str(exc))
                )
            except Exception as exc:
                LOGGER.exception("Unexpected error while forecasting item %s", item_id)
                record_forecast_outcome("failed")
                failures.append(
                    PlanningFailure(item_id=item_id, error=type(exc).__name__, message=str(exc))
                )
        return results, failures

    # ------------------------------------------------------------------
    def backtest(
        self,
        series: DemandSeries,
        holdout: int = 6,
        params: ForecastParameters | None = None,
    ) -> BacktestResult:
        """Fit on all but the last ``holdout`` periods and score the remainder."""

        if holdout <= 0:
            raise ValidationError("holdout must be a positive integer")
        if holdout >= len(series):
            raise InsufficientHistoryError(required=holdout + 1, provided=len(series))

        train = DemandSeries(item_id=series.item_id, observations=series.observations[:-holdout])
        test = series.observations[-holdout:]
        result = self.forecast(train, horizon=holdout, params=params)

        actual = np.array([obs.quantity for obs in test], dtype=float)
        predicted = np.array([pt.point_forecast for pt in result.points], dtype=float)
        lower = np.array([pt.lower_bound for pt in result.points], dtype=float)
        upper = np.array([pt.upper_bound for pt in result.points], dtype=float)

        mask = actual != 0
        if mask.any():
            mape = float(np.mean(np.abs((actual[mask] - predicted[mask]) / actual[mask])))
        else:
            mape = 0.0
        coverage = float(np.mean((lower <= actual) & (actual <= upper)))

        return BacktestResult(
            item_id=series.item_id,
            holdout=holdout,
            periods=[obs.period for obs in test],
            actual=[float(v) for v in actual],
            predicted=[float(v) for v in predicted],
            mape=mape,
            coverage=coverage,
        )
