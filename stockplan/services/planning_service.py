"""Generate replenishment recommendations from stock, forecast and item policy."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from itertools import repeat
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.config import PlanningConfig, load_planning_config
from ..core.errors import NotFoundError, StockPlanError, ValidationError
from ..core.observability import record_item_outcome, record_recommendation, timed_run
from ..models.schemas import (
    Action,
    ForecastResult,
    ItemPolicy,
    PlanningFailure,
    PlanningRecommendation,
    PlanningRunResult,
    Priority,
    RecommendationStatus,
    StockPosition,
)
from .collaborators import CatalogSource, ForecastStore, RecommendationStore, StockSource
from .forecasting_service import round_units
from .inventory_service import InventoryService

LOGGER = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[RecommendationStatus, frozenset[RecommendationStatus]] = {
    RecommendationStatus.PENDING: frozenset(
        {RecommendationStatus.APPROVED, RecommendationStatus.REJECTED}
    ),
    RecommendationStatus.APPROVED: frozenset({RecommendationStatus.COMPLETED}),
    RecommendationStatus.REJECTED: frozenset(),
    RecommendationStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True)
class Decision:
    action: Action
    priority: Priority
    quantity: int
    reason: str


# ---------------------------------------------------------------------------
def check_policy(policy: ItemPolicy) -> None:
    """Reject policies whose thresholds cannot be planned against."""

    if policy.max_stock < policy.min_stock:
        raise ValidationError(
            f"Item {policy.item_id}: max_stock ({policy.max_stock:g}) is below "
            f"min_stock ({policy.min_stock:g})"
        )


def forecasted_demand_within(
    forecast: Optional[ForecastResult],
    today: date,
    horizon_days: int,
) -> float:
    """Sum point forecasts for periods starting within ``horizon_days`` of ``today``.

    A missing forecast contributes zero demand.
    """

    if horizon_days <= 0:
        raise ValidationError("planning_horizon_days must be a positive integer")
    if forecast is None:
        return 0.0

    window_end = today + timedelta(days=horizon_days)
    return float(
        sum(
            point.point_forecast
            for point in forecast.points
            if today <= point.period_start <= window_end
        )
    )


def _quantity(value: float) -> int:
    return max(round_units(value), 0)


def decide(
    policy: ItemPolicy,
    current_stock: float,
    projected_stock: float,
    reserved_stock: float = 0.0,
    forecasted_demand: float = 0.0,
) -> Decision:
    """Pick the action for one item; the first matching rule wins.

    When the policy carries a reorder point it replaces ``min_stock`` as the
    trigger for a high-priority production order.
    """

    uom = policy.uom
    if projected_stock < 0:
        quantity = _quantity(abs(projected_stock) + policy.safety_stock)
        reason = (
            f"STOCK-OUT ALERT: projected stock is {projected_stock:.0f} {uom}. "
            f"Current stock ({current_stock:.0f}) cannot cover reserved ({reserved_stock:.0f}) "
            f"+ forecasted demand ({forecasted_demand:.0f}). Produce {quantity} {uom} immediately "
            f"to avoid a stock-out and restore safety stock."
        )
        return Decision(Action.CRITICAL, Priority.CRITICAL, quantity, reason)

    if policy.reorder_point is not None:
        below_trigger = projected_stock <= policy.reorder_point
        trigger = f"reorder point ({policy.reorder_point:g} {uom})"
    else:
        below_trigger = projected_stock < policy.min_stock
        trigger = f"minimum level ({policy.min_stock:g} {uom})"

    if below_trigger:
        quantity = _quantity(policy.max_stock - projected_stock)
        reason = (
            f"Stock will fall to the {trigger}. Projected stock: {projected_stock:.0f} {uom}. "
            f"Produce {quantity} {uom} to reach the maximum level ({policy.max_stock:g} {uom})."
        )
        return Decision(Action.PRODUCE, Priority.HIGH, quantity, reason)

    if projected_stock < policy.safety_stock:
        quantity = _quantity(policy.max_stock - projected_stock)
        reason = (
            f"Stock will fall below the safety level ({policy.safety_stock:g} {uom}). "
            f"Projected stock: {projected_stock:.0f} {uom}. "
            f"Produce {quantity} {uom} to maintain buffer levels."
        )
        return Decision(Action.PRODUCE, Priority.MEDIUM, quantity, reason)

    if current_stock > policy.max_stock:
        overstock = current_stock - policy.max_stock
        reason = (
            f"Current stock ({current_stock:.0f} {uom}) exceeds the maximum level "
            f"({policy.max_stock:g} {uom}). Overstock: {overstock:.0f} {uom}. "
            f"Consider reducing production or accelerating sales."
        )
        return Decision(Action.REDUCE, Priority.LOW, 0, reason)

    reason = (
        f"Stock levels are healthy. Current: {current_stock:.0f} {uom}, "
        f"projected: {projected_stock:.0f} {uom}, min: {policy.min_stock:g} {uom}, "
        f"max: {policy.max_stock:g} {uom}. No action required."
    )
    return Decision(Action.HOLD, Priority.LOW, 0, reason)


def build_recommendation(
    policy: ItemPolicy,
    position: StockPosition,
    forecast: Optional[ForecastResult],
    today: date,
    horizon_days: int,
    generated_at: Optional[datetime] = None,
) -> PlanningRecommendation:
    """Combine stock, forecast and policy into one PENDING recommendation."""

    check_policy(policy)
    demand = forecasted_demand_within(forecast, today, horizon_days)
    projected = position.net_available - demand
    decision = decide(
        policy,
        current_stock=position.current_stock,
        projected_stock=projected,
        reserved_stock=position.reserved_stock,
        forecasted_demand=demand,
    )

    extra = {"generated_at": generated_at} if generated_at is not None else {}
    return PlanningRecommendation(
        item_id=policy.item_id,
        current_stock=position.current_stock,
        reserved_stock=position.reserved_stock,
        available_stock=position.net_available,
        forecasted_demand=demand,
        projected_stock=projected,
        action=decision.action,
        recommended_quantity=decision.quantity,
        recommended_date=today + timedelta(days=int(policy.lead_time_days)),
        priority=decision.priority,
        reason=decision.reason,
        status=RecommendationStatus.PENDING,
        planning_horizon_days=horizon_days,
        min_stock=policy.min_stock,
        max_stock=policy.max_stock,
        safety_stock=policy.safety_stock,
        reorder_point=policy.reorder_point,
        lead_time_days=policy.lead_time_days,
        **extra,
    )


def rank_latest(records: Iterable[PlanningRecommendation]) -> List[PlanningRecommendation]:
    """Order recommendations CRITICAL first; newest first within a priority."""

    newest_first = sorted(records, key=lambda rec: rec.generated_at, reverse=True)
    return sorted(newest_first, key=lambda rec: rec.priority.rank)


def transition_status(
    store: RecommendationStore,
    recommendation_id: str,
    new_status: RecommendationStatus,
) -> PlanningRecommendation:
    """Apply an approval-workflow status change after checking it is allowed."""

    current = store.get(recommendation_id)
    if current is None:
        raise NotFoundError("Recommendation", recommendation_id)

    new_status = RecommendationStatus(new_status)
    if new_status not in ALLOWED_TRANSITIONS[current.status]:
        raise ValidationError(
            f"Recommendation {recommendation_id} cannot move from "
            f"{current.status.value} to {new_status.value}"
        )

    store.update_status(recommendation_id, new_status)
    LOGGER.info(
        "Recommendation %s for item %s moved %s -> %s",
        recommendation_id,
        current.item_id,
        current.status.value,
        new_status.value,
    )
    return current.with_status(new_status)


# ---------------------------------------------------------------------------
class PlanningService:
    """Plan every active item against its latest forecast and stock position."""

    def __init__(
        self,
        catalog: CatalogSource,
        stock_source: StockSource,
        forecasts: ForecastStore | None = None,
        recommendations: RecommendationStore | None = None,
        config: PlanningConfig | None = None,
        config_root: str | None = None,
    ) -> None:
        self.catalog = catalog
        self.inventory = InventoryService(stock_source)
        self.forecasts = forecasts
        self.recommendations = recommendations
        self.config = config or load_planning_config(config_root)

    # ------------------------------------------------------------------
    def _horizon(self, horizon_days: int | None) -> int:
        horizon = self.config.planning_horizon_days if horizon_days is None else int(horizon_days)
        if horizon <= 0:
            raise ValidationError("planning_horizon_days must be a positive integer")
        return horizon

    # ------------------------------------------------------------------
    def plan_item(
        self,
        policy: ItemPolicy,
        today: date | None = None,
        horizon_days: int | None = None,
    ) -> PlanningRecommendation:
        """Compute, save and return the recommendation for a single item."""

        today = today or date.today()
        horizon = self._horizon(horizon_days)
        position = self.inventory.position(policy.item_id)
        forecast = self.forecasts.get_latest_forecast(policy.item_id) if self.forecasts else None
        if forecast is None:
            LOGGER.warning("No forecast available for item %s, using 0 demand", policy.item_id)

        recommendation = build_recommendation(policy, position, forecast, today, horizon)
        if self.recommendations is not None:
            self.recommendations.save_recommendation(recommendation)

        record_recommendation(recommendation.action.value, recommendation.priority.value)
        LOGGER.info(
            "Planning rec for %s: net=%.0f demand=%.0f projected=%.0f action=%s qty=%d",
            policy.item_id,
            recommendation.available_stock,
            recommendation.forecasted_demand,
            recommendation.projected_stock,
            recommendation.action.value,
            recommendation.recommended_quantity,
        )
        return recommendation

    # ------------------------------------------------------------------
    def _plan_safely(
        self,
        policy: ItemPolicy,
        today: date,
        horizon_days: int,
    ) -> Tuple[Optional[PlanningRecommendation], Optional[PlanningFailure]]:
        try:
            recommendation = self.plan_item(policy, today=today, horizon_days=horizon_days)
        except StockPlanError as exc:
            LOGGER.warning("Skipping item %s: %s", policy.item_id, exc)
            record_item_outcome("failed")
            return None, PlanningFailure(
                item_id=policy.item_id, error=type(exc).__name__, message=str(exc)
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error while planning item %s", policy.item_id)
            record_item_outcome("failed")
            return None, PlanningFailure(
                item_id=policy.item_id, error=type(exc).__name__, message=str(exc)
            )
        record_item_outcome("planned")
        return recommendation, None

    # ------------------------------------------------------------------
    def _plan_policies(
        self,
        policies: List[ItemPolicy],
        today: date,
        horizon_days: int,
        extra_failures: List[PlanningFailure],
    ) -> PlanningRunResult:
        result = PlanningRunResult()
        workers = min(self.config.max_workers, max(len(policies), 1))

        with timed_run("planning") as summary:
            if workers > 1:
                with ThreadPoolExecutor(max_workers=workers) as pool:
                    outcomes = list(
                        pool.map(self._plan_safely, policies, repeat(today), repeat(horizon_days))
                    )
            else:
                outcomes = [self._plan_safely(policy, today, horizon_days) for policy in policies]

            for recommendation, failure in outcomes:
                if recommendation is not None:
                    result.recommendations.append(recommendation)
                if failure is not None:
                    result.failures.append(failure)
            result.failures.extend(extra_failures)

            summary.update(
                {
                    "items": len(policies) + len(extra_failures),
                    "planned": result.succeeded,
                    "failed": len(result.failures),
                    "failed_items": result.failed_item_ids,
                    "horizon_days": horizon_days,
                    "workers": workers,
                }
            )

        result.finished_at = datetime.now(timezone.utc)
        return result

    # ------------------------------------------------------------------
    def run(self, today: date | None = None, horizon_days: int | None = None) -> PlanningRunResult:
        """Plan all active items, isolating per-item failures."""

        today = today or date.today()
        horizon = self._horizon(horizon_days)
        policies = self.catalog.get_active_items()
        LOGGER.info("Planning run started for %d items horizon=%d", len(policies), horizon)
        return self._plan_policies(policies, today, horizon, [])

    # ------------------------------------------------------------------
    def plan_items(
        self,
        item_ids: Iterable[str],
        today: date | None = None,
        horizon_days: int | None = None,
    ) -> PlanningRunResult:
        """Re-plan only the given items, e.g. those a previous run skipped."""

        today = today or date.today()
        horizon = self._horizon(horizon_days)
        by_id = {policy.item_id: policy for policy in self.catalog.get_active_items()}

        policies: List[ItemPolicy] = []
        missing: List[PlanningFailure] = []
        for item_id in item_ids:
            policy = by_id.get(item_id)
            if policy is None:
                error = NotFoundError("Item", item_id)
                missing.append(
                    PlanningFailure(item_id=item_id, error=type(error).__name__, message=str(error))
                )
                continue
            policies.append(policy)
        return self._plan_policies(policies, today, horizon, missing)

    # ------------------------------------------------------------------
    def latest_recommendations(self) -> List[PlanningRecommendation]:
        """Most recent recommendation per item, CRITICAL first."""

        if self.recommendations is None:
            return []
        return rank_latest(self.recommendations.get_latest_by_item())

    def recommendations_by_priority(self, priority: Priority) -> List[PlanningRecommendation]:
        wanted = Priority(priority)
        return [rec for rec in self.latest_recommendations() if rec.priority == wanted]

    # ------------------------------------------------------------------
    def _store(self) -> RecommendationStore:
        if self.recommendations is None:
            raise ValidationError("No recommendation store configured")
        return self.recommendations

    def approve(self, recommendation_id: str) -> PlanningRecommendation:
        return transition_status(self._store(), recommendation_id, RecommendationStatus.APPROVED)

    def reject(self, recommendation_id: str) -> PlanningRecommendation:
        return transition_status(self._store(), recommendation_id, RecommendationStatus.REJECTED)

    def complete(self, recommendation_id: str) -> PlanningRecommendation:
        return transition_status(self._store(), recommendation_id, RecommendationStatus.COMPLETED)
