r"""stockplan\core\observability.py"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

LOGGER = logging.getLogger(__name__)


_ITEMS_COUNTER = Counter(
    "stockplan_items_planned_total", "Per-item planning outcomes", ["outcome"]
)
_FORECAST_COUNTER = Counter(
    "stockplan_forecasts_total", "Forecast generation outcomes", ["outcome"]
)
_ACTION_COUNTER = Counter(
    "stockplan_recommendations_total", "Recommendations emitted by action", ["action", "priority"]
)
_RUN_HISTOGRAM = Histogram(
    "stockplan_run_duration_seconds", "Planning run duration", ["kind"]
)


def record_item_outcome(outcome: str) -> None:
    try:
        _ITEMS_COUNTER.labels(outcome).inc()
    except Exception:
        # Metrics errors should never break a planning run.
        LOGGER.debug("Unable to record item outcome %s", outcome, exc_info=True)


def record_forecast_outcome(outcome: str) -> None:
    try:
        _FORECAST_COUNTER.labels(outcome).inc()
    except Exception:
        LOGGER.debug("Unable to record forecast outcome %s", outcome, exc_info=True)


def record_recommendation(action: str, priority: str) -> None:
    try:
        _ACTION_COUNTER.labels(action, priority).inc()
    except Exception:
        LOGGER.debug("Unable to record recommendation %s/%s", action, priority, exc_info=True)


@contextmanager
def timed_run(kind: str) -> Iterator[dict[str, Any]]:
    """Time a run and emit a single JSON summary line when it finishes.

    Callers fill the yielded dict with counters that end up in the payload.
    """

    start_perf = time.perf_counter()
    start_wall = time.time()
    summary: dict[str, Any] = {}
    try:
        yield summary
    finally:
        latency = time.perf_counter() - start_perf
        try:
            _RUN_HISTOGRAM.labels(kind).observe(latency)
        except Exception:
            LOGGER.debug("Unable to observe run latency for %s", kind, exc_info=True)

        log_payload = {
            "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
            "kind": kind,
            "latency_ms": int(latency * 1000),
            **summary,
        }
        LOGGER.info(json.dumps(log_payload, default=str))


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus text exposition and its content type."""

    return generate_latest(), CONTENT_TYPE_LATEST
