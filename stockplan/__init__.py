r"""stockplan\__init__.py

Demand forecasting and replenishment planning engine.

Submodules are imported lazily so that ``import stockplan`` stays cheap; the
most used entry points are re-exported by name.
"""

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

_EXPORTS = {
    "aggregate_demand": "stockplan.services.demand_service",
    "ForecastingService": "stockplan.services.forecasting_service",
    "holt_winters": "stockplan.services.forecasting_service",
    "compute_stock_position": "stockplan.services.inventory_service",
    "PlanningService": "stockplan.services.planning_service",
    "build_recommendation": "stockplan.services.planning_service",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        value = getattr(import_module(_EXPORTS[name]), name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
