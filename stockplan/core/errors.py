r"""stockplan\core\errors.py

Exception taxonomy shared by the forecasting and planning services.

Single-item operations raise these to their caller; the batch planning run
catches them per item and reports them as failures instead of aborting.
"""

from __future__ import annotations


class StockPlanError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(StockPlanError, ValueError):
    """Raised for malformed inputs such as an inverted min/max policy."""


class InsufficientHistoryError(StockPlanError, ValueError):
    """Raised when a forecast is requested with too few demand periods."""

    def __init__(self, required: int, provided: int) -> None:
        self.required = int(required)
        self.provided = int(provided)
        super().__init__(
            f"Insufficient demand history: {self.required} periods required, "
            f"{self.provided} provided."
        )


class NotFoundError(StockPlanError, LookupError):
    """Raised when a referenced item, inventory record or recommendation is absent."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = str(key)
        super().__init__(f"{kind} '{self.key}' was not found.")
