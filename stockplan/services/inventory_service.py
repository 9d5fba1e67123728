r"""stockplan\services\inventory_service.py

Stock position helpers built on top of the inventory collaborator."""

from __future__ import annotations

import logging

from ..core.errors import NotFoundError
from ..models.schemas import StockPosition, StockSnapshot
from .collaborators import StockSource

LOGGER = logging.getLogger(__name__)


def compute_stock_position(snapshot: StockSnapshot) -> StockPosition:
    """Return net available stock (available minus reserved).

    In-transit stock is carried along for information only; it is not usable
    yet so it never adds to the net figure.  A negative net value is kept as
    is for planning and only clamped by ``reported_net_available``.
    """

    current = float(snapshot.available_stock)
    reserved = float(snapshot.reserved_stock)
    net_available = current - reserved
    if net_available < 0:
        LOGGER.warning(
            "Item %s has more reserved (%.0f) than available (%.0f) stock",
            snapshot.item_id,
            reserved,
            current,
        )
    return StockPosition(
        item_id=snapshot.item_id,
        current_stock=current,
        reserved_stock=reserved,
        net_available=net_available,
        in_transit_stock=float(snapshot.in_transit_stock),
    )


class InventoryService:
    """Resolve stock positions through an injected stock source."""

    def __init__(self, stock_source: StockSource) -> None:
        self.stock_source = stock_source

    def get_snapshot(self, item_id: str) -> StockSnapshot:
        snapshot = self.stock_source.get_stock_snapshot(item_id)
        if snapshot is None:
            raise NotFoundError("Inventory record", item_id)
        return snapshot

    def position(self, item_id: str) -> StockPosition:
        return compute_stock_position(self.get_snapshot(item_id))
