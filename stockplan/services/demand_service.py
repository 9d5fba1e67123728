r"""stockplan\services\demand_service.py

Collapse raw delivery events into a monthly demand series.

Only fulfilled events count.  Quantities falling in the same month are
summed, and months without any delivery between the first and last observed
month are emitted as zero demand rather than interpolated.  Given an end
date, the silent months after the last delivery up to that date are zero too.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Iterable, Mapping, Optional, Union

import pandas as pd

from ..models.schemas import DemandEvent, DemandObservation, DemandSeries
from .collaborators import DemandHistorySource

LOGGER = logging.getLogger(__name__)

EventLike = Union[DemandEvent, Mapping[str, object]]


def _wall_clock(value: date | datetime) -> datetime:
    """Return the naive local time of ``value`` so it buckets on its own calendar date."""

    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.combine(value, time.min)


def _events_frame(events: Iterable[EventLike]) -> pd.DataFrame:
    rows = []
    for event in events:
        parsed = event if isinstance(event, DemandEvent) else DemandEvent.model_validate(event)
        rows.append(
            {
                "timestamp": _wall_clock(parsed.timestamp),
                "quantity": float(parsed.quantity),
                "fulfilled": bool(parsed.fulfilled),
            }
        )
    return pd.DataFrame(rows, columns=["timestamp", "quantity", "fulfilled"])


def aggregate_demand(
    events: Iterable[EventLike],
    item_id: str = "",
    freq: str = "M",
    fill_gaps: bool = True,
    end: Optional[date] = None,
) -> DemandSeries:
    """Return the per-period demand series for one item.

    Parameters
    ----------
    events:
        Delivery events as ``DemandEvent`` models or mappings with
        ``timestamp``, ``quantity`` and ``fulfilled`` keys.
    item_id:
        Identifier stamped on the resulting series.
    freq:
        Pandas period frequency; monthly buckets are the reference behaviour.
    fill_gaps:
        Emit zero-demand observations for empty periods inside the range.
    end:
        With gap filling on, extend the series with zero demand up to the
        period containing ``end`` so trailing periods without deliveries
        still count.  That period is included even when it is partial.
    """

    frame = _events_frame(events)
    if frame.empty:
        return DemandSeries(item_id=item_id)

    delivered = frame[frame["fulfilled"]]
    if delivered.empty:
        return DemandSeries(item_id=item_id)

    timestamps = pd.to_datetime(delivered["timestamp"])
    periods = timestamps.dt.to_period(freq)
    totals = delivered["quantity"].groupby(periods.values).sum().sort_index()

    if fill_gaps:
        last = totals.index.max()
        if end is not None:
            last = max(last, pd.Period(end, freq=freq))
        full_range = pd.period_range(totals.index.min(), last, freq=freq)
        totals = totals.reindex(full_range, fill_value=0.0)

    return DemandSeries(
        item_id=item_id,
        observations=[
            DemandObservation(period=str(period), quantity=float(quantity))
            for period, quantity in totals.items()
        ],
    )


def load_demand_series(
    history: DemandHistorySource,
    item_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> DemandSeries:
    """Fetch an item's delivery events and aggregate them into monthly demand."""

    events = history.get_demand_events(item_id, start, end)
    series = aggregate_demand(events, item_id=item_id, end=end)
    LOGGER.debug(
        "Aggregated %d events into %d periods for item %s", len(events), len(series), item_id
    )
    return series
