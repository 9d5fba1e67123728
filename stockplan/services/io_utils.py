r"""stockplan\services\io_utils.py

Table readers for the file-backed collaborators.  Every planning table lives
in the data directory as ``<name>.parquet`` or ``<name>.csv``; Parquet wins
when both are present.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import pandas as pd

TABLE_NAMES = ("items", "inventory", "demand_events")


def table_paths(data_dir: str | Path, name: str) -> Tuple[Path, Path]:
    """Return the ``(parquet, csv)`` candidates for table ``name``."""

    root = Path(data_dir)
    return root / f"{name}.parquet", root / f"{name}.csv"


def read_table(
    data_dir: str | Path,
    name: str,
    *,
    columns: Optional[Iterable[str]] = None,
    nrows: Optional[int] = None,
    **csv_kwargs: Any,
) -> pd.DataFrame:
    """Load planning table ``name`` from ``data_dir``.

    ``columns`` restricts the read for both formats; ``nrows`` limits the
    rows returned (the Parquet file is read whole and truncated).  Extra
    keyword arguments only apply to the CSV reader.

    Raises ``FileNotFoundError`` when neither file exists.
    """

    pq_path, csv_path = table_paths(data_dir, name)
    column_list = list(columns) if columns is not None else None

    if pq_path.exists():
        # Needs pyarrow, installed with the ``parquet`` extra.
        frame = pd.read_parquet(pq_path, columns=column_list)
        return frame.head(nrows) if nrows is not None else frame

    if not csv_path.exists():
        raise FileNotFoundError(f"No {name} table in {data_dir}: expected {pq_path.name} or {csv_path.name}")

    if column_list is not None:
        csv_kwargs.setdefault("usecols", column_list)
    if nrows is not None:
        csv_kwargs.setdefault("nrows", nrows)
    return pd.read_csv(csv_path, **csv_kwargs)
