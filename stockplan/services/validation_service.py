r"""stockplan\services\validation_service.py"""

from __future__ import annotations

import os

from .io_utils import TABLE_NAMES, read_table, table_paths
from .stores import DEMAND_COLUMNS, INVENTORY_COLUMNS, ITEM_COLUMNS

REQUIRED_COLUMNS = {
    "items": ITEM_COLUMNS,
    "inventory": INVENTORY_COLUMNS,
    "demand_events": DEMAND_COLUMNS,
}


class ValidationService:
    """Check that a data directory holds the tables the file-backed sources read."""

    def __init__(self, data_root: str | None = None):
        self.data_root = data_root or os.getenv("DATA_DIR", "data")

    def run(self) -> dict:
        checks = []

        def add(name: str, ok: bool, msg: str = "") -> None:
            checks.append({"name": name, "ok": bool(ok), "message": msg})

        for table in TABLE_NAMES:
            candidates = table_paths(self.data_root, table)
            present = [str(path) for path in candidates if path.exists()]
            add(f"file_{table}_exists", bool(present), present[0] if present else str(candidates[1]))
            if not present:
                continue

            try:
                header = read_table(self.data_root, table, nrows=3)
            except (ValueError, OSError) as exc:
                add(f"{table}_readable", False, str(exc))
                continue

            missing = [col for col in REQUIRED_COLUMNS[table] if col not in header.columns]
            add(
                f"{table}_columns_ok",
                not missing,
                f"missing: {missing}" if missing else f"have: {list(header.columns)[:8]}",
            )

        overall = all(x["ok"] for x in checks)
        return {"ok": overall, "checks": checks}
