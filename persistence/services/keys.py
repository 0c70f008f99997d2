"""Table name to storage key mapping."""
from __future__ import annotations

from typing import Iterable

TABLES = (
    "patients",
    "inpatients",
    "estimates",
    "medical_history",
    "notifications",
    "reports",
    "rooms",
    "financial_operations",
)

BACKUP = "backup"
METADATA = "metadata"


class KeyMap:
    """Resolves table names to the opaque keys they are stored under.

    Every table lives under ``<prefix><table>``; the backup snapshot and the
    metadata record get one reserved key each.
    """

    def __init__(self, prefix: str = "extramed_", tables: Iterable[str] = TABLES) -> None:
        self.prefix = prefix
        self.tables = tuple(tables)
        self._by_table = {t: f"{prefix}{t}" for t in self.tables}
        self.backup = f"{prefix}{BACKUP}"
        self.metadata = f"{prefix}{METADATA}"

    def resolve(self, name: str) -> str:
        """Accept a table name or an already resolved key."""
        if name in self._by_table:
            return self._by_table[name]
        if name in self.namespace():
            return name
        raise KeyError(f"unknown table: {name}")

    def table_keys(self) -> list[str]:
        return list(self._by_table.values())

    def namespace(self) -> list[str]:
        return [*self._by_table.values(), self.backup, self.metadata]

    def is_table_key(self, key: str) -> bool:
        return key in self._by_table.values()
