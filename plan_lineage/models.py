from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ColumnLineage:
    column: str
    original_columns: Tuple[str, ...]

    def to_dict(self) -> Dict:
        return {"column": self.column, "originalColumns": list(self.original_columns)}


@dataclass(frozen=True)
class Lineage:
    """Lineage of one statement: tables read, tables written, and per-column sources."""

    input_tables: Tuple[str, ...] = ()
    output_tables: Tuple[str, ...] = ()
    column_lineage: Tuple[ColumnLineage, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "inputTables": list(self.input_tables),
            "outputTables": list(self.output_tables),
            "columnLineage": [c.to_dict() for c in self.column_lineage],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def as_csv_rows(self, file: Optional[str] = None, statement: Optional[int] = None) -> List[List[str]]:
        """One row per (output column, source column); columns without sources get one row."""
        rows: List[List[str]] = []
        for entry in self.column_lineage:
            for source in entry.original_columns or ("",):
                rows.append([
                    file or "",
                    "" if statement is None else str(statement),
                    entry.column,
                    source,
                ])
        return rows


CSV_HEADER = [
    "file",
    "statement",
    "column",
    "original_column",
]
