from __future__ import annotations

from typing import List

from ..models import ColumnLineage, Lineage
from ..utils import dedupe, table_of
from .attribute import AttributeMap


class ResultProjector:
    """Collapses a resolved lineage map into the public :class:`Lineage` record."""

    def project(self, lineage: AttributeMap) -> Lineage:
        columns: List[ColumnLineage] = []
        for key, attrs in lineage.items():
            sources = dedupe(attr.qualified_name for attr in attrs)
            columns.append(ColumnLineage(key.name, tuple(sources)))

        input_tables = dedupe(
            t for c in columns for t in (table_of(s) for s in c.original_columns) if t
        )
        output_tables = dedupe(t for t in (table_of(c.column) for c in columns) if t)
        return Lineage(tuple(input_tables), tuple(output_tables), tuple(columns))
