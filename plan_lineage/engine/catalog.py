from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..utils import normalize_identifier


def _is_column_map(node) -> bool:
    return isinstance(node, dict) and bool(node) and not any(isinstance(v, (dict, list)) for v in node.values())


def flatten_schema(raw: Dict) -> Dict[str, List[str]]:
    """``{"db": {"t": {"c": "int"}}, "u": ["c"]}`` -> ``{"db.t": ["c"], "u": ["c"]}``."""
    tables: Dict[str, List[str]] = {}
    pending = [(str(name), node) for name, node in (raw or {}).items()]
    while pending:
        name, node = pending.pop(0)
        if isinstance(node, list) or _is_column_map(node):
            table = normalize_identifier(name)
            if table:
                tables[table] = [normalize_identifier(c) for c in node]
        elif isinstance(node, dict):
            pending.extend((f"{name}.{child}", sub) for child, sub in node.items())
    return tables


@dataclass(frozen=True)
class ViewDefinition:
    sql: str
    columns: List[str] = field(default_factory=list)
    temporary: bool = False


@dataclass
class Catalog:
    """Tables, views and cached queries known to a session.

    Names are normalized (lower case, quotes stripped) on every call. DDL seen
    by a session registers into the same catalog, so later statements resolve
    what earlier ones created.
    """

    tables: Dict[str, List[str]] = field(default_factory=dict)
    views: Dict[str, ViewDefinition] = field(default_factory=dict)
    cached: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_schema(cls, raw: Optional[Dict]) -> "Catalog":
        return cls(tables=flatten_schema(raw or {}))

    # --------------- tables ---------------
    def has_table(self, name: str) -> bool:
        return normalize_identifier(name) in self.tables

    def columns(self, name: str) -> List[str]:
        return list(self.tables.get(normalize_identifier(name), []))

    def register_table(self, name: str, columns: List[str]):
        self.tables[normalize_identifier(name)] = [normalize_identifier(c) for c in columns]

    # --------------- views ---------------
    def view(self, name: str) -> Optional[ViewDefinition]:
        return self.views.get(normalize_identifier(name))

    def register_view(self, name: str, sql: str, columns: Optional[List[str]] = None, temporary: bool = False):
        self.views[normalize_identifier(name)] = ViewDefinition(
            sql, [normalize_identifier(c) for c in columns or []], temporary
        )

    # --------------- cache ---------------
    def cached_query(self, name: str) -> Optional[str]:
        return self.cached.get(normalize_identifier(name))

    def register_cache(self, name: str, sql: str):
        self.cached[normalize_identifier(name)] = sql

    def uncache(self, name: str):
        self.cached.pop(normalize_identifier(name), None)

    def drop(self, name: str):
        key = normalize_identifier(name)
        self.tables.pop(key, None)
        self.views.pop(key, None)
        self.cached.pop(key, None)
