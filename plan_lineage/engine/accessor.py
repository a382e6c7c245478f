"""Version-tolerant reads of sqlglot syntax trees.

sqlglot renames arguments between releases (``from`` became ``from_``, MERGE
clauses moved under a ``whens`` node, ROLLUP/CUBE became nodes of their own).
The planner never reads ``args`` directly for those shapes; it goes through a
:class:`SqlglotAccessor`, selected once per engine by :func:`get_accessor`.
"""

from __future__ import annotations

import re
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from sqlglot import expressions as exp

from ..core.plan import JoinType, TableIdentifier, ViewType
from ..errors import PlanShapeError
from ..utils import normalize_identifier

# Intersect/Except derive from Union in older releases and from SetOperation in newer ones
QUERY_TYPES = tuple(
    t for t in (exp.Select, exp.Union, exp.Intersect, exp.Except, getattr(exp, "SetOperation", None)) if t
)

_ALTER_VIEW_AS = re.compile(r"^\s*VIEW\s+(?P<name>[^\s(]+)\s+AS\s+(?P<query>.+)$", re.IGNORECASE | re.DOTALL)


def _arg(node: exp.Expression, *names: str):
    for name in names:
        value = node.args.get(name)
        if value is not None:
            return value
    return None


class SqlglotAccessor:
    """Typed accessors over the sqlglot nodes the planner consumes."""

    def __init__(self, dialect: str = "spark"):
        self.dialect = dialect

    # --------------- queries ---------------
    def is_query(self, node: Optional[exp.Expression]) -> bool:
        return isinstance(node, QUERY_TYPES)

    def from_term(self, select: exp.Select) -> Optional[exp.Expression]:
        from_ = _arg(select, "from", "from_")
        return from_.this if from_ is not None else None

    def with_clause(self, node: exp.Expression) -> Optional[exp.With]:
        return _arg(node, "with", "with_")

    def joins(self, select: exp.Select) -> List[exp.Join]:
        return list(select.args.get("joins") or [])

    def join_type(self, join: exp.Join) -> JoinType:
        kind = (join.args.get("kind") or "").upper()
        side = (join.args.get("side") or "").upper()
        if kind == "SEMI":
            return JoinType.LEFT_SEMI
        if kind == "ANTI":
            return JoinType.LEFT_ANTI
        if kind == "CROSS":
            return JoinType.CROSS
        if side == "LEFT":
            return JoinType.LEFT_OUTER
        if side == "RIGHT":
            return JoinType.RIGHT_OUTER
        if side == "FULL":
            return JoinType.FULL_OUTER
        return JoinType.INNER

    def using_columns(self, join: exp.Join) -> List[str]:
        return [normalize_identifier(c.name) for c in join.args.get("using") or []]

    def group_expressions(self, select: exp.Select) -> List[exp.Expression]:
        group = select.args.get("group")
        return list(group.expressions) if group is not None else []

    def grouping_sets(self, select: exp.Select) -> Optional[List[List[exp.Expression]]]:
        """Grouping sets of a GROUP BY with ROLLUP / CUBE / GROUPING SETS, else None."""
        group = select.args.get("group")
        if group is None:
            return None
        base = list(group.expressions)
        sets: List[List[exp.Expression]] = []
        found = False
        for item in group.args.get("grouping_sets") or []:
            found = True
            for element in item.expressions if isinstance(item, exp.GroupingSets) else [item]:
                sets.append(base + self._set_members(element))
        for prefix, columns in self._groupings(group.args.get("rollup") or [], base):
            found = True
            sets.extend(prefix + columns[:i] for i in range(len(columns), -1, -1))
        for prefix, columns in self._groupings(group.args.get("cube") or [], base):
            found = True
            for size in range(len(columns), -1, -1):
                sets.extend(prefix + list(c) for c in combinations(columns, size))
        return sets if found else None

    @staticmethod
    def _set_members(element: exp.Expression) -> List[exp.Expression]:
        if isinstance(element, exp.Tuple):
            return list(element.expressions)
        if isinstance(element, exp.Paren):
            return [element.this]
        return [element]

    @staticmethod
    def _groupings(items, base: List[exp.Expression]) -> List[Tuple[List[exp.Expression], List[exp.Expression]]]:
        """(always-grouped prefix, rolled columns) per ROLLUP / CUBE clause.

        ``GROUP BY a, b WITH ROLLUP`` rolls the plain GROUP BY list itself;
        ``GROUP BY a, ROLLUP (b, c)`` keeps ``a`` in every set. Older releases
        list the rolled columns loose instead of under a Rollup/Cube node.
        """
        groups: List[Tuple[List[exp.Expression], List[exp.Expression]]] = []
        loose = [item for item in items if isinstance(item, exp.Column)]
        for item in items:
            if isinstance(item, exp.Column):
                continue
            if isinstance(item, exp.Expression) and item.expressions:
                groups.append((list(base), list(item.expressions)))
            elif item:
                groups.append(([], list(base)))
        if loose:
            groups.append((list(base), loose))
        return groups

    # --------------- names ---------------
    def table_identifier(self, table: exp.Table) -> TableIdentifier:
        return TableIdentifier(
            normalize_identifier(table.name),
            database=normalize_identifier(table.db) or None,
            catalog=normalize_identifier(table.catalog) or None,
        )

    def alias_of(self, node: exp.Expression) -> Optional[str]:
        alias = node.alias
        return normalize_identifier(alias) if alias else None

    def alias_columns(self, node: exp.Expression) -> List[str]:
        alias = node.args.get("alias")
        if isinstance(alias, exp.TableAlias):
            return [normalize_identifier(c.name) for c in alias.columns]
        return []

    # --------------- statements ---------------
    def insert_target(self, insert: exp.Insert) -> Tuple[Optional[exp.Table], List[str]]:
        target = insert.this
        columns: List[str] = []
        if isinstance(target, exp.Schema):
            columns = [normalize_identifier(c.name) for c in target.expressions]
            target = target.this
        columns.extend(normalize_identifier(c.name) for c in insert.args.get("columns") or [])
        return (target if isinstance(target, exp.Table) else None), columns

    def insert_directory(self, insert: exp.Insert) -> Optional[str]:
        target = insert.this
        if isinstance(target, exp.Directory):
            location = target.this
            return location.name if isinstance(location, exp.Expression) else str(location)
        return None

    def is_overwrite(self, insert: exp.Insert) -> bool:
        return bool(insert.args.get("overwrite"))

    def has_dynamic_partitions(self, insert: exp.Insert) -> bool:
        partition = insert.find(exp.Partition)
        if partition is None:
            return False
        return any(isinstance(e, exp.Column) for e in partition.expressions)

    def create_kind(self, create: exp.Create) -> str:
        return (create.args.get("kind") or "").upper()

    def create_target(self, create: exp.Create) -> Tuple[exp.Table, List[str]]:
        target = create.this
        columns: List[str] = []
        if isinstance(target, exp.Schema):
            columns = [normalize_identifier(c.name) for c in target.expressions]
            target = target.this
        if not isinstance(target, exp.Table):
            raise PlanShapeError(f"CREATE {self.create_kind(create)} without a table name")
        return target, columns

    def column_definitions(self, create: exp.Create) -> List[str]:
        target = create.this
        if isinstance(target, exp.Schema):
            return [normalize_identifier(c.name) for c in target.expressions if isinstance(c, exp.ColumnDef)]
        return []

    def view_type(self, create: exp.Create) -> ViewType:
        properties = create.args.get("properties")
        global_property = getattr(exp, "GlobalProperty", None)
        temporary = False
        is_global = False
        for prop in properties.expressions if properties is not None else []:
            if isinstance(prop, exp.TemporaryProperty):
                temporary = True
                if str(prop.args.get("this") or "").upper() == "GLOBAL":
                    is_global = True
            elif global_property is not None and isinstance(prop, global_property):
                is_global = True
        if temporary and is_global:
            return ViewType.GLOBAL_TEMPORARY
        if temporary:
            return ViewType.TEMPORARY
        return ViewType.PERSISTED

    def is_replace(self, create: exp.Create) -> bool:
        return bool(create.args.get("replace"))

    def merge_clauses(self, merge: exp.Merge) -> List[exp.When]:
        whens = merge.args.get("whens")
        if whens is not None:
            return [w for w in whens.expressions if isinstance(w, exp.When)]
        return [w for w in merge.expressions if isinstance(w, exp.When)]

    def merge_source(self, merge: exp.Merge) -> exp.Expression:
        using = merge.args.get("using")
        if using is None:
            raise PlanShapeError("MERGE without a USING source")
        return using

    def alter_view(self, statement: exp.Expression) -> Optional[Tuple[str, str]]:
        """(view name, query SQL) of ``ALTER VIEW v AS <query>``, else None."""
        if isinstance(statement, exp.Command) and str(statement.this).upper() == "ALTER":
            text = statement.expression.name if isinstance(statement.expression, exp.Expression) else ""
            match = _ALTER_VIEW_AS.match(text)
            if match:
                return normalize_identifier(match.group("name")), match.group("query")
            return None
        alter = getattr(exp, "Alter", None) or getattr(exp, "AlterTable", None)
        if alter is not None and isinstance(statement, alter):
            if str(statement.args.get("kind") or "").upper() != "VIEW":
                return None
            for action in statement.args.get("actions") or []:
                query = action if self.is_query(action) else action.find(*QUERY_TYPES)
                if query is not None:
                    return self.qualified_name(statement.this), query.sql(dialect=self.dialect)
        return None

    def cache_target(self, cache: exp.Expression) -> Tuple[str, Optional[exp.Expression]]:
        table = cache.this
        if not isinstance(table, exp.Table):
            raise PlanShapeError("CACHE TABLE without a table name")
        return self.qualified_name(table), cache.args.get("expression")

    def qualified_name(self, table: exp.Table) -> str:
        return self.table_identifier(table).qualified_name


_ACCESSORS: Dict[str, SqlglotAccessor] = {}


def get_accessor(engine: str) -> SqlglotAccessor:
    engine = (engine or "spark").lower()
    if engine not in _ACCESSORS:
        _ACCESSORS[engine] = SqlglotAccessor(engine)
    return _ACCESSORS[engine]
