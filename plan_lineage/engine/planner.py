from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import sqlglot
from sqlglot import expressions as exp

from ..core.attribute import Attribute, AttributeSet
from ..core.expressions import (
    Alias,
    Count,
    Expr,
    Function,
    Literal,
    NamedExpression,
    ScalarSubquery,
    WindowExpression,
)
from ..core.plan import (
    Aggregate,
    AlterViewAs,
    Assignment,
    CachedRelation,
    CreateTableAsSelect,
    CreateView,
    CTERelationDef,
    CTERelationRef,
    DeleteAction,
    Expand,
    InsertAction,
    InsertIntoDirectory,
    InsertIntoTable,
    Join,
    JoinType,
    LocalRelation,
    LogicalPlan,
    MergeAction,
    MergeIntoTable,
    OneRowRelation,
    OpaquePlan,
    PhysicalNode,
    Project,
    Relation,
    TableIdentifier,
    Union,
    UpdateAction,
    View,
    Window,
    WithCTE,
    WriteMode,
)
from ..errors import AnalysisError, PlanShapeError
from ..utils import dedupe, normalize_identifier
from .accessor import get_accessor
from .catalog import Catalog, ViewDefinition


@dataclass
class _Source:
    """A FROM item as seen by column resolution."""

    alias: str
    names: Tuple[str, ...]
    output: Tuple[Attribute, ...]
    inferred: bool = False


@dataclass
class _Scope:
    sources: List[_Source] = field(default_factory=list)
    outer: Optional["_Scope"] = None
    using: Set[str] = field(default_factory=set)

    def source(self, qualifier: str) -> Optional[_Source]:
        for source in self.sources:
            if qualifier in source.names:
                return source
        return None

    def find(self, name: str, qualifier: Optional[str]) -> Optional[Attribute]:
        scope: Optional[_Scope] = self
        while scope is not None:
            found = scope._lookup(name, qualifier)
            if found is not None:
                return found
            scope = scope.outer
        return None

    def _lookup(self, name: str, qualifier: Optional[str]) -> Optional[Attribute]:
        if qualifier:
            source = self.source(qualifier)
            if source is None:
                return None
            return next((a for a in source.output if a.name == name), None)
        matches = [a for s in self.sources for a in s.output if a.name == name]
        if len(matches) > 1 and name not in self.using:
            raise AnalysisError(f"column {name} is ambiguous")
        return matches[0] if matches else None


def _substitute(expr: Expr, mapping: Dict[int, Attribute]) -> Expr:
    if isinstance(expr, Attribute):
        return mapping.get(expr.expr_id, expr)
    if not expr.children:
        return expr
    return expr.with_new_children([_substitute(c, mapping) for c in expr.children])


class SqlglotPlanner:
    """Resolves sqlglot statements into logical plans.

    Every column a statement reads or produces gets an attribute with a fresh
    ``expr_id``; the same column keeps its attribute wherever it is referenced.
    Tables missing from the catalog get their columns inferred from the
    references the statement makes to them.
    """

    def __init__(self, catalog: Optional[Catalog] = None, engine: str = "spark", logger: Optional[logging.Logger] = None):
        self.catalog = catalog if catalog is not None else Catalog()
        self.engine = engine.lower()
        self.accessor = get_accessor(self.engine)
        self.logger = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self._cte_ids = itertools.count(1)
        self._ctes: List[Dict[str, CTERelationDef]] = []
        self._roots: List[exp.Expression] = []
        self._expanding: List[str] = []

    # --------------- public API ---------------
    def parse(self, sql_text: str) -> List[exp.Expression]:
        return [s for s in sqlglot.parse(sql_text, read=self.engine) if s is not None]

    def plan(self, statement: exp.Expression) -> LogicalPlan:
        self._roots.append(statement)
        try:
            return self._plan_statement(statement)
        finally:
            self._roots.pop()

    def plan_sql(self, sql: str) -> LogicalPlan:
        return self.plan(sqlglot.parse_one(sql, read=self.engine))

    # --------------- statements ---------------
    def _plan_statement(self, statement: exp.Expression) -> LogicalPlan:
        altered = self.accessor.alter_view(statement)
        if altered is not None:
            name, query_sql = altered
            return AlterViewAs(TableIdentifier.parse(name), self._plan_detached(query_sql))
        if self.accessor.is_query(statement) or isinstance(statement, exp.Subquery):
            return self._plan_query(statement, None)
        if isinstance(statement, exp.Insert):
            return self._plan_insert(statement)
        if isinstance(statement, exp.Create):
            return self._plan_create(statement)
        if isinstance(statement, exp.Merge):
            return self._plan_merge(statement)
        if isinstance(statement, exp.Cache):
            return OpaquePlan("CacheTableAsSelect")
        self.logger.debug(f"{type(statement).__name__} statement has no column data flow")
        return OpaquePlan(type(statement).__name__)

    def _plan_insert(self, insert: exp.Insert) -> LogicalPlan:
        query_node = insert.expression
        if query_node is None:
            raise PlanShapeError("INSERT without a query")
        query = self._plan_with(insert, lambda: self._plan_insert_query(query_node))

        location = self.accessor.insert_directory(insert)
        if location is not None:
            return InsertIntoDirectory(location, query, overwrite=self.accessor.is_overwrite(insert))

        table, columns = self.accessor.insert_target(insert)
        if table is None:
            return InsertIntoTable(None, query)
        target = self.accessor.table_identifier(table)
        names = columns or self.catalog.columns(target.qualified_name) or [a.name for a in query.output]
        mode = WriteMode.APPEND
        if self.accessor.is_overwrite(insert):
            mode = WriteMode.OVERWRITE_DYNAMIC if self.accessor.has_dynamic_partitions(insert) else WriteMode.OVERWRITE
        return InsertIntoTable(target, self._align(query, names, target.qualified_name), mode)

    def _plan_insert_query(self, node: exp.Expression) -> LogicalPlan:
        if isinstance(node, exp.Values):
            return self._plan_values(node, node)[0]
        return self._plan_query(node, None)

    def _align(self, query: LogicalPlan, names: Sequence[str], target: str) -> LogicalPlan:
        """Rename query columns positionally to the columns of the insert target."""
        output = list(query.output)
        if len(output) > len(names):
            raise AnalysisError(f"{target} has {len(names)} columns but the query produces {len(output)}")
        if all(a.name == n for a, n in zip(output, names)):
            return query
        aligned = tuple(a if a.name == n else Alias(a, n, next(self._ids)) for a, n in zip(output, names))
        return Project(aligned, query)

    def _plan_create(self, create: exp.Create) -> LogicalPlan:
        kind = self.accessor.create_kind(create)
        query_node = create.expression
        has_query = self.accessor.is_query(query_node) or isinstance(query_node, exp.Subquery)
        if kind == "VIEW" and has_query:
            table, columns = self.accessor.create_target(create)
            query = self._plan_with(create, lambda: self._plan_query(query_node, None))
            return CreateView(
                self.accessor.table_identifier(table),
                query,
                self.accessor.view_type(create),
                tuple(columns),
            )
        if kind == "TABLE" and has_query:
            table, _ = self.accessor.create_target(create)
            query = self._plan_with(create, lambda: self._plan_query(query_node, None))
            return CreateTableAsSelect(
                self.accessor.table_identifier(table), query, replace_table=self.accessor.is_replace(create)
            )
        return OpaquePlan(f"Create{kind.title()}")

    # --------------- merge ---------------
    def _plan_merge(self, merge: exp.Merge) -> LogicalPlan:
        clauses = self.accessor.merge_clauses(merge)
        target_node = merge.this
        if not isinstance(target_node, exp.Table):
            raise PlanShapeError("MERGE target is not a table")
        source_node = self.accessor.merge_source(merge)

        target_columns, source_columns = self._merge_column_hints(clauses)
        target_plan, target = self._plan_relation_term(target_node, target_columns)
        source_plan, source = self._plan_relation_term(source_node, source_columns)

        both = _Scope([target, source])
        source_only = _Scope([source])
        matched: List[MergeAction] = []
        not_matched: List[MergeAction] = []
        for when in clauses:
            then = when.args.get("then")
            if isinstance(then, exp.Update):
                action: MergeAction = UpdateAction(self._update_assignments(then, both, target, source))
            elif isinstance(then, exp.Insert):
                action = InsertAction(self._insert_assignments(then, source_only, target, source))
            else:
                action = DeleteAction()
            (matched if when.args.get("matched") else not_matched).append(action)
        return MergeIntoTable(target_plan, source_plan, tuple(matched), tuple(not_matched))

    def _merge_column_hints(self, clauses: Sequence[exp.When]) -> Tuple[List[str], List[str]]:
        """Unqualified column names a MERGE assigns to (target) and reads (source)."""
        target: List[str] = []
        source: List[str] = []
        for when in clauses:
            then = when.args.get("then")
            if isinstance(then, exp.Update):
                for e in then.expressions:
                    if isinstance(e, exp.EQ):
                        target.append(normalize_identifier(e.left.name))
                        source.extend(self._unqualified_columns(e.right))
            elif isinstance(then, exp.Insert):
                if isinstance(then.this, exp.Tuple):
                    target.extend(normalize_identifier(c.name) for c in then.this.expressions)
                if isinstance(then.expression, exp.Tuple):
                    source.extend(self._unqualified_columns(then.expression))
        return dedupe(target), dedupe(source)

    @staticmethod
    def _unqualified_columns(node: exp.Expression) -> List[str]:
        return [normalize_identifier(c.name) for c in node.find_all(exp.Column, bfs=False) if not c.table]

    def _update_assignments(self, update: exp.Update, scope: _Scope, target: _Source, source: _Source) -> Tuple[Assignment, ...]:
        assignments: List[Assignment] = []
        for e in update.expressions:
            if isinstance(e, exp.Star):
                assignments.extend(self._star_assignments(target, source))
                continue
            if not isinstance(e, exp.EQ):
                raise PlanShapeError(f"unexpected MERGE UPDATE assignment {e.sql(dialect=self.engine)}")
            key = self._target_column(e.left, target)
            assignments.append(Assignment(key, self._expr(e.right, scope)))
        return tuple(assignments)

    def _insert_assignments(self, insert: exp.Insert, scope: _Scope, target: _Source, source: _Source) -> Tuple[Assignment, ...]:
        if isinstance(insert.this, exp.Star):
            return tuple(self._star_assignments(target, source))
        if isinstance(insert.this, exp.Tuple):
            keys = [self._target_column(c, target) for c in insert.this.expressions]
        else:
            keys = list(target.output)
        values = insert.expression.expressions if isinstance(insert.expression, exp.Tuple) else []
        if len(keys) != len(values):
            raise AnalysisError(f"MERGE INSERT lists {len(keys)} columns but {len(values)} values")
        return tuple(Assignment(k, self._expr(v, scope)) for k, v in zip(keys, values))

    @staticmethod
    def _target_column(column: exp.Expression, target: _Source) -> Attribute:
        name = normalize_identifier(column.name)
        for attr in target.output:
            if attr.name == name:
                return attr
        raise AnalysisError(f"{target.alias} has no column {name}")

    @staticmethod
    def _star_assignments(target: _Source, source: _Source) -> List[Assignment]:
        by_name = {a.name: a for a in source.output}
        missing = [a.name for a in target.output if a.name not in by_name]
        if missing:
            raise AnalysisError(f"MERGE source does not provide {', '.join(missing)}")
        return [Assignment(a, by_name[a.name]) for a in target.output]

    def _plan_relation_term(self, node: exp.Expression, hints: Sequence[str]) -> Tuple[LogicalPlan, _Source]:
        if self._is_unknown_table(node):
            names = self._source_names(node)
            columns = dedupe(self._qualified_references(names) + list(hints))
            return self._inferred_relation(node, columns)
        return self._plan_source(node, None)

    # --------------- queries ---------------
    def _plan_detached(self, sql: str) -> LogicalPlan:
        """Plan a stored query (view body, cached query) outside the current statement's CTEs."""
        node = sqlglot.parse_one(sql, read=self.engine)
        saved, self._ctes = self._ctes, []
        self._roots.append(node)
        try:
            return self._plan_query(node, None)
        finally:
            self._roots.pop()
            self._ctes = saved

    def _plan_with(self, node: exp.Expression, build: Callable[[], LogicalPlan]) -> LogicalPlan:
        with_ = self.accessor.with_clause(node)
        if with_ is None:
            return build()
        if with_.args.get("recursive"):
            raise AnalysisError("recursive CTEs are not supported")
        scope: Dict[str, CTERelationDef] = {}
        self._ctes.append(scope)
        try:
            defs: List[CTERelationDef] = []
            for cte in with_.expressions:
                child = self._rename_columns(self._plan_query(cte.this, None), self.accessor.alias_columns(cte))
                cte_def = CTERelationDef(next(self._cte_ids), child)
                scope[normalize_identifier(cte.alias)] = cte_def
                defs.append(cte_def)
            return WithCTE(build(), tuple(defs))
        finally:
            self._ctes.pop()

    def _plan_query(self, node: exp.Expression, outer: Optional[_Scope]) -> LogicalPlan:
        if isinstance(node, exp.Subquery):
            return self._plan_modifiers(node, self._plan_query(node.this, outer))
        if not self.accessor.is_query(node):
            raise AnalysisError(f"expected a query, got {node.key}")
        return self._plan_with(node, lambda: self._plan_query_body(node, outer))

    def _plan_query_body(self, node: exp.Expression, outer: Optional[_Scope]) -> LogicalPlan:
        if isinstance(node, exp.Select):
            return self._plan_select(node, outer)

        left = self._plan_query(node.this, outer)
        right = self._plan_query(node.expression, outer)
        if len(left.output) != len(right.output):
            raise AnalysisError(
                f"{node.key.upper()} branches have {len(left.output)} and {len(right.output)} columns"
            )
        distinct = node.args.get("distinct") is not False
        if isinstance(node, (exp.Intersect, exp.Except)):
            join_type = JoinType.LEFT_SEMI if isinstance(node, exp.Intersect) else JoinType.LEFT_ANTI
            plan: LogicalPlan = Join(left, right, join_type)
        else:
            output = tuple(Attribute(next(self._ids), a.name) for a in left.output)
            plan = Union((left, right), output)
        if distinct:
            plan = OpaquePlan("Distinct", (plan,), tuple(plan.output))
        return self._plan_modifiers(node, plan)

    @staticmethod
    def _plan_modifiers(node: exp.Expression, plan: LogicalPlan) -> LogicalPlan:
        if node.args.get("order"):
            plan = OpaquePlan("Sort", (plan,), tuple(plan.output))
        if node.args.get("limit"):
            plan = OpaquePlan("GlobalLimit", (plan,), tuple(plan.output))
        return plan

    def _plan_select(self, select: exp.Select, outer: Optional[_Scope]) -> LogicalPlan:
        scope = _Scope(outer=outer)
        plan = self._plan_from(select, scope)
        if select.args.get("where"):
            plan = OpaquePlan("Filter", (plan,), tuple(plan.output))

        if self._is_aggregate(select):
            plan = self._plan_aggregate(select, scope, plan)
            if select.args.get("having"):
                plan = OpaquePlan("Filter", (plan,), tuple(plan.output))
        else:
            windows: List[Alias] = []
            named = tuple(self._named_list(select, scope, windows))
            if windows:
                plan = Window(tuple(windows), plan)
            plan = Project(named, plan)

        if select.args.get("distinct"):
            plan = OpaquePlan("Distinct", (plan,), tuple(plan.output))
        return self._plan_modifiers(select, plan)

    # --------------- FROM ---------------
    def _plan_from(self, select: exp.Select, scope: _Scope) -> LogicalPlan:
        term = self.accessor.from_term(select)
        joins = self.accessor.joins(select)
        if term is None:
            if joins:
                raise PlanShapeError("JOIN without FROM")
            return OneRowRelation()

        terms = [term] + [j.this for j in joins]
        planned: List[Optional[Tuple[LogicalPlan, _Source]]] = [None] * len(terms)
        unknown = [i for i, t in enumerate(terms) if self._is_unknown_table(t)]
        for i, t in enumerate(terms):
            if i not in unknown:
                planned[i] = self._plan_source(t, scope.outer)

        # columns of uncatalogued tables: everything that does not resolve elsewhere
        provided = {a.name for p in planned if p is not None for a in p[1].output}
        provided.update(normalize_identifier(p.alias) for p in select.expressions if isinstance(p, exp.Alias))
        for i in unknown:
            names = self._source_names(terms[i])
            columns = self._qualified_references(names)
            if len(unknown) == 1:
                columns += [c for c in self._local_unqualified(select) if c not in provided]
            planned[i] = self._inferred_relation(terms[i], dedupe(columns))

        plan, source = planned[0]
        scope.sources.append(source)
        for join, (right, right_source) in zip(joins, planned[1:]):
            join_type = self.accessor.join_type(join)
            plan = Join(plan, right, join_type)
            if join_type.exposes_right:
                scope.sources.append(right_source)
            scope.using.update(self.accessor.using_columns(join))
        return plan

    def _plan_source(self, term: exp.Expression, outer: Optional[_Scope]) -> Tuple[LogicalPlan, _Source]:
        if isinstance(term, exp.Table):
            return self._plan_table(term)
        if isinstance(term, exp.Values):
            return self._plan_values(term, term)
        if isinstance(term, exp.Subquery):
            if isinstance(term.this, exp.Values):
                return self._plan_values(term.this, term)
            child = self._rename_columns(self._plan_query(term.this, outer), self.accessor.alias_columns(term))
            alias = self.accessor.alias_of(term) or "__auto_generated_subquery_name"
            plan = OpaquePlan("SubqueryAlias", (child,), tuple(child.output))
            return plan, _Source(alias, (alias,), tuple(child.output))
        raise AnalysisError(f"unsupported FROM item {term.key}")

    def _plan_values(self, values: exp.Values, alias_node: exp.Expression) -> Tuple[LogicalPlan, _Source]:
        rows = [row.expressions if isinstance(row, exp.Tuple) else [row] for row in values.expressions]
        width = len(rows[0]) if rows else 0
        names = self.accessor.alias_columns(alias_node) or [f"col{i + 1}" for i in range(width)]
        if len(names) != width:
            raise AnalysisError(f"VALUES rows have {width} columns but {len(names)} names are given")
        output = tuple(Attribute(next(self._ids), n) for n in names)
        plan = LocalRelation(output, tuple(tuple(e.sql(dialect=self.engine) for e in row) for row in rows))
        alias = self.accessor.alias_of(alias_node) or "__values"
        return plan, _Source(alias, (alias,), output)

    def _plan_table(self, table: exp.Table) -> Tuple[LogicalPlan, _Source]:
        ident = self.accessor.table_identifier(table)
        name = ident.qualified_name
        cte_def = None if ident.database else self._lookup_cte(name)
        if cte_def is not None:
            plan: LogicalPlan = CTERelationRef(cte_def.cte_id, self._fresh(cte_def.output))
        elif self.catalog.cached_query(name) is not None:
            plan = self._plan_cached(name, self.catalog.cached_query(name))
        elif self.catalog.view(name) is not None:
            plan = self._plan_view(ident, self.catalog.view(name))
        else:
            columns = self.catalog.columns(name)
            plan = Relation(tuple(Attribute(next(self._ids), c) for c in columns), ident)
        plan = self._rename_columns(plan, self.accessor.alias_columns(table))
        names = self._source_names(table)
        return plan, _Source(names[0], names, tuple(plan.output))

    def _plan_view(self, ident: TableIdentifier, view: ViewDefinition) -> LogicalPlan:
        name = ident.qualified_name
        if name in self._expanding:
            raise AnalysisError(f"recursive view {name}")
        self._expanding.append(name)
        try:
            body = self._plan_detached(view.sql)
        finally:
            self._expanding.pop()
        names = view.columns or [a.name for a in body.output]
        if len(names) != len(body.output):
            raise AnalysisError(f"view {name} declares {len(names)} columns but its query produces {len(body.output)}")
        return View(ident, tuple(Attribute(next(self._ids), n) for n in names), body, is_temp_view=view.temporary)

    def _plan_cached(self, name: str, sql: str) -> LogicalPlan:
        if name in self._expanding:
            raise AnalysisError(f"recursive cached query {name}")
        self._expanding.append(name)
        try:
            logical = self._plan_detached(sql)
        finally:
            self._expanding.pop()
        physical = PhysicalNode(
            "InMemoryTableScan",
            (PhysicalNode("WholeStageCodegen", logical_link=logical),),
        )
        return CachedRelation(self._fresh(logical.output), physical, name)

    def _inferred_relation(self, table: exp.Table, columns: List[str]) -> Tuple[LogicalPlan, _Source]:
        ident = self.accessor.table_identifier(table)
        self.logger.debug(f"Table {ident} is not in the catalog; inferred columns {columns}")
        output = tuple(Attribute(next(self._ids), c) for c in columns)
        names = self._source_names(table)
        return Relation(output, ident), _Source(names[0], names, output, inferred=True)

    def _is_unknown_table(self, term: exp.Expression) -> bool:
        if not isinstance(term, exp.Table):
            return False
        ident = self.accessor.table_identifier(term)
        name = ident.qualified_name
        if not ident.database and self._lookup_cte(name) is not None:
            return False
        return not (
            self.catalog.has_table(name)
            or self.catalog.view(name) is not None
            or self.catalog.cached_query(name) is not None
        )

    def _lookup_cte(self, name: str) -> Optional[CTERelationDef]:
        for scope in reversed(self._ctes):
            if name in scope:
                return scope[name]
        return None

    def _source_names(self, term: exp.Expression) -> Tuple[str, ...]:
        alias = self.accessor.alias_of(term)
        if alias:
            return (alias,)
        if isinstance(term, exp.Table):
            ident = self.accessor.table_identifier(term)
            return tuple(dedupe([ident.qualified_name, ident.name]))
        return ("__auto_generated_subquery_name",)

    def _qualified_references(self, names: Sequence[str]) -> List[str]:
        root = self._roots[-1]
        return [
            normalize_identifier(c.name)
            for c in root.find_all(exp.Column, bfs=False)
            if self._qualifier(c) in names and not isinstance(c.this, exp.Star)
        ]

    @staticmethod
    def _local_unqualified(select: exp.Select) -> List[str]:
        return [
            normalize_identifier(c.name)
            for c in select.find_all(exp.Column, bfs=False)
            if not c.table and not isinstance(c.this, exp.Star) and c.find_ancestor(exp.Select) is select
        ]

    def _fresh(self, attrs: Sequence[Attribute]) -> Tuple[Attribute, ...]:
        return tuple(Attribute(next(self._ids), a.name) for a in attrs)

    def _rename_columns(self, plan: LogicalPlan, names: Sequence[str]) -> LogicalPlan:
        if not names:
            return plan
        output = list(plan.output)
        if len(names) != len(output):
            raise AnalysisError(f"{len(names)} column aliases given for {len(output)} columns")
        return Project(tuple(Alias(a, n, next(self._ids)) for a, n in zip(output, names)), plan)

    # --------------- projections ---------------
    def _is_aggregate(self, select: exp.Select) -> bool:
        if select.args.get("group"):
            return True
        return any(
            agg.find_ancestor(exp.Window, exp.Select) is select
            for proj in select.expressions
            for agg in proj.find_all(exp.AggFunc)
        )

    def _has_windows(self, select: exp.Select) -> bool:
        return any(
            w.find_ancestor(exp.Select) is select
            for proj in select.expressions
            for w in proj.find_all(exp.Window)
        )

    def _plan_aggregate(self, select: exp.Select, scope: _Scope, child: LogicalPlan) -> LogicalPlan:
        if self._has_windows(select):
            raise AnalysisError("window functions over aggregated queries are not supported")
        sets = self.accessor.grouping_sets(select)
        if sets is not None:
            return self._plan_grouping_sets(select, scope, child, sets)
        grouping = tuple(self._grouping_expr(g, select, scope) for g in self.accessor.group_expressions(select))
        return Aggregate(grouping, tuple(self._named_list(select, scope, None)), child)

    def _plan_grouping_sets(
        self, select: exp.Select, scope: _Scope, child: LogicalPlan, sets: List[List[exp.Expression]]
    ) -> LogicalPlan:
        resolved: List[AttributeSet] = []
        for members in sets:
            attrs = [self._grouping_expr(g, select, scope) for g in members]
            if not all(isinstance(a, Attribute) for a in attrs):
                raise AnalysisError("grouping sets support column references only")
            resolved.append(AttributeSet(attrs))
        columns = list(AttributeSet(a for s in resolved for a in s))
        grouped = self._fresh(columns)
        grouping_id = Attribute(next(self._ids), "spark_grouping_id")

        projections = []
        for members in resolved:
            mask = sum(1 << (len(columns) - 1 - i) for i, c in enumerate(columns) if c not in members)
            projections.append(
                tuple(child.output)
                + tuple(c if c in members else Literal("NULL") for c in columns)
                + (Literal(str(mask)),)
            )
        expand = Expand(tuple(projections), tuple(child.output) + grouped + (grouping_id,), child)
        mapping = {c.expr_id: g for c, g in zip(columns, grouped)}
        aggregates = tuple(_substitute(e, mapping) for e in self._named_list(select, scope, None))
        return Aggregate(grouped + (grouping_id,), aggregates, expand)

    def _grouping_expr(self, node: exp.Expression, select: exp.Select, scope: _Scope) -> Expr:
        # GROUP BY 1 and GROUP BY <select alias>
        if isinstance(node, exp.Literal) and node.is_int:
            position = int(node.name) - 1
            if not 0 <= position < len(select.expressions):
                raise AnalysisError(f"GROUP BY position {position + 1} is not in the select list")
            proj = select.expressions[position]
            return self._expr(proj.this if isinstance(proj, exp.Alias) else proj, scope)
        if isinstance(node, exp.Column) and not node.table:
            name = normalize_identifier(node.name)
            if scope.find(name, None) is None:
                for proj in select.expressions:
                    if isinstance(proj, exp.Alias) and normalize_identifier(proj.alias) == name:
                        return self._expr(proj.this, scope)
        return self._expr(node, scope)

    def _named_list(self, select: exp.Select, scope: _Scope, windows: Optional[List[Alias]]) -> List[NamedExpression]:
        named: List[NamedExpression] = []
        for proj in select.expressions:
            if isinstance(proj, exp.Star):
                named.extend(self._expand_star(scope, None))
            elif isinstance(proj, exp.Column) and isinstance(proj.this, exp.Star):
                named.extend(self._expand_star(scope, self._qualifier(proj)))
            elif isinstance(proj, exp.Alias):
                expr = self._expr(proj.this, scope, windows)
                named.append(Alias(expr, normalize_identifier(proj.alias), next(self._ids)))
            else:
                expr = self._expr(proj, scope, windows)
                if isinstance(expr, Attribute):
                    named.append(expr)
                else:
                    named.append(Alias(expr, proj.sql(dialect=self.engine), next(self._ids)))
        return named

    @staticmethod
    def _expand_star(scope: _Scope, qualifier: Optional[str]) -> List[Attribute]:
        if qualifier is None:
            sources = scope.sources
        else:
            source = scope.source(qualifier)
            if source is None:
                raise AnalysisError(f"cannot resolve {qualifier}.*")
            sources = [source]
        attrs: List[Attribute] = []
        for source in sources:
            if source.inferred:
                raise AnalysisError(f"cannot expand * over {source.alias}: table is not in the catalog")
            attrs.extend(source.output)
        return attrs

    # --------------- expressions ---------------
    @staticmethod
    def _qualifier(column: exp.Column) -> Optional[str]:
        parts = [normalize_identifier(p) for p in (column.catalog, column.db, column.table) if p]
        return ".".join(parts) or None

    def _column(self, column: exp.Column, scope: _Scope) -> Attribute:
        name = normalize_identifier(column.name)
        qualifier = self._qualifier(column)
        found = scope.find(name, qualifier)
        if found is None and qualifier and "." not in qualifier:
            # struct field access: s.field reads column s
            found = scope.find(qualifier, None)
        if found is None:
            raise AnalysisError(f"cannot resolve column {qualifier + '.' if qualifier else ''}{name}")
        return found

    def _expr(self, node: exp.Expression, scope: _Scope, windows: Optional[List[Alias]] = None) -> Expr:
        if isinstance(node, exp.Column):
            if isinstance(node.this, exp.Star):
                raise AnalysisError(f"{node.sql(dialect=self.engine)} is only allowed in the select list")
            return self._column(node, scope)
        if isinstance(node, (exp.Literal, exp.Null, exp.Boolean, exp.Star)):
            return Literal(node.sql(dialect=self.engine))
        if isinstance(node, exp.Subquery) or self.accessor.is_query(node):
            return ScalarSubquery(self._plan_query(node, scope))
        if isinstance(node, exp.Window):
            if windows is None:
                raise AnalysisError("window functions are not allowed here")
            return self._window(node, scope, windows)
        if isinstance(node, exp.Count):
            arg = node.this
            distinct = isinstance(arg, exp.Distinct)
            if distinct:
                args = list(arg.expressions)
            elif arg is None or isinstance(arg, exp.Star):
                args = []
            else:
                args = [arg]
            return Count(tuple(self._expr(a, scope, windows) for a in args), distinct)
        if isinstance(node, (exp.Alias, exp.Paren)):
            return self._expr(node.this, scope, windows)
        if isinstance(node, exp.Lambda):
            # lambda variables are not columns
            return Literal(node.sql(dialect=self.engine))
        return Function(node.key, tuple(self._expr(c, scope, windows) for c in node.iter_expressions()))

    def _window(self, node: exp.Window, scope: _Scope, windows: List[Alias]) -> Attribute:
        function = self._expr(node.this, scope)
        partition = tuple(self._expr(p, scope) for p in node.args.get("partition_by") or [])
        order = node.args.get("order")
        ordering = [o.this if isinstance(o, exp.Ordered) else o for o in (order.expressions if order else [])]
        window = WindowExpression(function, partition, tuple(self._expr(o, scope) for o in ordering))
        alias = Alias(window, f"_we{len(windows)}", next(self._ids))
        windows.append(alias)
        return alias.to_attribute()
