from __future__ import annotations

import logging
from functools import reduce
from typing import Callable, Iterable, List, Optional, Sequence

from ..config import LineageConfig
from ..errors import PlanDepthError, PlanShapeError
from .attribute import (
    AGGREGATE_COUNT_COLUMN_IDENTIFIER,
    LOCAL_TABLE_IDENTIFIER,
    SUBQUERY_COLUMN_IDENTIFIER,
    Attribute,
    AttributeMap,
    AttributeSet,
)
from .cte import CTEInliner
from .expressions import (
    Alias,
    NamedExpression,
    contains_count_all,
    references_of,
    subquery_plans,
)
from .lineage_map import (
    join_columns_lineage,
    join_relation_column_lineage,
    merge_columns_lineage,
    merge_relation_column_lineage,
)
from .plan import (
    Aggregate,
    AlterViewAs,
    CachedRelation,
    CommandResult,
    CreateTableAsSelect,
    CreateView,
    Expand,
    InsertAction,
    InsertIntoDirectory,
    InsertIntoTable,
    Join,
    LocalRelation,
    LogicalPlan,
    MergeIntoTable,
    OneRowRelation,
    PhysicalNode,
    Project,
    Relation,
    SaveIntoDataSource,
    Union,
    UpdateAction,
    View,
    ViewType,
    Window,
    WithCTE,
)


def find_logical_link(nodes: Sequence[PhysicalNode]) -> Optional[LogicalPlan]:
    """Breadth-first search for the first physical node that remembers its logical plan."""
    level = list(nodes)
    while level:
        for node in level:
            if node.logical_link is not None:
                return node.logical_link
        level = [child for node in level for child in node.children]
    return None


def _rename(lineage: AttributeMap, rename: Callable[[Attribute], str]) -> AttributeMap:
    return {key.with_name(rename(key)): attrs for key, attrs in lineage.items()}


class LineageExtractor:
    """Column lineage of a resolved logical plan.

    ``extract(plan, parent)`` walks the plan top-down carrying ``parent``, the
    requests of the ancestors (output attribute -> attributes still to be
    resolved), and returns the resolved map bottom-up. The root is called with
    an empty request, which means "everything this plan outputs".

    Operator rules:
    1. Write commands recurse into their query and rename every resolved key to
       ``<target>.<column>``.
    2. Project / Aggregate / Expand / Window turn their expression lists into a
       request for their child; aliases without column references pull lineage
       out of embedded scalar subqueries, tagged with the subquery marker.
    3. Joins hand the same request to both sides (left side only for semi/anti).
    4. Unions resolve each branch on its own and zip the results positionally.
    5. Leaves qualify what they provide with their table name; views and cached
       relations resolve their own plan first and map it onto their output.
    6. Anything else passes the request through to its children unchanged.
    """

    def __init__(self, config: Optional[LineageConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or LineageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.cte_inliner = CTEInliner(self.logger)

    # --------------- public API ---------------
    def extract(self, plan: LogicalPlan, parent: Optional[AttributeMap] = None) -> AttributeMap:
        return self._extract(plan, dict(parent or {}), 0)

    # --------------- traversal ---------------
    def _extract(self, plan: LogicalPlan, parent: AttributeMap, depth: int) -> AttributeMap:
        if depth > self.config.max_plan_depth:
            raise PlanDepthError(depth, self.config.max_plan_depth)
        depth += 1

        # commands
        if isinstance(plan, CommandResult):
            return self._extract(plan.command_plan, parent, depth)

        if isinstance(plan, AlterViewAs):
            view = plan.name.qualified_name
            return _rename(self._extract(plan.query, parent, depth), lambda k: f"{view}.{k.name}")

        if isinstance(plan, CreateView):
            return self._extract_create_view(plan, parent, depth)

        if isinstance(plan, CreateTableAsSelect):
            table = plan.table
            return _rename(
                self._extract(plan.query, parent, depth),
                lambda k: ".".join(p for p in (table.catalog, table.database, table.name, k.name) if p),
            )

        if isinstance(plan, InsertIntoTable):
            if plan.table is None:
                raise PlanShapeError(f"{plan.node_name} ({plan.mode.value}) has no catalog table")
            table = plan.table.qualified_name
            return _rename(self._extract(plan.query, parent, depth), lambda k: f"{table}.{k.name}")

        if isinstance(plan, InsertIntoDirectory):
            if not plan.location:
                raise PlanShapeError(f"{plan.node_name} has no storage location")
            location = plan.location
            return _rename(self._extract(plan.query, parent, depth), lambda k: f"`{location}`.{k.name}")

        if isinstance(plan, SaveIntoDataSource):
            return self._extract(plan.query, parent, depth)

        if isinstance(plan, MergeIntoTable):
            return self._extract_merge(plan, parent, depth)

        if isinstance(plan, WithCTE):
            return self._extract(self.cte_inliner.inline(plan), parent, depth)

        # queries
        if isinstance(plan, Project):
            request = join_columns_lineage(parent, self._select_column_lineage(plan.project_list, depth))
            return self._children_lineage(plan, request, depth)

        if isinstance(plan, Aggregate):
            request = join_columns_lineage(parent, self._select_column_lineage(plan.aggregate_expressions, depth))
            return self._children_lineage(plan, request, depth)

        if isinstance(plan, Expand):
            columns = list(zip(*plan.projections))
            expand_lineage: AttributeMap = {
                attr: AttributeSet(a for expr in column for a in references_of(expr))
                for attr, column in zip(plan.output, columns)
            }
            return self._children_lineage(plan, join_columns_lineage(parent, expand_lineage), depth)

        if isinstance(plan, Window):
            return self._children_lineage(plan, self._window_request(plan, parent), depth)

        if isinstance(plan, Join):
            if not plan.join_type.exposes_right:
                return self._extract(plan.left, parent, depth)
            return self._children_lineage(plan, parent, depth)

        if isinstance(plan, Union):
            return join_columns_lineage(parent, self._union_lineage(plan, depth))

        # leaves
        if isinstance(plan, Relation):
            if plan.table is None:
                return join_relation_column_lineage(parent, plan.output, [LOCAL_TABLE_IDENTIFIER])
            return join_relation_column_lineage(parent, plan.output, [plan.table.qualified_name])

        if isinstance(plan, LocalRelation):
            return join_relation_column_lineage(parent, plan.output, [LOCAL_TABLE_IDENTIFIER])

        if isinstance(plan, OneRowRelation):
            return {
                key: AttributeSet(
                    a.with_qualifier(a.qualifier[:-1]) if a.is_subquery_marked else a for a in attrs
                )
                for key, attrs in parent.items()
            }

        if isinstance(plan, View):
            if not plan.is_temp_view and self.config.skip_parsing_permanent_views:
                return join_relation_column_lineage(parent, plan.output, [plan.desc.qualified_name])
            view_lineage = self._extract(plan.child, {}, depth)
            return merge_relation_column_lineage(parent, plan.output, view_lineage)

        if isinstance(plan, CachedRelation):
            cached_logical = find_logical_link([plan.cached_plan])
            if cached_logical is not None:
                cached_lineage = self._extract(cached_logical, {}, depth)
                return merge_relation_column_lineage(parent, plan.output, cached_lineage)
            qualifier = [plan.table_name] if plan.table_name else []
            return join_relation_column_lineage(parent, plan.output, qualifier)

        # unmodelled operators
        if not plan.children:
            return {}
        self.logger.debug(f"Passing lineage request through unmodelled operator {plan.node_name}")
        return self._children_lineage(plan, parent, depth)

    # --------------- helpers ---------------
    def _children_lineage(self, plan: LogicalPlan, request: AttributeMap, depth: int) -> AttributeMap:
        return self._merge_all(self._extract(child, request, depth) for child in plan.children)

    @staticmethod
    def _merge_all(lineages: Iterable[AttributeMap]) -> AttributeMap:
        return reduce(merge_columns_lineage, lineages, {})

    def _select_column_lineage(self, named: Sequence[NamedExpression], depth: int) -> AttributeMap:
        lineage: AttributeMap = {}
        for expr in named:
            if not isinstance(expr, Alias):
                lineage[expr] = AttributeSet([expr])
                continue
            references = references_of(expr.child)
            if not references:
                # e.g. (SELECT max(x) FROM t) AS m: the lineage lives inside the subquery plan
                nested = self._merge_all(self._extract(p, {}, depth) for p in subquery_plans(expr.child))
                references = AttributeSet(
                    a.with_qualifier(a.qualifier + (SUBQUERY_COLUMN_IDENTIFIER,))
                    for attrs in nested.values()
                    for a in attrs
                )
            attr = expr.to_attribute()
            if contains_count_all(expr.child):
                references = references | [attr.with_name(AGGREGATE_COUNT_COLUMN_IDENTIFIER)]
            lineage[attr] = references
        return lineage

    def _window_request(self, plan: Window, parent: AttributeMap) -> AttributeMap:
        window_lineage: AttributeMap = {
            e.to_attribute(): references_of(e.child) for e in plan.window_expressions
        }
        if not parent:
            request: AttributeMap = {attr: AttributeSet([attr]) for attr in plan.child.output}
            request.update(window_lineage)
            return request
        window_by_id = {attr.expr_id: attrs for attr, attrs in window_lineage.items()}
        request = {}
        for key, attrs in parent.items():
            if key.expr_id in window_by_id:
                request[key] = window_by_id[key.expr_id]
            else:
                resolved: List[Attribute] = []
                for attr in attrs:
                    resolved.extend(window_by_id.get(attr.expr_id, [attr]))
                request[key] = AttributeSet(resolved)
        return request

    def _union_lineage(self, plan: Union, depth: int) -> AttributeMap:
        branches = [self._extract(child, {}, depth) for child in plan.children]
        if not plan.output or not branches:
            # independent branches, e.g. the inserts of a multi-insert statement
            return self._merge_all(branches)
        columns = reduce(
            lambda left, right: [a | b for a, b in zip(left, right)],
            (list(branch.values()) for branch in branches),
        )
        return dict(zip(plan.output, columns))

    def _extract_create_view(self, plan: CreateView, parent: AttributeMap, depth: int) -> AttributeMap:
        if plan.view_type is not ViewType.PERSISTED:
            self.logger.debug(f"Skipping lineage of {plan.view_type.value} view {plan.name}")
            return {}
        view = plan.name.qualified_name
        lineage = self._extract(plan.query, parent, depth)
        columns = plan.user_specified_columns
        if columns and len(columns) < len(lineage):
            raise PlanShapeError(
                f"view {view} lists {len(columns)} columns but its query produces {len(lineage)}"
            )
        renamed: AttributeMap = {}
        for i, (key, attrs) in enumerate(lineage.items()):
            name = columns[i] if columns else key.name
            renamed[key.with_name(f"{view}.{name}")] = attrs
        return renamed

    def _extract_merge(self, plan: MergeIntoTable, parent: AttributeMap, depth: int) -> AttributeMap:
        assignments = [
            assignment
            for action in tuple(plan.matched_actions) + tuple(plan.not_matched_actions)
            if isinstance(action, (UpdateAction, InsertAction))
            for assignment in action.assignments
        ]
        request: AttributeMap = {}
        for a in assignments:
            # a column assigned by both UPDATE and INSERT draws from both expressions
            request[a.key] = request.get(a.key, AttributeSet()) | references_of(a.value)
        target_lineage = self._extract(
            plan.target_table, {key: AttributeSet([key]) for key in request}, depth
        )
        source_lineage = self._extract(plan.source_table, request, depth)
        targets = [
            column.with_name(column.qualified_name)
            for columns in target_lineage.values()
            for column in columns
        ]
        return dict(zip(targets, source_lineage.values()))
