"""Logical plan nodes handed to the lineage extractor.

The node set is closed: every operator kind the extractor reasons about has a
class here, and anything else the host produces is an :class:`OpaquePlan`,
which the extractor traverses structurally. Nodes are immutable; rewriting
(CTE inlining) builds new nodes through ``with_new_children`` and
``map_expressions``.
"""

from __future__ import annotations

import enum
import typing
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence, Tuple

from .attribute import Attribute
from .expressions import Alias, Expr, NamedExpression, to_attribute


@dataclass(frozen=True)
class TableIdentifier:
    name: str
    database: Optional[str] = None
    catalog: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return ".".join(p for p in (self.catalog, self.database, self.name) if p)

    @classmethod
    def parse(cls, qualified: str) -> TableIdentifier:
        parts = qualified.split(".")
        if len(parts) >= 3:
            return cls(parts[-1], database=".".join(parts[1:-1]), catalog=parts[0])
        if len(parts) == 2:
            return cls(parts[1], database=parts[0])
        return cls(parts[0])

    def __str__(self) -> str:
        return self.qualified_name


class JoinType(enum.Enum):
    INNER = "inner"
    LEFT_OUTER = "left_outer"
    RIGHT_OUTER = "right_outer"
    FULL_OUTER = "full_outer"
    CROSS = "cross"
    LEFT_SEMI = "left_semi"
    LEFT_ANTI = "left_anti"

    @property
    def exposes_right(self) -> bool:
        return self not in (JoinType.LEFT_SEMI, JoinType.LEFT_ANTI)


class ViewType(enum.Enum):
    PERSISTED = "persisted"
    TEMPORARY = "temporary"
    GLOBAL_TEMPORARY = "global_temporary"


class WriteMode(enum.Enum):
    APPEND = "append"
    OVERWRITE = "overwrite"
    OVERWRITE_DYNAMIC = "overwrite_dynamic"


class LogicalPlan:
    """Base of every plan node.

    Subclasses provide ``children`` and ``output`` (as fields or properties).
    """

    @property
    def node_name(self) -> str:
        return type(self).__name__

    def with_new_children(self, children: Sequence["LogicalPlan"]) -> "LogicalPlan":
        return self

    def map_expressions(self, fn: Callable[[Expr], Expr]) -> "LogicalPlan":
        return self


class LeafNode(LogicalPlan):
    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return ()


class UnaryNode(LogicalPlan):
    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.child,)

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, child=children[0])


# ---------------------------------------------------------------------------
# query operators
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Project(UnaryNode):
    project_list: Tuple[NamedExpression, ...]
    child: LogicalPlan

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return tuple(to_attribute(e) for e in self.project_list)

    def map_expressions(self, fn: Callable[[Expr], Expr]) -> LogicalPlan:
        return replace(self, project_list=tuple(fn(e) for e in self.project_list))


@dataclass(frozen=True, eq=False)
class Aggregate(UnaryNode):
    grouping_expressions: Tuple[Expr, ...]
    aggregate_expressions: Tuple[NamedExpression, ...]
    child: LogicalPlan

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return tuple(to_attribute(e) for e in self.aggregate_expressions)

    def map_expressions(self, fn: Callable[[Expr], Expr]) -> LogicalPlan:
        return replace(self, aggregate_expressions=tuple(fn(e) for e in self.aggregate_expressions))


@dataclass(frozen=True, eq=False)
class Window(UnaryNode):
    window_expressions: Tuple[Alias, ...]
    child: LogicalPlan
    partition_spec: Tuple[Expr, ...] = ()
    order_spec: Tuple[Expr, ...] = ()

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return tuple(self.child.output) + tuple(e.to_attribute() for e in self.window_expressions)


@dataclass(frozen=True, eq=False)
class Expand(UnaryNode):
    """One output row per projection; every projection has one entry per output column."""

    projections: Tuple[Tuple[Expr, ...], ...]
    output: Tuple[Attribute, ...]
    child: LogicalPlan


@dataclass(frozen=True, eq=False)
class Join(LogicalPlan):
    left: LogicalPlan
    right: LogicalPlan
    join_type: JoinType = JoinType.INNER
    condition: Optional[Expr] = None

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.left, self.right)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        if self.join_type.exposes_right:
            return tuple(self.left.output) + tuple(self.right.output)
        return tuple(self.left.output)

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, left=children[0], right=children[1])


@dataclass(frozen=True, eq=False)
class Union(LogicalPlan):
    """Positional union of its children.

    ``output`` is empty when the branches are independent statements (multi-insert).
    """

    children: Tuple[LogicalPlan, ...]
    output: Tuple[Attribute, ...] = ()

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, children=tuple(children))


# ---------------------------------------------------------------------------
# relations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Relation(LeafNode):
    """A base table scan. ``table`` is None for sources without catalog identity."""

    output: Tuple[Attribute, ...]
    table: Optional[TableIdentifier] = None


@dataclass(frozen=True, eq=False)
class LocalRelation(LeafNode):
    output: Tuple[Attribute, ...]
    rows: Tuple[Tuple[str, ...], ...] = ()


@dataclass(frozen=True, eq=False)
class OneRowRelation(LeafNode):
    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()


@dataclass(frozen=True, eq=False)
class View(UnaryNode):
    desc: TableIdentifier
    output: Tuple[Attribute, ...]
    child: LogicalPlan
    is_temp_view: bool = False


@dataclass(frozen=True, eq=False)
class CTERelationDef(UnaryNode):
    cte_id: int
    child: LogicalPlan

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return tuple(self.child.output)


@dataclass(frozen=True, eq=False)
class CTERelationRef(LeafNode):
    cte_id: int
    output: Tuple[Attribute, ...]


@dataclass(frozen=True, eq=False)
class WithCTE(LogicalPlan):
    plan: LogicalPlan
    cte_defs: Tuple[CTERelationDef, ...]

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return tuple(self.cte_defs) + (self.plan,)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return tuple(self.plan.output)

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, cte_defs=tuple(children[:-1]), plan=children[-1])


@dataclass(frozen=True, eq=False)
class PhysicalNode:
    """Node of an executed (physical) plan; ``logical_link`` points back at the
    logical plan it was planned from, when the host recorded one."""

    name: str
    children: Tuple["PhysicalNode", ...] = ()
    logical_link: Optional[LogicalPlan] = None


@dataclass(frozen=True, eq=False)
class CachedRelation(LeafNode):
    output: Tuple[Attribute, ...]
    cached_plan: PhysicalNode
    table_name: Optional[str] = None


@dataclass(frozen=True, eq=False)
class OpaquePlan(LogicalPlan):
    """Any host operator without dedicated lineage rules (filters, sorts, limits...)."""

    name: str
    children: Tuple[LogicalPlan, ...] = ()
    output: Tuple[Attribute, ...] = ()

    @property
    def node_name(self) -> str:
        return self.name

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, children=tuple(children))


# ---------------------------------------------------------------------------
# commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class CommandResult(LeafNode):
    output: Tuple[Attribute, ...]
    command_plan: LogicalPlan


@dataclass(frozen=True, eq=False)
class AlterViewAs(LeafNode):
    name: TableIdentifier
    query: LogicalPlan

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()


@dataclass(frozen=True, eq=False)
class CreateView(LeafNode):
    name: TableIdentifier
    query: LogicalPlan
    view_type: ViewType = ViewType.PERSISTED
    user_specified_columns: Tuple[str, ...] = ()

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()


@dataclass(frozen=True, eq=False)
class CreateTableAsSelect(LogicalPlan):
    table: TableIdentifier
    query: LogicalPlan
    replace_table: bool = False

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.query,)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, query=children[0])


@dataclass(frozen=True, eq=False)
class InsertIntoTable(LogicalPlan):
    table: Optional[TableIdentifier]
    query: LogicalPlan
    mode: WriteMode = WriteMode.APPEND

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.query,)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, query=children[0])


@dataclass(frozen=True, eq=False)
class InsertIntoDirectory(LogicalPlan):
    location: Optional[str]
    query: LogicalPlan
    overwrite: bool = True

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.query,)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()

    def with_new_children(self, children: Sequence[LogicalPlan]) -> LogicalPlan:
        return replace(self, query=children[0])


@dataclass(frozen=True, eq=False)
class SaveIntoDataSource(LeafNode):
    query: LogicalPlan
    provider: Optional[str] = None

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()


@dataclass(frozen=True)
class Assignment:
    key: Attribute
    value: Expr


@dataclass(frozen=True)
class UpdateAction:
    assignments: Tuple[Assignment, ...]
    condition: Optional[Expr] = None


@dataclass(frozen=True)
class InsertAction:
    assignments: Tuple[Assignment, ...]
    condition: Optional[Expr] = None


@dataclass(frozen=True)
class DeleteAction:
    condition: Optional[Expr] = None


MergeAction = typing.Union[UpdateAction, InsertAction, DeleteAction]


@dataclass(frozen=True, eq=False)
class MergeIntoTable(LogicalPlan):
    target_table: LogicalPlan
    source_table: LogicalPlan
    matched_actions: Tuple[MergeAction, ...] = ()
    not_matched_actions: Tuple[MergeAction, ...] = ()

    @property
    def children(self) -> Tuple[LogicalPlan, ...]:
        return (self.target_table, self.source_table)

    @property
    def output(self) -> Tuple[Attribute, ...]:
        return ()
