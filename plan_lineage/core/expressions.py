"""Resolved expression tree carried inside plan nodes.

Only the parts lineage needs are modelled: which attributes an expression
references, whether it embeds scalar subqueries, and whether it is a
``COUNT(*)``-style aggregate. Every other function or operator is a generic
:class:`Function` node.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, List, Sequence, Tuple, Union

from .attribute import Attribute, AttributeSet

if TYPE_CHECKING:
    from .plan import LogicalPlan


class Expression:
    @property
    def children(self) -> Tuple[Expr, ...]:
        return ()

    def with_new_children(self, children: Sequence[Expr]) -> Expression:
        return self


# attribute references appear directly as leaves of expression trees
Expr = Union[Expression, Attribute]


@dataclass(frozen=True)
class Literal(Expression):
    value: str


@dataclass(frozen=True)
class Function(Expression):
    name: str
    args: Tuple[Expr, ...] = ()

    @property
    def children(self) -> Tuple[Expr, ...]:
        return self.args

    def with_new_children(self, children: Sequence[Expr]) -> Expression:
        return replace(self, args=tuple(children))


@dataclass(frozen=True)
class Count(Expression):
    """COUNT aggregate. ``COUNT(*)`` and ``COUNT(1)`` reference no attributes."""

    args: Tuple[Expr, ...] = ()
    distinct: bool = False

    @property
    def children(self) -> Tuple[Expr, ...]:
        return self.args

    def with_new_children(self, children: Sequence[Expr]) -> Expression:
        return replace(self, args=tuple(children))


@dataclass(frozen=True)
class ScalarSubquery(Expression):
    # the nested plan is not a child: its columns are not references of the outer expression
    plan: "LogicalPlan"

    def with_plan(self, plan: "LogicalPlan") -> ScalarSubquery:
        return replace(self, plan=plan)


@dataclass(frozen=True)
class WindowExpression(Expression):
    function: Expr
    partition_spec: Tuple[Expr, ...] = ()
    order_spec: Tuple[Expr, ...] = ()

    @property
    def children(self) -> Tuple[Expr, ...]:
        return (self.function,) + self.partition_spec + self.order_spec

    def with_new_children(self, children: Sequence[Expr]) -> Expression:
        n_part = len(self.partition_spec)
        return replace(
            self,
            function=children[0],
            partition_spec=tuple(children[1:1 + n_part]),
            order_spec=tuple(children[1 + n_part:]),
        )


@dataclass(frozen=True)
class Alias(Expression):
    child: Expr
    name: str
    expr_id: int

    @property
    def children(self) -> Tuple[Expr, ...]:
        return (self.child,)

    def with_new_children(self, children: Sequence[Expr]) -> Expression:
        return replace(self, child=children[0])

    def to_attribute(self) -> Attribute:
        return Attribute(self.expr_id, self.name)


NamedExpression = Union[Alias, Attribute]


def to_attribute(named: NamedExpression) -> Attribute:
    if isinstance(named, Attribute):
        return named
    return named.to_attribute()


def references_of(expr: Expr) -> AttributeSet:
    if isinstance(expr, Attribute):
        return AttributeSet([expr])
    found: List[Attribute] = []
    for child in expr.children:
        found.extend(references_of(child))
    return AttributeSet(found)


def contains_count_all(expr: Expr) -> bool:
    if isinstance(expr, Attribute):
        return False
    if isinstance(expr, Count) and not references_of(expr):
        return True
    return any(contains_count_all(child) for child in expr.children)


def subquery_plans(expr: Expr) -> List["LogicalPlan"]:
    if isinstance(expr, ScalarSubquery):
        return [expr.plan]
    if isinstance(expr, Attribute):
        return []
    plans: List["LogicalPlan"] = []
    for child in expr.children:
        plans.extend(subquery_plans(child))
    return plans


def transform_subquery_plans(expr: Expr, fn: Callable[["LogicalPlan"], "LogicalPlan"]) -> Expr:
    """Rebuild ``expr`` with ``fn`` applied to every embedded subquery plan."""
    if isinstance(expr, Attribute):
        return expr
    if isinstance(expr, ScalarSubquery):
        return expr.with_plan(fn(expr.plan))
    if not expr.children:
        return expr
    return expr.with_new_children([transform_subquery_plans(c, fn) for c in expr.children])
