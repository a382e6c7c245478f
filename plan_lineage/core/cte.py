"""
CTE (Common Table Expression) inlining.

A ``WithCTE`` node carries CTE definitions and a plan that references them by
id. Lineage is computed over the inlined form: every reference is replaced by
the definition's plan, topped with a projection that re-exposes the definition
columns under the identities the reference declared. Definitions may use
earlier definitions, nested ``WithCTE`` blocks shadow outer ones, and scalar
subqueries inside expressions are rewritten too.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..errors import ExtractionFailure
from .expressions import Alias, transform_subquery_plans
from .plan import CTERelationDef, CTERelationRef, LogicalPlan, Project, WithCTE


class CTEInliner:
    """Replaces CTE references with their definitions."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def inline(self, plan: WithCTE) -> LogicalPlan:
        return self._rewrite(plan, {})

    def _register(self, with_cte: WithCTE, defs: Dict[int, CTERelationDef]) -> Dict[int, CTERelationDef]:
        scoped = dict(defs)
        for cte_def in with_cte.cte_defs:
            body = self._rewrite(cte_def.child, scoped)
            scoped[cte_def.cte_id] = CTERelationDef(cte_def.cte_id, body)
        return scoped

    def _rewrite(self, node: LogicalPlan, defs: Dict[int, CTERelationDef]) -> LogicalPlan:
        if isinstance(node, WithCTE):
            return self._rewrite(node.plan, self._register(node, defs))
        if isinstance(node, CTERelationRef):
            cte_def = defs.get(node.cte_id)
            if cte_def is None:
                self.logger.debug(f"CTE reference {node.cte_id} has no definition in scope; left in place")
                return node
            return self._inline_reference(node, cte_def)
        if node.children:
            node = node.with_new_children([self._rewrite(c, defs) for c in node.children])
        return node.map_expressions(
            lambda e: transform_subquery_plans(e, lambda p: self._rewrite(p, defs))
        )

    def _inline_reference(self, ref: CTERelationRef, cte_def: CTERelationDef) -> LogicalPlan:
        def_output = cte_def.output
        if len(def_output) != len(ref.output):
            raise ExtractionFailure(
                f"CTE {ref.cte_id} defines {len(def_output)} columns but is referenced with {len(ref.output)}"
            )
        aliases = tuple(
            Alias(source, exposed.name, exposed.expr_id)
            for source, exposed in zip(def_output, ref.output)
        )
        return Project(aliases, cte_def.child)
