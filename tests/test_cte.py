import pytest

from plan_lineage.core.attribute import Attribute
from plan_lineage.core.cte import CTEInliner
from plan_lineage.core.expressions import Alias, ScalarSubquery
from plan_lineage.core.plan import (
    CTERelationDef,
    CTERelationRef,
    OneRowRelation,
    Project,
    Relation,
    TableIdentifier,
    WithCTE,
)
from plan_lineage.errors import ExtractionFailure


def _attr(expr_id, name):
    return Attribute(expr_id, name)


def _contains_ref(plan):
    if isinstance(plan, CTERelationRef):
        return True
    return any(_contains_ref(c) for c in plan.children)


def test_reference_becomes_aliased_definition():
    a = _attr(1, "a")
    base = Relation((a,), TableIdentifier("t"))
    ref_out = _attr(20, "a")
    plan = WithCTE(Project((ref_out,), CTERelationRef(1, (ref_out,))), (CTERelationDef(1, Project((a,), base)),))

    inlined = CTEInliner().inline(plan)

    assert not _contains_ref(inlined)
    wrapper = inlined.child
    assert isinstance(wrapper, Project)
    assert wrapper.output == (ref_out,)
    assert wrapper.project_list[0].child == a


def test_chained_definitions_see_earlier_ones():
    a = _attr(1, "a")
    first = CTERelationDef(1, Project((a,), Relation((a,), TableIdentifier("t"))))
    first_ref = _attr(10, "a")
    second = CTERelationDef(2, Project((first_ref,), CTERelationRef(1, (first_ref,))))
    second_ref = _attr(20, "a")
    plan = WithCTE(Project((second_ref,), CTERelationRef(2, (second_ref,))), (first, second))

    assert not _contains_ref(CTEInliner().inline(plan))


def test_nested_block_shadows_outer_definition():
    a, b = _attr(1, "a"), _attr(2, "b")
    outer = CTERelationDef(1, Project((a,), Relation((a,), TableIdentifier("outer_t"))))
    inner = CTERelationDef(1, Project((b,), Relation((b,), TableIdentifier("inner_t"))))
    ref_out = _attr(30, "b")
    nested = WithCTE(Project((ref_out,), CTERelationRef(1, (ref_out,))), (inner,))
    plan = WithCTE(nested, (outer,))

    inlined = CTEInliner().inline(plan)

    relation = inlined.child.child.child
    assert relation.table == TableIdentifier("inner_t")


def test_references_inside_scalar_subqueries_are_rewritten():
    a = _attr(1, "a")
    cte_def = CTERelationDef(1, Project((a,), Relation((a,), TableIdentifier("t"))))
    ref_out = _attr(10, "a")
    subquery = ScalarSubquery(Project((ref_out,), CTERelationRef(1, (ref_out,))))
    plan = WithCTE(Project((Alias(subquery, "s", 11),), OneRowRelation()), (cte_def,))

    inlined = CTEInliner().inline(plan)

    rewritten = inlined.project_list[0].child
    assert isinstance(rewritten, ScalarSubquery)
    assert not _contains_ref(rewritten.plan)


def test_undefined_reference_is_left_in_place():
    ref_out = _attr(10, "a")
    plan = WithCTE(Project((ref_out,), CTERelationRef(99, (ref_out,))), ())
    assert _contains_ref(CTEInliner().inline(plan))


def test_arity_mismatch_is_rejected():
    a = _attr(1, "a")
    cte_def = CTERelationDef(1, Project((a,), Relation((a,), TableIdentifier("t"))))
    refs = (_attr(10, "a"), _attr(11, "b"))
    plan = WithCTE(Project(refs, CTERelationRef(1, refs)), (cte_def,))
    with pytest.raises(ExtractionFailure):
        CTEInliner().inline(plan)
