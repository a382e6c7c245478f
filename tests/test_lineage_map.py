import logging

import pytest

from plan_lineage.core.attribute import Attribute, AttributeSet
from plan_lineage.core.lineage_map import (
    join_columns_lineage,
    join_relation_column_lineage,
    merge_columns_lineage,
    merge_relation_column_lineage,
)
from plan_lineage.errors import ExtractionFailure


def _attr(expr_id, name, *qualifier):
    return Attribute(expr_id, name, tuple(qualifier))


def _names(attrs):
    return [a.qualified_name for a in attrs]


def test_merge_unions_shared_keys_and_keeps_order():
    a, b = _attr(1, "a"), _attr(2, "b")
    x, y = _attr(10, "x", "t"), _attr(11, "y", "t")
    merged = merge_columns_lineage({a: AttributeSet([x])}, {a: AttributeSet([y]), b: AttributeSet([y])})
    assert list(merged) == [a, b]
    assert merged[a] == AttributeSet([x, y])
    assert merged[b] == AttributeSet([y])


def test_join_with_empty_parent_returns_child():
    child = {_attr(1, "a"): AttributeSet([_attr(10, "x", "t")])}
    assert join_columns_lineage({}, child) is child


def test_join_matches_by_identity_not_name():
    out = _attr(1, "out")
    src = _attr(3, "v", "t")
    parent = {out: AttributeSet([_attr(2, "renamed")])}
    child = {_attr(2, "v"): AttributeSet([src])}
    assert list(join_columns_lineage(parent, child)[out]) == [src]


def test_join_same_name_different_identity_is_not_a_match():
    out = _attr(1, "out")
    requested = _attr(2, "v")
    child = {_attr(3, "v"): AttributeSet([_attr(4, "v", "t")])}
    joined = join_columns_lineage({out: AttributeSet([requested])}, child)
    assert list(joined[out]) == [requested]


def test_join_keeps_unresolved_dependency_as_itself():
    out, mid = _attr(1, "out"), _attr(2, "mid")
    joined = join_columns_lineage({out: AttributeSet([mid])}, {})
    assert list(joined[out]) == [mid]


def test_join_drops_unresolved_count_marker(caplog):
    out, mid = _attr(1, "out"), _attr(2, "mid")
    marker = _attr(1, "__count__")
    with caplog.at_level(logging.DEBUG, logger="plan_lineage.core.lineage_map"):
        joined = join_columns_lineage({out: AttributeSet([marker, mid])}, {})
    assert list(joined[out]) == [mid]
    assert "count-all marker" in caplog.text


def test_join_relation_base_case_qualifies_every_column():
    a, b = _attr(1, "a"), _attr(2, "b")
    result = join_relation_column_lineage({}, [a, b], ["db.t"])
    assert {k.name: _names(v) for k, v in result.items()} == {"a": ["db.t.a"], "b": ["db.t.b"]}


def test_join_relation_filters_foreign_dependencies():
    out, col = _attr(5, "out"), _attr(1, "a")
    result = join_relation_column_lineage({out: AttributeSet([col, _attr(9, "z")])}, [col], ["t"])
    assert _names(result[out]) == ["t.a"]


def test_join_relation_keeps_requests_without_matches():
    out = _attr(5, "out")
    result = join_relation_column_lineage({out: AttributeSet([_attr(9, "z")])}, [_attr(1, "a")], ["t"])
    assert list(result) == [out]
    assert not result[out]


def test_join_relation_unwraps_subquery_marker_one_level():
    out = _attr(5, "out")
    marked = _attr(7, "x", "s", "__subquery__")
    result = join_relation_column_lineage({out: AttributeSet([marked])}, [_attr(1, "a")], ["t"])
    assert _names(result[out]) == ["s.x"]


def test_join_relation_qualifies_count_marker():
    out = _attr(5, "out")
    result = join_relation_column_lineage({out: AttributeSet([_attr(5, "__count__")])}, [_attr(1, "a")], ["t"])
    assert _names(result[out]) == ["t.__count__"]


def test_join_relation_renames_already_qualified_names():
    out = _attr(5, "out")
    dep = _attr(8, "db.t.`col`")
    result = join_relation_column_lineage({out: AttributeSet([dep])}, [_attr(1, "a")], ["db.t"])
    assert _names(result[out]) == ["db.t.col"]


def test_merge_relation_zips_positionally():
    p, q = _attr(10, "p"), _attr(11, "q")
    internal = {
        _attr(1, "a"): AttributeSet([_attr(1, "a", "t")]),
        _attr(2, "b"): AttributeSet([_attr(2, "b", "t")]),
    }
    result = merge_relation_column_lineage({}, [p, q], internal)
    assert {k.name: _names(v) for k, v in result.items()} == {"p": ["t.a"], "q": ["t.b"]}


def test_merge_relation_resolves_parent_requests():
    p, q, out = _attr(10, "p"), _attr(11, "q"), _attr(20, "out")
    internal = {
        _attr(1, "a"): AttributeSet([_attr(1, "a", "t")]),
        _attr(2, "b"): AttributeSet([_attr(2, "b", "t")]),
    }
    result = merge_relation_column_lineage({out: AttributeSet([q])}, [p, q], internal)
    assert list(result) == [out]
    assert _names(result[out]) == ["t.b"]


def test_merge_relation_rejects_short_lineage():
    internal = {_attr(1, "a"): AttributeSet([_attr(1, "a", "t")])}
    with pytest.raises(ExtractionFailure):
        merge_relation_column_lineage({}, [_attr(10, "p"), _attr(11, "q")], internal)


def test_merge_prefers_resolved_source_over_unresolved_request():
    out = _attr(1, "out")
    bare, qualified = _attr(2, "x"), _attr(2, "x", "t")
    merged = merge_columns_lineage({out: AttributeSet([qualified])}, {out: AttributeSet([bare])})
    assert _names(merged[out]) == ["t.x"]
    merged = merge_columns_lineage({out: AttributeSet([bare])}, {out: AttributeSet([qualified])})
    assert _names(merged[out]) == ["t.x"]
