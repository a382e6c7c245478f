"""Pure functions over :data:`AttributeMap` values.

A lineage map sends an output attribute to the attributes it was computed
from. Maps flowing *down* a plan are requests (what the ancestors still need
resolved); maps flowing *up* are answers (what a subtree actually provides).
All lookups are by ``expr_id``; names are display data only.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from ..errors import ExtractionFailure
from ..utils import strip_backticks
from .attribute import Attribute, AttributeMap, AttributeSet

logger = logging.getLogger(__name__)


def merge_columns_lineage(left: AttributeMap, right: AttributeMap) -> AttributeMap:
    """Union of both maps; keys present on both sides get the union of their sets."""
    merged: AttributeMap = dict(left)
    for key, attrs in right.items():
        merged[key] = attrs | left.get(key, AttributeSet())
    return merged


def join_columns_lineage(parent: AttributeMap, child: AttributeMap) -> AttributeMap:
    """Resolve the parent's pending requests against what the child computed.

    Every dependency of a parent entry is replaced by the child's sources for
    the same identity. A dependency the child does not know stays as it is,
    except for the count-all marker, which is dropped.
    """
    if not parent:
        return child
    child_by_id: Dict[int, AttributeSet] = {key.expr_id: attrs for key, attrs in child.items()}
    joined: AttributeMap = {}
    for key, attrs in parent.items():
        resolved: List[Attribute] = []
        for attr in attrs:
            sources = child_by_id.get(attr.expr_id)
            if sources is not None:
                resolved.extend(sources)
            elif attr.is_count_marker:
                logger.debug(f"Dropping unresolved count-all marker {attr!r} requested by {key!r}")
            else:
                resolved.append(attr)
        joined[key] = AttributeSet(resolved)
    return joined


def _is_name_with_qualifier(attr: Attribute, qualifier: Sequence[str]) -> bool:
    tokens = attr.name.split(".")
    namespace = ".".join(tokens[:-1])
    return len(tokens) > 1 and namespace.endswith(".".join(qualifier))


def join_relation_column_lineage(
    parent: AttributeMap,
    relation_output: Sequence[Attribute],
    qualifier: Sequence[str],
) -> AttributeMap:
    """Attach ``qualifier`` to the attributes a leaf relation provides.

    With pending requests, each request keeps only dependencies this relation
    can answer: its own columns, subquery-marked columns (unwrapped one level),
    count-all markers, and names already carrying this qualifier.
    """
    qualifier = tuple(qualifier)
    relation_ids = {attr.expr_id for attr in relation_output}
    if not parent:
        return {attr: AttributeSet([attr.with_qualifier(qualifier)]) for attr in relation_output}

    joined: AttributeMap = {}
    for key, attrs in parent.items():
        kept: List[Attribute] = []
        for attr in attrs:
            if attr.expr_id in relation_ids:
                kept.append(attr.with_qualifier(qualifier))
            elif attr.is_subquery_marked:
                kept.append(attr.with_qualifier(attr.qualifier[:-1]))
            elif attr.is_count_marker:
                kept.append(attr.with_qualifier(qualifier))
            elif _is_name_with_qualifier(attr, qualifier):
                short_name = strip_backticks(attr.name.split(".")[-1])
                kept.append(attr.with_name(short_name).with_qualifier(qualifier))
        joined[key] = AttributeSet(kept)
    return joined


def merge_relation_column_lineage(
    parent: AttributeMap,
    relation_output: Sequence[Attribute],
    relation_lineage: AttributeMap,
) -> AttributeMap:
    """Map a relation's public columns onto the lineage of the plan behind it.

    ``relation_lineage`` must list its entries in the relation's output order.
    """
    values = list(relation_lineage.values())
    if len(values) < len(relation_output):
        raise ExtractionFailure(
            f"relation exposes {len(relation_output)} columns but its plan resolved only {len(values)}"
        )
    public: AttributeMap = {attr: values[i] for i, attr in enumerate(relation_output)}
    return join_columns_lineage(parent, public)
