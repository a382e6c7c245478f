from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, Sequence, Tuple

SUBQUERY_COLUMN_IDENTIFIER = "__subquery__"
AGGREGATE_COUNT_COLUMN_IDENTIFIER = "__count__"
LOCAL_TABLE_IDENTIFIER = "__local__"


@dataclass(frozen=True)
class Attribute:
    """A column with a stable identity.

    ``expr_id`` never changes while the attribute moves through a plan; ``name``
    and ``qualifier`` are display data and are rewritten by producing a new value.
    """

    expr_id: int
    name: str
    qualifier: Tuple[str, ...] = ()

    @property
    def qualified_name(self) -> str:
        return ".".join(self.qualifier + (self.name,))

    def with_qualifier(self, qualifier: Sequence[str]) -> Attribute:
        return replace(self, qualifier=tuple(qualifier))

    def with_name(self, name: str) -> Attribute:
        return replace(self, name=name)

    @property
    def is_count_marker(self) -> bool:
        return self.name.lower() == AGGREGATE_COUNT_COLUMN_IDENTIFIER

    @property
    def is_subquery_marked(self) -> bool:
        return bool(self.qualifier) and self.qualifier[-1].lower() == SUBQUERY_COLUMN_IDENTIFIER

    def __repr__(self) -> str:
        return f"{self.qualified_name}#{self.expr_id}"


class AttributeSet:
    """Insertion-ordered set of attributes keyed by ``expr_id``.

    The first attribute seen for an identity wins, unless it carries no
    qualifier and a later one does: a bare attribute is a request passed
    through unresolved, the qualified one is its answer from a relation.
    Later attributes under another qualifier are ignored.
    """

    __slots__ = ("_attrs",)

    def __init__(self, attrs: Iterable[Attribute] = ()):
        self._attrs: Dict[int, Attribute] = {}
        for attr in attrs:
            seen = self._attrs.get(attr.expr_id)
            if seen is None or (not seen.qualifier and attr.qualifier):
                self._attrs[attr.expr_id] = attr

    def __iter__(self) -> Iterator[Attribute]:
        return iter(self._attrs.values())

    def __len__(self) -> int:
        return len(self._attrs)

    def __bool__(self) -> bool:
        return bool(self._attrs)

    def __contains__(self, attr: object) -> bool:
        return isinstance(attr, Attribute) and attr.expr_id in self._attrs

    def __or__(self, other: Iterable[Attribute]) -> AttributeSet:
        return AttributeSet(list(self) + list(other))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeSet):
            return NotImplemented
        return set(self._attrs.values()) == set(other._attrs.values())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return "{" + ", ".join(repr(a) for a in self) + "}"


# output attribute -> attributes it was computed from, in insertion order
AttributeMap = Dict[Attribute, AttributeSet]
