from __future__ import annotations

from typing import Hashable, Iterable, List, Optional, TypeVar

T = TypeVar("T", bound=Hashable)


def normalize_identifier(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    return str(name).strip().strip("`").strip('"').lower()


def dedupe(items: Iterable[T]) -> List[T]:
    """Drop repeats while keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def table_of(qualified_name: str) -> str:
    """'db.tbl.col' -> 'db.tbl'; a bare column name yields ''."""
    return ".".join(qualified_name.split(".")[:-1])


def strip_backticks(name: str) -> str:
    if name.startswith("`"):
        name = name[1:]
    if name.endswith("`"):
        name = name[:-1]
    return name
