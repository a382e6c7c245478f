from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

SKIP_PERMANENT_VIEWS_ENV = "LINEAGE_SKIP_PARSING_PERMANENT_VIEWS"
MAX_PLAN_DEPTH_ENV = "LINEAGE_MAX_PLAN_DEPTH"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class LineageConfig:
    """Flags that change how plans are traversed.

    skip_parsing_permanent_views: treat persisted views as opaque tables instead
        of expanding their bodies.
    max_plan_depth: deepest plan the extractor will descend into.
    """

    skip_parsing_permanent_views: bool = False
    max_plan_depth: int = 512

    def __post_init__(self):
        if self.max_plan_depth < 1:
            raise ValueError(f"max_plan_depth must be positive, got {self.max_plan_depth}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LineageConfig":
        env = os.environ if environ is None else environ
        kwargs = {}
        if SKIP_PERMANENT_VIEWS_ENV in env:
            kwargs["skip_parsing_permanent_views"] = _parse_bool(
                SKIP_PERMANENT_VIEWS_ENV, env[SKIP_PERMANENT_VIEWS_ENV]
            )
        if MAX_PLAN_DEPTH_ENV in env:
            raw = env[MAX_PLAN_DEPTH_ENV]
            try:
                kwargs["max_plan_depth"] = int(raw)
            except ValueError:
                raise ValueError(f"{MAX_PLAN_DEPTH_ENV} must be an integer, got {raw!r}") from None
        return cls(**kwargs)
