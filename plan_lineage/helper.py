"""Entry points that turn a resolved plan into a :class:`Lineage` record."""

from __future__ import annotations

import logging
from typing import Optional

from .config import LineageConfig
from .core.extractor import LineageExtractor
from .core.plan import LogicalPlan
from .core.projector import ResultProjector
from .models import Lineage


class LineageParser:
    def __init__(self, config: Optional[LineageConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or LineageConfig()
        self.extractor = LineageExtractor(self.config, logger)
        self.projector = ResultProjector()

    def parse(self, plan: LogicalPlan) -> Lineage:
        """Lineage of ``plan``; raises whatever the traversal raises."""
        return self.projector.project(self.extractor.extract(plan, {}))


def transform_to_lineage(
    execution_id: object,
    plan: LogicalPlan,
    config: Optional[LineageConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[Lineage]:
    """Lineage of one executed statement, or None when it cannot be computed.

    Never raises: a failure is logged with the execution id and the statement
    simply gets no lineage.
    """
    logger = logger or logging.getLogger(__name__)
    try:
        return LineageParser(config, logger).parse(plan)
    except Exception as e:
        logger.warning(f"Extract statement[{execution_id}] columns lineage failed: {e}", exc_info=True)
        return None
