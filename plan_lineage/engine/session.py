from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlglot import expressions as exp
from sqlglot.errors import ParseError

from ..config import LineageConfig
from ..core.plan import AlterViewAs, CreateTableAsSelect, CreateView, LogicalPlan, ViewType
from ..errors import LineageError
from ..helper import transform_to_lineage
from ..models import Lineage
from .catalog import Catalog
from .planner import SqlglotPlanner


@dataclass(frozen=True)
class StatementLineage:
    execution_id: int
    sql: str
    lineage: Optional[Lineage]


class LineageSession:
    """Runs the statements of a SQL script the way an engine session would.

    Each statement is planned, handed to :func:`transform_to_lineage` under a
    running execution id, and then applied to the catalog (tables created by
    CTAS, views, cached queries, drops) so later statements can resolve it.
    """

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        engine: str = "spark",
        config: Optional[LineageConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.catalog = catalog if catalog is not None else Catalog()
        self.engine = engine.lower()
        self.config = config or LineageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.planner = SqlglotPlanner(self.catalog, self.engine, self.logger)
        self._execution_ids = itertools.count(1)

    # --------------- public API ---------------
    def run(self, sql_text: str) -> List[StatementLineage]:
        try:
            statements = self.planner.parse(sql_text)
        except ParseError as e:
            self.logger.error(f"Parse error: {e}")
            return []
        return [self.execute(stmt) for stmt in statements]

    def run_file(self, path: str) -> List[StatementLineage]:
        with open(path, "r", encoding="utf-8") as f:
            return self.run(f.read())

    def execute(self, statement: exp.Expression) -> StatementLineage:
        execution_id = next(self._execution_ids)
        sql = statement.sql(dialect=self.engine)
        try:
            plan = self.planner.plan(statement)
        except (LineageError, ParseError) as e:
            self.logger.warning(f"Statement[{execution_id}] could not be planned: {e}")
            return StatementLineage(execution_id, sql, None)
        lineage = transform_to_lineage(execution_id, plan, self.config, self.logger)
        self._apply(statement, plan)
        return StatementLineage(execution_id, sql, lineage)

    # --------------- catalog side effects ---------------
    def _apply(self, statement: exp.Expression, plan: LogicalPlan):
        accessor = self.planner.accessor
        if isinstance(plan, CreateTableAsSelect):
            self.catalog.register_table(plan.table.qualified_name, [a.name for a in plan.query.output])
        elif isinstance(plan, CreateView):
            self.catalog.register_view(
                plan.name.qualified_name,
                statement.expression.sql(dialect=self.engine),
                list(plan.user_specified_columns),
                temporary=plan.view_type is not ViewType.PERSISTED,
            )
        elif isinstance(plan, AlterViewAs):
            name = plan.name.qualified_name
            existing = self.catalog.view(name)
            _, query_sql = accessor.alter_view(statement)
            self.catalog.register_view(
                name,
                query_sql,
                existing.columns if existing else [],
                temporary=existing.temporary if existing else False,
            )
        elif isinstance(statement, exp.Create) and accessor.create_kind(statement) == "TABLE":
            columns = accessor.column_definitions(statement)
            if columns:
                table, _ = accessor.create_target(statement)
                self.catalog.register_table(accessor.qualified_name(table), columns)
        elif isinstance(statement, exp.Cache):
            name, query = accessor.cache_target(statement)
            if query is not None:
                self.catalog.register_cache(name, query.sql(dialect=self.engine))
        elif isinstance(statement, exp.Uncache) and isinstance(statement.this, exp.Table):
            self.catalog.uncache(accessor.qualified_name(statement.this))
        elif isinstance(statement, exp.Drop) and isinstance(statement.this, exp.Table):
            self.catalog.drop(accessor.qualified_name(statement.this))
