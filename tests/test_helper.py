import logging

import pytest

from plan_lineage.config import LineageConfig
from plan_lineage.core.attribute import Attribute
from plan_lineage.core.plan import InsertIntoTable, Project, Relation, TableIdentifier
from plan_lineage.errors import PlanDepthError, PlanShapeError
from plan_lineage.helper import LineageParser, transform_to_lineage


def _insert(table):
    a = Attribute(1, "a")
    return InsertIntoTable(table, Project((a,), Relation((a,), TableIdentifier("t"))))


def test_transform_returns_lineage():
    lineage = transform_to_lineage(1, _insert(TableIdentifier("sink")))
    assert lineage.output_tables == ("sink",)
    assert lineage.to_dict()["columnLineage"] == [{"column": "sink.a", "originalColumns": ["t.a"]}]


def test_transform_failure_is_logged_and_swallowed(caplog):
    logger = logging.getLogger("plan_lineage.tests.helper")
    with caplog.at_level(logging.WARNING, logger=logger.name):
        assert transform_to_lineage(42, _insert(None), logger=logger) is None
    assert "Extract statement[42] columns lineage failed" in caplog.text


def test_transform_honours_depth_limit(caplog):
    with caplog.at_level(logging.WARNING):
        assert transform_to_lineage(7, _insert(TableIdentifier("sink")), LineageConfig(max_plan_depth=1)) is None
    assert "statement[7]" in caplog.text


def test_parser_propagates_errors():
    with pytest.raises(PlanShapeError):
        LineageParser().parse(_insert(None))
    with pytest.raises(PlanDepthError):
        LineageParser(LineageConfig(max_plan_depth=1)).parse(_insert(TableIdentifier("sink")))
