from plan_lineage.config import LineageConfig
from plan_lineage.engine.catalog import Catalog
from plan_lineage.engine.session import LineageSession

SCHEMA = {
    "customers": ["customer_id", "first_name", "last_name", "status"],
    "orders": ["order_id", "customer_id", "total_amount", "order_date"],
    "sales": {"orders_summary": {"customer_id": "int", "total": "decimal"}},
}


def _run(sql: str, schema=SCHEMA, **config):
    session = LineageSession(Catalog.from_schema(schema), config=LineageConfig(**config))
    return session.run(sql)


def _last(sql: str, schema=SCHEMA, **config):
    return _run(sql, schema, **config)[-1].lineage


def _columns(lineage):
    """{column: sorted sources} so assertions do not depend on traversal order."""
    return {c.column: sorted(c.original_columns) for c in lineage.column_lineage}


# --------------- plain queries ---------------
def test_select_star():
    lineage = _last("SELECT * FROM customers")
    assert _columns(lineage) == {
        "customer_id": ["customers.customer_id"],
        "first_name": ["customers.first_name"],
        "last_name": ["customers.last_name"],
        "status": ["customers.status"],
    }
    assert lineage.input_tables == ("customers",)
    assert lineage.output_tables == ()


def test_join_resolves_each_side_by_alias():
    lineage = _last(
        "SELECT c.first_name, o.total_amount FROM customers c JOIN orders o ON c.customer_id = o.customer_id"
    )
    assert _columns(lineage) == {
        "first_name": ["customers.first_name"],
        "total_amount": ["orders.total_amount"],
    }
    assert lineage.input_tables == ("customers", "orders")


def test_left_semi_join_reads_left_side_only():
    lineage = _last(
        "SELECT c.customer_id FROM customers c LEFT SEMI JOIN orders o ON c.customer_id = o.customer_id"
    )
    assert _columns(lineage) == {"customer_id": ["customers.customer_id"]}
    assert lineage.input_tables == ("customers",)


def test_union_all_combines_branches():
    lineage = _last("SELECT customer_id FROM customers UNION ALL SELECT customer_id FROM orders")
    assert _columns(lineage) == {"customer_id": ["customers.customer_id", "orders.customer_id"]}


def test_except_keeps_left_branch():
    lineage = _last("SELECT customer_id FROM customers EXCEPT SELECT customer_id FROM orders")
    assert _columns(lineage) == {"customer_id": ["customers.customer_id"]}
    assert lineage.input_tables == ("customers",)


def test_expression_aliases():
    lineage = _last("SELECT CONCAT(first_name, ' ', last_name) AS full_name, 1 AS one FROM customers")
    assert _columns(lineage) == {
        "full_name": ["customers.first_name", "customers.last_name"],
        "one": [],
    }


def test_count_star_points_at_table():
    assert _columns(_last("SELECT COUNT(*) AS n FROM orders")) == {"n": ["orders.__count__"]}


def test_count_star_survives_join_with_subquery():
    lineage = _last(
        "SELECT c.first_name, o.n FROM customers c CROSS JOIN (SELECT COUNT(*) AS n FROM orders) o"
    )
    assert _columns(lineage) == {
        "first_name": ["customers.first_name"],
        "n": ["orders.__count__"],
    }


def test_cte_is_traced_to_base_table():
    lineage = _last(
        """
        WITH big AS (SELECT customer_id, total_amount FROM orders WHERE total_amount > 100)
        SELECT b.customer_id, b.total_amount AS amount FROM big b
        """
    )
    assert _columns(lineage) == {
        "customer_id": ["orders.customer_id"],
        "amount": ["orders.total_amount"],
    }


def test_window_function_reads_partition_and_order_columns():
    lineage = _last(
        "SELECT order_id, RANK() OVER (PARTITION BY customer_id ORDER BY total_amount) AS rnk FROM orders"
    )
    assert _columns(lineage) == {
        "order_id": ["orders.order_id"],
        "rnk": ["orders.customer_id", "orders.total_amount"],
    }


def test_scalar_subquery_in_select_list():
    lineage = _last("SELECT customer_id, (SELECT MAX(total_amount) FROM orders) AS max_total FROM customers")
    assert _columns(lineage) == {
        "customer_id": ["customers.customer_id"],
        "max_total": ["orders.total_amount"],
    }
    assert set(lineage.input_tables) == {"customers", "orders"}


def test_rollup_groups_through_expand():
    lineage = _last(
        "SELECT customer_id, order_date, SUM(total_amount) AS total FROM orders GROUP BY ROLLUP(customer_id, order_date)"
    )
    assert _columns(lineage) == {
        "customer_id": ["orders.customer_id"],
        "order_date": ["orders.order_date"],
        "total": ["orders.total_amount"],
    }


# --------------- writes ---------------
def test_insert_select_with_group_by_uses_target_columns():
    lineage = _last(
        "INSERT INTO sales.orders_summary SELECT customer_id, SUM(total_amount) FROM orders GROUP BY customer_id"
    )
    assert _columns(lineage) == {
        "sales.orders_summary.customer_id": ["orders.customer_id"],
        "sales.orders_summary.total": ["orders.total_amount"],
    }
    assert lineage.output_tables == ("sales.orders_summary",)
    assert lineage.input_tables == ("orders",)


def test_insert_with_column_list_maps_by_position():
    lineage = _last(
        "INSERT INTO sales.orders_summary (total, customer_id) "
        "SELECT SUM(total_amount), customer_id FROM orders GROUP BY customer_id"
    )
    assert _columns(lineage) == {
        "sales.orders_summary.total": ["orders.total_amount"],
        "sales.orders_summary.customer_id": ["orders.customer_id"],
    }


def test_insert_into_unknown_table_keeps_query_names():
    lineage = _last("INSERT INTO new_sink SELECT customer_id FROM customers")
    assert _columns(lineage) == {"new_sink.customer_id": ["customers.customer_id"]}


def test_insert_values_reads_local_rows():
    lineage = _last("INSERT INTO customers VALUES (1, 'a', 'b', 'active')")
    assert _columns(lineage) == {
        "customers.customer_id": ["__local__.col1"],
        "customers.first_name": ["__local__.col2"],
        "customers.last_name": ["__local__.col3"],
        "customers.status": ["__local__.col4"],
    }
    assert lineage.input_tables == ("__local__",)


def test_insert_overwrite_directory():
    lineage = _last("INSERT OVERWRITE DIRECTORY '/data/out' SELECT first_name FROM customers")
    assert _columns(lineage) == {"`/data/out`.first_name": ["customers.first_name"]}


def test_merge_pairs_assigned_columns():
    lineage = _last(
        """
        MERGE INTO customers t USING orders s ON t.customer_id = s.customer_id
        WHEN MATCHED THEN UPDATE SET t.status = s.order_date
        WHEN NOT MATCHED THEN INSERT (customer_id, status) VALUES (s.customer_id, s.total_amount)
        """
    )
    assert _columns(lineage) == {
        "customers.status": ["orders.order_date", "orders.total_amount"],
        "customers.customer_id": ["orders.customer_id"],
    }
    assert lineage.output_tables == ("customers",)
    assert lineage.input_tables == ("orders",)


# --------------- session state ---------------
def test_ctas_table_is_readable_by_later_statements():
    results = _run(
        """
        CREATE TABLE summary AS SELECT customer_id, total_amount AS amount FROM orders;
        SELECT amount FROM summary
        """
    )
    assert _columns(results[0].lineage) == {
        "summary.customer_id": ["orders.customer_id"],
        "summary.amount": ["orders.total_amount"],
    }
    assert _columns(results[1].lineage) == {"amount": ["summary.amount"]}


_VIEW_SCRIPT = """
CREATE VIEW v_customers AS SELECT customer_id, first_name FROM customers;
SELECT first_name FROM v_customers
"""


def test_view_definition_and_expansion():
    created, selected = _run(_VIEW_SCRIPT)
    assert _columns(created.lineage) == {
        "v_customers.customer_id": ["customers.customer_id"],
        "v_customers.first_name": ["customers.first_name"],
    }
    assert _columns(selected.lineage) == {"first_name": ["customers.first_name"]}


def test_permanent_view_reported_as_source_when_skipped():
    selected = _run(_VIEW_SCRIPT, skip_parsing_permanent_views=True)[-1]
    assert _columns(selected.lineage) == {"first_name": ["v_customers.first_name"]}
    assert selected.lineage.input_tables == ("v_customers",)


def test_temporary_view_always_expanded():
    created, selected = _run(
        "CREATE TEMPORARY VIEW tv AS SELECT status FROM customers; SELECT status FROM tv",
        skip_parsing_permanent_views=True,
    )
    assert created.lineage.column_lineage == ()
    assert _columns(selected.lineage) == {"status": ["customers.status"]}


def test_dropped_view_is_no_longer_expanded():
    lineage = _run(_VIEW_SCRIPT.replace("SELECT first_name", "DROP VIEW v_customers;\nSELECT first_name"))[-1].lineage
    assert _columns(lineage) == {"first_name": ["v_customers.first_name"]}


def test_cached_query_traced_to_its_source():
    results = _run("CACHE TABLE hot AS SELECT customer_id, status FROM customers; SELECT status FROM hot")
    assert _columns(results[-1].lineage) == {"status": ["customers.status"]}


def test_table_joined_with_view_keeps_table_sources():
    lineage = _run(
        """
        CREATE VIEW v_status AS SELECT customer_id, status FROM customers;
        SELECT o.total_amount, v.status FROM orders o JOIN v_status v ON o.customer_id = v.customer_id
        """
    )[-1].lineage
    assert _columns(lineage) == {
        "total_amount": ["orders.total_amount"],
        "status": ["customers.status"],
    }
    assert set(lineage.input_tables) == {"orders", "customers"}


def test_table_joined_with_cached_table_keeps_table_sources():
    lineage = _run(
        """
        CACHE TABLE hot AS SELECT customer_id, status FROM customers;
        SELECT o.total_amount, h.status FROM orders o JOIN hot h ON o.customer_id = h.customer_id
        """
    )[-1].lineage
    assert _columns(lineage) == {
        "total_amount": ["orders.total_amount"],
        "status": ["customers.status"],
    }
    assert set(lineage.input_tables) == {"orders", "customers"}


def test_table_cross_joined_with_constant_subquery():
    lineage = _last("SELECT o.order_id, b.c FROM orders o CROSS JOIN (SELECT 1 AS c) b")
    assert _columns(lineage) == {"order_id": ["orders.order_id"], "c": []}
    assert lineage.input_tables == ("orders",)


# --------------- tables outside the catalog ---------------
def test_unknown_tables_get_inferred_columns():
    lineage = _last("SELECT a.x, b.y FROM raw_a a JOIN raw_b b ON a.id = b.id", schema={})
    assert _columns(lineage) == {"x": ["raw_a.x"], "y": ["raw_b.y"]}


def test_unqualified_columns_of_single_unknown_table():
    lineage = _last("SELECT col1, col2 FROM raw_events", schema={})
    assert _columns(lineage) == {"col1": ["raw_events.col1"], "col2": ["raw_events.col2"]}


def test_star_over_unknown_table_has_no_lineage():
    assert _last("SELECT * FROM raw_events", schema={}) is None


# --------------- execution ids ---------------
def test_statements_get_sequential_execution_ids():
    results = _run("SELECT 1 AS a; SELECT * FROM missing_table; SELECT first_name FROM customers")
    assert [r.execution_id for r in results] == [1, 2, 3]
    assert results[1].lineage is None
    assert results[2].lineage is not None
