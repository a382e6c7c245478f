import csv
import json

import sql_lineage_parser
from plan_lineage.models import CSV_HEADER

SCHEMA = {"orders": ["order_id", "customer_id", "total_amount"]}


def _write_script(folder, name, sql):
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    path.write_text(sql, encoding="utf-8")
    return path


def test_json_output(tmp_path):
    sql_dir = tmp_path / "sql"
    _write_script(sql_dir, "report.sql", "SELECT order_id, total_amount AS amount FROM orders;")
    out = tmp_path / "lineage.json"

    code = sql_lineage_parser.main(
        ["--sql-folder", str(sql_dir), "--output", str(out), "--schema", json.dumps(SCHEMA)]
    )

    assert code == 0
    results = json.loads(out.read_text(encoding="utf-8"))
    assert len(results) == 1
    assert results[0]["statement"] == 1
    assert results[0]["lineage"]["inputTables"] == ["orders"]
    assert {c["column"]: c["originalColumns"] for c in results[0]["lineage"]["columnLineage"]} == {
        "order_id": ["orders.order_id"],
        "amount": ["orders.total_amount"],
    }


def test_csv_output_and_schema_csv(tmp_path):
    sql_dir = tmp_path / "sql"
    _write_script(sql_dir / "nested", "load.sql", "INSERT INTO dw.facts SELECT customer_id FROM orders;")
    schema_csv = tmp_path / "schema.csv"
    schema_csv.write_text(
        "database,table,column,data_type\n,orders,customer_id,int\ndw,facts,customer_key,int\n",
        encoding="utf-8",
    )
    out = tmp_path / "lineage.csv"

    code = sql_lineage_parser.main(
        ["--sql-folder", str(sql_dir), "--output", str(out), "--format", "csv", "--schema-csv", str(schema_csv)]
    )

    assert code == 0
    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_HEADER
    assert rows[1][1:] == ["1", "dw.facts.customer_key", "orders.customer_id"]


def test_load_schema_csv_nests_databases(tmp_path):
    schema_csv = tmp_path / "schema.csv"
    schema_csv.write_text("database,table,column,data_type\nDW,Facts,Id,INT\n,t,c,\n", encoding="utf-8")
    assert sql_lineage_parser.load_schema_csv(str(schema_csv)) == {
        "dw": {"facts": {"id": "int"}},
        "t": {"c": "unknown"},
    }


def test_missing_sql_files_exit_code(tmp_path):
    assert sql_lineage_parser.main(["--sql-folder", str(tmp_path / "empty")]) == 2


def test_invalid_schema_json_exit_code(tmp_path):
    assert sql_lineage_parser.main(["--sql-folder", str(tmp_path), "--schema", "{not json"]) == 1


def test_schema_must_be_an_object(tmp_path):
    assert sql_lineage_parser.main(["--sql-folder", str(tmp_path), "--schema", "[1, 2]"]) == 1


def test_unplannable_statement_is_written_without_lineage(tmp_path):
    sql_dir = tmp_path / "sql"
    _write_script(sql_dir, "bad.sql", "SELECT * FROM unknown_source;")
    out = tmp_path / "lineage.json"

    assert sql_lineage_parser.main(["--sql-folder", str(sql_dir), "--output", str(out)]) == 0
    results = json.loads(out.read_text(encoding="utf-8"))
    assert results[0]["lineage"] is None
