import argparse
import csv
import glob
import json
import os
import sys
from typing import Dict, List, Optional

from plan_lineage.config import LineageConfig
from plan_lineage.engine.catalog import Catalog
from plan_lineage.engine.session import LineageSession
from plan_lineage.logger import get_logger
from plan_lineage.models import CSV_HEADER


def find_sql_files(folder: str) -> List[str]:
	pattern = os.path.join(folder, "**", "*.sql")
	return sorted(glob.glob(pattern, recursive=True))


def load_schema_csv(path: str) -> Dict:
	"""Read database,table,column,data_type rows into a nested schema dict."""
	schema: Dict = {}
	with open(path, "r", encoding="utf-8") as f:
		reader = csv.reader(f)
		next(reader, None)
		for row in reader:
			if not row or all(not c.strip() for c in row):
				continue
			if len(row) < 4:
				row = row + ["" for _ in range(4 - len(row))]
			db, tbl, col, dtype = [c.strip() for c in row[:4]]
			if not tbl or not col:
				continue
			ref = schema
			if db:
				ref = ref.setdefault(db.lower(), {})
			ref.setdefault(tbl.lower(), {})[col.lower()] = dtype.lower() if dtype else "unknown"
	return schema


def write_json(path: str, results: List[Dict]) -> None:
	with open(path, "w", encoding="utf-8") as f:
		json.dump(results, f, indent=2)


def write_csv(path: str, results: List[Dict]) -> None:
	with open(path, "w", encoding="utf-8", newline="") as f:
		writer = csv.writer(f)
		writer.writerow(CSV_HEADER)
		for r in results:
			writer.writerows(r["rows"])


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Column lineage of SQL scripts, computed over resolved logical plans")
	parser.add_argument("--sql-folder", default="sql", help="Folder containing .sql files")
	parser.add_argument("--engine", default="spark", help="sqlglot dialect used to read the scripts (spark, hive, databricks)")
	parser.add_argument("--output", default="lineage.json", help="Path to the output file")
	parser.add_argument("--format", choices=["json", "csv"], default="json", help="Output format")
	parser.add_argument(
		"--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level"
	)
	parser.add_argument(
		"--schema",
		default=None,
		help="JSON string of schema dict, e.g., '{\"table\": [\"col1\", \"col2\"]}'",
	)
	parser.add_argument("--schema-file", default=None, help="Path to JSON file containing schema dict")
	parser.add_argument(
		"--schema-csv",
		default=None,
		help="Path to CSV file with columns: database,table,column,data_type",
	)
	parser.add_argument(
		"--skip-permanent-views",
		action="store_true",
		default=None,
		help="Report persisted views as sources instead of expanding their definitions",
	)
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)
	logger = get_logger(level=args.log_level)

	schema = None
	# CSV schema has highest precedence
	if args.schema_csv:
		if not os.path.exists(args.schema_csv):
			logger.error(f"Schema CSV not found: {args.schema_csv}")
			return 1
		try:
			schema = load_schema_csv(args.schema_csv)
		except (OSError, csv.Error, UnicodeDecodeError) as e:
			logger.error(f"Failed to parse schema CSV {args.schema_csv}: {e}")
			return 1
		logger.info(f"Loaded schema from CSV {args.schema_csv} with {len(schema)} top-level entries")
	elif args.schema_file:
		try:
			with open(args.schema_file, "r", encoding="utf-8") as f:
				schema = json.load(f)
		except (json.JSONDecodeError, FileNotFoundError) as e:
			logger.error(f"Error loading schema from {args.schema_file}: {e}")
			return 1
	elif args.schema:
		try:
			schema = json.loads(args.schema)
		except json.JSONDecodeError as e:
			logger.error(f"Invalid schema JSON: {e}")
			return 1
	if schema is not None and not isinstance(schema, dict):
		logger.error("Schema must be a JSON object")
		return 1

	try:
		config = LineageConfig.from_env()
	except ValueError as e:
		logger.error(f"Invalid lineage configuration: {e}")
		return 1
	if args.skip_permanent_views:
		config = LineageConfig(skip_parsing_permanent_views=True, max_plan_depth=config.max_plan_depth)

	sql_files = find_sql_files(args.sql_folder)
	if not sql_files:
		logger.error(f"No SQL files found in {args.sql_folder}")
		return 2

	results: List[Dict] = []
	for path in sql_files:
		session = LineageSession(Catalog.from_schema(schema), engine=args.engine, config=config, logger=logger)
		statements = session.run_file(path)
		for s in statements:
			entry = {"file": path, "statement": s.execution_id, "sql": s.sql, "lineage": None, "rows": []}
			if s.lineage is not None:
				entry["lineage"] = s.lineage.to_dict()
				entry["rows"] = s.lineage.as_csv_rows(path, s.execution_id)
			results.append(entry)
		failed = sum(1 for s in statements if s.lineage is None)
		logger.info(f"Processed {path}: {len(statements)} statements, {failed} without lineage")

	if args.format == "csv":
		write_csv(args.output, results)
	else:
		write_json(args.output, [{k: v for k, v in r.items() if k != "rows"} for r in results])
	logger.info(f"Wrote lineage for {len(results)} statements to {args.output}")
	return 0


if __name__ == "__main__":
	sys.exit(main())
