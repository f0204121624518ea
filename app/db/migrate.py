"""Apply the dashboard schema (users, rollups, visitor records)."""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Iterator, Sequence

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")
TABLES = ("users", "dashboard_daily", "dashboard_hourly", "visitors")


def schema_statements() -> list[str]:
    return list(_load_statements(SCHEMA_PATH.read_text(encoding="utf-8")))


def run_migrations(engine: Engine) -> list[str]:
    """Create any missing tables and indexes; returns the tables that were created."""
    existing = set(inspect(engine).get_table_names())
    statements = schema_statements()
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    created = [name for name in TABLES if name not in existing]
    if created:
        logger.info("Created tables: %s", ", ".join(created))
    else:
        logger.info("Schema up to date (%s statements checked)", len(statements))
    return created


def _load_statements(sql: str) -> Iterator[str]:
    """Split on trailing semicolons; the schema file has no procedural blocks."""
    pending: list[str] = []
    for line in sql.splitlines():
        if not line.strip() or line.lstrip().startswith("--"):
            continue
        pending.append(line)
        if line.rstrip().endswith(";"):
            yield "\n".join(pending)
            pending = []
    if pending:
        yield "\n".join(pending)


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the visitor dashboard tables")
    parser.add_argument("--dry-run", action="store_true", help="print the statements instead of running them")
    args = parser.parse_args(argv)

    if args.dry_run:
        print("\n\n".join(schema_statements()))
        return

    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
