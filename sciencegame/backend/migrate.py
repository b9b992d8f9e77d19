"""Create the PostgreSQL tables used by PostgresSessionStore."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from sciencegame.backend.config import configure_logging, load_settings


logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def read_schema(path: Path = SCHEMA_PATH) -> str:
    return path.read_text(encoding="utf-8")


def apply_schema(conn: Any, schema_sql: str) -> None:
    with conn.cursor() as cur:
        cur.execute(schema_sql)
    conn.commit()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply the science game session schema")
    parser.add_argument("--database-url", default=None, help="overrides SCIENCEGAME_DATABASE_URL")
    parser.add_argument("--dry-run", action="store_true", help="print the schema instead of applying it")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    schema_sql = read_schema()
    if args.dry_run:
        print(schema_sql)
        return

    database_url = args.database_url or settings.database_url
    if not database_url:
        raise RuntimeError("SCIENCEGAME_DATABASE_URL is required for migration")

    import psycopg

    with psycopg.connect(database_url) as conn:
        apply_schema(conn, schema_sql)
    logger.info("Applied session schema from %s", SCHEMA_PATH.name)


if __name__ == "__main__":
    main()
