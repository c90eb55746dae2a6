import asyncio
import json
import logging
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, Any

from pydantic import ValidationError

from sakila_agent import db
from sakila_agent.cache import AsyncLoader
from sakila_agent.config import SCHEMA_PATH
from sakila_agent.errors import SchemaLoadError
from sakila_agent.models import ColumnInfo, Schema, TableSchema

logger = logging.getLogger(__name__)


def read_schema_file(path: Path = SCHEMA_PATH) -> Schema:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaLoadError(f"Cannot read schema file {path}: {e}") from e

    try:
        return Schema.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise SchemaLoadError(f"Malformed schema file {path}: {e}") from e


async def _load_from_disk() -> Schema:
    logger.info("Loading schema from %s", SCHEMA_PATH)
    schema = await asyncio.to_thread(read_schema_file, SCHEMA_PATH)
    logger.info("Schema for %s has %d tables", schema.database, len(schema.tables))
    return schema


schema_cache: AsyncLoader[Schema] = AsyncLoader(_load_from_disk, name="schema")


async def load_schema() -> Schema:
    return await schema_cache.get()


def summarize_schema(schema: Schema) -> str:
    """One line per table, ``table(col1, col2, ...)``, to keep prompts short."""
    lines = []
    for table_name, table in schema.tables.items():
        columns = ", ".join(table.columns) if table.columns else "unknown columns"
        lines.append(f"{table_name}({columns})")
    return f"Database: {schema.database}\nTables:\n" + "\n".join(lines)


# ==========================
# Introspection
# ==========================

def build_schema(database: str, column_rows: list[Dict[str, Any]]) -> Schema:
    tables: Dict[str, Dict[str, ColumnInfo]] = defaultdict(dict)
    for row in column_rows:
        tables[row["table_name"]][row["column_name"]] = ColumnInfo(
            type=row.get("column_type"),
            nullable=(row.get("is_nullable") == "YES"),
            key=row.get("column_key") or None,
        )
    return Schema(
        database=database,
        tables={name: TableSchema(columns=cols) for name, cols in tables.items()},
    )


async def introspect_schema() -> Schema:
    column_rows = await db.fetch_column_metadata()
    return build_schema(db.engine.url.database or "unknown", column_rows)


async def _dump(path: Path) -> None:
    try:
        schema = await introspect_schema()
    finally:
        await db.dispose_engine()
    path.write_text(schema.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
    print(f"Wrote {len(schema.tables)} tables to {path}")


if __name__ == "__main__":
    # python -m sakila_agent.schema [output.json]
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else SCHEMA_PATH
    asyncio.run(_dump(target))
