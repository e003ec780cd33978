# querybot/core/etl/ingest.py
"""
INGEST MODULE - Read what the bot should know about

Purpose:
    1. Introspect the relational schema (tables, columns, foreign keys)
    2. Describe every table as a short text summary
    3. Read documentation files and split them into chunks

Data Flow:
    DB schema → introspect_tables() → build_table_summary() → embed → schema_embeddings
    docs/*.md → iter_document_files() → chunk_document() → embed → knowledge_chunks

Embedding and storing happen in pipeline.py.
"""

import re
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession


# ============================================================================
# SCHEMA
# ============================================================================


def _inspect_tables(connection, excluded: Iterable[str]) -> List[Dict[str, Any]]:
    inspector = inspect(connection)
    excluded = set(excluded)
    tables = []

    for table_name in sorted(inspector.get_table_names()):
        if table_name in excluded:
            continue

        columns = [
            {
                "name": column["name"],
                "type": str(column["type"]),
                "nullable": bool(column.get("nullable", True)),
                "description": column.get("comment"),
            }
            for column in inspector.get_columns(table_name)
        ]

        relationships = []
        for fk in inspector.get_foreign_keys(table_name):
            # Composite keys become one edge per column pair
            for local, remote in zip(fk["constrained_columns"], fk["referred_columns"]):
                relationships.append(
                    {
                        "column": local,
                        "references_table": fk["referred_table"],
                        "references_column": remote,
                    }
                )

        tables.append(
            {"table_name": table_name, "columns": columns, "relationships": relationships}
        )

    return tables


async def introspect_tables(db: AsyncSession, excluded: Iterable[str] = ()) -> List[Dict[str, Any]]:
    """
    Describe every table the bot may query.

    Returns:
        [
            {
                "table_name": "orders",
                "columns": [{"name": "total", "type": "NUMERIC(12, 2)", "nullable": False, "description": None}],
                "relationships": [{"column": "customer_id", "references_table": "customers", "references_column": "id"}],
            }
        ]
    """
    excluded = list(excluded)
    return await db.run_sync(lambda session: _inspect_tables(session.connection(), excluded))


def build_table_summary(
    table_name: str, columns: List[Dict[str, Any]], relationships: List[Dict[str, Any]]
) -> str:
    """
    Text that gets embedded for a table.

    Example:
        Table: orders
        Columns: id (INTEGER) NOT NULL, total (NUMERIC(12, 2))
        Purpose: Stores orders related data.
        Relationships: customer_id -> customers.id
    """
    column_list = ", ".join(
        f"{col['name']} ({col['type']})" + ("" if col.get("nullable", True) else " NOT NULL")
        for col in columns
    )

    summary = f"Table: {table_name}\nColumns: {column_list}\nPurpose: Stores {table_name} related data."

    if relationships:
        relationships_text = ", ".join(
            f"{rel['column']} -> {rel['references_table']}.{rel['references_column']}"
            for rel in relationships
        )
        summary += f"\nRelationships: {relationships_text}"

    return summary


# ============================================================================
# DOCUMENTS
# ============================================================================

# Split right before "# ", "## " or "### " at the start of a line
HEADING_BOUNDARY = re.compile(r"(?=^#{1,3}\s)", re.M)

DOCUMENT_KINDS = {".md": "markdown", ".markdown": "markdown", ".txt": "text"}


def chunk_document(content: str) -> List[str]:
    """
    Split a document into sections on markdown headings.

    Example:
        "# Refunds\\nWithin 30 days.\\n## Exceptions\\nSale items."
        -> ["# Refunds\\nWithin 30 days.\\n", "## Exceptions\\nSale items."]
    """
    return [chunk for chunk in HEADING_BOUNDARY.split(content) if chunk.strip()]


def iter_document_files(directory: Path) -> Iterator[Tuple[Path, str]]:
    """Yield (path, source_type) for every supported file, sorted, recursively."""
    for path in sorted(directory.rglob("*")):
        kind = DOCUMENT_KINDS.get(path.suffix.lower())
        if kind and path.is_file():
            yield path, kind


def read_text_file(path: Path) -> str:
    # Same fallback as old Windows exports
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("windows-1251")
