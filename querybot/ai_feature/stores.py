import logging
from typing import Any, Dict, List, Protocol

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from querybot.core import models
from querybot.ai_feature.errors import ExecutionFailure
from querybot.ai_feature.types import (
    ColumnInfo,
    DocumentChunk,
    ForeignKeyEdge,
    QueryLogEntry,
    SchemaTableDescriptor,
)

logger = logging.getLogger(__name__)


class RelationalStore(Protocol):
    async def execute(self, sql: str) -> List[Dict[str, Any]]: ...


class PersistenceSink(Protocol):
    async def write(self, entry: QueryLogEntry): ...


# -----------------------------------------------------------------------------
# Loading stored embeddings
# -----------------------------------------------------------------------------


def to_table_descriptor(row: models.SchemaEmbedding) -> SchemaTableDescriptor:
    columns = [
        ColumnInfo(
            name=col["name"],
            type=str(col.get("type", "")),
            nullable=bool(col.get("nullable", True)),
            description=col.get("description"),
        )
        for col in (row.columns or [])
    ]
    relationships = [
        ForeignKeyEdge(
            column=rel["column"],
            references_table=rel["references_table"],
            references_column=rel.get("references_column", "id"),
        )
        for rel in (row.relationships or [])
        if rel.get("references_table")
    ]
    return SchemaTableDescriptor(
        table_name=row.table_name,
        summary=row.summary,
        columns=columns,
        relationships=relationships,
        embedding=list(row.embedding or []),
    )


def to_document_chunk(row: models.KnowledgeChunk) -> DocumentChunk:
    return DocumentChunk(
        source=row.source_file,
        source_type=row.source_type,
        content=row.content,
        metadata=dict(row.chunk_metadata or {}),
        embedding=list(row.embedding or []),
    )


async def load_schema_tables(db: AsyncSession) -> List[SchemaTableDescriptor]:
    result = await db.execute(select(models.SchemaEmbedding).order_by(models.SchemaEmbedding.id))
    return [to_table_descriptor(row) for row in result.scalars().all()]


async def load_document_chunks(db: AsyncSession) -> List[DocumentChunk]:
    # Ordered by id so equal scores keep ingestion order
    result = await db.execute(select(models.KnowledgeChunk).order_by(models.KnowledgeChunk.id))
    return [to_document_chunk(row) for row in result.scalars().all()]


# -----------------------------------------------------------------------------
# Running validated SQL
# -----------------------------------------------------------------------------


class ReadOnlyExecutor:
    """Runs validated SELECTs on the read-only session and never commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def execute(self, sql: str) -> List[Dict[str, Any]]:
        try:
            result = await self.db.execute(text(sql))
            return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as error:
            logger.error(f"SQL execution failed: {error} | sql={sql}")
            raise ExecutionFailure(str(getattr(error, "orig", None) or error), sql) from error
        finally:
            await self.db.rollback()


# -----------------------------------------------------------------------------
# Query log
# -----------------------------------------------------------------------------


class SqlQueryLogSink:
    """Appends QueryLogEntry records to the query_logs table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def write(self, entry: QueryLogEntry):
        log = models.QueryLog(
            user_id=entry.user_id,
            query=entry.query,
            intent=entry.intent,
            generated_sql=entry.generated_query,
            retrieved_tables=list(entry.tables),
            result=dict(entry.result_summary),
            response_time_ms=entry.elapsed_ms,
            success=entry.success,
            error_message=entry.error,
        )
        try:
            self.db.add(log)
            await self.db.commit()
        except SQLAlchemyError as error:
            await self.db.rollback()
            logger.error(f"Failed to store query log: {error}")
