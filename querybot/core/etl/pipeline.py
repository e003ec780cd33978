import asyncio
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from querybot.core import models
from querybot.core.config import Settings
from querybot.core.etl import ingest
from querybot.ai_feature.provider import EmbeddingProvider
from querybot.ai_feature.types import Failure


# -----------------------------------------------------------------------------
# PIPELINE MODULE - Embedding runs
# Purpose: embed the schema and the documentation, pace provider calls, report what happened
# -----------------------------------------------------------------------------


class PipelineStatus(Enum):
    """Pipeline execution status."""

    COMPLETED = "completed"
    FAILED = "failed"


logger = logging.getLogger(__name__)


class PipelineLogger:
    """Collects timestamped log entries for one embedding run."""

    def __init__(self, run: str):
        self.run = run
        self.start_time = datetime.now()
        self.logs = []

    def log(self, step: str, message: str, level: str = "info"):
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "step": step,
            "message": message,
            "level": level,
            "elapsed_seconds": (datetime.now() - self.start_time).total_seconds(),
        }
        self.logs.append(log_entry)

        # Also log to console
        if level == "error":
            logger.error(f"[{self.run}] {step}: {message}")
        elif level == "warning":
            logger.warning(f"[{self.run}] {step}: {message}")
        else:
            logger.info(f"[{self.run}] {step}: {message}")

    def get_logs(self) -> List[Dict[str, Any]]:
        return self.logs


async def _pause(seconds: float):
    if seconds > 0:
        await asyncio.sleep(seconds)


async def upsert_schema_embedding(
    db: AsyncSession, table: Dict[str, Any], summary: str, embedding: List[float]
):
    """Insert or overwrite the row for this table name."""
    query = select(models.SchemaEmbedding).where(
        models.SchemaEmbedding.table_name == table["table_name"]
    )
    result = await db.execute(query)
    row = result.scalars().first()

    if row is None:
        row = models.SchemaEmbedding(table_name=table["table_name"])
        db.add(row)

    row.summary = summary
    row.columns = table["columns"]
    row.relationships = table["relationships"]
    row.embedding = embedding
    await db.commit()


async def run_schema_embedding(
    db: AsyncSession,
    readonly_db: AsyncSession,
    provider: EmbeddingProvider,
    config: Settings,
) -> Dict[str, Any]:
    """
    Embed every queryable table.

    Tables whose embedding fails are skipped and counted; a re-run overwrites
    existing rows.

    Returns:
        {"status": PipelineStatus.COMPLETED, "result": {"embedded": 4, "failed": 0, "tables": [...]}, "logs": [...]}
    """
    pipeline_logger = PipelineLogger("schema-embedding")
    pipeline_logger.log("introspect", "Reading database schema...")

    try:
        tables = await ingest.introspect_tables(readonly_db, config.SCHEMA_EXCLUDED_TABLES)
    except SQLAlchemyError as e:
        pipeline_logger.log("introspect", f"Schema introspection failed: {e}", "error")
        return {"status": PipelineStatus.FAILED, "error": str(e), "logs": pipeline_logger.get_logs()}

    if not tables:
        pipeline_logger.log("introspect", "No tables found in database", "error")
        return {
            "status": PipelineStatus.FAILED,
            "error": "No tables found in database",
            "logs": pipeline_logger.get_logs(),
        }

    pipeline_logger.log("introspect", f"Found {len(tables)} tables to embed")

    embedded, failed = [], []
    for index, table in enumerate(tables):
        summary = ingest.build_table_summary(
            table["table_name"], table["columns"], table["relationships"]
        )
        embedding = await provider.embed(summary)

        if isinstance(embedding, Failure):
            failed.append(table["table_name"])
            pipeline_logger.log(
                "embed", f"Failed to embed {table['table_name']}: {embedding.reason}", "warning"
            )
        else:
            try:
                await upsert_schema_embedding(db, table, summary, embedding.value)
                embedded.append(table["table_name"])
            except SQLAlchemyError as e:
                await db.rollback()
                failed.append(table["table_name"])
                pipeline_logger.log("store", f"Failed to store {table['table_name']}: {e}", "error")

        # Stay under the provider's requests-per-minute quota
        if index < len(tables) - 1:
            await _pause(config.EMBED_TABLE_DELAY_SECONDS)

    pipeline_logger.log("embed", f"Embedded {len(embedded)} tables, {len(failed)} failed")
    return {
        "status": PipelineStatus.COMPLETED,
        "result": {"embedded": len(embedded), "failed": len(failed), "tables": embedded},
        "logs": pipeline_logger.get_logs(),
    }


async def run_docs_embedding(
    db: AsyncSession,
    provider: EmbeddingProvider,
    directory: str,
    config: Settings,
) -> Dict[str, Any]:
    """
    Chunk and embed every documentation file under `directory`.

    Chunks shorter than EMBED_MIN_CHUNK_CHARS are dropped; new chunks are
    appended, existing ones are left alone. Files that cannot be decoded are
    logged and counted as unreadable.
    """
    pipeline_logger = PipelineLogger("docs-embedding")
    docs_dir = Path(directory)

    if not docs_dir.is_dir():
        pipeline_logger.log("read", f"Directory not found: {docs_dir}", "error")
        return {
            "status": PipelineStatus.FAILED,
            "error": f"Directory not found: {docs_dir}",
            "logs": pipeline_logger.get_logs(),
        }

    files = list(ingest.iter_document_files(docs_dir))
    pipeline_logger.log("read", f"Found {len(files)} documentation files")

    stored = skipped = failed = unreadable = 0
    for file_index, (path, source_type) in enumerate(files):
        relative = path.relative_to(docs_dir).as_posix()
        try:
            content = ingest.read_text_file(path)
        except UnicodeDecodeError as e:
            unreadable += 1
            pipeline_logger.log("read", f"Skipping {relative}, cannot decode: {e}", "warning")
            continue
        chunks = ingest.chunk_document(content)

        for chunk_index, chunk in enumerate(chunks):
            if len(chunk.strip()) < config.EMBED_MIN_CHUNK_CHARS:
                skipped += 1
                continue

            embedding = await provider.embed(chunk)
            if isinstance(embedding, Failure):
                failed += 1
                pipeline_logger.log(
                    "embed", f"Failed to embed chunk {chunk_index} of {relative}", "warning"
                )
                continue

            db.add(
                models.KnowledgeChunk(
                    source_file=relative,
                    source_type=source_type,
                    content=chunk,
                    chunk_metadata={
                        "filename": path.name,
                        "chunk_index": chunk_index,
                        "size": len(chunk),
                    },
                    embedding=embedding.value,
                )
            )
            stored += 1
            await _pause(config.EMBED_CHUNK_DELAY_SECONDS)

        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            pipeline_logger.log("store", f"Failed to store chunks of {relative}: {e}", "error")
            return {"status": PipelineStatus.FAILED, "error": str(e), "logs": pipeline_logger.get_logs()}

        if file_index < len(files) - 1:
            await _pause(config.EMBED_FILE_DELAY_SECONDS)

    pipeline_logger.log(
        "embed", f"Stored {stored} chunks ({skipped} too small, {failed} failed, {unreadable} unreadable files)"
    )
    return {
        "status": PipelineStatus.COMPLETED,
        "result": {
            "files": len(files),
            "stored": stored,
            "skipped": skipped,
            "failed": failed,
            "unreadable": unreadable,
        },
        "logs": pipeline_logger.get_logs(),
    }


async def get_embedding_status(db: AsyncSession) -> Dict[str, Any]:
    """How much the bot currently knows."""
    tables = await db.scalar(select(func.count(models.SchemaEmbedding.id)))
    chunks = await db.scalar(select(func.count(models.KnowledgeChunk.id)))
    sources = await db.scalar(
        select(func.count(func.distinct(models.KnowledgeChunk.source_file)))
    )
    return {
        "schema_tables": tables or 0,
        "knowledge_chunks": chunks or 0,
        "document_sources": sources or 0,
    }
