"""Orchestration layer.

Flow per question:
1. Classify intent (structured / unstructured / combined)
2. Retrieve schema tables and/or documentation chunks
3. Generate SQL, validate it, execute it read-only
4. Compose the final answer (plus an optional chart)
5. Log the outcome
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from querybot.core.config import Settings
from querybot.ai_feature import stores
from querybot.ai_feature.document_index import DocumentIndex
from querybot.ai_feature.errors import BotError, ExecutionFailure, ValidationFailure
from querybot.ai_feature.query_router import QueryRouter
from querybot.ai_feature.schema_index import SchemaIndex
from querybot.ai_feature.sql_generation import QueryValidator, SqlGenerator
from querybot.ai_feature.synthesizer import AnswerSynthesizer
from querybot.ai_feature.types import Failure, Intent, QueryLogEntry, Visualization

logger = logging.getLogger(__name__)


@dataclass
class BranchResult:
    """Result of one retrieval path before it becomes an outcome."""

    success: bool
    answer: Optional[str] = None
    error: Optional[str] = None
    structured_query: Optional[str] = None
    tables_used: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    rows: Optional[List[Dict[str, Any]]] = None
    visualization: Optional[Visualization] = None


@dataclass
class OutcomeRecord:
    success: bool
    answer: Optional[str]
    intent: Intent
    elapsed_ms: int = 0
    structured_query: Optional[str] = None
    sources: Optional[List[str]] = None
    visualization: Optional[Visualization] = None
    error: Optional[str] = None
    tables_used: List[str] = field(default_factory=list)
    rows: Optional[List[Dict[str, Any]]] = None


class QueryOrchestrator:
    def __init__(
        self,
        router: QueryRouter,
        schema_index: SchemaIndex,
        document_index: DocumentIndex,
        sql_generator: SqlGenerator,
        validator: QueryValidator,
        executor: stores.RelationalStore,
        synthesizer: AnswerSynthesizer,
        log_sink: stores.PersistenceSink,
        table_limit: int = 5,
        doc_limit: int = 5,
    ):
        self.router = router
        self.schema_index = schema_index
        self.document_index = document_index
        self.sql_generator = sql_generator
        self.validator = validator
        self.executor = executor
        self.synthesizer = synthesizer
        self.log_sink = log_sink
        self.table_limit = table_limit
        self.doc_limit = doc_limit

    async def handle(self, query: str, user_id: Optional[str] = None) -> OutcomeRecord:
        if not isinstance(query, str) or not query.strip():
            raise ValueError("query must be a non-empty string")

        start = time.perf_counter()
        intent = await self.router.classify(query)

        if intent == Intent.STRUCTURED:
            outcome = self._from_branch(intent, await self._guarded(self.run_structured(query)))
        elif intent == Intent.COMBINED:
            outcome = await self.run_combined(query)
        else:
            outcome = self._from_branch(intent, await self._guarded(self.run_unstructured(query)))

        outcome.elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Handled query intent={intent.value} success={outcome.success} "
            f"elapsed_ms={outcome.elapsed_ms}"
        )

        await self.log_sink.write(
            QueryLogEntry(
                query=query,
                intent=intent.value,
                success=outcome.success,
                elapsed_ms=outcome.elapsed_ms,
                generated_query=outcome.structured_query,
                tables=list(outcome.tables_used),
                result_summary={
                    "success": outcome.success,
                    "row_count": len(outcome.rows) if outcome.rows is not None else None,
                    "source_count": len(outcome.sources or []),
                },
                error=outcome.error,
                user_id=user_id,
            )
        )
        return outcome

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    async def run_structured(self, query: str) -> BranchResult:
        tables = await self.schema_index.retrieve(query, self.table_limit)
        if not tables:
            return BranchResult(success=False, error="No relevant tables found for this query")

        generated = await self.sql_generator.generate(query, tables)
        if generated is None:
            return BranchResult(
                success=False,
                error="Could not generate SQL for this query",
                tables_used=[t.table_name for t in tables],
            )

        try:
            validation = self.validator.validate(generated.sql, generated.tables_used)
            if not validation.valid:
                raise ValidationFailure(validation.errors, generated.sql)
            rows = await self.executor.execute(validation.sql)
        except (ValidationFailure, ExecutionFailure) as error:
            logger.warning(f"Structured branch failed: {error}")
            return BranchResult(
                success=False,
                error=str(error),
                structured_query=error.sql,
                tables_used=generated.tables_used,
            )

        narrated = await self.synthesizer.narrate_with_visualization(query, rows)
        return BranchResult(
            success=True,
            answer=narrated.answer,
            structured_query=validation.sql,
            tables_used=generated.tables_used,
            rows=rows,
            visualization=narrated.visualization,
        )

    async def run_unstructured(self, query: str) -> BranchResult:
        chunks = await self.document_index.retrieve(query, self.doc_limit)
        if not chunks:
            return BranchResult(success=False, error="No relevant documentation found")

        answer = await self.synthesizer.answer_from_context(query, chunks)
        sources = list(dict.fromkeys(chunk.source for chunk in chunks))
        if answer is None:
            return BranchResult(
                success=False,
                error="Could not generate an answer from the documentation",
                sources=sources,
            )
        return BranchResult(success=True, answer=answer, sources=sources)

    async def run_combined(self, query: str) -> OutcomeRecord:
        decomposition = await self.router.decompose(query)
        if isinstance(decomposition, Failure):
            logger.info(f"Decomposition failed ({decomposition.reason}), using original query")
            structured_query, unstructured_query = query, query
        else:
            structured_query = decomposition.value.structured_query
            unstructured_query = decomposition.value.unstructured_query

        # Both branches finish (or fail) before synthesis starts
        structured, unstructured = await asyncio.gather(
            self._guarded(self.run_structured(structured_query)),
            self._guarded(self.run_unstructured(unstructured_query)),
        )

        if not structured.success and not unstructured.success:
            return OutcomeRecord(
                success=False,
                answer=None,
                intent=Intent.COMBINED,
                structured_query=structured.structured_query,
                error=f"Structured: {structured.error}; Unstructured: {unstructured.error}",
                tables_used=structured.tables_used,
            )

        answer = await self.synthesizer.synthesize_hybrid(
            query,
            structured.answer if structured.success else None,
            unstructured.answer if unstructured.success else None,
        )

        visualization = None
        if structured.success:
            base = structured.visualization or Visualization()
            visualization = Visualization(
                kind=base.kind, markup=base.markup, insights=list(base.insights)
            )
            source_count = len(unstructured.sources) if unstructured.success else 0
            visualization.insights.append(
                f"{source_count} documentation source(s) contributed to this answer"
            )

        return OutcomeRecord(
            success=True,
            answer=answer,
            intent=Intent.COMBINED,
            structured_query=structured.structured_query,
            sources=unstructured.sources or None,
            visualization=visualization,
            tables_used=structured.tables_used,
            rows=structured.rows,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _guarded(self, branch) -> BranchResult:
        try:
            return await branch
        except BotError as error:
            return BranchResult(success=False, error=str(error))
        except Exception as error:
            # Any other error is a failed branch; the query log is still written
            logger.error(f"Unexpected error while answering: {error!r}", exc_info=True)
            return BranchResult(
                success=False, error=f"Unexpected {type(error).__name__} while answering"
            )

    def _from_branch(self, intent: Intent, branch: BranchResult) -> OutcomeRecord:
        return OutcomeRecord(
            success=branch.success,
            answer=branch.answer if branch.success else None,
            intent=intent,
            structured_query=branch.structured_query,
            sources=branch.sources or None,
            visualization=branch.visualization,
            error=branch.error,
            tables_used=branch.tables_used,
            rows=branch.rows,
        )


async def build_orchestrator(
    db: AsyncSession,
    readonly_db: AsyncSession,
    provider,
    config: Settings,
) -> QueryOrchestrator:
    """Assemble an orchestrator over the currently stored embeddings."""
    schema_index = SchemaIndex(provider, await stores.load_schema_tables(db))
    document_index = DocumentIndex(provider, await stores.load_document_chunks(db))

    return QueryOrchestrator(
        router=QueryRouter(provider, schema_index.table_names(), document_index.topics()),
        schema_index=schema_index,
        document_index=document_index,
        sql_generator=SqlGenerator(provider, default_limit=config.SQL_DEFAULT_LIMIT),
        validator=QueryValidator(
            schema_index.relationship_map(), default_limit=config.SQL_DEFAULT_LIMIT
        ),
        executor=stores.ReadOnlyExecutor(readonly_db),
        synthesizer=AnswerSynthesizer(provider),
        log_sink=stores.SqlQueryLogSink(db),
        table_limit=config.BOT_TABLE_LIMIT,
        doc_limit=config.BOT_DOC_LIMIT,
    )
