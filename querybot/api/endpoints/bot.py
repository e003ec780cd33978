from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import case, desc, func, select

from querybot.core import models, schemas
from querybot.core.config import settings
from querybot.core.security import get_current_user, get_optional_user, validate_admin_role
from querybot.api.dependencies import db_dep, orchestrator_dep
from querybot.ai_feature.service import OutcomeRecord

router = APIRouter(prefix="/bot", tags=["Bot"])

user_dep = Annotated[models.User, Depends(get_current_user)]
optional_user_dep = Annotated[Optional[models.User], Depends(get_optional_user)]
admin_dep = Annotated[models.User, Depends(validate_admin_role)]


def to_response(outcome: OutcomeRecord) -> schemas.AskResponse:
    visualization = None
    if outcome.visualization is not None:
        visualization = schemas.VisualizationResponse(
            kind=outcome.visualization.kind,
            markup=outcome.visualization.markup,
            insights=outcome.visualization.insights,
        )

    return schemas.AskResponse(
        success=outcome.success,
        data=schemas.AskData(
            answer=outcome.answer,
            intent=outcome.intent.value,
            elapsed_ms=outcome.elapsed_ms,
            sql=outcome.structured_query,
            sources=outcome.sources,
            visualization=visualization,
        ),
        error=outcome.error,
    )


@router.post("/ask", response_model=schemas.AskResponse)
async def ask(
    payload: schemas.AskRequest,
    orchestrator: orchestrator_dep,
    current_user: optional_user_dep,
):
    """
    Answer a question from the database, the documentation, or both.
    Failed answers come back with 400 and the same envelope.
    """
    user_id = str(current_user.id) if current_user else None
    outcome = await orchestrator.handle(payload.query, user_id)

    response = to_response(outcome)
    return JSONResponse(
        status_code=status.HTTP_200_OK if outcome.success else status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json"),
    )


@router.get("/history", response_model=List[schemas.QueryLogResponse])
async def history(current_user: user_dep, db: db_dep):
    """Return the caller's most recent questions, newest first."""
    query = (
        select(models.QueryLog)
        .where(models.QueryLog.user_id == str(current_user.id))
        .order_by(desc(models.QueryLog.created_at), desc(models.QueryLog.id))
        .limit(settings.BOT_HISTORY_LIMIT)
    )
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/stats", response_model=schemas.BotStatsResponse)
async def stats(current_user: admin_dep, db: db_dep):
    """Admin-only usage statistics."""
    totals = await db.execute(
        select(
            func.count(models.QueryLog.id),
            func.coalesce(func.sum(case((models.QueryLog.success.is_(True), 1), else_=0)), 0),
            func.avg(models.QueryLog.response_time_ms),
        )
    )
    total, successful, avg_time = totals.one()

    breakdown = await db.execute(
        select(models.QueryLog.intent, func.count(models.QueryLog.id)).group_by(
            models.QueryLog.intent
        )
    )

    return schemas.BotStatsResponse(
        total_queries=total,
        successful_queries=successful,
        failed_queries=total - successful,
        avg_response_time=float(avg_time) if avg_time is not None else None,
        intent_breakdown={intent or "unknown": count for intent, count in breakdown.all()},
        schema_embeddings_count=await db.scalar(select(func.count(models.SchemaEmbedding.id))),
        knowledge_chunks_count=await db.scalar(select(func.count(models.KnowledgeChunk.id))),
    )
