from typing import Annotated

from fastapi import APIRouter, Depends

from querybot.core import models, schemas
from querybot.core.config import settings
from querybot.core.security import validate_admin_role
from querybot.core.etl import pipeline
from querybot.api.dependencies import db_dep, provider_dep, readonly_db_dep

router = APIRouter(prefix="/bot/embeddings", tags=["Embeddings"])

admin_dep = Annotated[models.User, Depends(validate_admin_role)]


def to_run_response(run: dict) -> schemas.EmbeddingRunResponse:
    return schemas.EmbeddingRunResponse(
        status=run["status"].value,
        result=run.get("result"),
        error=run.get("error"),
        logs=run.get("logs", []),
    )


@router.post("/schema", response_model=schemas.EmbeddingRunResponse)
async def embed_schema(
    current_user: admin_dep,
    db: db_dep,
    readonly_db: readonly_db_dep,
    provider: provider_dep,
):
    """
    Describe and embed every queryable table.
    Re-running overwrites the stored description of each table.
    """
    run = await pipeline.run_schema_embedding(db, readonly_db, provider, settings)
    return to_run_response(run)


@router.post("/docs", response_model=schemas.EmbeddingRunResponse)
async def embed_docs(
    current_user: admin_dep,
    payload: schemas.EmbedDocsRequest,
    db: db_dep,
    provider: provider_dep,
):
    """Chunk and embed the markdown/text files of a server-side directory."""
    run = await pipeline.run_docs_embedding(db, provider, payload.directory, settings)
    return to_run_response(run)


@router.get("/status")
async def embedding_status(current_user: admin_dep, db: db_dep):
    """Counts of stored table descriptions and documentation chunks."""
    return await pipeline.get_embedding_status(db)
