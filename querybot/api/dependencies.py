from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from querybot.core.config import settings
from querybot.core.database import get_db, get_readonly_db
from querybot.ai_feature.provider import GeminiProvider
from querybot.ai_feature.service import QueryOrchestrator, build_orchestrator

db_dep = Annotated[AsyncSession, Depends(get_db)]
readonly_db_dep = Annotated[AsyncSession, Depends(get_readonly_db)]


# One provider (and one HTTP connection pool) per process, created in the lifespan
def get_provider(request: Request) -> GeminiProvider:
    return request.app.state.provider


provider_dep = Annotated[GeminiProvider, Depends(get_provider)]


async def get_orchestrator(
    db: db_dep, readonly_db: readonly_db_dep, provider: provider_dep
) -> QueryOrchestrator:
    return await build_orchestrator(db, readonly_db, provider, settings)


orchestrator_dep = Annotated[QueryOrchestrator, Depends(get_orchestrator)]
