import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from querybot.core.config import settings
from querybot.core.database import engine, readonly_engine, Base
from querybot.core import models  # noqa: F401  (registers tables on Base)
from querybot.api.router import api_router
from querybot.ai_feature.provider import GeminiProvider

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Create tables and the provider client on startup, close everything on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables are up-to-date")

    app.state.provider = GeminiProvider(settings)
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; every provider call will fail")

    yield

    await app.state.provider.aclose()
    await readonly_engine.dispose()
    await engine.dispose()


app = FastAPI(title="Hybrid Query Bot API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Hybrid Query Bot API"}
