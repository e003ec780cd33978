from fastapi import APIRouter
from querybot.api.endpoints import auth, bot, embeddings

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(auth.router)
api_router.include_router(bot.router)
api_router.include_router(embeddings.router)
