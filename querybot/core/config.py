from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./querybot.db"
    # Generated SQL and schema introspection go through this connection
    READONLY_DATABASE_URL: Optional[str] = None

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Gemini provider
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/"
    GEMINI_EMBED_MODEL: str = "models/text-embedding-004"
    GEMINI_LLM_MODEL: str = "models/gemini-2.0-flash"
    GEMINI_TIMEOUT: float = 30.0
    GEMINI_MAX_RETRIES: int = 3
    GEMINI_RETRY_BACKOFF_SECONDS: float = 1.0

    # Bot behaviour
    BOT_REQUIRE_AUTH: bool = False
    BOT_QUERY_MAX_LENGTH: int = 500
    BOT_TABLE_LIMIT: int = 5
    BOT_DOC_LIMIT: int = 5
    BOT_HISTORY_LIMIT: int = 50
    SQL_DEFAULT_LIMIT: int = 100

    # Embedding ingestion
    EMBED_MIN_CHUNK_CHARS: int = 50
    EMBED_TABLE_DELAY_SECONDS: float = 1.0
    EMBED_CHUNK_DELAY_SECONDS: float = 0.7
    EMBED_FILE_DELAY_SECONDS: float = 2.0
    SCHEMA_EXCLUDED_TABLES: List[str] = [
        "schema_embeddings",
        "knowledge_chunks",
        "query_logs",
        "users_table",
        "alembic_version",
    ]

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file; frozen keeps it immutable after startup
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    @property
    def readonly_database_url(self) -> str:
        return self.READONLY_DATABASE_URL or self.DATABASE_URL


# Create a single instance of the settings to use everywhere
settings = Settings()
