import re
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator

from querybot.core.config import settings


# =========================
# Enums
# =========================
class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


# =========================
# USER
# =========================
class UserBase(BaseModel):
    email: EmailStr
    role: UserRole = UserRole.USER


class CreateUser(UserBase):
    password: str = Field(min_length=8)
    model_config = ConfigDict(from_attributes=True)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(UserBase):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# =========================
# BOT
# =========================
SUSPICIOUS_PATTERNS = [
    re.compile(r"\b(DROP|DELETE|UPDATE|INSERT|TRUNCATE|ALTER|CREATE)\b", re.I),
    re.compile(r"--|#|/\*"),
    re.compile(r";\s*\w+"),
]


class AskRequest(BaseModel):
    query: str = Field(min_length=1, max_length=settings.BOT_QUERY_MAX_LENGTH)

    @field_validator("query")
    @classmethod
    def reject_suspicious(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Query must not be blank")
        for pattern in SUSPICIOUS_PATTERNS:
            if pattern.search(value):
                raise ValueError("Query contains suspicious patterns")
        return value


class VisualizationResponse(BaseModel):
    kind: str = "none"
    markup: Optional[str] = None
    insights: List[str] = []


class AskData(BaseModel):
    answer: Optional[str] = None
    intent: str
    elapsed_ms: int
    sql: Optional[str] = None
    sources: Optional[List[str]] = None
    visualization: Optional[VisualizationResponse] = None


class AskResponse(BaseModel):
    success: bool
    data: AskData
    error: Optional[str] = None


class QueryLogResponse(BaseModel):
    id: int
    query: str
    intent: Optional[str] = None
    generated_sql: Optional[str] = None
    retrieved_tables: Optional[List[str]] = None
    response_time_ms: Optional[int] = None
    success: bool
    error_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BotStatsResponse(BaseModel):
    total_queries: int
    successful_queries: int
    failed_queries: int
    avg_response_time: Optional[float] = None
    intent_breakdown: Dict[str, int] = {}
    schema_embeddings_count: int
    knowledge_chunks_count: int


# =========================
# EMBEDDING RUNS
# =========================
class EmbedDocsRequest(BaseModel):
    directory: str = "docs"


class EmbeddingRunResponse(BaseModel):
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    logs: List[Dict[str, Any]] = []
