from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")

# Every stored vector must come from the same embedding model/version,
# otherwise similarity scores between them are meaningless.
EmbeddingVector = List[float]


# =========================
# Provider results
# =========================
@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    reason: str


ProviderResult = Union[Ok[T], Failure]


# =========================
# Intent
# =========================
class Intent(str, Enum):
    STRUCTURED = "structured"
    UNSTRUCTURED = "unstructured"
    COMBINED = "combined"


# =========================
# Stored records
# =========================
@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class ForeignKeyEdge:
    column: str
    references_table: str
    references_column: str


@dataclass(frozen=True)
class SchemaTableDescriptor:
    table_name: str
    summary: str
    columns: List[ColumnInfo]
    relationships: List[ForeignKeyEdge]
    embedding: EmbeddingVector


@dataclass(frozen=True)
class DocumentChunk:
    source: str
    content: str
    embedding: EmbeddingVector
    source_type: str = "markdown"
    metadata: Dict[str, Any] = field(default_factory=dict)


# =========================
# Ranked results
# =========================
@dataclass
class RankedTable:
    table_name: str
    summary: str
    columns: List[ColumnInfo]
    relationships: List[ForeignKeyEdge]
    score: float


@dataclass
class RankedChunk:
    content: str
    source: str
    metadata: Dict[str, Any]
    score: float


# =========================
# Router / synthesizer outputs
# =========================
@dataclass(frozen=True)
class SubQueries:
    structured_query: str
    unstructured_query: str


@dataclass
class Visualization:
    kind: str = "none"
    markup: Optional[str] = None
    insights: List[str] = field(default_factory=list)


@dataclass
class NarratedResult:
    answer: str
    visualization: Visualization = field(default_factory=Visualization)


# =========================
# Query log
# =========================
@dataclass(frozen=True)
class QueryLogEntry:
    query: str
    intent: str
    success: bool
    elapsed_ms: int
    generated_query: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    result_summary: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    user_id: Optional[str] = None
