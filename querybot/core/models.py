from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    TIMESTAMP,
    Text,
    JSON,
)
from sqlalchemy.sql import func

from querybot.core.database import Base


# =========================
# User
# =========================
class User(Base):
    __tablename__ = "users_table"

    id = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String, nullable=False, unique=True, index=True)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, server_default="user")

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Schema embedding (one row per described table)
# =========================
class SchemaEmbedding(Base):
    """
    Description of a queryable table plus the embedding of its summary.

    Rows are overwritten by table name every time the schema is re-embedded
    and are read-only while questions are answered.
    """

    __tablename__ = "schema_embeddings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    table_name = Column(String, nullable=False, unique=True, index=True)
    summary = Column(Text, nullable=False)

    # [{"name", "type", "nullable", "description"}]
    columns = Column(JSON, nullable=False)
    # [{"column", "references_table", "references_column"}]
    relationships = Column(JSON, nullable=True)
    embedding = Column(JSON, nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


# =========================
# Knowledge chunk (document passages)
# =========================
class KnowledgeChunk(Base):
    """
    One retrievable span of a documentation file.

    Everything starts here for document answers:
    docs/*.md → chunk_document() → embed → this table → DocumentIndex
    """

    __tablename__ = "knowledge_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source_file = Column(String, nullable=False, index=True)
    source_type = Column(String, nullable=False, default="markdown", index=True)
    content = Column(Text, nullable=False)

    # "metadata" is reserved on declarative classes
    chunk_metadata = Column("metadata", JSON, nullable=True)
    embedding = Column(JSON, nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Query log (one row per answered question, never updated)
# =========================
class QueryLog(Base):
    __tablename__ = "query_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # String so both integer and UUID user ids fit
    user_id = Column(String(36), nullable=True, index=True)

    query = Column(Text, nullable=False)
    intent = Column(String, nullable=True, index=True)
    generated_sql = Column(Text, nullable=True)
    retrieved_tables = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False, default=True, index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
