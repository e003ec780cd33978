import pytest
import pytest_asyncio
from sqlalchemy import func, select, text

from querybot.core import models
from querybot.core.config import Settings
from querybot.core.etl import ingest
from querybot.core.etl.pipeline import (
    PipelineStatus,
    get_embedding_status,
    run_docs_embedding,
    run_schema_embedding,
)
from querybot.ai_feature import stores
from querybot.ai_feature.errors import ExecutionFailure
from querybot.ai_feature.types import ForeignKeyEdge, QueryLogEntry

from fakes import FakeProvider

# No pacing between provider calls in tests
FAST = Settings(
    EMBED_TABLE_DELAY_SECONDS=0,
    EMBED_CHUNK_DELAY_SECONDS=0,
    EMBED_FILE_DELAY_SECONDS=0,
    EMBED_MIN_CHUNK_CHARS=20,
)

REFUNDS_DOC = """# Refunds
Refunds are accepted within 30 days of delivery for unused items.

## Exceptions
Sale items and gift cards cannot be refunded at all.

## Note
Short.
"""


@pytest_asyncio.fixture
async def shop_tables(db_session):
    await db_session.execute(
        text("CREATE TABLE customers (id INTEGER PRIMARY KEY, full_name VARCHAR(100) NOT NULL)")
    )
    await db_session.execute(
        text(
            "CREATE TABLE orders ("
            "id INTEGER PRIMARY KEY, "
            "customer_id INTEGER NOT NULL REFERENCES customers(id), "
            "total NUMERIC(12, 2))"
        )
    )
    await db_session.execute(text("INSERT INTO customers (id, full_name) VALUES (1, 'Ada'), (2, 'Linus')"))
    await db_session.execute(
        text("INSERT INTO orders (id, customer_id, total) VALUES (1, 1, 10), (2, 1, 20), (3, 2, 5)")
    )
    await db_session.commit()


# ============================================================================
# ingest
# ============================================================================


def test_chunk_document_splits_on_headings():
    chunks = ingest.chunk_document("Intro line\n# Refunds\nWithin 30 days.\n## Exceptions\nSale items.\n#hashtag")

    assert chunks == [
        "Intro line\n",
        "# Refunds\nWithin 30 days.\n",
        "## Exceptions\nSale items.\n#hashtag",
    ]


def test_chunk_document_ignores_deep_headings_and_blank_input():
    assert ingest.chunk_document("#### Deep\ntext") == ["#### Deep\ntext"]
    assert ingest.chunk_document("   \n") == []


def test_build_table_summary():
    summary = ingest.build_table_summary(
        "orders",
        [
            {"name": "id", "type": "INTEGER", "nullable": False},
            {"name": "total", "type": "NUMERIC(12, 2)", "nullable": True},
        ],
        [{"column": "customer_id", "references_table": "customers", "references_column": "id"}],
    )

    assert summary == (
        "Table: orders\n"
        "Columns: id (INTEGER) NOT NULL, total (NUMERIC(12, 2))\n"
        "Purpose: Stores orders related data.\n"
        "Relationships: customer_id -> customers.id"
    )


def test_iter_document_files_is_recursive_and_sorted(tmp_path):
    (tmp_path / "b.md").write_text("# B")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "a.txt").write_text("A")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    found = [(p.relative_to(tmp_path).as_posix(), kind) for p, kind in ingest.iter_document_files(tmp_path)]

    assert found == [("b.md", "markdown"), ("nested/a.txt", "text")]


def test_read_text_file_falls_back_to_cp1251(tmp_path):
    path = tmp_path / "legacy.txt"
    path.write_bytes("Возврат".encode("windows-1251"))

    assert ingest.read_text_file(path) == "Возврат"


@pytest.mark.asyncio
async def test_introspect_tables_reads_foreign_keys(db_session, shop_tables):
    tables = await ingest.introspect_tables(db_session, FAST.SCHEMA_EXCLUDED_TABLES)

    assert [t["table_name"] for t in tables] == ["customers", "orders"]
    orders = tables[1]
    assert [c["name"] for c in orders["columns"]] == ["id", "customer_id", "total"]
    assert orders["relationships"] == [
        {"column": "customer_id", "references_table": "customers", "references_column": "id"}
    ]


# ============================================================================
# pipeline
# ============================================================================


@pytest.mark.asyncio
async def test_run_schema_embedding_stores_and_overwrites(db_session, shop_tables):
    provider = FakeProvider()

    first = await run_schema_embedding(db_session, db_session, provider, FAST)
    second = await run_schema_embedding(db_session, db_session, provider, FAST)

    assert first["status"] == PipelineStatus.COMPLETED
    assert first["result"] == {"embedded": 2, "failed": 0, "tables": ["customers", "orders"]}
    assert second["result"]["embedded"] == 2
    assert first["logs"]

    count = await db_session.scalar(select(func.count(models.SchemaEmbedding.id)))
    assert count == 2

    descriptors = await stores.load_schema_tables(db_session)
    orders = next(d for d in descriptors if d.table_name == "orders")
    assert orders.relationships == [ForeignKeyEdge("customer_id", "customers", "id")]
    assert orders.summary.startswith("Table: orders\n")
    assert orders.embedding == [1.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_run_schema_embedding_counts_failures(db_session, shop_tables):
    provider = FakeProvider()
    provider.embed_fails = True

    report = await run_schema_embedding(db_session, db_session, provider, FAST)

    assert report["status"] == PipelineStatus.COMPLETED
    assert report["result"] == {"embedded": 0, "failed": 2, "tables": []}


@pytest.mark.asyncio
async def test_run_schema_embedding_without_tables_fails(db_session):
    report = await run_schema_embedding(db_session, db_session, FakeProvider(), FAST)

    assert report["status"] == PipelineStatus.FAILED
    assert report["error"] == "No tables found in database"


@pytest.mark.asyncio
async def test_run_docs_embedding(db_session, tmp_path):
    (tmp_path / "policies").mkdir()
    (tmp_path / "policies" / "refunds.md").write_text(REFUNDS_DOC, encoding="utf-8")
    provider = FakeProvider()

    report = await run_docs_embedding(db_session, provider, str(tmp_path), FAST)

    assert report["status"] == PipelineStatus.COMPLETED
    assert report["result"] == {"files": 1, "stored": 2, "skipped": 1, "failed": 0, "unreadable": 0}

    chunks = await stores.load_document_chunks(db_session)
    assert [c.source for c in chunks] == ["policies/refunds.md", "policies/refunds.md"]
    assert chunks[0].content.startswith("# Refunds")
    assert chunks[1].metadata == {
        "filename": "refunds.md",
        "chunk_index": 1,
        "size": len(chunks[1].content),
    }

    status = await get_embedding_status(db_session)
    assert status == {"schema_tables": 0, "knowledge_chunks": 2, "document_sources": 1}


@pytest.mark.asyncio
async def test_run_docs_embedding_missing_directory(db_session, tmp_path):
    report = await run_docs_embedding(db_session, FakeProvider(), str(tmp_path / "nope"), FAST)

    assert report["status"] == PipelineStatus.FAILED
    assert "Directory not found" in report["error"]


@pytest.mark.asyncio
async def test_run_docs_embedding_skips_undecodable_files(db_session, tmp_path):
    # 0x98 is invalid UTF-8 and undefined in windows-1251
    (tmp_path / "a_broken.md").write_bytes(b"# Broken\n\x98\x98 not text at all in any codepage")
    (tmp_path / "b_refunds.md").write_text(REFUNDS_DOC, encoding="utf-8")

    report = await run_docs_embedding(db_session, FakeProvider(), str(tmp_path), FAST)

    assert report["status"] == PipelineStatus.COMPLETED
    assert report["result"] == {"files": 2, "stored": 2, "skipped": 1, "failed": 0, "unreadable": 1}
    assert any(
        log["level"] == "warning" and "a_broken.md" in log["message"] for log in report["logs"]
    )


# ============================================================================
# stores
# ============================================================================


@pytest.mark.asyncio
async def test_readonly_executor_returns_rows(db_session, shop_tables):
    executor = stores.ReadOnlyExecutor(db_session)

    rows = await executor.execute(
        "SELECT c.full_name, COUNT(o.id) AS orders FROM customers c "
        "JOIN orders o ON o.customer_id = c.id GROUP BY c.full_name ORDER BY c.full_name;"
    )

    assert rows == [{"full_name": "Ada", "orders": 2}, {"full_name": "Linus", "orders": 1}]


@pytest.mark.asyncio
async def test_readonly_executor_wraps_database_errors(db_session, shop_tables):
    executor = stores.ReadOnlyExecutor(db_session)

    with pytest.raises(ExecutionFailure) as excinfo:
        await executor.execute("SELECT missing_column FROM orders;")

    assert excinfo.value.sql == "SELECT missing_column FROM orders;"
    assert "missing_column" in str(excinfo.value)


@pytest.mark.asyncio
async def test_query_log_sink_writes_entry(db_session):
    sink = stores.SqlQueryLogSink(db_session)

    await sink.write(
        QueryLogEntry(
            query="how many orders",
            intent="structured",
            success=True,
            elapsed_ms=12,
            generated_query="SELECT COUNT(*) FROM orders LIMIT 100;",
            tables=["orders"],
            result_summary={"success": True, "row_count": 1, "source_count": 0},
            user_id="3",
        )
    )

    log = (await db_session.execute(select(models.QueryLog))).scalars().one()
    assert log.intent == "structured"
    assert log.retrieved_tables == ["orders"]
    assert log.result["row_count"] == 1
    assert log.user_id == "3"
    assert log.error_message is None
