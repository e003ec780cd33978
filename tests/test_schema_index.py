import pytest

from querybot.ai_feature.schema_index import (
    MENTION_BOOST,
    RELATED_BOOST,
    SchemaIndex,
    format_for_prompt,
)
from querybot.ai_feature.types import ColumnInfo, ForeignKeyEdge, SchemaTableDescriptor

from fakes import FakeProvider


def table(name, columns, embedding, relationships=()):
    return SchemaTableDescriptor(
        table_name=name,
        summary=f"Table: {name}",
        columns=[ColumnInfo(name=c, type="VARCHAR", nullable=True) for c in columns],
        relationships=list(relationships),
        embedding=embedding,
    )


@pytest.fixture
def corpus():
    return [
        table("customers", ["full_name", "email"], [0.0, 0.0, 1.0]),
        table(
            "orders",
            ["order_no", "customer_id", "total", "placed_at"],
            [0.6, 0.8, 0.0],
            [ForeignKeyEdge("customer_id", "customers", "id")],
        ),
        table("products", ["sku", "price"], [0.9, 0.43588989, 0.0]),
    ]


@pytest.fixture
def provider():
    provider = FakeProvider()
    provider.default_embedding = [1.0, 0.0, 0.0]
    return provider


@pytest.mark.asyncio
async def test_mentioned_table_outranks_semantic_match(provider, corpus):
    index = SchemaIndex(provider, corpus)

    results = await index.retrieve("list orders from last week")
    scores = {r.table_name: r.score for r in results}

    # products is the closest by embedding alone (0.9 vs 0.6)
    assert scores["products"] == pytest.approx(0.9, abs=1e-6)
    assert scores["orders"] == pytest.approx(0.6 + MENTION_BOOST, abs=1e-6)
    assert results[0].table_name == "orders"


@pytest.mark.asyncio
async def test_foreign_key_target_gets_related_boost(provider, corpus):
    provider.default_embedding = [0.0, 0.0, 0.0]
    index = SchemaIndex(provider, corpus)

    results = await index.retrieve("show recent orders")
    scores = {r.table_name: r.score for r in results}

    assert scores["orders"] == pytest.approx(MENTION_BOOST)
    assert scores["customers"] == pytest.approx(RELATED_BOOST)
    assert scores["products"] == pytest.approx(0.0)
    assert [r.table_name for r in results] == ["orders", "customers", "products"]


def test_singular_table_name_counts_as_mention(provider, corpus):
    index = SchemaIndex(provider, corpus)
    assert index.find_mentioned_tables("What is the biggest ORDER?") == {"orders"}


def test_column_name_with_spaces_counts_as_mention(provider, corpus):
    index = SchemaIndex(provider, corpus)
    assert "orders" in index.find_mentioned_tables("when was it placed at the counter")
    assert "customers" in index.find_mentioned_tables("which full_name is longest")


@pytest.mark.asyncio
async def test_embedding_failure_keeps_lexical_ranking(provider, corpus):
    provider.embed_fails = True
    index = SchemaIndex(provider, corpus)

    results = await index.retrieve("show recent orders")

    assert results[0].table_name == "orders"
    assert results[0].score == pytest.approx(MENTION_BOOST)


@pytest.mark.asyncio
async def test_limit_and_empty_store(provider, corpus):
    assert await SchemaIndex(provider).retrieve("anything") == []
    results = await SchemaIndex(provider, corpus).retrieve("show recent orders", limit=1)
    assert len(results) == 1


def test_relationship_map(provider, corpus):
    index = SchemaIndex(provider, corpus)
    assert index.relationship_map() == {
        "customers": [],
        "orders": ["customers"],
        "products": [],
    }


@pytest.mark.asyncio
async def test_format_for_prompt_is_deterministic(provider, corpus):
    index = SchemaIndex(provider, corpus)
    tables = await index.retrieve("show recent orders")

    first = format_for_prompt(tables)
    assert first == format_for_prompt(tables)
    assert first.startswith("Available database tables and their structure:")
    assert "Table: orders\nColumns:\n  - order_no (VARCHAR)" in first
    assert "Foreign Keys:\n  - customer_id -> customers.id" in first
