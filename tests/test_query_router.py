import pytest

from querybot.ai_feature.query_router import QueryRouter, parse_intent
from querybot.ai_feature.types import Failure, Intent, Ok, SubQueries

from fakes import CLASSIFY, DECOMPOSE, FakeProvider


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("structured", Intent.STRUCTURED),
        ("  Unstructured\n", Intent.UNSTRUCTURED),
        ("COMBINED.", Intent.COMBINED),
        ('"structured"', Intent.STRUCTURED),
        ("maybe", Intent.UNSTRUCTURED),
        ("sql", Intent.UNSTRUCTURED),
        ("structured and unstructured", Intent.UNSTRUCTURED),
        ("", Intent.UNSTRUCTURED),
    ],
)
def test_parse_intent(raw, expected):
    assert parse_intent(raw) == expected


@pytest.mark.asyncio
async def test_classify_uses_provider_label(provider):
    provider.respond(CLASSIFY, "combined")
    router = QueryRouter(provider, ["orders", "customers"], ["refunds.md"])

    assert await router.classify("orders and the refund policy") == Intent.COMBINED

    prompt = provider.generate_calls[0]
    assert "orders, customers" in prompt
    assert "refunds.md" in prompt


@pytest.mark.asyncio
async def test_unrecognized_label_maps_to_unstructured(provider):
    provider.respond(CLASSIFY, "maybe")
    assert await QueryRouter(provider).classify("hello") == Intent.UNSTRUCTURED


@pytest.mark.asyncio
async def test_provider_failure_maps_to_unstructured(provider):
    provider.generate_fails = True
    assert await QueryRouter(provider).classify("hello") == Intent.UNSTRUCTURED


def test_table_and_topic_samples_are_capped(provider):
    router = QueryRouter(provider, [f"t{i}" for i in range(50)], [f"d{i}" for i in range(50)])
    assert len(router.table_names) == 20
    assert len(router.topics) == 10


@pytest.mark.asyncio
async def test_decompose_parses_json(provider):
    provider.respond(
        DECOMPOSE,
        'Sure! {"structured_query": "How many orders this month?", '
        '"unstructured_query": "What is the refund policy?"}',
    )
    result = await QueryRouter(provider).decompose("orders this month and refund policy")

    assert result == Ok(SubQueries("How many orders this month?", "What is the refund policy?"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        "structured: orders; unstructured: refunds",
        '{"structured_query": "How many orders?"',
        '{"structured_query": "How many orders?"}',
        '{"structured_query": "", "unstructured_query": "policy?"}',
        '["How many orders?", "policy?"]',
    ],
)
async def test_malformed_decomposition_is_failure(provider, reply):
    provider.respond(DECOMPOSE, reply)
    result = await QueryRouter(provider).decompose("orders and refunds")
    assert isinstance(result, Failure)


@pytest.mark.asyncio
async def test_decompose_provider_failure(provider):
    provider.generate_fails = True
    assert isinstance(await QueryRouter(provider).decompose("x"), Failure)
