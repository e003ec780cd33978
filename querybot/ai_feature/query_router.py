import logging
from typing import List, Optional

from querybot.ai_feature.errors import ParseFailure
from querybot.ai_feature.parsing import parse_json_object
from querybot.ai_feature.provider import TextGenerationProvider
from querybot.ai_feature.types import Failure, Intent, Ok, ProviderResult, SubQueries

logger = logging.getLogger(__name__)

# Document answers degrade more gracefully than a broken SQL attempt
DEFAULT_INTENT = Intent.UNSTRUCTURED

MAX_SAMPLED_TABLES = 20
MAX_SAMPLED_TOPICS = 10


def parse_intent(raw: str) -> Intent:
    """Map model output to an Intent; anything but the three labels is the default."""
    label = raw.strip().strip("\"'`.").strip().lower()
    try:
        return Intent(label)
    except ValueError:
        logger.warning(f"Unrecognized intent label {raw!r}, using {DEFAULT_INTENT.value}")
        return DEFAULT_INTENT


class QueryRouter:
    """Classifies questions and splits combined ones into two sub-questions."""

    def __init__(
        self,
        generator: TextGenerationProvider,
        table_names: Optional[List[str]] = None,
        topics: Optional[List[str]] = None,
    ):
        self.generator = generator
        self.table_names = list(table_names or [])[:MAX_SAMPLED_TABLES]
        self.topics = list(topics or [])[:MAX_SAMPLED_TOPICS]

    async def classify(self, query: str) -> Intent:
        result = await self.generator.generate(
            self._classification_prompt(query), temperature=0.0, max_tokens=10
        )
        if isinstance(result, Failure):
            logger.warning(f"Intent classification failed: {result.reason}")
            return DEFAULT_INTENT
        return parse_intent(result.value)

    async def decompose(self, query: str) -> ProviderResult[SubQueries]:
        """
        Split a combined question into a data question and a documentation question.

        Returns Failure when the provider fails or its answer lacks either field;
        callers then use the original question for both branches.
        """
        result = await self.generator.generate(
            self._decomposition_prompt(query), temperature=0.1, max_tokens=256
        )
        if isinstance(result, Failure):
            return result

        try:
            data = parse_json_object(result.value)
        except ParseFailure as error:
            logger.warning(f"Could not parse decomposition: {error}")
            return Failure(str(error))

        structured = data.get("structured_query")
        unstructured = data.get("unstructured_query")
        if not isinstance(structured, str) or not structured.strip():
            return Failure("decomposition is missing structured_query")
        if not isinstance(unstructured, str) or not unstructured.strip():
            return Failure("decomposition is missing unstructured_query")

        return Ok(SubQueries(structured.strip(), unstructured.strip()))

    def _classification_prompt(self, query: str) -> str:
        tables = ", ".join(self.table_names) or "(none)"
        topics = ", ".join(self.topics) or "(none)"
        return f"""You route questions for a company assistant.

Database tables available for data questions: {tables}
Documentation topics available for policy/how-to questions: {topics}

Classify the question:
- structured: answered by querying the database (counts, totals, lists, lookups)
- unstructured: answered from the documentation (policies, explanations, procedures)
- combined: needs both database data and documentation

Question: "{query}"

Answer with exactly one word: structured, unstructured or combined."""

    def _decomposition_prompt(self, query: str) -> str:
        return f"""Split the question below into two standalone questions:
one that can be answered by querying the database, and one that can be answered from the documentation.

Question: "{query}"

Return ONLY a JSON object in this exact format:
{{"structured_query": "<database question>", "unstructured_query": "<documentation question>"}}"""
