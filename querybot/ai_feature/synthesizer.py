"""
Answer synthesis.

Turns SQL rows or retrieved documentation into natural-language answers
through the text-generation provider. Provider or parse failures degrade to
plain fallbacks; nothing here raises to the caller.
"""

import json
import logging
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from querybot.ai_feature.errors import ParseFailure
from querybot.ai_feature.parsing import parse_json_object
from querybot.ai_feature.provider import TextGenerationProvider
from querybot.ai_feature.types import Failure, NarratedResult, RankedChunk, Visualization

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No results found for your query."
INSUFFICIENT_INFORMATION = "I have insufficient information to answer this question."

# Rows sent to the model, and rows sampled for column typing
PROMPT_ROW_LIMIT = 10
TYPE_SAMPLE_SIZE = 5

ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
VISUALIZATION_KINDS = {"bar", "line", "pie", "table", "none"}


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def rows_to_json(rows: Sequence[Mapping[str, Any]], limit: int = PROMPT_ROW_LIMIT) -> str:
    return json.dumps([dict(row) for row in rows[:limit]], default=_json_default)


def _value_kind(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return "datetime"
    if isinstance(value, bool):
        return "string"
    if isinstance(value, (int, float, Decimal)):
        return "numeric"
    text = str(value).strip()
    if ISO_DATE_PREFIX.match(text):
        return "datetime"
    try:
        float(text)
        return "numeric"
    except ValueError:
        return "string"


def infer_column_types(
    rows: Sequence[Mapping[str, Any]], sample_size: int = TYPE_SAMPLE_SIZE
) -> Dict[str, str]:
    """
    Guess a type per column from the first rows.

    datetime: ISO date prefix (or date objects), numeric: every non-null value
    parses as a number, string: neither, mixed: values disagree.
    """
    sample = rows[:sample_size]
    columns: List[str] = []
    for row in sample:
        for key in row.keys():
            if key not in columns:
                columns.append(key)

    types = {}
    for column in columns:
        kinds = {_value_kind(row[column]) for row in sample if row.get(column) is not None}
        if len(kinds) == 1:
            types[column] = kinds.pop()
        elif len(kinds) > 1:
            types[column] = "mixed"
        else:
            types[column] = "string"
    return types


class AnswerSynthesizer:
    def __init__(self, generator: TextGenerationProvider):
        self.generator = generator

    async def narrate(self, query: str, rows: Sequence[Mapping[str, Any]]) -> str:
        """Summarize SQL result rows in plain language."""
        if not rows:
            return NO_RESULTS_MESSAGE

        prompt = f"""Convert the following SQL query result into a natural language answer.

User Question: "{query}"

Data (JSON):
{rows_to_json(rows)}

Provide a clear, concise answer based on this data. If there are multiple rows, summarize them appropriately."""

        result = await self.generator.generate(prompt, temperature=0.3)
        if isinstance(result, Failure):
            return rows_to_json(rows)
        return result.value.strip()

    async def narrate_with_visualization(
        self, query: str, rows: Sequence[Mapping[str, Any]]
    ) -> NarratedResult:
        """
        Summarize rows and let the model propose a chart.

        The model must return one JSON object with a mandatory "answer". If the
        object cannot be parsed the raw text becomes the answer, without a chart.
        """
        if not rows:
            return NarratedResult(answer=NO_RESULTS_MESSAGE)

        column_types = infer_column_types(rows)
        prompt = f"""You are a data analyst. Answer the user's question from the SQL result below.

User Question: "{query}"

Row count: {len(rows)}
Column types: {json.dumps(column_types)}

Data (JSON, first {min(len(rows), PROMPT_ROW_LIMIT)} rows):
{rows_to_json(rows)}

Return ONLY one JSON object with these fields:
{{
  "answer": "clear natural-language answer (required)",
  "visualize": true or false (true only if a chart adds value, e.g. several numeric values or a trend over dates),
  "visualization_kind": "bar" | "line" | "pie" | "table" | "none",
  "markup": "self-contained HTML/SVG markup of the chart, or null",
  "insights": ["short observation", "..."]
}}"""

        result = await self.generator.generate(prompt, temperature=0.3)
        if isinstance(result, Failure):
            return NarratedResult(answer=rows_to_json(rows))

        try:
            return self._parse_visual_answer(result.value)
        except ParseFailure as error:
            logger.warning(f"Falling back to raw answer text: {error}")
            return NarratedResult(answer=result.value.strip())

    def _parse_visual_answer(self, raw: str) -> NarratedResult:
        data = parse_json_object(raw)

        answer = data.get("answer")
        if not isinstance(answer, str) or not answer.strip():
            raise ParseFailure("response has no answer field")

        insights = data.get("insights") or []
        if not isinstance(insights, list):
            insights = [insights]
        insights = [str(item) for item in insights if item]

        visualize = data.get("visualize")
        if isinstance(visualize, str):
            visualize = visualize.strip().lower() == "true"

        kind = str(data.get("visualization_kind") or "none").lower()
        markup = data.get("markup")
        if visualize is not True or kind not in VISUALIZATION_KINDS or kind == "none":
            kind, markup = "none", None
        elif not isinstance(markup, str) or not markup.strip():
            markup = None

        return NarratedResult(
            answer=answer.strip(),
            visualization=Visualization(kind=kind, markup=markup, insights=insights),
        )

    async def answer_from_context(self, query: str, chunks: List[RankedChunk]) -> Optional[str]:
        """Answer strictly from retrieved chunks; None if there are none."""
        if not chunks:
            return None

        context = "\n\n".join(
            f"{idx}. [{chunk.source}] {chunk.content}" for idx, chunk in enumerate(chunks, start=1)
        )
        prompt = f"""You are a knowledge assistant. Answer the user's question using ONLY the provided context below.

Context:
{context}

Rules:
1. Answer based ONLY on the context provided
2. If the context doesn't contain relevant information, say "{INSUFFICIENT_INFORMATION}"
3. Be concise and direct
4. Cite sources when possible (mention the document name)
5. Don't make up information

User Question: "{query}"

Answer:"""

        result = await self.generator.generate(prompt, temperature=0.3, max_tokens=1024)
        if isinstance(result, Failure):
            return None
        return result.value.strip()

    async def synthesize_hybrid(
        self,
        query: str,
        structured_answer: Optional[str],
        unstructured_answer: Optional[str],
    ) -> str:
        """Merge the data answer and the documentation answer into one response."""
        data_part = structured_answer or "No data available (the database lookup did not produce a result)."
        docs_part = unstructured_answer or "No documentation available (no relevant documents were found)."

        prompt = f"""Combine the following information to provide a comprehensive answer to the user's question.

User Question: "{query}"

Data Analysis Result:
{data_part}

Documentation/Policy Information:
{docs_part}

Provide a unified, clear answer that incorporates both parts.
If one of the parts says no data or no documentation is available, say explicitly which part is missing."""

        result = await self.generator.generate(prompt)
        if isinstance(result, Failure):
            return f"Data: {data_part}\n\nDocumentation: {docs_part}"
        return result.value.strip()
