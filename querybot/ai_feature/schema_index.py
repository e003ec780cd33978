import logging
from typing import Dict, Iterable, List, Optional, Set

from querybot.ai_feature.provider import EmbeddingProvider
from querybot.ai_feature.similarity import cosine_similarity
from querybot.ai_feature.types import Failure, RankedTable, SchemaTableDescriptor

logger = logging.getLogger(__name__)

# Added on top of cosine similarity. Boosted scores are not a normalized
# similarity anymore; only the resulting order matters.
MENTION_BOOST = 0.5
RELATED_BOOST = 0.3


class SchemaIndex:
    """
    Table descriptions ranked against a question.

    Ranking is hybrid:
        1. lexical: table names (or naive singular) and column names found in the question
        2. graph: tables referenced by foreign keys of the mentioned tables
        3. semantic: cosine similarity of question and table summary embeddings
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        tables: Optional[Iterable[SchemaTableDescriptor]] = None,
    ):
        self.embedder = embedder
        self.tables: List[SchemaTableDescriptor] = list(tables or [])

    def __len__(self) -> int:
        return len(self.tables)

    def table_names(self) -> List[str]:
        return [table.table_name for table in self.tables]

    def relationship_map(self) -> Dict[str, List[str]]:
        """table -> tables its foreign keys point at."""
        return {
            table.table_name: [rel.references_table for rel in table.relationships]
            for table in self.tables
        }

    def find_mentioned_tables(self, query: str) -> Set[str]:
        query_lower = query.lower()
        mentioned = set()

        for table in self.tables:
            name = table.table_name.lower()
            singular = name[:-1] if name.endswith("s") else name

            if name in query_lower or (singular and singular in query_lower):
                mentioned.add(table.table_name)
                continue

            # Column names count as a mention too ("meal_rate" or "meal rate")
            for column in table.columns:
                column_name = column.name.lower()
                if column_name in query_lower or column_name.replace("_", " ") in query_lower:
                    mentioned.add(table.table_name)
                    break

        return mentioned

    def find_related_tables(self, mentioned: Set[str]) -> Set[str]:
        related = set()
        for table in self.tables:
            if table.table_name in mentioned:
                related.update(rel.references_table for rel in table.relationships)
        return related

    async def retrieve(self, query: str, limit: int = 5) -> List[RankedTable]:
        """Return the `limit` best-scoring tables for the question, best first."""
        if not self.tables or limit <= 0:
            return []

        mentioned = self.find_mentioned_tables(query)
        related = self.find_related_tables(mentioned)

        query_embedding = await self.embedder.embed(query)
        if isinstance(query_embedding, Failure):
            # Lexical and graph boosts still apply
            logger.warning(f"Schema ranking without embeddings: {query_embedding.reason}")

        results = []
        for table in self.tables:
            score = 0.0
            if not isinstance(query_embedding, Failure):
                score = cosine_similarity(query_embedding.value, table.embedding)
            if table.table_name in mentioned:
                score += MENTION_BOOST
            if table.table_name in related:
                score += RELATED_BOOST

            results.append(
                RankedTable(
                    table_name=table.table_name,
                    summary=table.summary,
                    columns=list(table.columns),
                    relationships=list(table.relationships),
                    score=score,
                )
            )

        results = sorted(results, key=lambda r: r.score, reverse=True)
        return results[:limit]


def format_for_prompt(tables: List[RankedTable]) -> str:
    """Render tables as the schema block given to the SQL generator."""
    lines = ["Available database tables and their structure:", ""]

    for table in tables:
        lines.append(f"Table: {table.table_name}")
        lines.append("Columns:")
        for column in table.columns:
            line = f"  - {column.name} ({column.type})"
            if not column.nullable:
                line += " NOT NULL"
            if column.description:
                line += f": {column.description}"
            lines.append(line)

        if table.relationships:
            lines.append("Foreign Keys:")
            for rel in table.relationships:
                lines.append(
                    f"  - {rel.column} -> {rel.references_table}.{rel.references_column}"
                )
        lines.append("")

    return "\n".join(lines)
