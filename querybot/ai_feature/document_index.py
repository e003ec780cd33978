import logging
import os
from typing import Iterable, List, Optional

from querybot.ai_feature.provider import EmbeddingProvider
from querybot.ai_feature.similarity import cosine_similarity
from querybot.ai_feature.types import DocumentChunk, Failure, RankedChunk

logger = logging.getLogger(__name__)


class DocumentIndex:
    """Documentation chunks with embeddings, ranked by similarity to a question."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        chunks: Optional[Iterable[DocumentChunk]] = None,
    ):
        self.embedder = embedder
        self.chunks: List[DocumentChunk] = list(chunks or [])

    def __len__(self) -> int:
        return len(self.chunks)

    def add(self, chunk: DocumentChunk):
        self.chunks.append(chunk)

    def topics(self, limit: int = 10) -> List[str]:
        """Distinct source names, in insertion order."""
        seen: List[str] = []
        for chunk in self.chunks:
            name = os.path.basename(chunk.source) or chunk.source
            if name not in seen:
                seen.append(name)
            if len(seen) >= limit:
                break
        return seen

    async def retrieve(self, query: str, limit: int = 5) -> List[RankedChunk]:
        """
        Return the `limit` chunks closest to the query, best first.

        An empty store or a failed query embedding gives an empty list.
        Chunks with equal scores keep their insertion order.
        """
        if not self.chunks or limit <= 0:
            return []

        query_embedding = await self.embedder.embed(query)
        if isinstance(query_embedding, Failure):
            logger.warning(f"Document retrieval skipped, embedding failed: {query_embedding.reason}")
            return []

        results = [
            RankedChunk(
                content=chunk.content,
                source=chunk.source,
                metadata=dict(chunk.metadata),
                score=cosine_similarity(query_embedding.value, chunk.embedding),
            )
            for chunk in self.chunks
        ]

        # sorted() is stable, also with reverse=True
        results = sorted(results, key=lambda r: r.score, reverse=True)
        return results[:limit]


def format_chunks(chunks: List[RankedChunk]) -> str:
    """Human-readable listing of retrieved chunks with their similarity."""
    return "\n\n".join(
        f"[{idx}] {os.path.basename(chunk.source)} "
        f"(similarity: {round(chunk.score * 100, 1)}%)\n{chunk.content}"
        for idx, chunk in enumerate(chunks, start=1)
    )
