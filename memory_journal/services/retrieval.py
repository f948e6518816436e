"""
Retrieval Service: embed -> search -> hydrate -> explain.
"""

from typing import Dict, List, Optional

from ..models.core import Memory, MemoryFilters, QueryResult, VectorHit
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import RetrievalConfig
from ..utils.database_client import DatabaseClient
from ..utils.errors import EmbeddingFailure, QueryFailure, RelationalStoreFailure, SummarizationFailure, VectorIndexFailure
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import ensure_utc
from .summarization import SummarizationService

logger = get_logger(__name__)

NO_RESULTS_EXPLANATION = 'No memories found matching your query.'
GENERIC_EXPLANATION = 'These memories are the closest semantic matches to your query.'


def apply_filters(memories: List[Memory], filters: Optional[MemoryFilters]) -> List[Memory]:
    """Keep memories matching every given filter; order is preserved."""
    if filters is None:
        return memories

    tags = {tag.lower() for tag in filters.tags}
    emotions = {emotion.lower() for emotion in filters.emotions}
    start = ensure_utc(filters.start)
    end = ensure_utc(filters.end)

    kept = []
    for memory in memories:
        if filters.people and not set(filters.people) & set(memory.people):
            continue
        if tags and not tags & {tag.lower() for tag in memory.tags}:
            continue
        if emotions:
            felt = {memory.emotions.primary.lower()} | {e.lower() for e in memory.emotions.secondary}
            if not emotions & felt:
                continue
        if start and memory.created_at and memory.created_at < start:
            continue
        if end and memory.created_at and memory.created_at > end:
            continue
        kept.append(memory)
    return kept


class RetrievalService:
    """Answer natural-language queries with a ranked, explained list of memories.

    Embed, search and hydrate failures abort the query with ``QueryFailure``.
    The explanation is best-effort and falls back to a generic sentence.
    """

    def __init__(self,
                 embed: BedrockEmbed,
                 vector_index: OpenSearchClient,
                 database: DatabaseClient,
                 summarization: SummarizationService,
                 config: RetrievalConfig):
        self.embed = embed
        self.vector_index = vector_index
        self.database = database
        self.summarization = summarization
        self.config = config

    def query(self,
              user_id: str,
              query_text: str,
              limit: Optional[int] = None,
              filters: Optional[MemoryFilters] = None,
              similarity_floor: Optional[float] = None) -> QueryResult:
        """Run the retrieval pipeline for one user.

        Args:
            user_id: Owner whose memories are searched
            query_text: Natural-language query
            limit: Maximum results (config default if None)
            filters: Optional post-retrieval filters
            similarity_floor: Minimum similarity (config default if None)

        Returns:
            QueryResult ranked by descending similarity

        Raises:
            QueryFailure: If the embed, search or hydrate stage fails
        """
        if not user_id or not user_id.strip():
            raise ValueError('User ID is required')
        if not query_text or not query_text.strip():
            raise ValueError('Query text is required')

        limit = limit if limit is not None else self.config.default_limit
        floor = similarity_floor if similarity_floor is not None else self.config.similarity_floor

        try:
            query_embedding = self.embed.embed_query(query_text)
        except EmbeddingFailure as e:
            logger.error(f'Query embedding failed for user {user_id}: {e}')
            raise QueryFailure('embed', f'Could not embed query: {e}') from e

        try:
            hits = self.vector_index.query(query_embedding, user_id, limit=limit, similarity_floor=floor)
        except VectorIndexFailure as e:
            logger.error(f'Vector search failed for user {user_id}: {e}')
            raise QueryFailure('search', f'Vector search failed: {e}') from e

        if not hits:
            logger.debug(f'No memories above similarity floor {floor} for user {user_id}')
            return self._empty_result(query_text)

        try:
            memories = self._hydrate(hits, user_id)
        except RelationalStoreFailure as e:
            logger.error(f'Hydration failed for user {user_id}: {e}')
            raise QueryFailure('hydrate', f'Could not load memories: {e}') from e

        memories = apply_filters(memories, filters)
        if not memories:
            return self._empty_result(query_text)

        scores: Dict[str, float] = {}
        for hit in hits:
            scores.setdefault(hit.memory_id, hit.similarity)
        return QueryResult(memories=memories,
                           query=query_text,
                           explanation=self._explain(query_text, memories),
                           confidence=scores[memories[0].id],
                           scores={memory.id: scores[memory.id] for memory in memories})

    def _hydrate(self, hits: List[VectorHit], user_id: str) -> List[Memory]:
        """Load full records in similarity order, once each, dropping IDs the store does not have."""
        ordered_ids = list(dict.fromkeys(hit.memory_id for hit in hits))
        by_id: Dict[str, Memory] = {
            memory.id: memory
            for memory in self.database.get_memories(ordered_ids, user_id) if memory.user_id == user_id
        }

        memories = []
        for memory_id in ordered_ids:
            memory = by_id.get(memory_id)
            if memory is None:
                logger.warning(f'Index entry {memory_id} has no stored memory for user {user_id}; skipping')
                continue
            memories.append(memory)
        return memories

    def _explain(self, query_text: str, memories: List[Memory]) -> str:
        try:
            return self.summarization.explain(query_text, memories)
        except SummarizationFailure as e:
            logger.warning(f'Falling back to generic explanation: {e}')
            return GENERIC_EXPLANATION

    @staticmethod
    def _empty_result(query_text: str) -> QueryResult:
        return QueryResult(memories=[], query=query_text, explanation=NO_RESULTS_EXPLANATION, confidence=0.0)
