"""
Memory Management Service for unified memory operations.
"""

import copy
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import Memory, MemoryFilters, Nudge, NudgeSignals, PatternAnalysis, Person, QueryResult
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig, config
from ..utils.database_client import DatabaseClient
from ..utils.errors import NotFoundError, RelationalStoreFailure, VectorIndexFailure
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, flatten_metadata
from ..utils.timestamp_utils import utc_now
from .nudge_generation import NudgeGenerationService
from .people import PeopleService
from .retrieval import RetrievalService
from .summarization import MAX_PATTERN_WINDOW, SummarizationService

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 60

# Fields a caller may change through update_memory
EDITABLE_FIELDS = frozenset(
    {'title', 'content', 'people', 'tags', 'location', 'weather', 'is_private', 'audio_url', 'image_url'})

LIST_FIELDS = ('people', 'tags')
TEXT_FIELDS = ('title', 'location', 'weather', 'audio_url', 'image_url')


def merge_tags(user_tags: Sequence[str], ai_tags: Sequence[str]) -> List[str]:
    """Union of user and AI tags, de-duplicated case-insensitively, user tags first."""
    merged = []
    seen = set()
    for tag in list(user_tags) + list(ai_tags):
        tag = tag.strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            merged.append(tag)
    return merged


def default_title(content: str) -> str:
    first_line = content.strip().splitlines()[0].strip()
    if len(first_line) <= TITLE_MAX_LENGTH:
        return first_line
    return first_line[:TITLE_MAX_LENGTH - 3].rstrip() + '...'


class MemoryManagementService:
    """Unified service for the memory write path, retrieval, nudges and people.

    The relational store is authoritative. Writes go to the store first and then
    to the vector index; a failed index insert on create deletes the new row again.
    A failed index write on update or delete leaves the index stale until the
    next write or ``reconcile_index``.
    """

    def __init__(self,
                 database: Optional[DatabaseClient] = None,
                 vector_index: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 llm: Optional[BedrockLLM] = None,
                 app_config: Optional[AppConfig] = None):
        """Initialize the memory management service.

        Args:
            database: Relational store (built from config if None)
            vector_index: Vector index (built from config if None)
            embed: Embedding client (built from config if None)
            llm: Chat/completion client (built from config if None)
            app_config: Application configuration (global config if None)
        """
        self.config = app_config or config
        self.database = database if database is not None else DatabaseClient(self.config.database)
        self.vector_index = vector_index if vector_index is not None else OpenSearchClient(self.config.opensearch)
        self.embed = embed if embed is not None else BedrockEmbed(self.config.bedrock_embed)
        self.llm = llm if llm is not None else BedrockLLM(self.config.bedrock_llm)

        self.summarization = SummarizationService(self.llm)
        self.people = PeopleService(self.database)
        self.retrieval = RetrievalService(self.embed, self.vector_index, self.database, self.summarization,
                                          self.config.retrieval)
        self.nudges = NudgeGenerationService(self.llm, self.database, self.config.nudge)

        logger.info('Initialized MemoryManagementService')

    def initialize(self) -> None:
        """Create the relational schema and the vector index if missing."""
        self.database.create_schema()
        status = self.vector_index.create_index_if_not_exists()
        if status == 'failed':
            logger.warning('Vector index creation was not acknowledged')

    def close(self) -> None:
        self.vector_index.close()
        self.database.close()
        logger.info('Closed MemoryManagementService')

    # Write path

    def create_memory(self,
                      user_id: str,
                      content: str,
                      people_hint: Optional[Sequence[str]] = None,
                      tags: Optional[Sequence[str]] = None,
                      location: Optional[str] = None,
                      weather: Optional[str] = None,
                      is_private: bool = False,
                      title: Optional[str] = None,
                      audio_url: Optional[str] = None,
                      image_url: Optional[str] = None) -> Memory:
        """Summarize, embed, persist and index a new memory.

        Args:
            user_id: Owner of the memory
            content: Memory text
            people_hint: Names of people the author says are involved
            tags: User tags
            location: Optional location
            weather: Optional weather
            is_private: Privacy flag
            title: Title (derived from the content if None)
            audio_url: Optional audio reference
            image_url: Optional image reference

        Returns:
            The persisted Memory

        Raises:
            ValueError: On missing user ID or empty/oversized content
            SummarizationFailure, EmbeddingFailure: Before anything is written
            RelationalStoreFailure: If the store write fails
            VectorIndexFailure: If indexing fails; the store row is removed again
        """
        self._validate_user(user_id)
        self._validate_content(content)

        summary = self.summarization.summarize(content, people_hint)
        embedding = self.embed.embed_document(content)

        names = list(people_hint or []) + summary.people
        people = self._resolve_people(user_id, names)
        user_tags = merge_tags(tags or [], [])
        now = utc_now()
        memory = Memory(id=str(uuid.uuid4()),
                        user_id=user_id,
                        title=(title or '').strip() or default_title(content),
                        content=content,
                        summary=summary.summary,
                        emotions=summary.emotions,
                        mood=summary.mood,
                        tags=merge_tags(user_tags, summary.tags),
                        ai_tags=list(summary.tags),
                        embedding=embedding,
                        people=people,
                        user_tags=user_tags,
                        location=location,
                        weather=weather,
                        is_private=is_private,
                        audio_url=audio_url,
                        image_url=image_url,
                        created_at=now,
                        updated_at=now)
        # Index metadata is resolved before anything is written
        people_names = self._people_names(user_id, people)

        self.database.insert_memory(memory)
        try:
            self._index_memory(memory, people_names)
        except VectorIndexFailure:
            logger.error(f'Indexing failed for new memory {memory.id}; removing stored record')
            try:
                self.database.delete_memory(memory.id, user_id)
            except RelationalStoreFailure as e:
                logger.error(f'Could not remove memory {memory.id} after indexing failure: {e}')
            raise

        logger.info(f'Created memory {memory.id} for user {user_id}')
        return memory

    def update_memory(self, memory_id: str, user_id: str, patch: Dict[str, Any]) -> Memory:
        """Apply a partial update to a memory.

        Summary, emotions, mood, AI tags and embedding are regenerated only when
        the content changes. The index entry is always replaced so its metadata
        follows the record. If that fails the stored record is restored to its
        previous state, so a failed update leaves nothing applied.

        Raises:
            ValueError: On unknown fields, invalid values or unknown person IDs
            NotFoundError: If the memory does not exist for this user
            SummarizationFailure, EmbeddingFailure: Before anything is written
            VectorIndexFailure: If the index entry could not be replaced
        """
        self._validate_user(user_id)
        self._validate_patch(patch)

        memory = self.database.get_memory(memory_id, user_id)
        if memory is None:
            raise NotFoundError(f'Memory {memory_id} not found')
        previous = copy.deepcopy(memory)

        if 'tags' in patch:
            memory.user_tags = merge_tags(patch['tags'], [])
        people = list(patch['people']) if 'people' in patch else list(memory.people)
        if 'people' in patch:
            self._validate_people(user_id, people)

        if 'content' in patch and patch['content'] != memory.content:
            content = patch['content']
            self._validate_content(content)

            names = [person.name for person in self.database.get_people(people, user_id)]
            summary = self.summarization.summarize(content, names)
            memory.embedding = self.embed.embed_document(content)
            memory.content = content
            memory.summary = summary.summary
            memory.emotions = summary.emotions
            memory.mood = summary.mood
            memory.ai_tags = list(summary.tags)
            people = list(dict.fromkeys(people + self._resolve_people(user_id, summary.people)))
            logger.debug(f'Regenerated derived fields for memory {memory_id}')

        memory.tags = merge_tags(memory.user_tags, memory.ai_tags)
        memory.people = people
        for name in ('location', 'weather', 'audio_url', 'image_url'):
            if name in patch:
                setattr(memory, name, patch[name])
        if 'is_private' in patch:
            memory.is_private = bool(patch['is_private'])
        if 'title' in patch:
            memory.title = (patch['title'] or '').strip() or default_title(memory.content)
        memory.updated_at = utc_now()
        people_names = self._people_names(user_id, memory.people)

        self.database.update_memory(memory)
        try:
            self._index_memory(memory, people_names)
        except VectorIndexFailure:
            logger.error(f'Indexing failed for memory {memory_id}; restoring previous record')
            try:
                self.database.update_memory(previous)
            except RelationalStoreFailure as e:
                logger.error(f'Could not restore memory {memory_id} after indexing failure: {e}')
            raise

        logger.info(f'Updated memory {memory_id} for user {user_id}')
        return memory

    def delete_memory(self, memory_id: str, user_id: str) -> None:
        """Delete a memory from the store and then from the vector index.

        The store delete decides the outcome. An index entry that cannot be
        removed is logged and left for ``reconcile_index``; it is never returned
        by a query because hydration drops IDs the store lacks.

        Raises:
            NotFoundError: If the memory does not exist for this user
        """
        self._validate_user(user_id)
        if not self.database.delete_memory(memory_id, user_id):
            raise NotFoundError(f'Memory {memory_id} not found')

        try:
            self.vector_index.delete(memory_id, user_id)
        except VectorIndexFailure as e:
            logger.warning(f'Index entry for deleted memory {memory_id} was not removed: {e}')
        logger.info(f'Deleted memory {memory_id} for user {user_id}')

    # Read path

    def get_memory(self, memory_id: str, user_id: str) -> Memory:
        memory = self.database.get_memory(memory_id, user_id)
        if memory is None:
            raise NotFoundError(f'Memory {memory_id} not found')
        return memory

    def list_memories(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> List[Memory]:
        return self.database.list_memories(user_id, limit=limit, offset=offset)

    def search_memories(self, user_id: str, text: str, limit: int = 20) -> List[Memory]:
        """Plain text search over title, content and summary."""
        if not text or not text.strip():
            return []
        return self.database.search_memories(user_id, text, limit=limit)

    def query_memories(self,
                       user_id: str,
                       query_text: str,
                       limit: Optional[int] = None,
                       filters: Optional[MemoryFilters] = None) -> QueryResult:
        """Semantic query over a user's memories."""
        return self.retrieval.query(user_id, query_text, limit=limit, filters=filters)

    # Nudges and insights

    def generate_nudges(self, user_id: str, signals: Optional[NudgeSignals] = None) -> List[Nudge]:
        return self.nudges.generate_nudges(user_id, signals)

    def analyze_patterns(self, user_id: str) -> PatternAnalysis:
        """Analyze emotional patterns over the user's most recent memories."""
        self._validate_user(user_id)
        memories = self.database.list_memories(user_id, limit=MAX_PATTERN_WINDOW)
        return self.summarization.analyze_patterns(memories)

    # People

    def update_person(self,
                      user_id: str,
                      person_id: str,
                      name: Optional[str] = None,
                      relationship: Optional[str] = None,
                      avatar: Optional[str] = None,
                      tags: Optional[List[str]] = None) -> Person:
        """Update a person. A rename re-indexes every memory that mentions them.

        Raises:
            NotFoundError: If the person does not exist for this user
            ValueError: If the new name is blank or already taken
            VectorIndexFailure: If a mentioning memory could not be re-indexed;
                the rename is kept and ``reconcile_index`` completes it
        """
        self._validate_user(user_id)
        before = self.database.get_people([person_id], user_id)
        person = self.people.update_person(user_id, person_id, name=name, relationship=relationship, avatar=avatar, tags=tags)

        if before and before[0].name != person.name:
            memories = self.database.list_memories_mentioning(user_id, person_id)
            for memory in memories:
                self._index_memory(memory)
            logger.info(f'Re-indexed {len(memories)} memories after renaming person {person_id}')
        return person

    # Maintenance

    def reconcile_index(self, user_id: str) -> Dict[str, int]:
        """Rebuild a user's index entries from the store.

        Every stored memory is re-upserted and index entries without a stored
        memory are removed.

        Returns:
            Counts of re-indexed and removed entries
        """
        self._validate_user(user_id)
        memories = self.database.list_memories(user_id)
        for memory in memories:
            self._index_memory(memory)

        stored_ids = {memory.id for memory in memories}
        removed = 0
        for memory_id in self.vector_index.list_memory_ids(user_id):
            if memory_id not in stored_ids and self.vector_index.delete(memory_id, user_id):
                removed += 1

        logger.info(f'Reconciled index for user {user_id}: {len(memories)} re-indexed, {removed} removed')
        return {'reindexed': len(memories), 'removed': removed}

    # Helpers

    def _index_memory(self, memory: Memory, people_names: Optional[List[str]] = None) -> None:
        if people_names is None:
            people_names = self._people_names(memory.user_id, memory.people)
        self.vector_index.upsert(memory_id=memory.id,
                                 user_id=memory.user_id,
                                 text=memory.content,
                                 summary=memory.summary,
                                 embedding=memory.embedding,
                                 metadata=flatten_metadata(memory.title, people_names, memory.tags, memory.mood))

    def _people_names(self, user_id: str, person_ids: Sequence[str]) -> List[str]:
        by_id = {person.id: person.name for person in self.database.get_people(person_ids, user_id)}
        return [by_id[person_id] for person_id in person_ids if person_id in by_id]

    def _resolve_people(self, user_id: str, names: Sequence[str]) -> List[str]:
        """Map names to existing person IDs. Unknown names are not created."""
        found = self.people.find_by_names(user_id, names)
        resolved = []
        for name in names:
            person = found.get(name.strip().lower()) if name else None
            if person is not None and person.id not in resolved:
                resolved.append(person.id)
        return resolved

    def _validate_people(self, user_id: str, person_ids: Sequence[str]) -> None:
        known = {person.id for person in self.database.get_people(person_ids, user_id)}
        missing = [person_id for person_id in person_ids if person_id not in known]
        if missing:
            raise ValueError(f"Unknown person IDs: {', '.join(missing)}")

    @staticmethod
    def _validate_user(user_id: str) -> None:
        if not user_id or not user_id.strip():
            raise ValueError('User ID is required')

    @staticmethod
    def _validate_patch(patch: Dict[str, Any]) -> None:
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for name in LIST_FIELDS:
            if name in patch:
                value = patch[name]
                if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
                    raise ValueError(f'{name} must be a list of strings')
        for name in TEXT_FIELDS:
            if name in patch and patch[name] is not None and not isinstance(patch[name], str):
                raise ValueError(f'{name} must be a string')
        if 'content' in patch and not isinstance(patch['content'], str):
            raise ValueError('content must be a string')

    def _validate_content(self, content: str) -> None:
        if not content or not content.strip():
            raise ValueError('Memory content is required')
        max_length = self.config.retrieval.max_content_length
        if len(content) > max_length:
            raise ValueError(f'Memory content exceeds {max_length} characters')
