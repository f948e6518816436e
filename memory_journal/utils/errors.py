"""
Failure taxonomy shared by the memory journal core.

Every failure carries a machine-readable ``kind`` so callers can decide between
retrying and giving up without parsing upstream error text.
"""

from typing import Any, Dict, Optional


class MemoryJournalError(Exception):
    """Base class for all memory journal failures."""
    kind = 'internal_error'

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': str(self)}


class EmbeddingFailure(MemoryJournalError):
    """The embedding service could not produce a usable vector."""
    kind = 'embedding_failure'


class CompletionFailure(MemoryJournalError):
    """The chat/completion service call failed."""
    kind = 'completion_failure'


class SummarizationFailure(MemoryJournalError):
    """Summarization failed upstream or returned a payload violating the schema."""
    kind = 'summarization_failure'


class VectorIndexFailure(MemoryJournalError):
    """The vector index rejected or failed a request."""
    kind = 'vector_index_failure'


class RelationalStoreFailure(MemoryJournalError):
    """The relational store rejected or failed a request."""
    kind = 'relational_store_failure'


class NudgeGenerationFailure(MemoryJournalError):
    """Nudge generation failed as a whole; no nudges were persisted."""
    kind = 'nudge_generation_failure'


class QueryFailure(MemoryJournalError):
    """A fatal stage of the retrieval pipeline failed."""
    kind = 'query_failure'

    STAGES = ('embed', 'search', 'hydrate')

    def __init__(self, stage: str, message: Optional[str] = None):
        if stage not in self.STAGES:
            raise ValueError(f'Unknown query stage: {stage}')
        self.stage = stage
        super().__init__(message or f'Memory query failed at stage: {stage}')

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'stage': self.stage, 'message': str(self)}


class NotFoundError(MemoryJournalError):
    """The requested record does not exist for this user."""
    kind = 'not_found'


class PersonInUseError(MemoryJournalError):
    """A person cannot be deleted while memories still reference it."""
    kind = 'person_in_use'
