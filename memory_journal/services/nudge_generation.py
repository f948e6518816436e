"""
Nudge Generation Service: LLM-generated reminders with strict candidate validation.
"""

import json
import uuid
from datetime import timedelta
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from ..models.core import Memory, Nudge, NudgeCandidate, NudgeSignals, Person
from ..models.schemas import NudgePayload
from ..utils.bedrock_llm import BedrockLLM, user_message
from ..utils.config import NudgeConfig
from ..utils.database_client import DatabaseClient
from ..utils.errors import CompletionFailure, NotFoundError, NudgeGenerationFailure, RelationalStoreFailure
from ..utils.json_utils import load_json_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_between, utc_now
from .summarization import describe_validation_error

logger = get_logger(__name__)

# Emotions whose absence from recent memories counts as an emotional gap
CORE_EMOTIONS = ('joy', 'gratitude', 'calm', 'excitement', 'love', 'pride')

NUDGE_SYSTEM_PROMPT = """You are an AI assistant that generates personalized nudges to help users maintain their memory journal.

Generate 2-4 personalized nudges. Consider:
1. If they haven't logged in a while, encourage them to capture today's moments
2. If they have emotional gaps, suggest reflecting on those emotions
3. If they haven't mentioned certain people recently, suggest reconnecting
4. If they've been having negative emotions, suggest positive reflection

For each nudge provide:
- type: one of "reconnect", "log_memory", "emotional_gap", "person_reminder"
- title: short, engaging title
- message: friendly, encouraging message
- priority: "low", "medium", or "high"
- relatedPeople: array of person names if relevant

Respond with JSON only, in exactly this format:
```json
{
  "nudges": [
    {
      "type": "log_memory",
      "title": "Capture Today's Moments",
      "message": "How has your day been? Take a moment to capture what's been meaningful.",
      "priority": "medium",
      "relatedPeople": []
    }
  ]
}
```"""


class NudgeGenerationService:
    """Generate, persist and track nudges for a user."""

    def __init__(self, llm: BedrockLLM, database: DatabaseClient, config: NudgeConfig):
        self.llm = llm
        self.database = database
        self.config = config

    def collect_signals(self, user_id: str) -> NudgeSignals:
        """Derive behavioral signals from the user's stored memories and people."""
        memories = self.database.list_memories(user_id, limit=self.config.recent_memory_window)
        people = self.database.list_people(user_id)

        days_since_last = days_between(memories[0].created_at) if memories else None

        now = utc_now()
        cutoff = now - timedelta(days=self.config.inactive_days)
        recent_people = {pid for memory in memories if memory.created_at and memory.created_at >= cutoff for pid in memory.people}
        inactive = [person.name for person in people if person.id not in recent_people]

        felt = set()
        for memory in memories:
            felt.add(memory.emotions.primary.lower())
            felt.update(emotion.lower() for emotion in memory.emotions.secondary)
        gaps = [emotion for emotion in CORE_EMOTIONS if emotion not in felt]

        return NudgeSignals(days_since_last_memory=days_since_last, emotional_gaps=gaps, inactive_people=inactive)

    def generate_nudges(self, user_id: str, signals: Optional[NudgeSignals] = None) -> List[Nudge]:
        """Generate and persist 2-4 nudges.

        Args:
            user_id: Owner of the nudges
            signals: Behavioral signals (derived from stored data if None)

        Returns:
            The persisted nudges; malformed candidates are dropped

        Raises:
            NudgeGenerationFailure: If the context cannot be loaded, the LLM call fails,
                the response cannot be decoded, or persistence fails
        """
        if not user_id or not user_id.strip():
            raise ValueError('User ID is required')

        try:
            if signals is None:
                signals = self.collect_signals(user_id)
            recent = self.database.list_memories(user_id, limit=self.config.recent_memory_window)
            people = self.database.list_people(user_id)
        except RelationalStoreFailure as e:
            raise NudgeGenerationFailure(f'Could not load nudge context: {e}') from e

        prompt = self._build_prompt(signals, recent, people)
        try:
            response, _ = self.llm.generate_response(messages=user_message(prompt, prefill='```json'),
                                                     system_prompt=NUDGE_SYSTEM_PROMPT,
                                                     max_tokens=self.config.max_tokens,
                                                     temperature=self.config.temperature,
                                                     stop_sequences=['```'])
            data = load_json_response(response)
        except CompletionFailure as e:
            logger.error(f'LLM error during nudge generation: {e}')
            raise NudgeGenerationFailure(f'Nudge generation request failed: {e}') from e
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse nudge JSON: {e}')
            raise NudgeGenerationFailure('Nudge response is not valid JSON') from e

        candidates = self.validate_candidates(data)[:self.config.max_nudges]

        now = utc_now()
        expires_at = now + timedelta(days=self.config.expiry_days)
        people_by_name = {person.name.lower(): person.id for person in people}
        nudges = []
        for candidate in candidates:
            related = [people_by_name[name.lower()] for name in candidate.related_people if name.lower() in people_by_name]
            nudges.append(
                Nudge(id=str(uuid.uuid4()),
                      user_id=user_id,
                      type=candidate.type,
                      title=candidate.title,
                      message=candidate.message,
                      priority=candidate.priority,
                      related_people=list(dict.fromkeys(related)),
                      related_memories=self._related_memories(related, recent),
                      created_at=now,
                      expires_at=expires_at))

        try:
            self.database.insert_nudges(nudges)
        except RelationalStoreFailure as e:
            raise NudgeGenerationFailure(f'Could not persist nudges: {e}') from e

        logger.info(f'Generated {len(nudges)} nudges for user {user_id}')
        return nudges

    @staticmethod
    def validate_candidates(data: Any) -> List[NudgeCandidate]:
        """Decode the nudge payload, dropping candidates that violate the schema.

        Raises:
            NudgeGenerationFailure: If the payload has no ``nudges`` list at all
        """
        if not isinstance(data, dict) or not isinstance(data.get('nudges'), list):
            raise NudgeGenerationFailure('Nudge payload must be an object with a "nudges" list')

        candidates = []
        for index, item in enumerate(data['nudges']):
            if not isinstance(item, dict):
                logger.warning(f'Dropping nudge candidate {index}: not an object')
                continue
            try:
                payload = NudgePayload.model_validate(item)
            except ValidationError as e:
                logger.warning(f'Dropping nudge candidate {index}: {describe_validation_error(e)}')
                continue
            candidates.append(
                NudgeCandidate(type=payload.type,
                               title=payload.title,
                               message=payload.message,
                               priority=payload.priority,
                               related_people=payload.related_people))
        return candidates

    @staticmethod
    def _build_prompt(signals: NudgeSignals, recent: Sequence[Memory], people: Sequence[Person]) -> str:
        days = signals.days_since_last_memory if signals.days_since_last_memory is not None else 'Unknown'
        recent_lines = '\n'.join(f'- {memory.title} (mood {memory.mood}, {memory.emotions.primary})' for memory in recent)
        return f"""User context:
- Days since last memory: {days}
- Recent memories ({len(recent)}):
{recent_lines or '- none'}
- People in their life: {', '.join(person.name for person in people) or 'None'}
- Emotional gaps: {', '.join(signals.emotional_gaps) or 'None'}
- Inactive people: {', '.join(signals.inactive_people) or 'None'}"""

    @staticmethod
    def _related_memories(person_ids: List[str], recent: Sequence[Memory]) -> List[str]:
        if not person_ids:
            return []
        wanted = set(person_ids)
        return [memory.id for memory in recent if wanted & set(memory.people)]

    # Lifecycle

    def list_nudges(self, user_id: str, include_expired: bool = False) -> List[Nudge]:
        nudges = self.database.list_nudges(user_id)
        if include_expired:
            return nudges
        now = utc_now()
        return [nudge for nudge in nudges if not nudge.is_expired(now)]

    def mark_read(self, user_id: str, nudge_id: str) -> Nudge:
        return self._raise_flags(user_id, nudge_id, is_read=True)

    def mark_actioned(self, user_id: str, nudge_id: str) -> Nudge:
        """Mark a nudge actioned. Acting on a nudge implies it was read."""
        return self._raise_flags(user_id, nudge_id, is_read=True, is_actioned=True)

    def mark_all_read(self, user_id: str) -> int:
        unread = [nudge.id for nudge in self.list_nudges(user_id) if not nudge.is_read]
        return self.database.set_nudge_flags(unread, user_id, is_read=True)

    def cleanup_expired(self, user_id: str) -> int:
        """Delete the user's expired nudges.

        Returns:
            Number of nudges deleted
        """
        now = utc_now()
        expired = [nudge.id for nudge in self.database.list_nudges(user_id) if nudge.is_expired(now)]
        deleted = self.database.delete_nudges(expired, user_id)
        if deleted:
            logger.info(f'Cleaned up {deleted} expired nudges for user {user_id}')
        return deleted

    def delete_nudge(self, user_id: str, nudge_id: str) -> None:
        """Delete one nudge.

        Raises:
            NotFoundError: If the nudge does not exist for this user
        """
        if not self.database.delete_nudges([nudge_id], user_id):
            raise NotFoundError(f'Nudge {nudge_id} not found')
        logger.debug(f'Deleted nudge {nudge_id} for user {user_id}')

    def _raise_flags(self, user_id: str, nudge_id: str, is_read: bool = False, is_actioned: bool = False) -> Nudge:
        nudge = self.database.get_nudge(nudge_id, user_id)
        if nudge is None:
            raise NotFoundError(f'Nudge {nudge_id} not found')
        if nudge.is_expired(utc_now()):
            logger.debug(f'Nudge {nudge_id} is expired; flags left unchanged')
            return nudge
        self.database.set_nudge_flags([nudge_id], user_id, is_read=is_read, is_actioned=is_actioned)
        return self.database.get_nudge(nudge_id, user_id)
