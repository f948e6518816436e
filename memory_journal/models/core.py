"""
Core data models for the memory journal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Valence(str, Enum):
    POSITIVE = 'positive'
    NEGATIVE = 'negative'
    NEUTRAL = 'neutral'


class NudgeType(str, Enum):
    RECONNECT = 'reconnect'
    LOG_MEMORY = 'log_memory'
    EMOTIONAL_GAP = 'emotional_gap'
    PERSON_REMINDER = 'person_reminder'


class NudgePriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class MoodTrend(str, Enum):
    IMPROVING = 'improving'
    DECLINING = 'declining'
    STABLE = 'stable'


@dataclass
class Emotion:
    """Emotion classification derived from memory content."""
    primary: str
    secondary: List[str]
    intensity: int  # 1-10
    valence: Valence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'primary': self.primary,
            'secondary': list(self.secondary),
            'intensity': self.intensity,
            'valence': self.valence.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Emotion':
        return cls(primary=data['primary'],
                   secondary=list(data.get('secondary') or []),
                   intensity=int(data['intensity']),
                   valence=Valence(data['valence']))


@dataclass
class Memory:
    """A user-authored journal entry enriched with AI-derived fields.

    ``summary``, ``emotions``, ``mood``, ``ai_tags`` and ``embedding`` are derived from
    ``content`` and are regenerated together whenever the content changes.
    ``tags`` is the union of ``user_tags`` and ``ai_tags``; both parts are stored
    so either can be replaced without touching the other.
    """
    id: str
    user_id: str
    title: str
    content: str
    summary: str
    emotions: Emotion
    mood: int  # 1-10
    tags: List[str]
    ai_tags: List[str]
    embedding: List[float]
    people: List[str] = field(default_factory=list)  # Person IDs
    user_tags: List[str] = field(default_factory=list)
    location: Optional[str] = None
    weather: Optional[str] = None
    is_private: bool = False
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'content': self.content,
            'summary': self.summary,
            'emotions': self.emotions.to_dict(),
            'mood': self.mood,
            'tags': list(self.tags),
            'people': list(self.people),
            'location': self.location,
            'weather': self.weather,
            'is_private': self.is_private,
            'audio_url': self.audio_url,
            'image_url': self.image_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_embedding:
            data['embedding'] = list(self.embedding)
        return data


@dataclass
class Person:
    """A contact referenced by memories. Names are unique per user, case-insensitively."""
    id: str
    user_id: str
    name: str
    relationship: Optional[str] = None
    avatar: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'relationship': self.relationship,
            'avatar': self.avatar,
            'tags': list(self.tags),
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


@dataclass
class Nudge:
    """A generated suggestion. ``is_read`` and ``is_actioned`` only ever go from False to True."""
    id: str
    user_id: str
    type: NudgeType
    title: str
    message: str
    priority: NudgePriority
    related_people: List[str] = field(default_factory=list)  # Person IDs
    related_memories: List[str] = field(default_factory=list)  # Memory IDs
    is_read: bool = False
    is_actioned: bool = False
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type.value,
            'title': self.title,
            'message': self.message,
            'priority': self.priority.value,
            'related_people': list(self.related_people),
            'related_memories': list(self.related_memories),
            'is_read': self.is_read,
            'is_actioned': self.is_actioned,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None
        }


@dataclass
class VectorHit:
    """A single similarity search result from the vector index."""
    memory_id: str
    similarity: float
    text: str
    summary: str
    metadata: Dict[str, Any]


@dataclass
class SummaryResult:
    """Validated output of memory summarization."""
    summary: str
    emotions: Emotion
    tags: List[str]
    mood: int
    people: List[str]  # Names mentioned, not IDs


@dataclass
class NudgeSignals:
    """Lightweight behavioral signals that drive nudge generation."""
    days_since_last_memory: Optional[int] = None
    emotional_gaps: List[str] = field(default_factory=list)
    inactive_people: List[str] = field(default_factory=list)


@dataclass
class NudgeCandidate:
    """A validated nudge proposal from the LLM, before persistence."""
    type: NudgeType
    title: str
    message: str
    priority: NudgePriority
    related_people: List[str]  # Names as returned by the model


@dataclass
class PatternAnalysis:
    """Emotional pattern analysis over a window of recent memories."""
    dominant_emotions: List[str]
    mood_trend: MoodTrend
    emotional_gaps: List[str]
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dominant_emotions': list(self.dominant_emotions),
            'mood_trend': self.mood_trend.value,
            'emotional_gaps': list(self.emotional_gaps),
            'recommendations': list(self.recommendations)
        }


@dataclass
class MemoryFilters:
    """Optional post-retrieval filters for memory queries."""
    people: List[str] = field(default_factory=list)  # Person IDs, any match
    tags: List[str] = field(default_factory=list)  # any match, case-insensitive
    emotions: List[str] = field(default_factory=list)  # primary or secondary, any match
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class QueryResult:
    """Ranked, explained answer to a natural-language memory query."""
    memories: List[Memory]
    query: str
    explanation: str
    confidence: float
    scores: Dict[str, float] = field(default_factory=dict)  # memory ID -> similarity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'memories': [dict(memory.to_dict(), similarity=self.scores.get(memory.id)) for memory in self.memories],
            'query': self.query,
            'explanation': self.explanation,
            'confidence': self.confidence
        }
