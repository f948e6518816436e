"""
Strict schemas for structured LLM output.

Model output is never trusted: every payload is decoded through one of these
models and rejected on any missing, mistyped or out-of-range field.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from .core import MoodTrend, NudgePriority, NudgeType, Valence


def _clean_strings(values: List[str]) -> List[str]:
    seen = set()
    cleaned = []
    for value in values:
        value = value.strip()
        if value and value.lower() not in seen:
            seen.add(value.lower())
            cleaned.append(value)
    return cleaned


class EmotionPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    primary: str = Field(min_length=1)
    secondary: List[str] = Field(default_factory=list)
    intensity: StrictInt = Field(ge=1, le=10)
    valence: Valence

    @field_validator('primary')
    @classmethod
    def _strip_primary(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('primary emotion must not be blank')
        return value

    @field_validator('secondary')
    @classmethod
    def _clean_secondary(cls, value: List[str]) -> List[str]:
        return _clean_strings(value)


class SummaryPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    summary: str = Field(min_length=1)
    emotions: EmotionPayload
    tags: List[str] = Field(default_factory=list)
    people: List[str] = Field(default_factory=list)
    mood: StrictInt = Field(ge=1, le=10)

    @field_validator('summary')
    @classmethod
    def _strip_summary(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('summary must not be blank')
        return value

    @field_validator('tags', 'people')
    @classmethod
    def _clean_lists(cls, value: List[str]) -> List[str]:
        return _clean_strings(value)


class NudgePayload(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    type: NudgeType
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    priority: NudgePriority
    related_people: List[str] = Field(default_factory=list, alias='relatedPeople')

    @field_validator('title', 'message')
    @classmethod
    def _strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('must not be blank')
        return value


class PatternPayload(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    dominant_emotions: List[str] = Field(alias='dominantEmotions')
    mood_trend: MoodTrend = Field(alias='moodTrend')
    emotional_gaps: List[str] = Field(default_factory=list, alias='emotionalGaps')
    recommendations: List[str] = Field(default_factory=list)
