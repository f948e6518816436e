"""
Summarization Service: structured memory analysis using Bedrock LLMs.
"""

import json
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from ..models.core import Emotion, Memory, MoodTrend, PatternAnalysis, SummaryResult
from ..models.schemas import PatternPayload, SummaryPayload
from ..utils.bedrock_llm import BedrockLLM, user_message
from ..utils.errors import CompletionFailure, SummarizationFailure
from ..utils.json_utils import load_json_response
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PROMPT_VERSION = 'summarize-v1'
MAX_PATTERN_WINDOW = 100

SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 500
EXPLAIN_TEMPERATURE = 0.3
EXPLAIN_MAX_TOKENS = 200
PATTERN_TEMPERATURE = 0.3
PATTERN_MAX_TOKENS = 400

SUMMARY_SYSTEM_PROMPT = """You are an AI assistant that helps summarize personal memories and extract emotional insights.

Analyze the memory content and provide:
1. A concise summary (2-3 sentences)
2. Primary and secondary emotions
3. Emotional intensity (integer 1-10)
4. Emotional valence (positive, negative or neutral)
5. Relevant tags (1-5 short lowercase topics)
6. People mentioned by name
7. Overall mood score (integer 1-10)

Respond with JSON only, in exactly this format:
```json
{
  "summary": "Brief summary of the memory",
  "emotions": {
    "primary": "main emotion",
    "secondary": ["emotion1", "emotion2"],
    "intensity": 7,
    "valence": "positive"
  },
  "tags": ["tag1", "tag2"],
  "people": ["person1"],
  "mood": 8
}
```"""

EXPLAIN_SYSTEM_PROMPT = """You are an AI assistant that explains memory search results.
Given a search query and the memories that matched it, explain in 2-3 sentences why these memories are relevant.
Respond with plain text only."""

PATTERN_SYSTEM_PROMPT = """You are an AI assistant that analyzes emotional patterns in personal memories.

Respond with JSON only, in exactly this format:
```json
{
  "dominantEmotions": ["emotion1", "emotion2"],
  "moodTrend": "improving|declining|stable",
  "emotionalGaps": ["missing_emotion1"],
  "recommendations": ["recommendation1"]
}
```"""


def describe_validation_error(error: ValidationError) -> str:
    """Render a pydantic error as 'field: reason' pairs without echoing model output."""
    parts = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item.get('loc', ())) or 'payload'
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return '; '.join(parts)


class SummarizationService:
    """Summarize memories, explain search results and analyze emotional patterns."""

    def __init__(self, llm: BedrockLLM):
        """Initialize the summarization service.

        Args:
            llm: Chat/completion client
        """
        self.llm = llm
        logger.info(f'Initialized SummarizationService ({PROMPT_VERSION})')

    def _complete_json(self, system_prompt: str, prompt: str, temperature: float, max_tokens: int) -> Any:
        response, _ = self.llm.generate_response(messages=user_message(prompt, prefill='```json'),
                                                 system_prompt=system_prompt,
                                                 max_tokens=max_tokens,
                                                 temperature=temperature,
                                                 stop_sequences=['```'])
        return load_json_response(response)

    def summarize(self, content: str, people_hint: Optional[Sequence[str]] = None) -> SummaryResult:
        """Summarize memory content and classify its emotions.

        Args:
            content: Raw memory text
            people_hint: Names the user says are involved

        Returns:
            Validated SummaryResult

        Raises:
            SummarizationFailure: On upstream failure or any schema violation
        """
        if not content or not content.strip():
            raise SummarizationFailure('Cannot summarize empty content')

        prompt = f'Memory content:\n"""\n{content}\n"""'
        if people_hint:
            prompt += f"\n\nPeople the author mentioned: {', '.join(people_hint)}"

        try:
            data = self._complete_json(SUMMARY_SYSTEM_PROMPT, prompt, SUMMARY_TEMPERATURE, SUMMARY_MAX_TOKENS)
        except CompletionFailure as e:
            logger.error(f'LLM error during summarization: {e}')
            raise SummarizationFailure(f'Summarization request failed: {e}') from e
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse summarization JSON: {e}')
            raise SummarizationFailure('Summarization response is not valid JSON') from e

        return self.validate_summary(data)

    def validate_summary(self, data: Any) -> SummaryResult:
        """Decode a summarization payload, failing closed on any violation.

        Raises:
            SummarizationFailure: If a field is missing, mistyped or out of range
        """
        if not isinstance(data, dict):
            raise SummarizationFailure(f'Summarization payload must be an object, got {type(data).__name__}')
        try:
            payload = SummaryPayload.model_validate(data)
        except ValidationError as e:
            reason = describe_validation_error(e)
            logger.warning(f'Rejected summarization payload: {reason}')
            raise SummarizationFailure(f'Summarization payload rejected: {reason}') from e

        return SummaryResult(summary=payload.summary,
                             emotions=Emotion(primary=payload.emotions.primary,
                                              secondary=payload.emotions.secondary,
                                              intensity=payload.emotions.intensity,
                                              valence=payload.emotions.valence),
                             tags=payload.tags,
                             mood=payload.mood,
                             people=payload.people)

    def explain(self, query: str, memories: Sequence[Memory]) -> str:
        """Explain why the memories matched a query.

        Raises:
            SummarizationFailure: If no explanation could be produced
        """
        listing = '\n'.join(f'{i + 1}. {memory.summary} ({memory.title})' for i, memory in enumerate(memories))
        prompt = f'Query: "{query}"\n\nFound {len(memories)} relevant memories:\n{listing}'

        try:
            response, _ = self.llm.generate_response(messages=user_message(prompt),
                                                     system_prompt=EXPLAIN_SYSTEM_PROMPT,
                                                     max_tokens=EXPLAIN_MAX_TOKENS,
                                                     temperature=EXPLAIN_TEMPERATURE)
        except CompletionFailure as e:
            raise SummarizationFailure(f'Explanation request failed: {e}') from e

        explanation = response.strip()
        if not explanation:
            raise SummarizationFailure('Explanation response was empty')
        return explanation

    def analyze_patterns(self, memories: Sequence[Memory]) -> PatternAnalysis:
        """Analyze emotional patterns over at most the 100 given memories (newest first).

        Raises:
            SummarizationFailure: On upstream failure or schema violation
        """
        window: List[Memory] = list(memories)[:MAX_PATTERN_WINDOW]
        if not window:
            return PatternAnalysis(dominant_emotions=[], mood_trend=MoodTrend.STABLE, emotional_gaps=[], recommendations=[])

        # Oldest first so the model reads the trend in chronological order
        lines = [
            f'{memory.title}: {memory.summary} (Mood: {memory.mood}, Emotions: {memory.emotions.primary})'
            for memory in reversed(window)
        ]
        prompt = 'Analyze the following memory entries, oldest first, and identify emotional patterns:\n\n' + '\n'.join(lines)

        try:
            data = self._complete_json(PATTERN_SYSTEM_PROMPT, prompt, PATTERN_TEMPERATURE, PATTERN_MAX_TOKENS)
        except CompletionFailure as e:
            raise SummarizationFailure(f'Pattern analysis request failed: {e}') from e
        except json.JSONDecodeError as e:
            raise SummarizationFailure('Pattern analysis response is not valid JSON') from e

        if not isinstance(data, dict):
            raise SummarizationFailure('Pattern analysis payload must be an object')
        try:
            payload = PatternPayload.model_validate(data)
        except ValidationError as e:
            raise SummarizationFailure(f'Pattern analysis payload rejected: {describe_validation_error(e)}') from e

        return PatternAnalysis(dominant_emotions=payload.dominant_emotions,
                               mood_trend=payload.mood_trend,
                               emotional_gaps=payload.emotional_gaps,
                               recommendations=payload.recommendations)
