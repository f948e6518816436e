import json
from unittest.mock import MagicMock

import pytest

from fakes import make_memory
from memory_journal.models.core import MoodTrend, Valence
from memory_journal.services.summarization import (EXPLAIN_MAX_TOKENS, SUMMARY_TEMPERATURE, SummarizationService)
from memory_journal.utils.errors import CompletionFailure, SummarizationFailure

VALID_SUMMARY = {
    'summary': 'Coffee with Alex left the author very happy.',
    'emotions': {
        'primary': 'joy',
        'secondary': ['gratitude', 'Gratitude', ' '],
        'intensity': 8,
        'valence': 'positive'
    },
    'tags': ['coffee', 'friends'],
    'people': ['Alex'],
    'mood': 9
}


def llm_returning(text):
    llm = MagicMock()
    llm.generate_response.return_value = (text, None)
    return llm


def without(data, key):
    return {k: v for k, v in data.items() if k != key}


class TestSummarize:

    def test_valid_payload(self):
        service = SummarizationService(llm_returning(json.dumps(VALID_SUMMARY)))

        result = service.summarize('Had coffee with Alex, felt very happy', people_hint=['Alex'])

        assert result.summary == VALID_SUMMARY['summary']
        assert result.mood == 9
        assert result.emotions.primary == 'joy'
        assert result.emotions.secondary == ['gratitude']
        assert result.emotions.valence is Valence.POSITIVE
        assert result.tags == ['coffee', 'friends']
        assert result.people == ['Alex']

    def test_request_shape(self):
        llm = llm_returning(json.dumps(VALID_SUMMARY))
        SummarizationService(llm).summarize('Had coffee with Alex', people_hint=['Alex'])

        kwargs = llm.generate_response.call_args.kwargs
        assert kwargs['temperature'] == SUMMARY_TEMPERATURE
        assert kwargs['stop_sequences'] == ['```']
        assert kwargs['messages'][-1] == {'role': 'assistant', 'content': [{'text': '```json'}]}
        assert 'Alex' in kwargs['messages'][0]['content'][0]['text']

    def test_fenced_response_is_accepted(self):
        service = SummarizationService(llm_returning('```json\n' + json.dumps(VALID_SUMMARY) + '\n```'))

        assert service.summarize('content').mood == 9

    @pytest.mark.parametrize('payload', [
        without(VALID_SUMMARY, 'mood'),
        dict(VALID_SUMMARY, mood=11),
        dict(VALID_SUMMARY, mood=0),
        dict(VALID_SUMMARY, mood='8'),
        dict(VALID_SUMMARY, mood=7.5),
        dict(VALID_SUMMARY, summary='   '),
        without(VALID_SUMMARY, 'summary'),
        dict(VALID_SUMMARY, emotions=dict(VALID_SUMMARY['emotions'], valence='ecstatic')),
        dict(VALID_SUMMARY, emotions=dict(VALID_SUMMARY['emotions'], intensity=12)),
        dict(VALID_SUMMARY, tags='coffee'),
    ])
    def test_schema_violations_fail_closed(self, payload):
        service = SummarizationService(llm_returning(json.dumps(payload)))

        with pytest.raises(SummarizationFailure):
            service.summarize('content')

    def test_non_object_payload_fails(self):
        service = SummarizationService(llm_returning('[1, 2, 3]'))

        with pytest.raises(SummarizationFailure, match='must be an object'):
            service.summarize('content')

    def test_undecodable_response_fails(self):
        service = SummarizationService(llm_returning('I am not able to help with that.'))

        with pytest.raises(SummarizationFailure, match='not valid JSON'):
            service.summarize('content')

    def test_upstream_failure_is_wrapped(self):
        llm = MagicMock()
        llm.generate_response.side_effect = CompletionFailure('throttled')

        with pytest.raises(SummarizationFailure) as excinfo:
            SummarizationService(llm).summarize('content')
        assert isinstance(excinfo.value.__cause__, CompletionFailure)

    def test_empty_content_is_rejected(self):
        llm = MagicMock()

        with pytest.raises(SummarizationFailure):
            SummarizationService(llm).summarize('  ')
        llm.generate_response.assert_not_called()


class TestExplain:

    def test_returns_stripped_text(self):
        llm = llm_returning('  Both memories mention Alex.  ')

        explanation = SummarizationService(llm).explain('Alex', [make_memory(content='Coffee with Alex')])

        assert explanation == 'Both memories mention Alex.'
        assert llm.generate_response.call_args.kwargs['max_tokens'] == EXPLAIN_MAX_TOKENS

    def test_empty_explanation_fails(self):
        with pytest.raises(SummarizationFailure):
            SummarizationService(llm_returning('   ')).explain('Alex', [make_memory()])

    def test_upstream_failure_fails(self):
        llm = MagicMock()
        llm.generate_response.side_effect = CompletionFailure('down')

        with pytest.raises(SummarizationFailure):
            SummarizationService(llm).explain('Alex', [make_memory()])


class TestAnalyzePatterns:

    PATTERNS = {
        'dominantEmotions': ['joy', 'calm'],
        'moodTrend': 'improving',
        'emotionalGaps': ['pride'],
        'recommendations': ['Call Sam']
    }

    def test_valid_payload(self):
        service = SummarizationService(llm_returning(json.dumps(self.PATTERNS)))

        analysis = service.analyze_patterns([make_memory()])

        assert analysis.mood_trend is MoodTrend.IMPROVING
        assert analysis.dominant_emotions == ['joy', 'calm']
        assert analysis.to_dict()['mood_trend'] == 'improving'

    def test_no_memories_needs_no_request(self):
        llm = MagicMock()

        analysis = SummarizationService(llm).analyze_patterns([])

        assert analysis.mood_trend is MoodTrend.STABLE
        llm.generate_response.assert_not_called()

    def test_window_is_capped_at_one_hundred(self):
        llm = llm_returning(json.dumps(self.PATTERNS))
        memories = [make_memory(content=f'entry {i}') for i in range(150)]

        SummarizationService(llm).analyze_patterns(memories)

        prompt = llm.generate_response.call_args.kwargs['messages'][0]['content'][0]['text']
        assert prompt.count('(Mood:') == 100
        assert 'entry 99' in prompt
        assert 'entry 100' not in prompt

    def test_invalid_trend_fails(self):
        service = SummarizationService(llm_returning(json.dumps(dict(self.PATTERNS, moodTrend='sideways'))))

        with pytest.raises(SummarizationFailure):
            service.analyze_patterns([make_memory()])
