from datetime import timedelta

import pytest

from fakes import OTHER_USER_ID, USER_ID, make_memory
from memory_journal.models.core import MemoryFilters, VectorHit
from memory_journal.services.retrieval import GENERIC_EXPLANATION, NO_RESULTS_EXPLANATION, apply_filters
from memory_journal.utils.errors import (CompletionFailure, EmbeddingFailure, QueryFailure, RelationalStoreFailure,
                                         VectorIndexFailure)
from memory_journal.utils.timestamp_utils import utc_now


@pytest.fixture
def seeded(service):
    """Two memories for the default user and one for another user."""
    happy = service.create_memory(USER_ID, 'Had coffee with Alex, felt very happy')
    traffic = service.create_memory(USER_ID, 'Stuck in traffic for two hours')
    service.create_memory(OTHER_USER_ID, 'Had coffee with Sam, felt very happy')
    return happy, traffic


class TestQueryPipeline:

    def test_requires_user_and_query(self, service):
        with pytest.raises(ValueError):
            service.retrieval.query('', 'coffee')
        with pytest.raises(ValueError):
            service.retrieval.query(USER_ID, '   ')

    def test_ranks_by_similarity(self, service, seeded):
        happy, traffic = seeded

        result = service.retrieval.query(USER_ID, 'coffee with Alex', similarity_floor=0.0)

        assert [m.id for m in result.memories][0] == happy.id
        assert result.confidence == result.scores[happy.id]
        assert result.confidence > 0

    def test_results_never_cross_users(self, service, seeded):
        result = service.retrieval.query(USER_ID, 'had coffee felt very happy', similarity_floor=0.0)

        assert {m.user_id for m in result.memories} == {USER_ID}

    def test_empty_search_is_an_explicit_no_result(self, service, seeded, llm):
        result = service.retrieval.query(USER_ID, 'quantum chromodynamics lecture')

        assert result.memories == []
        assert result.explanation == NO_RESULTS_EXPLANATION
        assert result.confidence == 0.0
        assert llm.calls_of('explain') == []

    def test_explanation_comes_from_the_model(self, service, seeded):
        result = service.retrieval.query(USER_ID, 'coffee with Alex')

        assert result.explanation == 'These memories match what you asked about.'

    def test_explain_failure_falls_back(self, service, seeded, llm):
        llm.overrides['explain'] = CompletionFailure('explain timed out')

        result = service.retrieval.query(USER_ID, 'coffee with Alex')

        assert result.memories
        assert result.explanation == GENERIC_EXPLANATION

    def test_limit_caps_results(self, service, seeded):
        result = service.retrieval.query(USER_ID, 'had coffee stuck in traffic', limit=1, similarity_floor=0.0)

        assert len(result.memories) == 1


class TestStageFailures:

    def test_embed_failure(self, service, seeded, embedder):
        embedder.failure = EmbeddingFailure('bedrock unavailable')

        with pytest.raises(QueryFailure) as excinfo:
            service.retrieval.query(USER_ID, 'coffee')
        assert excinfo.value.stage == 'embed'
        assert excinfo.value.to_dict()['stage'] == 'embed'

    def test_search_failure(self, service, seeded, vector_index):
        vector_index.query_failure = VectorIndexFailure('timeout')

        with pytest.raises(QueryFailure) as excinfo:
            service.retrieval.query(USER_ID, 'coffee')
        assert excinfo.value.stage == 'search'

    def test_hydrate_failure(self, service, seeded, monkeypatch):

        def broken(*args, **kwargs):
            raise RelationalStoreFailure('connection lost')

        monkeypatch.setattr(service.database, 'get_memories', broken)

        with pytest.raises(QueryFailure) as excinfo:
            service.retrieval.query(USER_ID, 'coffee with Alex')
        assert excinfo.value.stage == 'hydrate'


class TestHydration:

    def test_index_entries_without_a_record_are_dropped(self, service, seeded, vector_index, embedder):
        happy, _ = seeded
        vector_index.upsert('ghost', USER_ID, 'coffee with Alex', 'ghost', embedder.embed_document('coffee with Alex'))

        result = service.retrieval.query(USER_ID, 'coffee with Alex')

        assert 'ghost' not in [m.id for m in result.memories]
        assert result.memories[0].id == happy.id
        assert result.confidence == result.scores[happy.id]

    def test_only_ghost_hits_give_no_result(self, service, vector_index, embedder):
        vector_index.upsert('ghost', USER_ID, 'coffee', 'ghost', embedder.embed_document('coffee'))

        result = service.retrieval.query(USER_ID, 'coffee')

        assert result.memories == []
        assert result.explanation == NO_RESULTS_EXPLANATION

    def test_records_follow_index_order(self, service, monkeypatch):
        first = service.create_memory(USER_ID, 'hiking trip hiking boots hiking trail')
        second = service.create_memory(USER_ID, 'hiking with friends at the lake today')
        original = service.database.get_memories
        # Return records in reverse of the ranking
        monkeypatch.setattr(service.database, 'get_memories', lambda ids, user_id: list(reversed(original(ids, user_id))))

        result = service.retrieval.query(USER_ID, 'hiking hiking', similarity_floor=0.0)

        scores = [result.scores[m.id] for m in result.memories]
        assert scores == sorted(scores, reverse=True)
        assert {first.id, second.id} == {m.id for m in result.memories}

    def test_duplicate_hits_hydrate_once(self, service, seeded, vector_index, monkeypatch):
        happy, traffic = seeded
        duplicated = [
            VectorHit(happy.id, 0.9, happy.content, happy.summary, {}),
            VectorHit(happy.id, 0.8, happy.content, happy.summary, {}),
            VectorHit(traffic.id, 0.7, traffic.content, traffic.summary, {}),
        ]
        monkeypatch.setattr(vector_index, 'query', lambda *args, **kwargs: duplicated)

        result = service.retrieval.query(USER_ID, 'coffee with Alex')

        assert [m.id for m in result.memories] == [happy.id, traffic.id]
        assert result.scores[happy.id] == 0.9


class TestFilters:

    def test_tag_filter(self, service, seeded):
        happy, _ = seeded

        result = service.retrieval.query(USER_ID,
                                         'had coffee stuck in traffic',
                                         similarity_floor=0.0,
                                         filters=MemoryFilters(tags=['TRAFFIC']))

        assert [m.content for m in result.memories] == ['Stuck in traffic for two hours']

    def test_filter_removing_everything_gives_no_result(self, service, seeded):
        result = service.retrieval.query(USER_ID, 'coffee with Alex', filters=MemoryFilters(emotions=['awe']))

        assert result.memories == []
        assert result.confidence == 0.0

    def test_apply_filters_by_date_people_and_emotion(self):
        now = utc_now()
        old = make_memory(content='old', created_at=now - timedelta(days=30), people=['p1'], primary='joy')
        recent = make_memory(content='recent', created_at=now, people=['p2'], primary='calm')

        assert apply_filters([old, recent], MemoryFilters(start=now - timedelta(days=1))) == [recent]
        assert apply_filters([old, recent], MemoryFilters(end=now - timedelta(days=1))) == [old]
        assert apply_filters([old, recent], MemoryFilters(people=['p1'])) == [old]
        assert apply_filters([old, recent], MemoryFilters(emotions=['Calm'])) == [recent]
        assert apply_filters([old, recent], None) == [old, recent]
