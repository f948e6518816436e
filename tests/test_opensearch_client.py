from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import NotFoundError, TransportError

from memory_journal.utils import opensearch_client
from memory_journal.utils.config import OpenSearchConfig
from memory_journal.utils.errors import VectorIndexFailure
from memory_journal.utils.opensearch_client import OpenSearchClient, flatten_metadata, score_to_similarity

USER = 'user-1'


def os_config(dimension=3):
    return OpenSearchConfig(endpoint='https://abc123.us-east-1.aoss.amazonaws.com',
                            port=443,
                            region='us-east-1',
                            index_name='memories-test',
                            dimension=dimension,
                            timeout=5)


def search_hit(memory_id, score, user_id=USER, doc_id=None):
    return {
        '_id': doc_id or f'doc-{memory_id}',
        '_score': score,
        '_source': {
            'id': memory_id,
            'user_id': user_id,
            'type': 'memory',
            'text': f'text of {memory_id}',
            'summary': f'summary of {memory_id}',
            'title': memory_id,
            'mood': 7
        }
    }


def search_response(*hits):
    return {'hits': {'hits': list(hits)}}


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def index(client):
    return OpenSearchClient(os_config(), client=client)


class TestHelpers:

    def test_score_to_similarity(self):
        assert score_to_similarity(2.0) == 1.0
        assert score_to_similarity(1.0) == 0.0
        assert score_to_similarity(0.5) == -1.0
        assert score_to_similarity(0.8) == pytest.approx(-0.25)

    def test_flatten_metadata(self):
        assert flatten_metadata('Coffee', ['Alex', 'Sam'], ['coffee', 'friends'], 8) == {
            'title': 'Coffee',
            'people': 'Alex,Sam',
            'tags': 'coffee,friends',
            'mood': 8
        }


class TestQuery:

    def test_request_is_scoped_to_user(self, index, client):
        client.search.return_value = search_response()

        index.query([0.1, 0.2, 0.3], USER, limit=5)

        body = client.search.call_args.kwargs['body']
        knn = body['query']['knn']['embedding']
        assert {'term': {'user_id': USER}} in knn['filter']['bool']['filter']
        assert knn['k'] >= 5
        assert body['_source'] == {'excludes': ['embedding']}

    def test_duplicate_entries_collapse_to_best_score(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.8, doc_id='doc-a'),
                                                     search_hit('m1', 1.9, doc_id='doc-b'),
                                                     search_hit('m2', 1.85))

        hits = index.query([0.1, 0.2, 0.3], USER, limit=2, similarity_floor=0.0)

        assert [hit.memory_id for hit in hits] == ['m1', 'm2']
        assert hits[0].similarity == pytest.approx(0.9)

    def test_hits_from_other_users_are_dropped(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.9), search_hit('m2', 1.95, user_id='intruder'))

        hits = index.query([0.1, 0.2, 0.3], USER, similarity_floor=0.0)

        assert [hit.memory_id for hit in hits] == ['m1']

    def test_floor_is_inclusive(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.5), search_hit('m2', 1.25))

        hits = index.query([0.1, 0.2, 0.3], USER, similarity_floor=0.5)

        assert [hit.memory_id for hit in hits] == ['m1']
        assert hits[0].similarity == 0.5

    def test_sorted_by_similarity_with_id_tie_break(self, index, client):
        client.search.return_value = search_response(search_hit('m-b', 1.75), search_hit('m-c', 1.875),
                                                     search_hit('m-a', 1.75))

        hits = index.query([0.1, 0.2, 0.3], USER, similarity_floor=0.0)

        assert [hit.memory_id for hit in hits] == ['m-c', 'm-a', 'm-b']

    def test_result_is_capped_at_limit(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.9), search_hit('m2', 1.8), search_hit('m3', 1.7))

        hits = index.query([0.1, 0.2, 0.3], USER, limit=2, similarity_floor=0.0)

        assert [hit.memory_id for hit in hits] == ['m1', 'm2']

    def test_non_positive_limit_skips_search(self, index, client):
        assert index.query([0.1, 0.2, 0.3], USER, limit=0) == []
        client.search.assert_not_called()

    def test_hit_carries_metadata(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.9))

        hit = index.query([0.1, 0.2, 0.3], USER, similarity_floor=0.0)[0]

        assert hit.text == 'text of m1'
        assert hit.summary == 'summary of m1'
        assert hit.metadata == {'title': 'm1', 'mood': 7}

    def test_transport_error_raises(self, index, client):
        client.search.side_effect = TransportError(500, 'search_phase_execution_exception', {})

        with pytest.raises(VectorIndexFailure):
            index.query([0.1, 0.2, 0.3], USER)


class TestWrites:

    def test_upsert_replaces_existing_entry(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.0, doc_id='old-doc'))
        client.delete.return_value = {'result': 'deleted'}
        client.index.return_value = {'result': 'created'}

        index.upsert('m1', USER, 'raw text', 'a summary', [0.1, 0.2, 0.3], {'title': 'T', 'mood': 5})

        client.delete.assert_called_once_with(index='memories-test', id='old-doc')
        document = client.index.call_args.kwargs['body']
        assert document['id'] == 'm1'
        assert document['user_id'] == USER
        assert document['type'] == 'memory'
        assert document['embedding'] == [0.1, 0.2, 0.3]
        assert document['title'] == 'T'

    def test_upsert_rejects_wrong_dimension(self, index, client):
        with pytest.raises(VectorIndexFailure, match='dimension'):
            index.upsert('m1', USER, 'raw text', 'summary', [0.1, 0.2], {})
        client.index.assert_not_called()

    def test_upsert_unexpected_result_raises(self, index, client):
        client.search.return_value = search_response()
        client.index.return_value = {'result': 'noop'}

        with pytest.raises(VectorIndexFailure):
            index.upsert('m1', USER, 'raw text', 'summary', [0.1, 0.2, 0.3])

    def test_delete_absent_entry_is_not_an_error(self, index, client):
        client.search.return_value = search_response()

        assert index.delete('missing', USER) is False
        client.delete.assert_not_called()

    def test_delete_tolerates_concurrent_removal(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.0))
        client.delete.side_effect = NotFoundError(404, 'not_found', {})

        assert index.delete('m1', USER) is False

    def test_delete_user_entries(self, index, client):
        client.search.return_value = search_response(search_hit('m1', 1.0), search_hit('m2', 1.0))
        client.delete.return_value = {'result': 'deleted'}

        assert index.delete_user_entries(USER) == 2
        filters = client.search.call_args.kwargs['body']['query']['bool']['filter']
        assert {'term': {'user_id': USER}} in filters

    def test_list_memory_ids(self, index, client):
        client.search.return_value = search_response(search_hit('m2', 1.0), search_hit('m1', 1.0))

        assert index.list_memory_ids(USER) == ['m1', 'm2']


class TestIndexLifecycle:

    def test_existing_index_is_left_alone(self, index, client):
        client.indices.exists.return_value = True

        assert index.create_index_if_not_exists() == 'exists'
        client.indices.create.assert_not_called()

    def test_creates_knn_index(self, index, client, monkeypatch):
        monkeypatch.setattr(opensearch_client.time, 'sleep', lambda seconds: None)
        client.indices.exists.return_value = False
        client.indices.create.return_value = {'acknowledged': True}

        assert index.create_index_if_not_exists() == 'created'
        body = client.indices.create.call_args.kwargs['body']
        assert body['mappings']['properties']['embedding']['dimension'] == 3
        assert body['settings']['index']['knn'] is True
        assert body['mappings']['properties']['embedding']['method']['engine'] == 'faiss'

    def test_health_check(self, index, client):
        client.indices.exists.return_value = False
        assert index.health_check() is True

        client.indices.exists.side_effect = TransportError(503, 'unavailable', {})
        assert index.health_check() is False


class TestScanLimit:

    def test_reaching_the_cap_is_logged(self, index, client, monkeypatch, caplog):
        monkeypatch.setattr(opensearch_client, 'MAX_SCAN_SIZE', 2)
        client.search.return_value = search_response(search_hit('m1', 1.0), search_hit('m2', 1.0))

        with caplog.at_level('WARNING'):
            ids = index.list_memory_ids(USER)

        assert ids == ['m1', 'm2']
        assert 'incomplete' in caplog.text
        assert client.search.call_args.kwargs['body']['size'] == 2

    def test_below_the_cap_is_quiet(self, index, client, caplog):
        client.search.return_value = search_response(search_hit('m1', 1.0))

        with caplog.at_level('WARNING'):
            index.delete_user_entries(USER)

        assert 'incomplete' not in caplog.text
