import json

import pytest
from fastmcp.exceptions import ToolError

from fakes import USER_ID
from memory_journal import mcp_interface
from memory_journal.utils.errors import EmbeddingFailure

HAPPY = 'Had coffee with Alex, felt very happy'


@pytest.fixture(autouse=True)
def memory_service(service, monkeypatch):
    monkeypatch.setattr(mcp_interface, '_memory_service', service)
    return service


def tool_error_payload(excinfo):
    return json.loads(str(excinfo.value))


class TestMemoryTools:

    def test_create_and_query(self):
        created = mcp_interface.create_memory(USER_ID, HAPPY, tags=['weekend'])

        result = mcp_interface.query_memories(USER_ID, 'coffee with Alex')

        assert created['content'] == HAPPY
        assert 'embedding' not in created
        assert result['memories'][0]['id'] == created['id']
        assert result['confidence'] > 0

    def test_query_with_filters(self):
        mcp_interface.create_memory(USER_ID, HAPPY)

        result = mcp_interface.query_memories(USER_ID, 'coffee with Alex', tags=['hiking'])

        assert result['memories'] == []

    def test_update_and_delete(self):
        created = mcp_interface.create_memory(USER_ID, HAPPY)

        updated = mcp_interface.update_memory(USER_ID, created['id'], {'title': 'Coffee'})
        deleted = mcp_interface.delete_memory(USER_ID, created['id'])

        assert updated['title'] == 'Coffee'
        assert deleted == {'deleted': created['id']}

    def test_not_found_is_reported_by_kind(self):
        with pytest.raises(ToolError) as excinfo:
            mcp_interface.delete_memory(USER_ID, 'missing')

        assert tool_error_payload(excinfo)['kind'] == 'not_found'

    def test_invalid_input_is_reported_by_kind(self):
        with pytest.raises(ToolError) as excinfo:
            mcp_interface.create_memory(USER_ID, '')

        assert tool_error_payload(excinfo)['kind'] == 'invalid_input'

    def test_query_failure_carries_stage(self, embedder):
        embedder.failure = EmbeddingFailure('throttled')

        with pytest.raises(ToolError) as excinfo:
            mcp_interface.query_memories(USER_ID, 'coffee')

        payload = tool_error_payload(excinfo)
        assert payload['kind'] == 'query_failure'
        assert payload['stage'] == 'embed'


class TestNudgeAndPeopleTools:

    def test_nudge_flow(self):
        nudges = mcp_interface.generate_nudges(USER_ID)
        marked = mcp_interface.mark_nudge(USER_ID, nudges[0]['id'], actioned=True)

        assert len(mcp_interface.list_nudges(USER_ID)) == len(nudges)
        assert marked['is_actioned'] and marked['is_read']

    def test_generate_with_signals(self, llm):
        mcp_interface.generate_nudges(USER_ID, days_since_last_memory=5)

        assert 'Days since last memory: 5' in llm.calls_of('nudge')[0]['prompt']

    def test_add_person(self):
        person = mcp_interface.add_person(USER_ID, 'Alex', relationship='friend')

        assert person['name'] == 'Alex'
        with pytest.raises(ToolError):
            mcp_interface.add_person(USER_ID, 'alex')

    def test_delete_nudge(self):
        nudges = mcp_interface.generate_nudges(USER_ID)

        assert mcp_interface.delete_nudge(USER_ID, nudges[0]['id']) == {'deleted': nudges[0]['id']}
        with pytest.raises(ToolError) as excinfo:
            mcp_interface.delete_nudge(USER_ID, nudges[0]['id'])
        assert tool_error_payload(excinfo)['kind'] == 'not_found'

    def test_update_person(self):
        person = mcp_interface.add_person(USER_ID, 'Alex')
        mcp_interface.add_person(USER_ID, 'Sam')

        renamed = mcp_interface.update_person(USER_ID, person['id'], name='Alexandra')

        assert renamed['name'] == 'Alexandra'
        with pytest.raises(ToolError) as excinfo:
            mcp_interface.update_person(USER_ID, person['id'], name='sam')
        assert tool_error_payload(excinfo)['kind'] == 'invalid_input'

    def test_analyze_patterns(self):
        mcp_interface.create_memory(USER_ID, HAPPY)

        assert mcp_interface.analyze_patterns(USER_ID)['mood_trend'] == 'improving'

    def test_health(self):
        status = mcp_interface.health()

        assert all(entry['healthy'] for entry in status.values())
