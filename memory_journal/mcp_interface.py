"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .models.core import MemoryFilters, NudgeSignals
from .services.memory_management import MemoryManagementService
from .utils.config import config
from .utils.errors import MemoryJournalError
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Memory Journal')
_memory_service: Optional[MemoryManagementService] = None


def get_service() -> MemoryManagementService:
    """Build and initialize the memory service on first use."""
    global _memory_service
    if _memory_service is None:
        _memory_service = MemoryManagementService()
        _memory_service.initialize()
    return _memory_service


def _tool_error(action: str, error: Exception) -> ToolError:
    if isinstance(error, MemoryJournalError):
        payload = error.to_dict()
    elif isinstance(error, ValueError):
        payload = {'kind': 'invalid_input', 'message': str(error)}
    else:
        payload = {'kind': 'internal', 'message': str(error)}
    logger.error(f'{action} failed: {payload}')
    return ToolError(json.dumps(payload))


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def create_memory(user_id: str,
                  content: str,
                  people: Optional[List[str]] = None,
                  tags: Optional[List[str]] = None,
                  location: Optional[str] = None,
                  weather: Optional[str] = None,
                  is_private: bool = False,
                  title: Optional[str] = None) -> Dict[str, Any]:
    """Record a new memory.

    Args:
        user_id: User ID
        content: Memory text
        people: Names of people involved
        tags: User tags
        location: Optional location
        weather: Optional weather
        is_private: Whether the memory is private
        title: Optional title (derived from the content if omitted)

    Returns:
        The stored memory
    """
    try:
        memory = get_service().create_memory(user_id,
                                             content,
                                             people_hint=people,
                                             tags=tags,
                                             location=location,
                                             weather=weather,
                                             is_private=is_private,
                                             title=title)
        return memory.to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('create_memory', e) from e


def update_memory(user_id: str, memory_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Update fields of a memory. Changing the content regenerates its summary and embedding.

    Args:
        user_id: User ID
        memory_id: Memory to update
        changes: Fields to change (title, content, people, tags, location, weather, is_private)
    """
    try:
        return get_service().update_memory(memory_id, user_id, changes).to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('update_memory', e) from e


def delete_memory(user_id: str, memory_id: str) -> Dict[str, Any]:
    """Delete a memory."""
    try:
        get_service().delete_memory(memory_id, user_id)
        return {'deleted': memory_id}
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('delete_memory', e) from e


def query_memories(user_id: str,
                   query: str,
                   limit: int = 10,
                   people: Optional[List[str]] = None,
                   tags: Optional[List[str]] = None,
                   emotions: Optional[List[str]] = None,
                   start: Optional[str] = None,
                   end: Optional[str] = None) -> Dict[str, Any]:
    """Search memories by meaning.

    Args:
        user_id: User ID
        query: Natural language query
        limit: Maximum number of results to return (default: 10)
        people: Only memories mentioning one of these person IDs
        tags: Only memories carrying one of these tags
        emotions: Only memories with one of these emotions
        start: ISO-8601 lower bound on creation time
        end: ISO-8601 upper bound on creation time

    Returns:
        Ranked memories with an explanation and confidence
    """
    try:
        filters = None
        if people or tags or emotions or start or end:
            filters = MemoryFilters(people=people or [],
                                    tags=tags or [],
                                    emotions=emotions or [],
                                    start=_parse_datetime(start),
                                    end=_parse_datetime(end))
        result = get_service().query_memories(user_id, query, limit=limit, filters=filters)
        logger.debug(f'MCP query returned {len(result.memories)} memories for user {user_id}')
        return result.to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('query_memories', e) from e


def generate_nudges(user_id: str,
                    days_since_last_memory: Optional[int] = None,
                    emotional_gaps: Optional[List[str]] = None,
                    inactive_people: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Generate personalized nudges. Signals are derived from stored memories when none are given."""
    try:
        signals = None
        if days_since_last_memory is not None or emotional_gaps or inactive_people:
            signals = NudgeSignals(days_since_last_memory=days_since_last_memory,
                                   emotional_gaps=emotional_gaps or [],
                                   inactive_people=inactive_people or [])
        return [nudge.to_dict() for nudge in get_service().generate_nudges(user_id, signals)]
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('generate_nudges', e) from e


def list_nudges(user_id: str, include_expired: bool = False) -> List[Dict[str, Any]]:
    """List a user's nudges, active ones only unless include_expired is set."""
    try:
        return [nudge.to_dict() for nudge in get_service().nudges.list_nudges(user_id, include_expired)]
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('list_nudges', e) from e


def mark_nudge(user_id: str, nudge_id: str, actioned: bool = False) -> Dict[str, Any]:
    """Mark a nudge as read, or as actioned."""
    try:
        nudges = get_service().nudges
        nudge = nudges.mark_actioned(user_id, nudge_id) if actioned else nudges.mark_read(user_id, nudge_id)
        return nudge.to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('mark_nudge', e) from e


def delete_nudge(user_id: str, nudge_id: str) -> Dict[str, Any]:
    """Delete a nudge."""
    try:
        get_service().nudges.delete_nudge(user_id, nudge_id)
        return {'deleted': nudge_id}
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('delete_nudge', e) from e


def add_person(user_id: str, name: str, relationship: Optional[str] = None) -> Dict[str, Any]:
    """Add a person that memories can mention."""
    try:
        return get_service().people.add_person(user_id, name, relationship=relationship).to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('add_person', e) from e


def update_person(user_id: str,
                  person_id: str,
                  name: Optional[str] = None,
                  relationship: Optional[str] = None,
                  tags: Optional[List[str]] = None) -> Dict[str, Any]:
    """Change a person's name, relationship or tags. A rename refreshes the search index of their memories."""
    try:
        return get_service().update_person(user_id, person_id, name=name, relationship=relationship, tags=tags).to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('update_person', e) from e


def analyze_patterns(user_id: str) -> Dict[str, Any]:
    """Analyze emotional patterns over recent memories."""
    try:
        return get_service().analyze_patterns(user_id).to_dict()
    except (MemoryJournalError, ValueError) as e:
        raise _tool_error('analyze_patterns', e) from e


def health() -> Dict[str, Any]:
    """Report the health of each backing service."""
    service = get_service()
    return get_health_status({
        'bedrock_llm': service.llm,
        'bedrock_embed': service.embed,
        'opensearch': service.vector_index,
        'database': service.database
    })


for _tool in (create_memory, update_memory, delete_memory, query_memories, generate_nudges, list_nudges, mark_nudge,
              delete_nudge, add_person, update_person, analyze_patterns, health):
    mcp.tool()(_tool)

if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
