"""
Relational store client built on SQLAlchemy.

The relational store is authoritative for memories, people and nudges. Every
read and write is scoped by owning user ID.
"""

from contextlib import contextmanager
from functools import wraps
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.core import Emotion, Memory, Nudge, NudgePriority, NudgeType, Person
from ..models.orm import Base, MemoryORM, NudgeORM, PersonORM
from .config import DatabaseConfig
from .errors import RelationalStoreFailure
from .logging_config import get_logger
from .timestamp_utils import ensure_utc

logger = get_logger(__name__)


def store_operation(func):
    """Decorator translating SQLAlchemy errors into RelationalStoreFailure."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except RelationalStoreFailure:
            raise
        except IntegrityError as e:
            logger.error(f'Integrity error in {func.__name__}: {e}')
            raise RelationalStoreFailure(f'Failed to {func.__name__}: constraint violated') from e
        except SQLAlchemyError as e:
            logger.error(f'Error in {func.__name__}: {e}')
            raise RelationalStoreFailure(f'Failed to {func.__name__}: {e}') from e

    return wrapper


def _memory_from_row(row: MemoryORM) -> Memory:
    return Memory(id=row.id,
                  user_id=row.user_id,
                  title=row.title,
                  content=row.content,
                  summary=row.summary,
                  emotions=Emotion.from_dict(row.emotions),
                  mood=row.mood,
                  tags=list(row.tags or []),
                  ai_tags=list(row.ai_tags or []),
                  user_tags=list(row.user_tags or []),
                  embedding=list(row.embedding or []),
                  people=list(row.people or []),
                  location=row.location,
                  weather=row.weather,
                  is_private=row.is_private,
                  audio_url=row.audio_url,
                  image_url=row.image_url,
                  created_at=ensure_utc(row.created_at),
                  updated_at=ensure_utc(row.updated_at))


def _apply_memory(row: MemoryORM, memory: Memory) -> None:
    row.title = memory.title
    row.content = memory.content
    row.summary = memory.summary
    row.emotions = memory.emotions.to_dict()
    row.mood = memory.mood
    row.tags = list(memory.tags)
    row.ai_tags = list(memory.ai_tags)
    row.user_tags = list(memory.user_tags)
    row.people = list(memory.people)
    row.embedding = list(memory.embedding)
    row.location = memory.location
    row.weather = memory.weather
    row.is_private = memory.is_private
    row.audio_url = memory.audio_url
    row.image_url = memory.image_url
    row.updated_at = memory.updated_at


def _person_from_row(row: PersonORM) -> Person:
    return Person(id=row.id,
                  user_id=row.user_id,
                  name=row.name,
                  relationship=row.relationship,
                  avatar=row.avatar,
                  tags=list(row.tags or []),
                  created_at=ensure_utc(row.created_at),
                  updated_at=ensure_utc(row.updated_at))


def _nudge_from_row(row: NudgeORM) -> Nudge:
    return Nudge(id=row.id,
                 user_id=row.user_id,
                 type=NudgeType(row.type),
                 title=row.title,
                 message=row.message,
                 priority=NudgePriority(row.priority),
                 related_people=list(row.related_people or []),
                 related_memories=list(row.related_memories or []),
                 is_read=row.is_read,
                 is_actioned=row.is_actioned,
                 created_at=ensure_utc(row.created_at),
                 expires_at=ensure_utc(row.expires_at))


class DatabaseClient:
    """SQLAlchemy-backed relational store for memories, people and nudges."""

    def __init__(self, config: DatabaseConfig):
        """
        Initialize the database engine and session factory.

        Args:
            config: DatabaseConfig instance with connection parameters
        """
        self.config = config

        kwargs: Dict[str, object] = {'echo': config.echo}
        if config.url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
            if config.url in ('sqlite://', 'sqlite:///:memory:'):
                kwargs['poolclass'] = StaticPool
        else:
            kwargs['pool_timeout'] = config.pool_timeout
            kwargs['pool_pre_ping'] = True

        self.engine = create_engine(config.url, **kwargs)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

        logger.info(f'Initialized database client for dialect: {self.engine.dialect.name}')

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Session scope that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @store_operation
    def create_schema(self) -> None:
        """Ensure database schema is created."""
        Base.metadata.create_all(self.engine)
        logger.debug('Database schema ensured')

    def close(self) -> None:
        """Dispose the engine and its connection pool."""
        self.engine.dispose()
        logger.info('Database engine disposed')

    # Memories

    @store_operation
    def insert_memory(self, memory: Memory) -> Memory:
        with self._session() as session:
            row = MemoryORM(id=memory.id, user_id=memory.user_id, created_at=memory.created_at)
            _apply_memory(row, memory)
            session.add(row)
        logger.debug(f'Inserted memory {memory.id}')
        return memory

    @store_operation
    def get_memory(self, memory_id: str, user_id: str) -> Optional[Memory]:
        with self._session() as session:
            row = session.scalars(select(MemoryORM).where(MemoryORM.id == memory_id,
                                                          MemoryORM.user_id == user_id)).first()
            return _memory_from_row(row) if row else None

    @store_operation
    def get_memories(self, memory_ids: Sequence[str], user_id: str) -> List[Memory]:
        """Fetch memories by ID for one user. Order is unspecified; missing IDs are omitted."""
        if not memory_ids:
            return []
        with self._session() as session:
            rows = session.scalars(select(MemoryORM).where(MemoryORM.id.in_(list(memory_ids)),
                                                           MemoryORM.user_id == user_id)).all()
            return [_memory_from_row(row) for row in rows]

    @store_operation
    def update_memory(self, memory: Memory) -> Memory:
        """Overwrite the stored record (last write wins)."""
        with self._session() as session:
            row = session.scalars(select(MemoryORM).where(MemoryORM.id == memory.id,
                                                          MemoryORM.user_id == memory.user_id)).first()
            if row is None:
                raise RelationalStoreFailure(f'Memory {memory.id} not found for update')
            _apply_memory(row, memory)
        logger.debug(f'Updated memory {memory.id}')
        return memory

    @store_operation
    def delete_memory(self, memory_id: str, user_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(MemoryORM).where(MemoryORM.id == memory_id, MemoryORM.user_id == user_id))
            deleted = result.rowcount > 0
        if deleted:
            logger.debug(f'Deleted memory {memory_id}')
        return deleted

    @store_operation
    def list_memories(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> List[Memory]:
        """List a user's memories, newest first."""
        stmt = (select(MemoryORM).where(MemoryORM.user_id == user_id).order_by(MemoryORM.created_at.desc(),
                                                                              MemoryORM.id).offset(offset))
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [_memory_from_row(row) for row in session.scalars(stmt).all()]

    @store_operation
    def count_memories(self, user_id: str) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(MemoryORM).where(MemoryORM.user_id == user_id)) or 0

    @store_operation
    def search_memories(self, user_id: str, text: str, limit: int = 20) -> List[Memory]:
        """Case-insensitive substring search over title, content and summary."""
        pattern = f'%{text.strip()}%'
        stmt = (select(MemoryORM).where(
            MemoryORM.user_id == user_id,
            or_(MemoryORM.title.ilike(pattern), MemoryORM.content.ilike(pattern),
                MemoryORM.summary.ilike(pattern))).order_by(MemoryORM.created_at.desc()).limit(limit))
        with self._session() as session:
            return [_memory_from_row(row) for row in session.scalars(stmt).all()]

    @store_operation
    def count_memories_mentioning(self, user_id: str, person_id: str) -> int:
        """Count memories whose people list contains ``person_id``."""
        with self._session() as session:
            people_lists = session.scalars(select(MemoryORM.people).where(MemoryORM.user_id == user_id)).all()
            return sum(1 for people in people_lists if person_id in (people or []))

    @store_operation
    def list_memories_mentioning(self, user_id: str, person_id: str) -> List[Memory]:
        """List memories whose people list contains ``person_id``, newest first."""
        stmt = select(MemoryORM).where(MemoryORM.user_id == user_id).order_by(MemoryORM.created_at.desc(), MemoryORM.id)
        with self._session() as session:
            return [_memory_from_row(row) for row in session.scalars(stmt).all() if person_id in (row.people or [])]

    # People

    @store_operation
    def insert_person(self, person: Person) -> Person:
        with self._session() as session:
            session.add(
                PersonORM(id=person.id,
                          user_id=person.user_id,
                          name=person.name,
                          name_key=person.name.strip().lower(),
                          relationship=person.relationship,
                          avatar=person.avatar,
                          tags=list(person.tags),
                          created_at=person.created_at,
                          updated_at=person.updated_at))
        logger.debug(f'Inserted person {person.id}')
        return person

    @store_operation
    def get_person_by_name(self, user_id: str, name: str) -> Optional[Person]:
        with self._session() as session:
            row = session.scalars(select(PersonORM).where(PersonORM.user_id == user_id,
                                                          PersonORM.name_key == name.strip().lower())).first()
            return _person_from_row(row) if row else None

    @store_operation
    def get_people(self, person_ids: Sequence[str], user_id: str) -> List[Person]:
        if not person_ids:
            return []
        with self._session() as session:
            rows = session.scalars(select(PersonORM).where(PersonORM.id.in_(list(person_ids)),
                                                           PersonORM.user_id == user_id)).all()
            return [_person_from_row(row) for row in rows]

    @store_operation
    def list_people(self, user_id: str) -> List[Person]:
        with self._session() as session:
            rows = session.scalars(select(PersonORM).where(PersonORM.user_id == user_id).order_by(PersonORM.name_key)).all()
            return [_person_from_row(row) for row in rows]

    @store_operation
    def update_person(self, person: Person) -> Person:
        """Overwrite the stored person; the lower-cased name key follows the name."""
        with self._session() as session:
            row = session.scalars(select(PersonORM).where(PersonORM.id == person.id,
                                                          PersonORM.user_id == person.user_id)).first()
            if row is None:
                raise RelationalStoreFailure(f'Person {person.id} not found for update')
            row.name = person.name
            row.name_key = person.name.strip().lower()
            row.relationship = person.relationship
            row.avatar = person.avatar
            row.tags = list(person.tags)
            row.updated_at = person.updated_at
        logger.debug(f'Updated person {person.id}')
        return person

    @store_operation
    def delete_person(self, person_id: str, user_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(PersonORM).where(PersonORM.id == person_id, PersonORM.user_id == user_id))
            return result.rowcount > 0

    # Nudges

    @store_operation
    def insert_nudges(self, nudges: Sequence[Nudge]) -> List[Nudge]:
        """Insert nudges in a single transaction; either all are stored or none."""
        with self._session() as session:
            for nudge in nudges:
                session.add(
                    NudgeORM(id=nudge.id,
                             user_id=nudge.user_id,
                             type=nudge.type.value,
                             title=nudge.title,
                             message=nudge.message,
                             priority=nudge.priority.value,
                             related_people=list(nudge.related_people),
                             related_memories=list(nudge.related_memories),
                             is_read=nudge.is_read,
                             is_actioned=nudge.is_actioned,
                             created_at=nudge.created_at,
                             expires_at=nudge.expires_at))
        logger.debug(f'Inserted {len(nudges)} nudges')
        return list(nudges)

    @store_operation
    def get_nudge(self, nudge_id: str, user_id: str) -> Optional[Nudge]:
        with self._session() as session:
            row = session.scalars(select(NudgeORM).where(NudgeORM.id == nudge_id, NudgeORM.user_id == user_id)).first()
            return _nudge_from_row(row) if row else None

    @store_operation
    def list_nudges(self, user_id: str) -> List[Nudge]:
        """List a user's nudges, newest first."""
        with self._session() as session:
            rows = session.scalars(
                select(NudgeORM).where(NudgeORM.user_id == user_id).order_by(NudgeORM.created_at.desc(), NudgeORM.id)).all()
            return [_nudge_from_row(row) for row in rows]

    @store_operation
    def set_nudge_flags(self, nudge_ids: Sequence[str], user_id: str, is_read: bool = False, is_actioned: bool = False) -> int:
        """Raise read/actioned flags. Flags are only ever set, never cleared."""
        if not nudge_ids or not (is_read or is_actioned):
            return 0
        updated = 0
        with self._session() as session:
            rows = session.scalars(select(NudgeORM).where(NudgeORM.id.in_(list(nudge_ids)),
                                                          NudgeORM.user_id == user_id)).all()
            for row in rows:
                if is_read and not row.is_read:
                    row.is_read = True
                    updated += 1
                if is_actioned and not row.is_actioned:
                    row.is_actioned = True
                    updated += 1
        return updated

    @store_operation
    def delete_nudges(self, nudge_ids: Sequence[str], user_id: str) -> int:
        if not nudge_ids:
            return 0
        with self._session() as session:
            result = session.execute(delete(NudgeORM).where(NudgeORM.id.in_(list(nudge_ids)), NudgeORM.user_id == user_id))
            return result.rowcount

    def health_check(self) -> bool:
        """
        Perform a health check on the relational store.

        Returns:
            True if the database answers a trivial query, False otherwise
        """
        try:
            with self._session() as session:
                session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f'Database health check failed: {e}')
            return False
