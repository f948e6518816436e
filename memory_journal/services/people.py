"""
People Service for contacts referenced by memories.
"""

import uuid
from typing import Dict, Iterable, List, Optional

from ..models.core import Person
from ..utils.database_client import DatabaseClient
from ..utils.errors import NotFoundError, PersonInUseError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now

logger = get_logger(__name__)


class PeopleService:
    """Manage a user's people, enforcing unique names and the referential guard on delete."""

    def __init__(self, database: DatabaseClient):
        self.database = database

    def add_person(self,
                   user_id: str,
                   name: str,
                   relationship: Optional[str] = None,
                   avatar: Optional[str] = None,
                   tags: Optional[List[str]] = None) -> Person:
        """Create a person.

        Raises:
            ValueError: If the name is blank or already used by this user (case-insensitive)
        """
        name = (name or '').strip()
        if not name:
            raise ValueError('Person name is required')
        if self.database.get_person_by_name(user_id, name) is not None:
            raise ValueError(f'A person named {name!r} already exists')

        now = utc_now()
        person = Person(id=str(uuid.uuid4()),
                        user_id=user_id,
                        name=name,
                        relationship=relationship,
                        avatar=avatar,
                        tags=list(tags or []),
                        created_at=now,
                        updated_at=now)
        self.database.insert_person(person)
        logger.debug(f'Added person {person.id} for user {user_id}')
        return person

    def list_people(self, user_id: str) -> List[Person]:
        return self.database.list_people(user_id)

    def find_by_names(self, user_id: str, names: Iterable[str]) -> Dict[str, Person]:
        """Resolve names to existing people, keyed by lower-cased name. Unknown names are ignored."""
        wanted = {name.strip().lower() for name in names if name and name.strip()}
        if not wanted:
            return {}
        return {person.name.lower(): person for person in self.database.list_people(user_id) if person.name.lower() in wanted}

    def delete_person(self, user_id: str, person_id: str) -> None:
        """Delete a person that no memory references.

        Raises:
            NotFoundError: If the person does not exist for this user
            PersonInUseError: If any memory still mentions the person
        """
        if not self.database.get_people([person_id], user_id):
            raise NotFoundError(f'Person {person_id} not found')

        references = self.database.count_memories_mentioning(user_id, person_id)
        if references:
            raise PersonInUseError(f'Person {person_id} is referenced by {references} memories')

        self.database.delete_person(person_id, user_id)
        logger.debug(f'Deleted person {person_id} for user {user_id}')

    def update_person(self,
                      user_id: str,
                      person_id: str,
                      name: Optional[str] = None,
                      relationship: Optional[str] = None,
                      avatar: Optional[str] = None,
                      tags: Optional[List[str]] = None) -> Person:
        """Change a person's details. Fields left as None keep their stored value.

        Raises:
            NotFoundError: If the person does not exist for this user
            ValueError: If the new name is blank or taken by another person (case-insensitive)
        """
        people = self.database.get_people([person_id], user_id)
        if not people:
            raise NotFoundError(f'Person {person_id} not found')
        person = people[0]

        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError('Person name is required')
            existing = self.database.get_person_by_name(user_id, name)
            if existing is not None and existing.id != person_id:
                raise ValueError(f'A person named {name!r} already exists')
            person.name = name
        if relationship is not None:
            person.relationship = relationship
        if avatar is not None:
            person.avatar = avatar
        if tags is not None:
            person.tags = list(tags)
        person.updated_at = utc_now()

        self.database.update_person(person)
        logger.debug(f'Updated person {person_id} for user {user_id}')
        return person
