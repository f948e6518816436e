import pytest

from fakes import OTHER_USER_ID, USER_ID
from memory_journal.utils.errors import NotFoundError, PersonInUseError


class TestPeopleService:

    def test_add_person(self, service):
        person = service.people.add_person(USER_ID, '  Alex ', relationship='friend', tags=['college'])

        assert person.name == 'Alex'
        assert person.relationship == 'friend'
        assert [p.id for p in service.people.list_people(USER_ID)] == [person.id]

    def test_names_are_unique_case_insensitively(self, service):
        service.people.add_person(USER_ID, 'Alex')

        with pytest.raises(ValueError):
            service.people.add_person(USER_ID, 'ALEX')

    def test_same_name_for_different_users(self, service):
        service.people.add_person(USER_ID, 'Alex')
        other = service.people.add_person(OTHER_USER_ID, 'Alex')

        assert [p.id for p in service.people.list_people(OTHER_USER_ID)] == [other.id]

    def test_blank_name_is_rejected(self, service):
        with pytest.raises(ValueError):
            service.people.add_person(USER_ID, '   ')

    def test_find_by_names(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')
        service.people.add_person(USER_ID, 'Sam')

        found = service.people.find_by_names(USER_ID, ['alex', 'Morgan', ''])

        assert list(found) == ['alex']
        assert found['alex'].id == alex.id
        assert service.people.find_by_names(USER_ID, []) == {}

    def test_referenced_person_cannot_be_deleted(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')
        service.create_memory(USER_ID, 'Had coffee with Alex, felt very happy')

        with pytest.raises(PersonInUseError) as excinfo:
            service.people.delete_person(USER_ID, alex.id)
        assert excinfo.value.to_dict()['kind'] == 'person_in_use'
        assert service.people.list_people(USER_ID)

    def test_unreferenced_person_is_deleted(self, service):
        sam = service.people.add_person(USER_ID, 'Sam')

        service.people.delete_person(USER_ID, sam.id)

        assert service.people.list_people(USER_ID) == []

    def test_delete_after_memory_is_gone(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')
        memory = service.create_memory(USER_ID, 'Had coffee with Alex, felt very happy')
        service.delete_memory(memory.id, USER_ID)

        service.people.delete_person(USER_ID, alex.id)

        assert service.people.list_people(USER_ID) == []

    def test_missing_person(self, service):
        with pytest.raises(NotFoundError):
            service.people.delete_person(USER_ID, 'missing')

    def test_foreign_person_is_not_found(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')

        with pytest.raises(NotFoundError):
            service.people.delete_person(OTHER_USER_ID, alex.id)

    def test_update_person(self, service):
        alex = service.people.add_person(USER_ID, 'Alex', relationship='friend', tags=['college'])

        updated = service.people.update_person(USER_ID, alex.id, name=' Alexandra ', tags=['work'])

        assert updated.name == 'Alexandra'
        assert updated.relationship == 'friend'
        assert updated.tags == ['work']
        assert service.people.find_by_names(USER_ID, ['alexandra'])['alexandra'].id == alex.id
        assert service.people.find_by_names(USER_ID, ['alex']) == {}

    def test_update_keeps_own_name_in_other_case(self, service):
        alex = service.people.add_person(USER_ID, 'alex')

        assert service.people.update_person(USER_ID, alex.id, name='Alex').name == 'Alex'

    def test_update_to_taken_name_is_rejected(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')
        service.people.add_person(USER_ID, 'Sam')

        with pytest.raises(ValueError):
            service.people.update_person(USER_ID, alex.id, name='SAM')
        with pytest.raises(ValueError):
            service.people.update_person(USER_ID, alex.id, name='  ')
        assert [p.name for p in service.people.list_people(USER_ID)] == ['Alex', 'Sam']

    def test_update_missing_or_foreign_person(self, service):
        alex = service.people.add_person(USER_ID, 'Alex')

        with pytest.raises(NotFoundError):
            service.people.update_person(USER_ID, 'missing', name='Sam')
        with pytest.raises(NotFoundError):
            service.people.update_person(OTHER_USER_ID, alex.id, name='Sam')
