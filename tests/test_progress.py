import pytest

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.services import progress as progress_service
from tests.factories import build_course


def _institution(**settings):
    institution_id = dao.create_institution({'name': 'Acme', 'domain': 'acme.com',
                                             'settings': settings})
    return dao.get_institution(institution_id)


class TestLessonProgress:

    def test_start_lesson_tracks_every_content(self, db):
        course_id, lessons, contents = build_course('inst1')
        progress = progress_service.start_lesson('u1', lessons[0], 'inst1')
        assert progress.id == f'u1_{lessons[0]}'
        assert progress.course_id == course_id
        assert [cp.content_id for cp in progress.contents] == contents[lessons[0]]

    def test_reopening_picks_up_new_contents(self, db):
        course_id, lessons, _ = build_course('inst1')
        progress_service.start_lesson('u1', lessons[0], 'inst1')
        new_id = dao.create_content({'lesson_id': lessons[0], 'course_id': course_id,
                                     'title': 'Late addition', 'type': 'text', 'order': 9})
        progress = progress_service.start_lesson('u1', lessons[0], 'inst1')
        assert progress.contents[-1].content_id == new_id
        assert len(progress.contents) == 3

    def test_lesson_without_contents(self, db):
        _, lessons, _ = build_course('inst1', outline=((0,),))
        with pytest.raises(ValidationError):
            progress_service.start_lesson('u1', lessons[0], 'inst1')

    def test_update_before_start(self, db):
        with pytest.raises(NotFoundError):
            progress_service.update_content_progress('u1', 'lesson-x', 'content-x', 50)

    def test_completing_every_content_completes_lesson(self, db):
        _, lessons, contents = build_course('inst1')
        progress_service.start_lesson('u1', lessons[0], 'inst1')
        first, second = contents[lessons[0]]
        progress_service.update_content_progress('u1', lessons[0], first, 100, time_spent=120)
        progress = progress_service.update_content_progress('u1', lessons[0], second, 100)
        assert progress.is_completed()
        stored = dao.get_lesson_progress('u1', lessons[0])
        assert stored['status'] == 'COMPLETED'
        assert stored['time_spent'] == 120
        assert dao.count_completed_lessons('u1', 'inst1') == 1

    def test_complete_lesson_forces_contents(self, db):
        _, lessons, _ = build_course('inst1')
        progress_service.start_lesson('u1', lessons[0], 'inst1')
        progress = progress_service.complete_lesson('u1', lessons[0])
        assert progress.is_completed()
        assert progress.overall_progress() == 100

    def test_course_progress(self, db):
        course_id, lessons, contents = build_course('inst1')
        progress_service.start_lesson('u1', lessons[0], 'inst1')
        progress_service.complete_lesson('u1', lessons[0])
        progress_service.start_lesson('u1', lessons[1], 'inst1')
        progress_service.update_content_progress('u1', lessons[1], contents[lessons[1]][0], 50)

        summary = progress_service.get_course_progress('u1', course_id)
        assert summary['total_lessons'] == 3
        assert summary['completed_lessons'] == 1
        assert summary['in_progress_lessons'] == 1
        assert summary['not_started_lessons'] == 1
        assert summary['percentage'] == 50


class TestSequentialAccess:

    def test_free_navigation_by_default(self, db):
        institution = _institution()
        course_id, lessons, _ = build_course(institution['id'])
        access = progress_service.can_access_lesson('u1', lessons[2], course_id, institution)
        assert access['allowed'] is True

    def test_first_lesson_always_open(self, db):
        institution = _institution(require_sequential_progress=True)
        course_id, lessons, _ = build_course(institution['id'])
        assert progress_service.can_access_lesson('u1', lessons[0], course_id,
                                                  institution)['allowed']

    def test_blocked_until_previous_completed(self, db):
        institution = _institution(require_sequential_progress=True)
        course_id, lessons, _ = build_course(institution['id'])

        access = progress_service.can_access_lesson('u1', lessons[1], course_id, institution)
        assert access['allowed'] is False
        assert 'Lesson 1.1' in access['reason']

        progress_service.start_lesson('u1', lessons[0], institution['id'])
        progress_service.complete_lesson('u1', lessons[0])
        assert progress_service.can_access_lesson('u1', lessons[1], course_id,
                                                  institution)['allowed']
        assert not progress_service.can_access_lesson('u1', lessons[2], course_id,
                                                      institution)['allowed']

    def test_order_follows_modules(self, db):
        institution = _institution(require_sequential_progress=True)
        course_id, lessons, _ = build_course(institution['id'])
        for lesson_id in lessons[:2]:
            progress_service.start_lesson('u1', lesson_id, institution['id'])
            progress_service.complete_lesson('u1', lesson_id)
        assert progress_service.can_access_lesson('u1', lessons[2], course_id,
                                                  institution)['allowed']

    def test_skip_allowed(self, db):
        institution = _institution(require_sequential_progress=True, allow_skip_lesson=True)
        course_id, lessons, _ = build_course(institution['id'])
        access = progress_service.can_access_lesson('u1', lessons[2], course_id, institution)
        assert access == {'allowed': True, 'reason': 'Skipping incomplete lessons is allowed',
                          'skippable': True}

    def test_started_lesson_stays_open(self, db):
        institution = _institution(require_sequential_progress=True)
        course_id, lessons, _ = build_course(institution['id'])
        dao.save_lesson_progress(f'u1_{lessons[2]}', {'user_id': 'u1', 'lesson_id': lessons[2],
                                                      'course_id': course_id, 'contents': []})
        assert progress_service.can_access_lesson('u1', lessons[2], course_id,
                                                  institution)['allowed']

    def test_lesson_from_another_course(self, db):
        institution = _institution(require_sequential_progress=True)
        course_id, _, _ = build_course(institution['id'])
        _, other_lessons, _ = build_course(institution['id'])
        with pytest.raises(ValidationError):
            progress_service.can_access_lesson('u1', other_lessons[1], course_id, institution)
