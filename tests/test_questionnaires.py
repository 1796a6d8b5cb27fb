import pytest

from lms import firestore_dao as dao
from lms.errors import AttemptLimitError, NotFoundError, ValidationError
from lms.services import questionnaires as questionnaire_service
from lms.services.achievements import copy_default_achievement, seed_default_achievements
from tests.factories import build_course, build_questionnaire


class TestSubmission:

    def setup_method(self):
        self.institution_id = 'inst1'

    def _questionnaire(self, **kwargs):
        course_id, lessons, _ = build_course(self.institution_id)
        return build_questionnaire(self.institution_id, course_id, lessons[0], **kwargs)

    def test_grades_and_stores_attempt(self, db):
        questionnaire_id = self._questionnaire()
        submission = questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 1})
        assert submission.score == 50
        assert submission.passed is True
        assert submission.attempt == 1
        assert f'{questionnaire_id}_u1_1' in db.docs('questionnaire_submissions')

    def test_attempt_limit(self, db):
        questionnaire_id = self._questionnaire(max_attempts=2)
        for _ in range(2):
            questionnaire_service.submit_questionnaire(
                questionnaire_id, 'u1', self.institution_id, {'q1': 1, 'q2': 0})
        with pytest.raises(AttemptLimitError):
            questionnaire_service.submit_questionnaire(
                questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 2})
        assert len(db.docs('questionnaire_submissions')) == 2

    def test_limit_is_per_user(self, db):
        questionnaire_id = self._questionnaire(max_attempts=1)
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 2})
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u2', self.institution_id, {'q1': 0, 'q2': 2})

    def test_concurrent_duplicate_attempt(self, db, monkeypatch):
        questionnaire_id = self._questionnaire(max_attempts=3)
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 2})
        # a second request that counted attempts before the first one was stored
        monkeypatch.setattr(questionnaire_service.dao, 'list_attempts', lambda *args: [])
        with pytest.raises(AttemptLimitError):
            questionnaire_service.submit_questionnaire(
                questionnaire_id, 'u1', self.institution_id, {'q1': 1, 'q2': 1})

    def test_other_institution(self, db):
        questionnaire_id = self._questionnaire()
        with pytest.raises(NotFoundError):
            questionnaire_service.submit_questionnaire(questionnaire_id, 'u1', 'inst2',
                                                       {'q1': 0, 'q2': 2})

    def test_empty_selection(self, db):
        questionnaire_id = self._questionnaire()
        with pytest.raises(ValidationError):
            questionnaire_service.submit_questionnaire(
                questionnaire_id, 'u1', self.institution_id, {})

    def test_partial_answers_are_graded_against_every_question(self, db):
        questionnaire_id = self._questionnaire(passing_score=70)
        submission = questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0})
        assert submission.score == 50
        assert submission.passed is False
        stored = db.docs('questionnaire_submissions')[f'{questionnaire_id}_u1_1']
        assert len(stored['answers']) == 2

    def test_attempt_status(self, db):
        questionnaire_id = self._questionnaire(max_attempts=3)
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 1, 'q2': 1})
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 2})
        questionnaire = questionnaire_service.get_questionnaire(questionnaire_id)
        status = questionnaire_service.get_attempt_status(questionnaire, 'u1')
        assert status['attempts_used'] == 2
        assert status['attempts_remaining'] == 1
        assert status['best_score'] == 100
        assert status['passed'] is True
        assert [a.attempt for a in status['attempts']] == [1, 2]

    def test_perfect_retry_unlocks_achievements(self, db):
        seed_default_achievements()
        perfect = copy_default_achievement('default_achievement_perfect_score',
                                           self.institution_id, 'admin1')
        first = copy_default_achievement('default_achievement_first_questionnaire',
                                         self.institution_id, 'admin1')
        questionnaire_id = self._questionnaire()
        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 1, 'q2': 1})
        assert dao.get_student_achievement('u1', first.id)['is_completed'] is True
        assert dao.get_student_achievement('u1', perfect.id) is None

        questionnaire_service.submit_questionnaire(
            questionnaire_id, 'u1', self.institution_id, {'q1': 0, 'q2': 2})
        assert dao.get_student_achievement('u1', perfect.id)['is_completed'] is True


class TestParsing:

    def test_parse_questions_strips_blank_options(self):
        questions = questionnaire_service.parse_questions([
            {'text': ' Capital of France? ', 'options': ['Paris', ' ', 'Rome'],
             'correct_index': '0'},
        ])
        assert questions[0].text == 'Capital of France?'
        assert questions[0].options == ['Paris', 'Rome']

    def test_parse_questions_validates(self):
        with pytest.raises(ValidationError):
            questionnaire_service.parse_questions([{'text': 'Q', 'options': ['only']}])

    def test_parse_selections(self, db):
        course_id, lessons, _ = build_course('inst1')
        questionnaire = questionnaire_service.get_questionnaire(
            build_questionnaire('inst1', course_id, lessons[0]))
        assert questionnaire_service.parse_selections({'q_q1': '1', 'q_q2': ''},
                                                      questionnaire) == {'q1': 1}
        with pytest.raises(ValidationError):
            questionnaire_service.parse_selections({'q_q1': 'x'}, questionnaire)
