from datetime import datetime, timezone

from flask import Blueprint, render_template, redirect, url_for, flash, request, session

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import LMSError, NotFoundError, PermissionDeniedError
from lms.firestore_models import Question, Questionnaire
from lms.forms import QuestionnaireForm, QuestionForm
from lms.permissions import Action, Subject
from lms.routes.courses import has_course_access
from lms.services import enrollment as enrollment_service
from lms.services import questionnaires as questionnaire_service

bp = Blueprint('questionnaires', __name__, url_prefix='/questionnaires')

STARTED_KEY = 'questionnaire_started'


def _questionnaire(questionnaire_id):
    questionnaire = questionnaire_service.get_questionnaire(questionnaire_id)
    if questionnaire.institution_id != get_current_user().institution_id:
        raise NotFoundError('Questionnaire not found')
    return questionnaire


def _check_course_access(course_id):
    course = dao.get_course(course_id)
    if not course or not has_course_access(course, get_current_user()):
        raise PermissionDeniedError('You are not a tutor of this course')
    return course


@bp.route('/lessons/<lesson_id>/new', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.QUESTIONNAIRE)
def create(lesson_id):
    user = get_current_user()
    lesson = dao.get_lesson(lesson_id)
    if not lesson or lesson.get('institution_id') != user.institution_id:
        raise NotFoundError('Lesson not found')
    _check_course_access(lesson['course_id'])

    form = QuestionnaireForm()
    if form.validate_on_submit():
        try:
            questionnaire = questionnaire_service.save_questionnaire(Questionnaire(
                lesson_id=lesson_id,
                course_id=lesson['course_id'],
                institution_id=user.institution_id,
                title=form.title.data.strip(),
                max_attempts=form.max_attempts.data,
                passing_score=form.passing_score.data,
            ))
            flash('Questionnaire created. Add its questions.', 'success')
            return redirect(url_for('questionnaires.edit', questionnaire_id=questionnaire.id))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('questionnaires/form.html', form=form, lesson=lesson)


@bp.route('/<questionnaire_id>/edit', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.QUESTIONNAIRE)
def edit(questionnaire_id):
    questionnaire = _questionnaire(questionnaire_id)
    _check_course_access(questionnaire.course_id)

    form = QuestionForm()
    if form.validate_on_submit():
        options = [line.strip() for line in form.options.data.splitlines() if line.strip()]
        try:
            questionnaire.add_question(Question.from_dict({
                'text': form.text.data.strip(),
                'options': options,
                'correct_index': form.correct_index.data - 1,
            }))
            questionnaire_service.save_questionnaire(questionnaire)
            flash('Question added.', 'success')
            return redirect(url_for('questionnaires.edit', questionnaire_id=questionnaire_id))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('questionnaires/edit.html', questionnaire=questionnaire, form=form)


@bp.route('/<questionnaire_id>/questions/<question_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.QUESTIONNAIRE)
def delete_question(questionnaire_id, question_id):
    questionnaire = _questionnaire(questionnaire_id)
    _check_course_access(questionnaire.course_id)
    questionnaire.remove_question(question_id)
    questionnaire_service.save_questionnaire(questionnaire)
    flash('Question removed.', 'success')
    return redirect(url_for('questionnaires.edit', questionnaire_id=questionnaire_id))


@bp.route('/<questionnaire_id>/results')
@institution_required
@permission_required(Action.UPDATE, Subject.QUESTIONNAIRE)
def results(questionnaire_id):
    questionnaire = _questionnaire(questionnaire_id)
    _check_course_access(questionnaire.course_id)
    return render_template('questionnaires/results.html', questionnaire=questionnaire,
                           rows=questionnaire_service.list_submissions_for_tutor(questionnaire_id))


@bp.route('/<questionnaire_id>')
@institution_required
@permission_required(Action.READ, Subject.QUESTIONNAIRE)
def take(questionnaire_id):
    user = get_current_user()
    questionnaire = _questionnaire(questionnaire_id)
    if user.is_student():
        enrollment_service.require_enrollment(user.uid, questionnaire.course_id)
    status = questionnaire_service.get_attempt_status(questionnaire, user.uid)
    if status['can_attempt']:
        started = session.get(STARTED_KEY) or {}
        started[questionnaire_id] = datetime.now(timezone.utc).isoformat()
        session[STARTED_KEY] = started
    return render_template('questionnaires/take.html', questionnaire=questionnaire, status=status)


@bp.route('/<questionnaire_id>/submit', methods=['POST'])
@institution_required
@permission_required(Action.READ, Subject.QUESTIONNAIRE)
def submit(questionnaire_id):
    user = get_current_user()
    if not user.is_student():
        flash('Only students can answer questionnaires.', 'info')
        return redirect(url_for('questionnaires.take', questionnaire_id=questionnaire_id))

    questionnaire = _questionnaire(questionnaire_id)
    enrollment_service.require_enrollment(user.uid, questionnaire.course_id)
    selections = questionnaire_service.parse_selections(request.form, questionnaire)
    started = (session.get(STARTED_KEY) or {}).pop(questionnaire_id, None)
    started_at = datetime.fromisoformat(started) if started else None

    submission = questionnaire_service.submit_questionnaire(
        questionnaire_id, user.uid, user.institution_id, selections, started_at)
    session.modified = True

    if submission.passed:
        flash(f'You scored {submission.score}%. Passed!', 'success')
    else:
        flash(f'You scored {submission.score}%. {questionnaire.passing_score}% is needed to pass.',
              'warning')
    return redirect(url_for('questionnaires.take', questionnaire_id=questionnaire_id))
