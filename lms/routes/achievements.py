from flask import Blueprint, render_template, redirect, url_for, flash

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import LMSError, NotFoundError
from lms.firestore_models import InstitutionAchievement
from lms.forms import AchievementForm
from lms.permissions import Action, Subject
from lms.services import achievements as achievement_service

bp = Blueprint('achievements', __name__, url_prefix='/achievements')


@bp.route('/')
@institution_required
@permission_required(Action.READ, Subject.BADGE)
def index():
    user = get_current_user()
    items = achievement_service.get_student_achievements(user.uid, user.institution_id)
    earned = sum(1 for item in items if item['record'] and item['record'].is_completed)
    return render_template('achievements/index.html', items=items, earned=earned)


@bp.route('/manage')
@institution_required
@permission_required(Action.MANAGE, Subject.BADGE)
def manage():
    user = get_current_user()
    achievements = [InstitutionAchievement.from_dict(d, d['id'])
                    for d in dao.list_institution_achievements(user.institution_id)]
    copied = {a.template_id for a in achievements if a.template_id}
    templates = achievement_service.list_templates()
    return render_template('achievements/manage.html', achievements=achievements,
                           templates=templates, copied=copied)


@bp.route('/templates/<template_id>/copy', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.BADGE)
def copy_template(template_id):
    user = get_current_user()
    try:
        achievement = achievement_service.copy_default_achievement(
            template_id, user.institution_id, user.uid)
        flash(f'"{achievement.name}" added to your institution.', 'success')
    except LMSError as e:
        flash(str(e), 'danger')
    return redirect(url_for('achievements.manage'))


@bp.route('/templates/copy-all', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.BADGE)
def copy_all():
    user = get_current_user()
    created = achievement_service.copy_all_defaults(user.institution_id, user.uid)
    flash(f'{len(created)} achievements copied.', 'success')
    return redirect(url_for('achievements.manage'))


@bp.route('/new', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.BADGE)
def create():
    user = get_current_user()
    form = AchievementForm()
    if form.validate_on_submit():
        try:
            achievement_service.create_achievement(user.institution_id, user.uid, {
                'name': form.name.data,
                'description': form.description.data,
                'icon_url': form.icon_url.data,
                'criteria_type': form.criteria_type.data,
                'criteria_value': form.criteria_value.data,
                'is_active': form.is_active.data,
            })
            flash('Achievement created.', 'success')
            return redirect(url_for('achievements.manage'))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('achievements/form.html', form=form, achievement=None)


@bp.route('/<achievement_id>/edit', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.BADGE)
def edit(achievement_id):
    user = get_current_user()
    doc = dao.get_institution_achievement(achievement_id)
    if not doc or doc.get('institution_id') != user.institution_id:
        raise NotFoundError('Achievement not found')

    form = AchievementForm(data=doc)
    if form.validate_on_submit():
        try:
            achievement_service.update_achievement(achievement_id, user.institution_id, {
                'name': form.name.data,
                'description': form.description.data,
                'icon_url': form.icon_url.data,
                'criteria_type': form.criteria_type.data,
                'criteria_value': form.criteria_value.data,
                'is_active': form.is_active.data,
            })
            flash('Achievement updated.', 'success')
            return redirect(url_for('achievements.manage'))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('achievements/form.html', form=form, achievement=doc)
