from flask import Blueprint, render_template, redirect, url_for, flash, request, jsonify

from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import LMSError, PermissionDeniedError
from lms.forms import PostForm, CommentForm
from lms.permissions import Action, Subject
from lms.services import social as social_service

bp = Blueprint('social', __name__)


def _require_posting():
    """Students create in the forum, tutors take part through update rights."""
    user = get_current_user()
    if not (user.can(Action.CREATE, Subject.FORUM) or user.can(Action.UPDATE, Subject.FORUM)):
        raise PermissionDeniedError('You cannot post in this institution')
    return user


@bp.route('/feed')
@institution_required
@permission_required(Action.READ, Subject.FORUM)
def feed():
    user = get_current_user()
    return render_template('social/feed.html',
                           posts=social_service.feed(user.institution_id))


@bp.route('/feed/mine')
@institution_required
@permission_required(Action.READ, Subject.FORUM)
def my_posts():
    user = get_current_user()
    return render_template('social/my_posts.html',
                           posts=social_service.my_posts(user.uid, user.institution_id))


@bp.route('/feed/new', methods=['GET', 'POST'])
@institution_required
def new_post():
    user = _require_posting()
    form = PostForm()
    if form.validate_on_submit():
        try:
            post = social_service.create_post(
                user.uid, user.display_name, user.institution_id,
                form.title.data, form.content.data, publish=not form.save_as_draft.data)
            flash('Draft saved.' if form.save_as_draft.data else 'Post published.', 'success')
            return redirect(url_for('social.view_post', post_id=post.id))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('social/post_form.html', form=form, post=None)


@bp.route('/feed/posts/<post_id>')
@institution_required
@permission_required(Action.READ, Subject.FORUM)
def view_post(post_id):
    user = get_current_user()
    post = social_service.get_post(post_id, user.institution_id)
    if not post.is_published() and post.author_id != user.uid and not user.is_admin():
        flash('This post is not published.', 'info')
        return redirect(url_for('social.feed'))
    return render_template('social/post.html', post=post,
                           comments=social_service.comment_tree(post_id),
                           comment_form=CommentForm())


@bp.route('/feed/posts/<post_id>/edit', methods=['GET', 'POST'])
@institution_required
def edit_post(post_id):
    user = _require_posting()
    post = social_service.get_post(post_id, user.institution_id)
    form = PostForm(data={'title': post.title, 'content': post.content})
    if form.validate_on_submit():
        try:
            social_service.update_post(post_id, user.institution_id, user.uid, user.role,
                                       form.title.data, form.content.data)
            if not form.save_as_draft.data:
                social_service.publish_post(post_id, user.institution_id, user.uid, user.role)
            flash('Post saved.', 'success')
            return redirect(url_for('social.view_post', post_id=post_id))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('social/post_form.html', form=form, post=post)


@bp.route('/feed/posts/<post_id>/publish', methods=['POST'])
@institution_required
def publish_post(post_id):
    user = _require_posting()
    social_service.publish_post(post_id, user.institution_id, user.uid, user.role)
    flash('Post published.', 'success')
    return redirect(url_for('social.view_post', post_id=post_id))


@bp.route('/feed/posts/<post_id>/archive', methods=['POST'])
@institution_required
def archive_post(post_id):
    user = _require_posting()
    social_service.archive_post(post_id, user.institution_id, user.uid, user.role)
    flash('Post archived.', 'success')
    return redirect(url_for('social.my_posts'))


@bp.route('/feed/posts/<post_id>/delete', methods=['POST'])
@institution_required
def delete_post(post_id):
    user = _require_posting()
    social_service.delete_post(post_id, user.institution_id, user.uid, user.role)
    flash('Post deleted.', 'success')
    return redirect(url_for('social.feed'))


@bp.route('/feed/posts/<post_id>/comments', methods=['POST'])
@institution_required
def add_comment(post_id):
    user = _require_posting()
    form = CommentForm()
    if form.validate_on_submit():
        social_service.add_comment(post_id, user.institution_id, user.uid, user.display_name,
                                   form.content.data,
                                   parent_comment_id=request.form.get('parent_comment_id') or None)
    else:
        flash('Enter a comment of at most 2000 characters.', 'danger')
    return redirect(url_for('social.view_post', post_id=post_id))


@bp.route('/feed/comments/<comment_id>/edit', methods=['POST'])
@institution_required
def edit_comment(comment_id):
    user = _require_posting()
    social_service.edit_comment(comment_id, user.institution_id, user.uid, user.role,
                                request.form.get('content', ''))
    return redirect(request.referrer or url_for('social.feed'))


@bp.route('/feed/comments/<comment_id>/delete', methods=['POST'])
@institution_required
def delete_comment(comment_id):
    user = _require_posting()
    social_service.delete_comment(comment_id, user.institution_id, user.uid, user.role)
    flash('Comment deleted.', 'success')
    return redirect(request.referrer or url_for('social.feed'))


@bp.route('/api/likes/<target_type>/<target_id>', methods=['POST'])
@institution_required
@permission_required(Action.READ, Subject.FORUM)
def toggle_like(target_type, target_id):
    user = get_current_user()
    liked, count = social_service.toggle_like(target_type, target_id, user.institution_id, user.uid)
    return jsonify({'success': True, 'liked': liked, 'likes_count': count})
