"""Posts, comments and likes of the institution feed."""

import logging
from datetime import datetime, timezone

from lms import firestore_dao as dao
from lms.errors import NotFoundError, PermissionDeniedError, ValidationError
from lms.firestore_models import Post, validate_comment_content
from lms.permissions import Role

logger = logging.getLogger(__name__)

MODERATOR_ROLES = (Role.ROOT.value, Role.ADMIN.value)


def _can_moderate(user_id, role, author_id):
    return user_id == author_id or role in MODERATOR_ROLES


def get_post(post_id, institution_id):
    doc = dao.get_post(post_id)
    if not doc or doc.get('institution_id') != institution_id:
        raise NotFoundError('Post not found')
    return Post.from_dict(doc, doc['id'])


def create_post(author_id, author_name, institution_id, title, content, publish=True):
    post = Post(
        author_id=author_id,
        author_name=author_name,
        institution_id=institution_id,
        title=Post.validate_title(title),
        content=Post.validate_content(content),
    )
    if publish:
        post.publish()
    post.id = dao.create_post(post.to_dict())
    return post


def update_post(post_id, institution_id, user_id, role, title, content):
    post = get_post(post_id, institution_id)
    if not _can_moderate(user_id, role, post.author_id):
        raise PermissionDeniedError('Only the author can edit this post')
    post.update_content(title, content)
    dao.update_post(post.id, {'title': post.title, 'content': post.content,
                              'updated_at': post.updated_at})
    return post


def publish_post(post_id, institution_id, user_id, role):
    post = get_post(post_id, institution_id)
    if not _can_moderate(user_id, role, post.author_id):
        raise PermissionDeniedError('Only the author can publish this post')
    post.publish()
    dao.update_post(post.id, {'status': post.status, 'published_at': post.published_at})
    return post


def archive_post(post_id, institution_id, user_id, role):
    post = get_post(post_id, institution_id)
    if not _can_moderate(user_id, role, post.author_id):
        raise PermissionDeniedError('Only the author can archive this post')
    post.archive()
    dao.update_post(post.id, {'status': post.status})
    return post


def delete_post(post_id, institution_id, user_id, role):
    post = get_post(post_id, institution_id)
    if not _can_moderate(user_id, role, post.author_id):
        raise PermissionDeniedError('Only the author can delete this post')
    deleted = dao.delete_post(post.id)
    logger.info('Post %s deleted by %s (%d documents)', post.id, user_id, deleted)


def feed(institution_id, limit=50):
    return [Post.from_dict(d, d['id']) for d in dao.list_published_posts(institution_id, limit)]


def my_posts(author_id, institution_id):
    return [Post.from_dict(d, d['id']) for d in dao.list_posts_by_author(author_id, institution_id)]


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

def add_comment(post_id, institution_id, author_id, author_name, content,
                parent_comment_id=None):
    post = get_post(post_id, institution_id)
    if not post.is_published():
        raise ValidationError('Comments are only allowed on published posts')
    content = validate_comment_content(content)
    if parent_comment_id:
        parent = dao.get_comment(parent_comment_id)
        if not parent or parent.get('post_id') != post_id:
            raise NotFoundError('Comment to reply to not found')
        if parent.get('parent_comment_id'):
            raise ValidationError('Replies can only be made to top-level comments')

    comment_id = dao.create_comment({
        'post_id': post_id,
        'parent_comment_id': parent_comment_id,
        'author_id': author_id,
        'author_name': author_name,
        'institution_id': institution_id,
        'content': content,
        'likes_count': 0,
    })
    dao.update_post(post_id, {'comments_count': post.comments_count + 1})
    return comment_id


def _get_comment(comment_id, institution_id):
    comment = dao.get_comment(comment_id)
    if not comment or comment.get('institution_id') != institution_id:
        raise NotFoundError('Comment not found')
    return comment


def edit_comment(comment_id, institution_id, user_id, role, content):
    comment = _get_comment(comment_id, institution_id)
    if not _can_moderate(user_id, role, comment['author_id']):
        raise PermissionDeniedError('Only the author can edit this comment')
    dao.update_comment(comment_id, {'content': validate_comment_content(content),
                                    'edited_at': datetime.now(timezone.utc)})


def delete_comment(comment_id, institution_id, user_id, role):
    comment = _get_comment(comment_id, institution_id)
    if not _can_moderate(user_id, role, comment['author_id']):
        raise PermissionDeniedError('Only the author can delete this comment')
    removed = dao.delete_comment(comment_id)
    post = dao.get_post(comment['post_id'])
    if post:
        dao.update_post(post['id'], {'comments_count': max(post.get('comments_count', 0) - removed, 0)})


def comment_tree(post_id):
    """Top-level comments with their replies attached under 'replies'."""
    comments = dao.list_comments(post_id)
    top = [dict(c, replies=[]) for c in comments if not c.get('parent_comment_id')]
    by_id = {c['id']: c for c in top}
    for c in comments:
        parent = by_id.get(c.get('parent_comment_id'))
        if parent is not None:
            parent['replies'].append(c)
    return top


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

def toggle_like(target_type, target_id, institution_id, user_id):
    """Like or unlike a post or comment. Returns (liked, likes_count)."""
    if target_type == 'post':
        target = dao.get_post(target_id)
        update = dao.update_post
    elif target_type == 'comment':
        target = dao.get_comment(target_id)
        update = dao.update_comment
    else:
        raise ValidationError(f'Cannot like a {target_type}')
    if not target or target.get('institution_id') != institution_id:
        raise NotFoundError(f'{target_type.capitalize()} not found')

    count = target.get('likes_count', 0)
    if dao.get_like(target_id, user_id):
        dao.delete_like(target_id, user_id)
        liked, count = False, max(count - 1, 0)
    else:
        dao.create_like(target_type, target_id, user_id)
        liked, count = True, count + 1
    update(target_id, {'likes_count': count})
    return liked, count
