import pytest

from lms import firestore_dao as dao
from lms.errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from lms.services import chat as chat_service
from lms.services import social as social_service


class TestPosts:

    def setup_method(self):
        self.institution_id = 'inst1'

    def _post(self, author='author1', publish=True):
        return social_service.create_post(author, 'Author', self.institution_id,
                                          'Study tips', 'Review your notes every day.',
                                          publish=publish)

    def test_feed_lists_published_posts(self, db):
        published = self._post()
        self._post(publish=False)
        feed = social_service.feed(self.institution_id)
        assert [p.id for p in feed] == [published.id]
        assert social_service.feed('inst2') == []

    def test_drafts_show_in_my_posts(self, db):
        draft = self._post(publish=False)
        assert draft.id in [p.id for p in social_service.my_posts('author1', self.institution_id)]
        social_service.publish_post(draft.id, self.institution_id, 'author1', 'student')
        assert [p.id for p in social_service.feed(self.institution_id)] == [draft.id]

    def test_only_author_or_admin_edits(self, db):
        draft = self._post(publish=False)
        with pytest.raises(PermissionDeniedError):
            social_service.update_post(draft.id, self.institution_id, 'someone', 'student',
                                       'New title', 'A brand new body text.')
        post = social_service.update_post(draft.id, self.institution_id, 'admin9', 'admin',
                                          'New title', 'A brand new body text.')
        assert post.title == 'New title'

    def test_published_post_cannot_be_edited(self, db):
        post = self._post()
        with pytest.raises(InvalidTransitionError):
            social_service.update_post(post.id, self.institution_id, 'author1', 'student',
                                       'New title', 'A brand new body text.')

    def test_archive(self, db):
        post = self._post()
        social_service.archive_post(post.id, self.institution_id, 'author1', 'student')
        assert social_service.feed(self.institution_id) == []

    def test_post_from_other_institution(self, db):
        post = self._post()
        with pytest.raises(NotFoundError):
            social_service.get_post(post.id, 'inst2')

    def test_delete_cascades(self, db):
        post = self._post()
        comment_id = social_service.add_comment(post.id, self.institution_id, 'u2', 'U2',
                                                'Nice one')
        social_service.toggle_like('comment', comment_id, self.institution_id, 'u3')
        social_service.toggle_like('post', post.id, self.institution_id, 'u3')
        social_service.delete_post(post.id, self.institution_id, 'author1', 'student')
        assert db.docs('posts') == {}
        assert db.docs('comments') == {}
        assert db.docs('likes') == {}


class TestComments:

    def setup_method(self):
        self.institution_id = 'inst1'

    def _published(self):
        return social_service.create_post('author1', 'Author', self.institution_id,
                                          'Hello all', 'Welcome to the course feed.')

    def test_comment_requires_published_post(self, db):
        draft = social_service.create_post('author1', 'Author', self.institution_id,
                                           'Hello all', 'Welcome to the course feed.',
                                           publish=False)
        with pytest.raises(ValidationError):
            social_service.add_comment(draft.id, self.institution_id, 'u2', 'U2', 'Hi')

    def test_replies_are_one_level_deep(self, db):
        post = self._published()
        top = social_service.add_comment(post.id, self.institution_id, 'u2', 'U2', 'First')
        reply = social_service.add_comment(post.id, self.institution_id, 'u3', 'U3', 'Reply',
                                           parent_comment_id=top)
        with pytest.raises(ValidationError):
            social_service.add_comment(post.id, self.institution_id, 'u4', 'U4', 'Deeper',
                                       parent_comment_id=reply)
        tree = social_service.comment_tree(post.id)
        assert [c['id'] for c in tree] == [top]
        assert [r['id'] for r in tree[0]['replies']] == [reply]

    def test_counts_follow_comments(self, db):
        post = self._published()
        top = social_service.add_comment(post.id, self.institution_id, 'u2', 'U2', 'First')
        social_service.add_comment(post.id, self.institution_id, 'u3', 'U3', 'Reply',
                                   parent_comment_id=top)
        assert dao.get_post(post.id)['comments_count'] == 2

        social_service.delete_comment(top, self.institution_id, 'u2', 'student')
        assert dao.get_post(post.id)['comments_count'] == 0
        assert db.docs('comments') == {}

    def test_comment_length(self, db):
        post = self._published()
        with pytest.raises(ValidationError):
            social_service.add_comment(post.id, self.institution_id, 'u2', 'U2', 'x' * 2001)

    def test_only_author_deletes(self, db):
        post = self._published()
        comment_id = social_service.add_comment(post.id, self.institution_id, 'u2', 'U2', 'Hi')
        with pytest.raises(PermissionDeniedError):
            social_service.delete_comment(comment_id, self.institution_id, 'u3', 'tutor')


class TestLikes:

    def test_toggle(self, db):
        post = social_service.create_post('author1', 'Author', 'inst1', 'Hello all',
                                          'Welcome to the course feed.')
        assert social_service.toggle_like('post', post.id, 'inst1', 'u2') == (True, 1)
        assert f'{post.id}_u2' in db.docs('likes')
        assert social_service.toggle_like('post', post.id, 'inst1', 'u2') == (False, 0)
        assert db.docs('likes') == {}

    def test_unknown_target_type(self, db):
        with pytest.raises(ValidationError):
            social_service.toggle_like('course', 'c1', 'inst1', 'u2')


class TestChat:

    def setup_method(self):
        self.institution_id = 'inst1'

    def _class(self):
        return dao.create_class({'institution_id': self.institution_id, 'name': 'A',
                                 'course_ids': ['course1'], 'student_ids': ['s1'],
                                 'tutor_ids': ['t1']})

    def test_room_per_class_and_course(self, db):
        class_id = self._class()
        room = chat_service.get_or_create_room(class_id, 'course1', self.institution_id,
                                               's1', 'student')
        assert room['id'] == f'{class_id}_course1'
        chat_service.get_or_create_room(class_id, 'course1', self.institution_id, 't1', 'tutor')
        stored = dao.get_chat_room(room['id'])
        assert [p['user_id'] for p in stored['participants']] == ['s1', 't1']

    def test_outsiders_are_rejected(self, db):
        class_id = self._class()
        with pytest.raises(PermissionDeniedError):
            chat_service.get_or_create_room(class_id, 'course1', self.institution_id,
                                            's9', 'student')
        chat_service.get_or_create_room(class_id, 'course1', self.institution_id,
                                        'a1', 'admin')

    def test_course_must_belong_to_class(self, db):
        class_id = self._class()
        with pytest.raises(NotFoundError):
            chat_service.get_or_create_room(class_id, 'course2', self.institution_id,
                                            's1', 'student')

    def test_messages(self, db):
        class_id = self._class()
        room = chat_service.get_or_create_room(class_id, 'course1', self.institution_id,
                                               's1', 'student')
        message = chat_service.send_message(room['id'], self.institution_id, 's1', 'Sam',
                                            'student', '  hello  ')
        assert message['text'] == 'hello'
        history = chat_service.history(room['id'])
        assert [m['text'] for m in history] == ['hello']
        with pytest.raises(ValidationError):
            chat_service.send_message(room['id'], self.institution_id, 's1', 'Sam',
                                      'student', '   ')
