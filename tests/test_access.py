from datetime import datetime, timedelta, timezone

from lms import firestore_dao as dao
from lms.services.access import record_daily_access
from lms.services.achievements import copy_default_achievement, seed_default_achievements


class TestDailyAccess:

    def setup_method(self):
        self.now = datetime(2024, 6, 3, 14, 0, tzinfo=timezone.utc)

    def test_first_access_creates_history(self, db):
        result = record_daily_access('u1', 'inst1', now=self.now)
        assert result == {
            'already_tracked_today': False,
            'is_first_login': True,
            'consecutive_days': 1,
            'total_access_days': 1,
        }
        history = db.docs('user_access_history')['u1_inst1']
        assert history['last_access_date'] == datetime(2024, 6, 3, tzinfo=timezone.utc)

    def test_same_day_is_tracked_once(self, db):
        record_daily_access('u1', 'inst1', now=self.now)
        result = record_daily_access('u1', 'inst1', now=self.now + timedelta(hours=3))
        assert result['already_tracked_today'] is True
        assert result['consecutive_days'] == 1

    def test_streak_grows_and_resets(self, db):
        record_daily_access('u1', 'inst1', now=self.now)
        record_daily_access('u1', 'inst1', now=self.now + timedelta(days=1))
        result = record_daily_access('u1', 'inst1', now=self.now + timedelta(days=2))
        assert result['consecutive_days'] == 3

        result = record_daily_access('u1', 'inst1', now=self.now + timedelta(days=5))
        assert result['consecutive_days'] == 1
        assert result['total_access_days'] == 4

    def test_histories_are_per_institution(self, db):
        record_daily_access('u1', 'inst1', now=self.now)
        result = record_daily_access('u1', 'inst2', now=self.now)
        assert result['is_first_login'] is True
        assert set(db.docs('user_access_history')) == {'u1_inst1', 'u1_inst2'}

    def test_first_login_unlocks_welcome(self, db):
        seed_default_achievements()
        welcome = copy_default_achievement('default_achievement_first_login', 'inst1', 'admin1')
        record_daily_access('u1', 'inst1', now=self.now)
        record = dao.get_student_achievement('u1', welcome.id)
        assert record['is_completed'] is True
