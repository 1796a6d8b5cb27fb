"""Daily access tracking and login streaks."""

import logging
from datetime import datetime, timezone

from lms import firestore_dao as dao
from lms.errors import require
from lms.firestore_models import UserAccessHistory, start_of_day
from lms.services.achievements import EventType, dispatch_event

logger = logging.getLogger(__name__)


def record_daily_access(user_id, institution_id, now=None):
    """Count today's access once and publish USER_LOGIN for it.

    Returns a dict with the streak state and whether today was already
    tracked.
    """
    require(user_id, 'User ID cannot be empty')
    require(institution_id, 'Institution ID cannot be empty')
    now = now or datetime.now(timezone.utc)
    history_id = f'{user_id}_{institution_id}'

    doc = dao.get_access_history(user_id, institution_id)
    is_first_login = doc is None
    if is_first_login:
        history = UserAccessHistory(
            id=history_id,
            user_id=user_id,
            institution_id=institution_id,
            last_access_date=start_of_day(now),
            created_at=now,
        )
    else:
        history = UserAccessHistory.from_dict(doc, doc['id'])
        if history.was_accessed_today(now):
            return {
                'already_tracked_today': True,
                'is_first_login': False,
                'consecutive_days': history.consecutive_days,
                'total_access_days': history.total_access_days,
            }
        history.record_access(now)

    dao.save_access_history(history_id, history.to_dict())
    logger.debug('Access recorded for %s in %s (streak %d)',
                 user_id, institution_id, history.consecutive_days)

    dispatch_event(user_id, institution_id, EventType.USER_LOGIN, {
        'consecutive_login_days': history.consecutive_days,
        'is_first_login': is_first_login,
        'login_time': now,
    }, timestamp=now)

    return {
        'already_tracked_today': False,
        'is_first_login': is_first_login,
        'consecutive_days': history.consecutive_days,
        'total_access_days': history.total_access_days,
    }
