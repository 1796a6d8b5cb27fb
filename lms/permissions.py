"""Role based permission matrix.

A user acts inside one institution at a time. The role held in that
institution (stored in ``user_institutions``) decides which (action, subject)
pairs are allowed. ``manage`` is the wildcard action and ``all`` the wildcard
subject.
"""

from enum import Enum


class Role(str, Enum):
    ROOT = 'root'
    ADMIN = 'admin'
    TUTOR = 'tutor'
    STUDENT = 'student'

    @classmethod
    def values(cls):
        return [r.value for r in cls]


class Action(str, Enum):
    MANAGE = 'manage'
    CREATE = 'create'
    READ = 'read'
    UPDATE = 'update'
    DELETE = 'delete'
    CONFIGURE = 'configure'
    WATCH = 'watch'
    ASSIGN = 'assign'
    REPORT = 'report'


class Subject(str, Enum):
    ALL = 'all'
    INSTITUTION = 'institution'
    COURSE = 'course'
    LESSON = 'lesson'
    STUDENT = 'student'
    TUTOR = 'tutor'
    ADMIN = 'admin'
    CONTENT = 'content'
    ENROLLMENT = 'enrollment'
    CERTIFICATE = 'certificate'
    BADGE = 'badge'
    REPORT = 'report'
    FORUM = 'forum'
    QUESTIONNAIRE = 'questionnaire'
    ACTIVITY = 'activity'
    PROFILE = 'profile'


ROLE_LABELS = {
    'root': 'Super admin',
    'admin': 'Administrator',
    'tutor': 'Tutor',
    'student': 'Student',
}


def _value(v):
    return v.value if isinstance(v, Enum) else v


class Ability:
    """Ordered list of can/cannot rules. Later rules win."""

    def __init__(self):
        self._rules = []

    def can_rule(self, actions, subjects):
        self._add(True, actions, subjects)

    def cannot_rule(self, actions, subjects):
        self._add(False, actions, subjects)

    def _add(self, allowed, actions, subjects):
        if not isinstance(actions, (list, tuple, set)):
            actions = [actions]
        if not isinstance(subjects, (list, tuple, set)):
            subjects = [subjects]
        for a in actions:
            for s in subjects:
                self._rules.append((allowed, _value(a), _value(s)))

    def can(self, action, subject):
        action = _value(action)
        subject = _value(subject)
        result = False
        for allowed, rule_action, rule_subject in self._rules:
            action_match = rule_action in ('manage', action)
            subject_match = rule_subject in ('all', subject)
            if action_match and subject_match:
                result = allowed
        return result

    def cannot(self, action, subject):
        return not self.can(action, subject)

    @property
    def rules(self):
        return list(self._rules)


def build_ability(role, institution_id=None):
    """Return the Ability of ``role`` acting inside ``institution_id``."""
    ability = Ability()
    role = _value(role)
    crud = [Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE]

    if role == Role.ROOT.value:
        ability.can_rule(Action.MANAGE, Subject.ALL)

    elif role == Role.ADMIN.value:
        if institution_id:
            ability.can_rule(Action.MANAGE, Subject.ALL)
        ability.cannot_rule(Action.MANAGE, Subject.INSTITUTION)
        ability.can_rule(Action.READ, Subject.INSTITUTION)
        ability.can_rule(Action.UPDATE, Subject.INSTITUTION)

    elif role == Role.TUTOR.value:
        if institution_id:
            ability.can_rule(Action.READ, Subject.INSTITUTION)
            ability.can_rule(crud + [Action.CONFIGURE], [Subject.COURSE, Subject.LESSON])
            ability.can_rule([Action.READ, Action.UPDATE, Action.ASSIGN], Subject.STUDENT)
            ability.can_rule(crud, Subject.CONTENT)
            ability.can_rule([Action.READ, Action.CREATE], Subject.REPORT)
            ability.can_rule([Action.READ, Action.UPDATE],
                             [Subject.FORUM, Subject.QUESTIONNAIRE, Subject.ACTIVITY])
            ability.can_rule(Action.READ, Subject.ENROLLMENT)

    elif role == Role.STUDENT.value:
        if institution_id:
            ability.can_rule(Action.WATCH, [Subject.COURSE, Subject.LESSON, Subject.CONTENT])
            ability.can_rule(Action.READ, [Subject.CERTIFICATE, Subject.BADGE])
            ability.can_rule([Action.READ, Action.CREATE], Subject.FORUM)
            ability.can_rule(Action.READ, Subject.QUESTIONNAIRE)
            ability.can_rule([Action.READ, Action.UPDATE], [Subject.ACTIVITY, Subject.PROFILE])

    return ability
