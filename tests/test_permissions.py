from lms.permissions import Ability, Action, Subject, build_ability


class TestAbility:

    def test_later_rules_win(self):
        ability = Ability()
        ability.can_rule(Action.MANAGE, Subject.ALL)
        ability.cannot_rule(Action.DELETE, Subject.COURSE)
        assert ability.can(Action.READ, Subject.COURSE)
        assert ability.cannot(Action.DELETE, Subject.COURSE)

    def test_nothing_allowed_by_default(self):
        assert Ability().cannot(Action.READ, Subject.COURSE)


class TestRoleMatrix:

    def test_root_manages_everything(self):
        ability = build_ability('root')
        assert ability.can(Action.MANAGE, Subject.INSTITUTION)
        assert ability.can(Action.DELETE, Subject.CERTIFICATE)

    def test_admin_cannot_manage_institutions(self):
        ability = build_ability('admin', 'inst-1')
        assert ability.can(Action.MANAGE, Subject.COURSE)
        assert ability.can(Action.UPDATE, Subject.INSTITUTION)
        assert ability.can(Action.READ, Subject.INSTITUTION)
        assert ability.cannot(Action.MANAGE, Subject.INSTITUTION)
        assert ability.cannot(Action.CREATE, Subject.INSTITUTION)

    def test_admin_without_institution(self):
        ability = build_ability('admin')
        assert ability.cannot(Action.MANAGE, Subject.COURSE)
        assert ability.can(Action.READ, Subject.INSTITUTION)

    def test_tutor(self):
        ability = build_ability('tutor', 'inst-1')
        assert ability.can(Action.CONFIGURE, Subject.LESSON)
        assert ability.can(Action.ASSIGN, Subject.STUDENT)
        assert ability.can(Action.UPDATE, Subject.FORUM)
        assert ability.cannot(Action.MANAGE, Subject.TUTOR)
        assert ability.cannot(Action.MANAGE, Subject.BADGE)
        assert ability.cannot(Action.WATCH, Subject.COURSE)

    def test_student(self):
        ability = build_ability('student', 'inst-1')
        assert ability.can(Action.WATCH, Subject.LESSON)
        assert ability.can(Action.CREATE, Subject.FORUM)
        assert ability.can(Action.UPDATE, Subject.PROFILE)
        assert ability.cannot(Action.CREATE, Subject.COURSE)
        assert ability.cannot(Action.READ, Subject.REPORT)

    def test_no_institution_means_no_rights(self):
        assert build_ability('student').cannot(Action.WATCH, Subject.COURSE)
        assert build_ability('tutor').cannot(Action.READ, Subject.COURSE)
        assert build_ability(None, 'inst-1').cannot(Action.READ, Subject.COURSE)
