from datetime import datetime, timezone, timedelta

from firebase_admin import auth as firebase_auth

from lms import create_app
from lms.firebase_init import get_auth, get_db
from lms import firestore_dao as dao
from lms.firestore_models import Enrollment, Institution, Question, Questionnaire, UserInstitution
from lms.services.achievements import copy_all_defaults, seed_default_achievements


def seed_database():
    app = create_app()
    with app.app_context():
        auth = get_auth()
        db = get_db()

        password = 'password123'
        now = datetime.now(timezone.utc)

        print("Creating institution...")
        existing = dao.get_institution_by_domain('demo.example.com')
        if existing:
            institution_id = existing['id']
        else:
            institution = Institution(name='Demo Academy', domain='demo.example.com')
            institution.validate()
            institution_id = dao.create_institution(institution.to_dict())

        print("Creating users...")

        def create_firebase_user(email, display_name, role='student'):
            try:
                fb_user = auth.create_user(email=email, password=password, display_name=display_name)
            except firebase_auth.EmailAlreadyExistsError:
                fb_user = auth.get_user_by_email(email)
            uid = fb_user.uid
            dao.create_user(uid, {
                'email': email,
                'full_name': display_name,
                'role': role,
                'created_at': now,
            })
            return uid

        root_uid = create_firebase_user('root@example.com', 'Platform Root', role='root')
        admin_uid = create_firebase_user('admin@example.com', 'Academy Admin')
        tutor_uid = create_firebase_user('tutor@example.com', 'Tina Tutor')
        student_uids = [
            create_firebase_user(f'student{i}@example.com', f'Student {i}')
            for i in range(1, 6)
        ]

        print("Associating users with the institution...")
        batch = db.batch()
        memberships = [(admin_uid, 'admin'), (tutor_uid, 'tutor')]
        memberships += [(uid, 'student') for uid in student_uids]
        for uid, role in memberships:
            if dao.get_user_institution(uid, institution_id):
                continue
            association = UserInstitution(user_id=uid, institution_id=institution_id, user_role=role)
            association.validate()
            batch.set(db.collection('user_institutions').document(), association.to_dict())
        batch.commit()

        print("Creating course...")
        course_id = dao.create_course({
            'institution_id': institution_id,
            'title': 'Introduction to Python',
            'description': 'Variables, control flow and functions, one step at a time.',
            'cover_image_url': None,
            'is_active': True,
            'created_by': admin_uid,
            'created_at': now,
            'updated_at': now,
        })
        dao.assign_tutor(course_id, tutor_uid, institution_id)

        outline = [
            ('Getting started', [
                ('Installing Python', [
                    ('Installation walkthrough', 'video', 'https://www.youtube.com/watch?v=YYXdXT2l-Gg', None),
                    ('Checklist', 'text', None, 'Install Python 3, open a terminal and run python --version.'),
                ]),
                ('Your first program', [
                    ('Hello world', 'text', None, 'Create hello.py containing print("Hello, world!") and run it.'),
                ]),
            ]),
            ('Core language', [
                ('Variables and types', [
                    ('Types overview', 'video', 'https://www.youtube.com/watch?v=OH86oLzVzzw', None),
                    ('Podcast: naming things', 'podcast', 'https://example.com/podcasts/naming.mp3', None),
                ]),
                ('Control flow', [
                    ('if, for and while', 'text', None, 'Conditionals choose a branch; loops repeat a block.'),
                ]),
            ]),
        ]

        lesson_ids = []
        for module_order, (module_title, lessons) in enumerate(outline, start=1):
            module_id = dao.create_module({
                'course_id': course_id,
                'institution_id': institution_id,
                'title': module_title,
                'order': module_order,
            })
            for lesson_order, (lesson_title, contents) in enumerate(lessons, start=1):
                lesson_id = dao.create_lesson({
                    'module_id': module_id,
                    'course_id': course_id,
                    'institution_id': institution_id,
                    'title': lesson_title,
                    'description': None,
                    'order': lesson_order,
                    'pdf_urls': [],
                    'audio_url': None,
                    'support_materials': [],
                })
                lesson_ids.append(lesson_id)

                batch = db.batch()
                for content_order, (title, content_type, url, body) in enumerate(contents, start=1):
                    batch.set(db.collection('contents').document(), {
                        'lesson_id': lesson_id,
                        'module_id': module_id,
                        'course_id': course_id,
                        'institution_id': institution_id,
                        'title': title,
                        'type': content_type,
                        'url': url,
                        'body': body,
                        'order': content_order,
                        'created_at': now,
                        'updated_at': now,
                    })
                batch.commit()

        print("Creating questionnaire and activity...")
        questionnaire = Questionnaire(
            lesson_id=lesson_ids[-1],
            course_id=course_id,
            institution_id=institution_id,
            title='Python basics check',
            max_attempts=3,
            passing_score=70,
            questions=[
                Question.from_dict({'text': 'Which keyword defines a function?',
                                    'options': ['func', 'def', 'lambda', 'fn'], 'correct_index': 1}),
                Question.from_dict({'text': 'What does range(3) produce?',
                                    'options': ['1, 2, 3', '0, 1, 2', '0, 1, 2, 3'], 'correct_index': 1}),
                Question.from_dict({'text': 'Python is dynamically typed.',
                                    'options': ['True', 'False'], 'correct_index': 0}),
            ],
        )
        questionnaire.validate()
        dao.create_questionnaire(questionnaire.to_dict())

        dao.create_activity({
            'lesson_id': lesson_ids[-1],
            'course_id': course_id,
            'institution_id': institution_id,
            'title': 'Build a calculator',
            'description': 'Write a program that adds, subtracts, multiplies and divides two numbers.',
            'due_date': now + timedelta(days=14),
            'allowed_file_types': ['py', 'zip'],
            'max_files': 3,
            'created_by': tutor_uid,
        })

        print("Creating class and enrollments...")
        dao.create_class({
            'institution_id': institution_id,
            'name': 'Python cohort A',
            'course_ids': [course_id],
            'student_ids': list(student_uids),
            'tutor_ids': [tutor_uid],
        })
        batch = db.batch()
        for uid in student_uids:
            enrollment = Enrollment(id=f'{course_id}_{uid}', user_id=uid, course_id=course_id,
                                    institution_id=institution_id)
            batch.set(db.collection('enrollments').document(enrollment.id), enrollment.to_dict())
        batch.commit()

        print("Seeding achievements...")
        result = seed_default_achievements(force=True)
        print(f"  {result['message']}")
        copied = copy_all_defaults(institution_id, root_uid)
        print(f"  {len(copied)} achievements copied into Demo Academy")

        print("\n" + "=" * 60)
        print("    Test accounts (password: password123)")
        print("=" * 60)
        print("  Root:     root@example.com")
        print("  Admin:    admin@example.com")
        print("  Tutor:    tutor@example.com")
        print("  Students: student1..5@example.com")
        print("=" * 60)
        print("Database seeded.")


if __name__ == '__main__':
    seed_database()
