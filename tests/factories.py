from lms import firestore_dao as dao


def build_course(institution_id, outline=((2, 1), (1,)), title='Course'):
    """Create a course from an outline of modules.

    ``outline`` holds one tuple per module, listing how many contents each of
    its lessons has. Returns ``(course_id, lesson_ids, content_ids)`` with
    lessons in course order and ``content_ids`` keyed by lesson id.
    """
    course_id = dao.create_course({'institution_id': institution_id, 'title': title,
                                   'is_active': True})
    lesson_ids = []
    content_ids = {}
    for module_order, lessons in enumerate(outline, start=1):
        module_id = dao.create_module({'course_id': course_id, 'institution_id': institution_id,
                                       'title': f'Module {module_order}', 'order': module_order})
        for lesson_order, content_count in enumerate(lessons, start=1):
            lesson_id = dao.create_lesson({
                'module_id': module_id, 'course_id': course_id,
                'institution_id': institution_id,
                'title': f'Lesson {module_order}.{lesson_order}', 'order': lesson_order,
            })
            lesson_ids.append(lesson_id)
            content_ids[lesson_id] = [
                dao.create_content({'lesson_id': lesson_id, 'course_id': course_id,
                                    'institution_id': institution_id, 'title': f'Content {n}',
                                    'type': 'text', 'body': 'Read me', 'order': n})
                for n in range(1, content_count + 1)
            ]
    return course_id, lesson_ids, content_ids


def build_questionnaire(institution_id, course_id, lesson_id, max_attempts=2, passing_score=50):
    return dao.create_questionnaire({
        'lesson_id': lesson_id,
        'course_id': course_id,
        'institution_id': institution_id,
        'title': 'Check',
        'max_attempts': max_attempts,
        'passing_score': passing_score,
        'questions': [
            {'id': 'q1', 'text': 'One?', 'options': ['a', 'b'], 'correct_index': 0},
            {'id': 'q2', 'text': 'Two?', 'options': ['a', 'b', 'c'], 'correct_index': 2},
        ],
    })
