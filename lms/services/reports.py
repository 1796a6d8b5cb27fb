"""Course report per institution, as rows or an XLSX workbook."""

import io

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from lms import firestore_dao as dao
from lms.services.progress import get_course_progress

REPORT_COLUMNS = [
    ('Student', 30),
    ('Email', 34),
    ('Status', 14),
    ('Progress (%)', 14),
    ('Completed lessons', 18),
    ('Best score', 12),
    ('Approved activities', 20),
    ('Certificate', 26),
]


def course_report(course_id):
    enrollments = dao.list_enrollments_by_course(course_id)
    users = dao.get_users_by_ids([e['user_id'] for e in enrollments])
    questionnaire_ids = {q['id'] for q in dao.list_questionnaires_by_course(course_id)}

    rows = []
    for enrollment in enrollments:
        user_id = enrollment['user_id']
        user = users.get(user_id) or {}
        progress = get_course_progress(user_id, course_id)
        scores = [
            s.get('score', 0)
            for s in dao.list_user_submissions(user_id, enrollment['institution_id'])
            if s.get('questionnaire_id') in questionnaire_ids
        ]
        certificate = dao.get_user_course_certificate(user_id, course_id)
        rows.append({
            'user_id': user_id,
            'name': user.get('full_name', ''),
            'email': user.get('email', ''),
            'status': enrollment.get('status', ''),
            'progress': progress['percentage'],
            'completed_lessons': progress['completed_lessons'],
            'best_score': max(scores) if scores else None,
            'approved_activities': dao.count_approved_submissions(user_id, course_id),
            'certificate_number': certificate.get('certificate_number') if certificate else None,
        })
    rows.sort(key=lambda r: r['name'].lower())
    return rows


def course_report_xlsx(course, rows):
    wb = Workbook()
    ws = wb.active
    ws.title = (course.get('title') or 'Report')[:31]

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color='E0E0E0', end_color='E0E0E0', fill_type='solid')
    for index, (title, width) in enumerate(REPORT_COLUMNS, start=1):
        cell = ws.cell(row=1, column=index, value=title)
        cell.font = header_font
        cell.fill = header_fill
        ws.column_dimensions[cell.column_letter].width = width

    for row in rows:
        ws.append([
            row['name'],
            row['email'],
            row['status'],
            row['progress'],
            row['completed_lessons'],
            row['best_score'] if row['best_score'] is not None else '-',
            row['approved_activities'],
            row['certificate_number'] or '-',
        ])

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
