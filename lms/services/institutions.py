"""Institutions, memberships and member import."""

import csv
import io
import logging
import re
import secrets

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.firebase_init import get_auth
from lms.firestore_models import Institution, UserInstitution, validate_timezone
from lms.permissions import Role

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
MEMBER_ROLES = (Role.ADMIN.value, Role.TUTOR.value, Role.STUDENT.value)


def get_institution(institution_id):
    doc = dao.get_institution(institution_id)
    if not doc:
        raise NotFoundError('Institution not found')
    return Institution.from_dict(doc, doc['id'])


def list_institutions():
    return [Institution.from_dict(d, d['id']) for d in dao.list_institutions()]


def create_institution(name, domain, logo_url=None):
    institution = Institution(name=(name or '').strip(), domain=(domain or '').strip().lower(),
                              logo_url=logo_url)
    institution.validate()
    if dao.get_institution_by_domain(institution.domain):
        raise ValidationError(f'An institution with domain {institution.domain} already exists')
    institution.id = dao.create_institution(institution.to_dict())
    logger.info('Institution %s created (%s)', institution.id, institution.domain)
    return institution


def update_settings(institution_id, basic=None, advanced=None):
    institution = get_institution(institution_id)
    if basic:
        for key in ('require_sequential_progress', 'allow_skip_lesson'):
            if key in basic:
                institution.settings[key] = bool(basic[key])
        if basic.get('certificate_threshold') is not None:
            threshold = int(basic['certificate_threshold'])
            if not 0 <= threshold <= 100:
                raise ValidationError('Certificate threshold must be between 0 and 100')
            institution.settings['certificate_threshold'] = threshold
        if basic.get('timezone'):
            validate_timezone(basic['timezone'])
            institution.settings['timezone'] = basic['timezone']
    if advanced:
        institution.update_advanced_settings(advanced)
    dao.update_institution(institution.id, {'settings': institution.settings})
    return institution


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------

def associate_user(user_id, institution_id, role):
    """Associate a user with an institution.

    An existing association is returned, with its role updated when it
    differs.
    """
    association = UserInstitution(user_id=user_id, institution_id=institution_id,
                                  user_role=role)
    association.validate()
    if not dao.get_institution(institution_id):
        raise NotFoundError('Institution not found')

    existing = dao.get_user_institution(user_id, institution_id)
    if existing:
        current = UserInstitution.from_dict(existing, existing['id'])
        if current.user_role != role:
            current.user_role = role
            dao.update_user_institution(current.id, {'user_role': role})
            logger.info('Role of %s in %s changed to %s', user_id, institution_id, role)
        return current

    association.id = dao.create_user_institution(association.to_dict())
    logger.info('User %s associated with %s as %s', user_id, institution_id, role)
    return association


def remove_association(user_id, institution_id):
    existing = dao.get_user_institution(user_id, institution_id)
    if not existing:
        raise NotFoundError('User is not a member of this institution')
    dao.delete_user_institution(existing['id'])


def list_user_institutions(user_id):
    """The user's memberships joined with their institutions."""
    result = []
    for d in dao.list_user_institutions(user_id):
        institution = dao.get_institution(d['institution_id'])
        if not institution:
            continue
        result.append({
            'association': UserInstitution.from_dict(d, d['id']),
            'institution': Institution.from_dict(institution, institution['id']),
        })
    result.sort(key=lambda item: item['institution'].name.lower())
    return result


def list_members(institution_id, role=None):
    docs = dao.list_institution_members(institution_id, role)
    users = dao.get_users_by_ids([d['user_id'] for d in docs])
    members = []
    for d in docs:
        user = users.get(d['user_id']) or {}
        members.append({
            'association': UserInstitution.from_dict(d, d['id']),
            'email': user.get('email', ''),
            'full_name': user.get('full_name', ''),
        })
    members.sort(key=lambda m: (m['association'].user_role, m['full_name'].lower()))
    return members


# ---------------------------------------------------------------------------
# Member import
# ---------------------------------------------------------------------------

def member_template():
    """An XLSX workbook with the import columns and an example row."""
    wb = Workbook()
    ws = wb.active
    ws.title = 'Members'

    ws['A1'] = 'email'
    ws['B1'] = 'name'
    ws['C1'] = 'role (admin/tutor/student)'

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color='E0E0E0', end_color='E0E0E0', fill_type='solid')
    for col in ['A', 'B', 'C']:
        ws[f'{col}1'].font = header_font
        ws[f'{col}1'].fill = header_fill
        ws.column_dimensions[col].width = 36

    example_font = Font(italic=True, color='888888')
    ws['A2'] = 'student@example.com'
    ws['B2'] = 'Jane Doe'
    ws['C2'] = 'student'
    for col in ['A', 'B', 'C']:
        ws[f'{col}2'].font = example_font

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def read_member_rows(filename, stream):
    """Yield (row_number, email, name, role) from a CSV or XLSX upload."""
    if filename.lower().endswith('.xlsx'):
        ws = load_workbook(stream, read_only=True).active
        for row_num, row in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
            if not row or not row[0]:
                continue
            cells = [str(c).strip() if c is not None else '' for c in row[:3]]
            cells += [''] * (3 - len(cells))
            yield row_num, cells[0], cells[1], cells[2]
    elif filename.lower().endswith('.csv'):
        text = io.TextIOWrapper(stream, encoding='utf-8-sig')
        for row_num, row in enumerate(csv.DictReader(text), start=2):
            row = {(k or '').strip().lower(): (v or '').strip() for k, v in row.items()}
            if not row.get('email'):
                continue
            yield row_num, row['email'], row.get('name', ''), row.get('role', '')
    else:
        raise ValidationError('Upload a .csv or .xlsx file')


def import_members(institution_id, rows):
    """Create missing users and associate every row with the institution.

    Row failures are collected in the returned summary, never raised.
    """
    summary = {'created': 0, 'associated': 0, 'errors': []}
    auth = get_auth()

    for row_num, email, name, role in rows:
        email = email.lower()
        role = (role or Role.STUDENT.value).lower()
        if not EMAIL_RE.match(email):
            summary['errors'].append(f'Row {row_num}: invalid email "{email}"')
            continue
        if role not in MEMBER_ROLES:
            summary['errors'].append(f'Row {row_num}: invalid role "{role}"')
            continue

        user = dao.get_user_by_email(email)
        if not user:
            if not name:
                summary['errors'].append(f'Row {row_num}: name is required for new user {email}')
                continue
            try:
                record = auth.create_user(email=email, password=secrets.token_urlsafe(12),
                                          display_name=name)
            except Exception as e:
                logger.warning('Could not create auth user %s: %s', email, e)
                summary['errors'].append(f'Row {row_num}: could not create {email} ({e})')
                continue
            dao.create_user(record.uid, {'email': email, 'full_name': name, 'role': role})
            user = {'id': record.uid}
            summary['created'] += 1

        try:
            associate_user(user['id'], institution_id, role)
            summary['associated'] += 1
        except (ValidationError, NotFoundError) as e:
            summary['errors'].append(f'Row {row_num}: {e}')

    logger.info('Member import into %s: %d created, %d associated, %d errors',
                institution_id, summary['created'], summary['associated'],
                len(summary['errors']))
    return summary
