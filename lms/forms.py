from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileAllowed, FileRequired, MultipleFileField
from wtforms import (StringField, PasswordField, TextAreaField, SelectField, IntegerField,
                     SubmitField, BooleanField, DateTimeLocalField)
from wtforms.validators import DataRequired, Email, Length, EqualTo, Optional, NumberRange, URL

from lms.firestore_models import CONTENT_TYPES, CriteriaType


class RegistrationForm(FlaskForm):
    full_name = StringField('Full name', validators=[DataRequired(message='Enter your name'), Length(min=2, max=120)])
    email = StringField('Email', validators=[DataRequired(message='Enter your email'), Email(message='Enter a valid email address')])
    password = PasswordField('Password', validators=[DataRequired(message='Enter a password'), Length(min=6, message='Use at least 6 characters')])
    confirm_password = PasswordField('Confirm password', validators=[DataRequired(), EqualTo('password', message='Passwords do not match')])
    submit = SubmitField('Create account')


class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(message='Enter your email'), Email(message='Enter a valid email address')])
    password = PasswordField('Password', validators=[DataRequired(message='Enter your password')])
    remember_id = BooleanField('Remember email')
    submit = SubmitField('Sign in')


class ProfileForm(FlaskForm):
    full_name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    nickname = StringField('Nickname', validators=[Optional(), Length(max=80)])
    phone = StringField('Phone', validators=[Optional(), Length(max=20)])
    bio = TextAreaField('Bio', validators=[Optional(), Length(max=500)])
    profile_image = FileField('Profile image', validators=[FileAllowed(['png', 'jpg', 'jpeg'], 'Images only')])
    submit = SubmitField('Save')


class InstitutionForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    domain = StringField('Domain', validators=[DataRequired(), Length(max=253)])
    logo_url = StringField('Logo URL', validators=[Optional(), URL()])
    submit = SubmitField('Save')


class InstitutionSettingsForm(FlaskForm):
    require_sequential_progress = BooleanField('Require sequential progress')
    allow_skip_lesson = BooleanField('Allow skipping lessons')
    certificate_threshold = IntegerField('Certificate threshold (%)', validators=[DataRequired(), NumberRange(0, 100)])
    timezone = StringField('Timezone', validators=[Optional(), Length(max=64)])
    risk_high = IntegerField('High risk below (%)', validators=[Optional()])
    risk_medium = IntegerField('Medium risk below (%)', validators=[Optional()])
    participation_high = IntegerField('High participation from (%)', validators=[Optional()])
    participation_medium = IntegerField('Medium participation from (%)', validators=[Optional()])
    rating_excellent = IntegerField('Excellent from', validators=[Optional()])
    rating_good = IntegerField('Good from', validators=[Optional()])
    rating_average = IntegerField('Average from', validators=[Optional()])
    rating_below_average = IntegerField('Below average from', validators=[Optional()])
    inactivity_threshold = IntegerField('Inactive after (days)', validators=[Optional()])
    profile_completeness = IntegerField('Profile completeness (%)', validators=[Optional()])
    submit = SubmitField('Save settings')

    def advanced_settings(self):
        def pick(**fields):
            return {k: f.data for k, f in fields.items() if f.data is not None}
        settings = {
            'risk_levels': pick(high=self.risk_high, medium=self.risk_medium),
            'participation_levels': pick(high=self.participation_high, medium=self.participation_medium),
            'performance_ratings': pick(excellent=self.rating_excellent, good=self.rating_good,
                                        average=self.rating_average,
                                        below_average=self.rating_below_average),
        }
        settings = {k: v for k, v in settings.items() if v}
        if self.inactivity_threshold.data is not None:
            settings['inactivity_threshold'] = self.inactivity_threshold.data
        if self.profile_completeness.data is not None:
            settings['profile_completeness'] = self.profile_completeness.data
        return settings


class MemberForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    full_name = StringField('Name (for new users)', validators=[Optional(), Length(max=120)])
    role = SelectField('Role', choices=[('student', 'Student'), ('tutor', 'Tutor'), ('admin', 'Administrator')])
    submit = SubmitField('Add member')


class MemberImportForm(FlaskForm):
    file = FileField('CSV or XLSX file', validators=[FileRequired(), FileAllowed(['csv', 'xlsx'], 'CSV or XLSX only')])
    submit = SubmitField('Import')


class CourseForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(message='Enter a title'), Length(max=200)])
    description = TextAreaField('Description', validators=[Optional()])
    cover_image_url = StringField('Cover image URL', validators=[Optional(), URL()])
    is_active = BooleanField('Active', default=True)
    submit = SubmitField('Save')


class ModuleForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    submit = SubmitField('Save')


class LessonForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description', validators=[Optional()])
    submit = SubmitField('Save')


class ContentForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    type = SelectField('Type', choices=[(t, t.upper() if t == 'pdf' else t.capitalize()) for t in CONTENT_TYPES])
    url = StringField('URL or SCORM id', validators=[Optional(), Length(max=1000)])
    body = TextAreaField('Text', validators=[Optional()])
    submit = SubmitField('Save')


class LessonFileForm(FlaskForm):
    kind = SelectField('Kind', choices=[('pdf', 'PDF'), ('audio', 'Audio (MP3)'), ('materials', 'Support material')])
    file = FileField('File', validators=[FileRequired()])
    submit = SubmitField('Upload')


class ScormUploadForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    file = FileField('SCORM package (.zip)', validators=[FileRequired(), FileAllowed(['zip'], 'ZIP files only')])
    submit = SubmitField('Upload')


class QuestionnaireForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    max_attempts = IntegerField('Maximum attempts', default=3, validators=[DataRequired(), NumberRange(min=1)])
    passing_score = IntegerField('Passing score (%)', default=70, validators=[DataRequired(), NumberRange(0, 100)])
    submit = SubmitField('Save')


class QuestionForm(FlaskForm):
    text = TextAreaField('Question', validators=[DataRequired()])
    options = TextAreaField('Options (one per line)', validators=[DataRequired()])
    correct_index = IntegerField('Correct option number', default=1, validators=[DataRequired(), NumberRange(min=1)])
    submit = SubmitField('Add question')


class ActivityForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Instructions', validators=[Optional()])
    due_date = DateTimeLocalField('Due date', format='%Y-%m-%dT%H:%M', validators=[Optional()])
    allowed_file_types = StringField('Allowed extensions (comma separated)', validators=[Optional()])
    max_files = IntegerField('Maximum files', default=5, validators=[DataRequired(), NumberRange(1, 20)])
    submit = SubmitField('Save')


class ActivitySubmissionForm(FlaskForm):
    files = MultipleFileField('Files')
    submit = SubmitField('Submit')


class ReviewForm(FlaskForm):
    action = SelectField('Decision', choices=[('approve', 'Approve'), ('reject', 'Reject')])
    feedback = TextAreaField('Feedback', validators=[Optional(), Length(max=2000)])
    submit = SubmitField('Save review')


class AchievementForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=100)])
    description = TextAreaField('Description', validators=[DataRequired(), Length(max=500)])
    icon_url = StringField('Icon URL', validators=[DataRequired()])
    criteria_type = SelectField('Criteria', choices=[(c, c.replace('_', ' ').title()) for c in CriteriaType.values()])
    criteria_value = IntegerField('Criteria value', validators=[DataRequired(), NumberRange(1, 10000)])
    is_active = BooleanField('Active', default=True)
    submit = SubmitField('Save')


class ClassForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    submit = SubmitField('Save')


class PostForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(message='Enter a title'), Length(min=3, max=200)])
    content = TextAreaField('Content', validators=[DataRequired(message='Enter the content'), Length(min=10, max=50000)])
    save_as_draft = BooleanField('Save as draft')
    submit = SubmitField('Publish')


class CommentForm(FlaskForm):
    content = TextAreaField('Comment', validators=[DataRequired(message='Enter a comment'), Length(max=2000)])
    submit = SubmitField('Comment')
