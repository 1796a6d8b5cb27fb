"""
Firestore document models using Python dataclasses.

Each model includes:
  - An `id` field for the Firestore document ID
  - A `to_dict()` instance method for serialization
  - A `from_dict(data, doc_id)` classmethod for deserialization
  - The small invariant checks that guard its mutations

Datetime fields are kept as native datetime objects since Firestore
handles them natively.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lms.errors import ValidationError, InvalidTransitionError, NotFoundError, require


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

def _parse_datetime(value) -> Optional[datetime]:
    """Convert a value to datetime. Accepts datetime objects, ISO-format
    strings, and Firestore DatetimeWithNanoseconds objects."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, str):
        value = value.replace("Z", "+00:00")
        try:
            return _parse_datetime(datetime.fromisoformat(value))
        except (ValueError, TypeError):
            return None
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    value = _parse_datetime(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


# ===========================================================================
# 1. Institution
# ===========================================================================

DOMAIN_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9-]{1,61}[a-zA-Z0-9](?:\.[a-zA-Z]{2,})+$')

DEFAULT_SETTINGS = {
    'require_sequential_progress': False,
    'allow_skip_lesson': False,
    'certificate_threshold': 100,
    'risk_levels': {'high': 30, 'medium': 60},
    'participation_levels': {'high': 80, 'medium': 50},
    'performance_ratings': {'excellent': 90, 'good': 75, 'average': 60, 'below_average': 40},
    'inactivity_threshold': 14,
    'profile_completeness': 80,
    'timezone': 'UTC',
}


def validate_advanced_settings(settings: Dict[str, Any]) -> None:
    """Check the threshold settings an admin can tune."""
    if not settings:
        raise ValidationError('Advanced settings are required')

    risk = settings.get('risk_levels')
    if risk:
        high, medium = risk.get('high'), risk.get('medium')
        if high is not None and medium is not None and high >= medium:
            raise ValidationError('High risk threshold must be lower than medium risk threshold')
        for name, value in (('High', high), ('Medium', medium)):
            if value is not None and not 0 <= value <= 100:
                raise ValidationError(f'{name} risk threshold must be between 0 and 100')

    participation = settings.get('participation_levels')
    if participation:
        high, medium = participation.get('high'), participation.get('medium')
        if high is not None and medium is not None and high <= medium:
            raise ValidationError('High participation threshold must be higher than medium participation threshold')
        for name, value in (('High', high), ('Medium', medium)):
            if value is not None and value < 0:
                raise ValidationError(f'{name} participation threshold must be positive')

    ratings = settings.get('performance_ratings')
    if ratings:
        order = ['excellent', 'good', 'average', 'below_average']
        for name in order:
            value = ratings.get(name)
            if value is not None and not 0 <= value <= 100:
                raise ValidationError(f'{name} performance rating must be between 0 and 100')
        for upper, lower in zip(order, order[1:]):
            a, b = ratings.get(upper), ratings.get(lower)
            if a is not None and b is not None and a <= b:
                raise ValidationError(f'{upper} rating threshold must be higher than {lower} rating threshold')

    inactivity = settings.get('inactivity_threshold')
    if inactivity is not None and not 1 <= inactivity <= 365:
        raise ValidationError('Inactivity threshold must be between 1 and 365 days')

    completeness = settings.get('profile_completeness')
    if completeness is not None and not 0 <= completeness <= 100:
        raise ValidationError('Profile completeness threshold must be between 0 and 100')

    if settings.get('timezone') is not None:
        validate_timezone(settings['timezone'])


def validate_timezone(name) -> None:
    """Institution clocks use IANA names such as America/Sao_Paulo."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, TypeError, ValueError):
        raise ValidationError(f'Unknown timezone: {name}')


@dataclass
class Institution:
    id: Optional[str] = None
    name: str = ""
    domain: str = ""
    logo_url: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        require(self.name, 'Institution name cannot be empty')
        require(self.domain, 'Institution domain cannot be empty')
        if not DOMAIN_RE.match(self.domain):
            raise ValidationError('Invalid domain format')

    def setting(self, key):
        return self.settings.get(key, DEFAULT_SETTINGS.get(key))

    def update_advanced_settings(self, advanced: Dict[str, Any]) -> None:
        validate_advanced_settings(advanced)
        merged = dict(self.settings)
        for key, value in advanced.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
        self.settings = merged
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "domain": self.domain,
            "logo_url": self.logo_url,
            "settings": self.settings,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Institution:
        settings = dict(DEFAULT_SETTINGS)
        settings.update(data.get("settings") or {})
        return cls(
            id=doc_id or data.get("id"),
            name=data.get("name", ""),
            domain=data.get("domain", ""),
            logo_url=data.get("logo_url"),
            settings=settings,
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


# ===========================================================================
# 2. User / UserInstitution
# ===========================================================================

PROFILE_FIELDS = ("full_name", "email", "phone", "nickname", "bio", "profile_image")


@dataclass
class User:
    id: Optional[str] = None          # Firestore document ID == Firebase Auth UID
    email: str = ""
    full_name: str = ""
    role: str = "student"             # global role; only 'root' has meaning outside an institution
    nickname: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.nickname or self.full_name or self.email.split('@')[0]

    def is_root(self) -> bool:
        return self.role == "root"

    def profile_completion(self) -> int:
        """Percentage of the profile fields that are filled in."""
        filled = sum(1 for f in PROFILE_FIELDS if getattr(self, f))
        return round(filled / len(PROFILE_FIELDS) * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "nickname": self.nickname,
            "phone": self.phone,
            "bio": self.bio,
            "profile_image": self.profile_image,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> User:
        return cls(
            id=doc_id or data.get("id"),
            email=data.get("email", ""),
            full_name=data.get("full_name", ""),
            role=data.get("role", "student"),
            nickname=data.get("nickname"),
            phone=data.get("phone"),
            bio=data.get("bio"),
            profile_image=data.get("profile_image"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class UserInstitution:
    id: Optional[str] = None
    user_id: str = ""
    institution_id: str = ""
    user_role: str = "student"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        from lms.permissions import Role
        require(self.user_id, 'User ID cannot be empty')
        require(self.institution_id, 'Institution ID cannot be empty')
        if self.user_role not in Role.values() or self.user_role == Role.ROOT.value:
            raise ValidationError(f'Invalid institution role: {self.user_role}')

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "user_role": self.user_role,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> UserInstitution:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            institution_id=data.get("institution_id", ""),
            user_role=data.get("user_role", "student"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class UserAccessHistory:
    id: Optional[str] = None
    user_id: str = ""
    institution_id: str = ""
    last_access_date: Optional[datetime] = None
    consecutive_days: int = 1
    total_access_days: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def days_since_last_access(self, today: datetime) -> int:
        return (start_of_day(today) - start_of_day(self.last_access_date)).days

    def was_accessed_today(self, today: datetime) -> bool:
        return self.days_since_last_access(today) == 0

    def record_access(self, today: datetime) -> None:
        gap = self.days_since_last_access(today)
        if gap == 0:
            return
        self.consecutive_days = self.consecutive_days + 1 if gap == 1 else 1
        self.total_access_days += 1
        self.last_access_date = start_of_day(today)
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "last_access_date": self.last_access_date,
            "consecutive_days": self.consecutive_days,
            "total_access_days": self.total_access_days,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> UserAccessHistory:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            institution_id=data.get("institution_id", ""),
            last_access_date=_parse_datetime(data.get("last_access_date")),
            consecutive_days=data.get("consecutive_days", 1),
            total_access_days=data.get("total_access_days", 1),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


# ===========================================================================
# 3. Course structure
# ===========================================================================

CONTENT_TYPES = ("video", "audio", "podcast", "pdf", "text", "scorm")


@dataclass
class Course:
    id: Optional[str] = None
    institution_id: str = ""
    title: str = ""
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "institution_id": self.institution_id,
            "title": self.title,
            "description": self.description,
            "cover_image_url": self.cover_image_url,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Course:
        return cls(
            id=doc_id or data.get("id"),
            institution_id=data.get("institution_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            cover_image_url=data.get("cover_image_url"),
            is_active=data.get("is_active", True),
            created_by=data.get("created_by"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class Lesson:
    id: Optional[str] = None
    module_id: str = ""
    course_id: str = ""
    institution_id: str = ""
    title: str = ""
    description: Optional[str] = None
    order: int = 0
    pdf_urls: List[str] = field(default_factory=list)
    audio_url: Optional[str] = None
    support_materials: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Lesson:
        return cls(
            id=doc_id or data.get("id"),
            module_id=data.get("module_id", ""),
            course_id=data.get("course_id", ""),
            institution_id=data.get("institution_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            order=data.get("order", 0),
            pdf_urls=list(data.get("pdf_urls") or []),
            audio_url=data.get("audio_url"),
            support_materials=list(data.get("support_materials") or []),
        )


# ===========================================================================
# 4. Progress
# ===========================================================================

class ProgressStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


@dataclass
class ContentProgress:
    content_id: str
    status: str = ProgressStatus.NOT_STARTED.value
    progress_percentage: float = 0
    time_spent: int = 0               # seconds
    last_position: Optional[float] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED.value

    def update_progress(self, percentage, time_spent=None, last_position=None) -> None:
        if percentage < 0 or percentage > 100:
            raise ValidationError('Progress percentage must be between 0 and 100')
        if time_spent is not None:
            if time_spent < 0:
                raise ValidationError('Time spent cannot be negative')
            self.time_spent += int(time_spent)
        if last_position is not None:
            self.last_position = last_position
        # progress on a finished content never regresses
        if not self.is_completed():
            self.progress_percentage = percentage
            if percentage >= 100:
                self.mark_completed()
            elif percentage > 0:
                self.status = ProgressStatus.IN_PROGRESS.value
        self.updated_at = _now()

    def mark_completed(self) -> None:
        self.status = ProgressStatus.COMPLETED.value
        self.progress_percentage = 100
        self.completed_at = _now()
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "status": self.status,
            "progress_percentage": self.progress_percentage,
            "time_spent": self.time_spent,
            "last_position": self.last_position,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentProgress:
        return cls(
            content_id=data["content_id"],
            status=data.get("status", ProgressStatus.NOT_STARTED.value),
            progress_percentage=data.get("progress_percentage", 0),
            time_spent=data.get("time_spent", 0),
            last_position=data.get("last_position"),
            completed_at=_parse_datetime(data.get("completed_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class LessonProgress:
    id: Optional[str] = None
    user_id: str = ""
    lesson_id: str = ""
    course_id: str = ""
    institution_id: str = ""
    status: str = ProgressStatus.IN_PROGRESS.value
    contents: List[ContentProgress] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None

    @classmethod
    def start(cls, user_id, lesson_id, course_id, institution_id, content_ids) -> LessonProgress:
        require(user_id, 'User ID cannot be empty')
        require(lesson_id, 'Lesson ID cannot be empty')
        require(institution_id, 'Institution ID cannot be empty')
        if not content_ids:
            raise ValidationError(f'Lesson {lesson_id} has no contents to track progress for')
        now = _now()
        return cls(
            id=f"{user_id}_{lesson_id}",
            user_id=user_id,
            lesson_id=lesson_id,
            course_id=course_id,
            institution_id=institution_id,
            contents=[ContentProgress(content_id=c) for c in content_ids],
            started_at=now,
            last_accessed_at=now,
        )

    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED.value

    def content(self, content_id) -> ContentProgress:
        for cp in self.contents:
            if cp.content_id == content_id:
                return cp
        raise NotFoundError(f'Content with ID {content_id} not found in this lesson progress')

    def touch(self) -> None:
        self.last_accessed_at = _now()

    def update_content(self, content_id, percentage, time_spent=None, last_position=None) -> None:
        self.content(content_id).update_progress(percentage, time_spent, last_position)
        self.touch()
        self._refresh_completion()

    def _refresh_completion(self) -> None:
        if all(cp.is_completed() for cp in self.contents) and not self.is_completed():
            self.status = ProgressStatus.COMPLETED.value
            self.completed_at = _now()

    def force_complete(self) -> None:
        for cp in self.contents:
            if not cp.is_completed():
                cp.mark_completed()
        self.status = ProgressStatus.COMPLETED.value
        self.completed_at = self.completed_at or _now()
        self.touch()

    def overall_progress(self) -> float:
        if not self.contents:
            return 0
        total = sum(cp.progress_percentage for cp in self.contents)
        return round(total / len(self.contents), 2)

    def total_time_spent(self) -> int:
        return sum(cp.time_spent for cp in self.contents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "lesson_id": self.lesson_id,
            "course_id": self.course_id,
            "institution_id": self.institution_id,
            "status": self.status,
            "contents": [cp.to_dict() for cp in self.contents],
            "started_at": self.started_at or _now(),
            "completed_at": self.completed_at,
            "last_accessed_at": self.last_accessed_at or _now(),
            "time_spent": self.total_time_spent(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> LessonProgress:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            lesson_id=data.get("lesson_id", ""),
            course_id=data.get("course_id", ""),
            institution_id=data.get("institution_id", ""),
            status=data.get("status", ProgressStatus.IN_PROGRESS.value),
            contents=[ContentProgress.from_dict(c) for c in data.get("contents") or []],
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            last_accessed_at=_parse_datetime(data.get("last_accessed_at")),
        )


# ===========================================================================
# 5. Questionnaires
# ===========================================================================

@dataclass
class Question:
    id: str = ""
    text: str = ""
    options: List[str] = field(default_factory=list)
    correct_index: int = 0

    def validate(self) -> None:
        require(self.text, 'Question text cannot be empty')
        if not self.options or len(self.options) < 2:
            raise ValidationError('Question must have at least 2 options')
        if not 0 <= self.correct_index < len(self.options):
            raise ValidationError('Correct answer index must be valid')

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "options": list(self.options),
                "correct_index": self.correct_index}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Question:
        return cls(
            id=data.get("id") or uuid.uuid4().hex[:12],
            text=data.get("text", ""),
            options=list(data.get("options") or []),
            correct_index=int(data.get("correct_index", 0)),
        )


@dataclass
class Questionnaire:
    id: Optional[str] = None
    lesson_id: str = ""
    course_id: str = ""
    institution_id: str = ""
    title: str = ""
    questions: List[Question] = field(default_factory=list)
    max_attempts: int = 3
    passing_score: int = 70
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        require(self.title, 'Questionnaire title cannot be empty')
        if self.max_attempts < 1:
            raise ValidationError('Maximum attempts must be at least 1')
        if not 0 <= self.passing_score <= 100:
            raise ValidationError('Passing score must be between 0 and 100')
        for q in self.questions:
            q.validate()

    def find_question(self, question_id) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise ValidationError(f'Question with ID {question_id} not found in questionnaire')

    def add_question(self, question: Question) -> None:
        question.validate()
        self.questions.append(question)

    def remove_question(self, question_id) -> None:
        self.find_question(question_id)
        self.questions = [q for q in self.questions if q.id != question_id]

    def has_attempts_remaining(self, attempts_used: int) -> bool:
        return attempts_used < self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "course_id": self.course_id,
            "institution_id": self.institution_id,
            "title": self.title,
            "questions": [q.to_dict() for q in self.questions],
            "max_attempts": self.max_attempts,
            "passing_score": self.passing_score,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Questionnaire:
        return cls(
            id=doc_id or data.get("id"),
            lesson_id=data.get("lesson_id", ""),
            course_id=data.get("course_id", ""),
            institution_id=data.get("institution_id", ""),
            title=data.get("title", ""),
            questions=[Question.from_dict(q) for q in data.get("questions") or []],
            max_attempts=data.get("max_attempts", 3),
            passing_score=data.get("passing_score", 70),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class QuestionnaireSubmission:
    id: Optional[str] = None
    questionnaire_id: str = ""
    user_id: str = ""
    institution_id: str = ""
    course_id: str = ""
    attempt: int = 1
    answers: List[Dict[str, Any]] = field(default_factory=list)
    score: int = 0
    passed: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @staticmethod
    def calculate_score(answers) -> int:
        if not answers:
            return 0
        correct = sum(1 for a in answers if a.get("is_correct"))
        # round half up, not Python's banker's rounding
        return int(correct * 100 / len(answers) + 0.5)

    @classmethod
    def grade(cls, questionnaire: Questionnaire, user_id, institution_id, attempt,
              selections, started_at=None) -> QuestionnaireSubmission:
        """Build a graded submission from ``{question_id: selected_index}``."""
        require(questionnaire.id, 'Questionnaire ID cannot be empty')
        require(user_id, 'User ID cannot be empty')
        require(institution_id, 'Institution ID cannot be empty')
        if attempt < 1:
            raise ValidationError('Attempt must be a positive number')
        if not selections:
            raise ValidationError('Questions cannot be empty')

        for question_id in selections:
            questionnaire.find_question(question_id)

        # every question counts; unanswered ones are wrong
        answers = []
        for question in questionnaire.questions:
            selected = selections.get(question.id)
            answers.append({
                "question_id": question.id,
                "selected_index": selected,
                "correct_index": question.correct_index,
                "is_correct": selected is not None and selected == question.correct_index,
            })
        score = cls.calculate_score(answers)
        now = _now()
        return cls(
            id=f"{questionnaire.id}_{user_id}_{attempt}",
            questionnaire_id=questionnaire.id,
            user_id=user_id,
            institution_id=institution_id,
            course_id=questionnaire.course_id,
            attempt=attempt,
            answers=answers,
            score=score,
            passed=score >= questionnaire.passing_score,
            started_at=started_at or now,
            completed_at=now,
        )

    @property
    def correct_answers(self) -> int:
        return sum(1 for a in self.answers if a.get("is_correct"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionnaire_id": self.questionnaire_id,
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "course_id": self.course_id,
            "attempt": self.attempt,
            "answers": self.answers,
            "score": self.score,
            "passed": self.passed,
            "started_at": self.started_at,
            "completed_at": self.completed_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> QuestionnaireSubmission:
        return cls(
            id=doc_id or data.get("id"),
            questionnaire_id=data.get("questionnaire_id", ""),
            user_id=data.get("user_id", ""),
            institution_id=data.get("institution_id", ""),
            course_id=data.get("course_id", ""),
            attempt=data.get("attempt", 1),
            answers=list(data.get("answers") or []),
            score=data.get("score", 0),
            passed=data.get("passed", False),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
        )


# ===========================================================================
# 6. Activities
# ===========================================================================

class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ActivitySubmission:
    id: Optional[str] = None
    activity_id: str = ""
    student_id: str = ""
    institution_id: str = ""
    course_id: str = ""
    file_urls: List[str] = field(default_factory=list)
    status: str = SubmissionStatus.PENDING.value
    feedback: Optional[str] = None
    reviewed_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    def is_pending(self) -> bool:
        return self.status == SubmissionStatus.PENDING.value

    def is_approved(self) -> bool:
        return self.status == SubmissionStatus.APPROVED.value

    def is_rejected(self) -> bool:
        return self.status == SubmissionStatus.REJECTED.value

    def approve(self, tutor_id: str, feedback: Optional[str] = None) -> None:
        if not self.is_pending():
            raise InvalidTransitionError('Only pending submissions can be approved')
        self.status = SubmissionStatus.APPROVED.value
        self.reviewed_by = tutor_id
        self.feedback = feedback.strip() if feedback and feedback.strip() else None
        self.reviewed_at = _now()

    def reject(self, tutor_id: str, feedback: str) -> None:
        if not self.is_pending():
            raise InvalidTransitionError('Only pending submissions can be rejected')
        if not feedback or not feedback.strip():
            raise ValidationError('Feedback is required when rejecting a submission')
        self.status = SubmissionStatus.REJECTED.value
        self.reviewed_by = tutor_id
        self.feedback = feedback.strip()
        self.reviewed_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activity_id": self.activity_id,
            "student_id": self.student_id,
            "institution_id": self.institution_id,
            "course_id": self.course_id,
            "file_urls": self.file_urls,
            "status": self.status,
            "feedback": self.feedback,
            "reviewed_by": self.reviewed_by,
            "submitted_at": self.submitted_at or _now(),
            "reviewed_at": self.reviewed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> ActivitySubmission:
        return cls(
            id=doc_id or data.get("id"),
            activity_id=data.get("activity_id", ""),
            student_id=data.get("student_id", ""),
            institution_id=data.get("institution_id", ""),
            course_id=data.get("course_id", ""),
            file_urls=list(data.get("file_urls") or []),
            status=data.get("status", SubmissionStatus.PENDING.value),
            feedback=data.get("feedback"),
            reviewed_by=data.get("reviewed_by"),
            submitted_at=_parse_datetime(data.get("submitted_at")),
            reviewed_at=_parse_datetime(data.get("reviewed_at")),
        )


# ===========================================================================
# 7. Enrollment / Class
# ===========================================================================

class EnrollmentStatus(str, Enum):
    ENROLLED = "enrolled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class Enrollment:
    id: Optional[str] = None
    user_id: str = ""
    course_id: str = ""
    institution_id: str = ""
    class_id: Optional[str] = None
    status: str = EnrollmentStatus.ENROLLED.value
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def complete(self) -> None:
        if self.status == EnrollmentStatus.COMPLETED.value:
            raise InvalidTransitionError('Enrollment is already completed')
        if self.status == EnrollmentStatus.CANCELLED.value:
            raise InvalidTransitionError('Cannot complete a cancelled enrollment')
        self.status = EnrollmentStatus.COMPLETED.value
        self.completed_at = _now()

    def cancel(self) -> None:
        if self.status == EnrollmentStatus.CANCELLED.value:
            raise InvalidTransitionError('Enrollment is already cancelled')
        self.status = EnrollmentStatus.CANCELLED.value
        self.completed_at = None

    def reactivate(self) -> None:
        if self.status != EnrollmentStatus.CANCELLED.value:
            raise InvalidTransitionError('Only cancelled enrollments can be reactivated')
        self.status = EnrollmentStatus.ENROLLED.value
        self.completed_at = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "institution_id": self.institution_id,
            "class_id": self.class_id,
            "status": self.status,
            "enrolled_at": self.enrolled_at or _now(),
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Enrollment:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            course_id=data.get("course_id", ""),
            institution_id=data.get("institution_id", ""),
            class_id=data.get("class_id"),
            status=data.get("status", EnrollmentStatus.ENROLLED.value),
            enrolled_at=_parse_datetime(data.get("enrolled_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
        )


# ===========================================================================
# 8. Achievements
# ===========================================================================

class CriteriaType(str, Enum):
    LESSON_COMPLETION = "LESSON_COMPLETION"
    COURSE_COMPLETION = "COURSE_COMPLETION"
    QUESTIONNAIRE_COMPLETION = "QUESTIONNAIRE_COMPLETION"
    PERFECT_SCORE = "PERFECT_SCORE"
    RETRY_PERSISTENCE = "RETRY_PERSISTENCE"
    CERTIFICATE_ACHIEVED = "CERTIFICATE_ACHIEVED"
    DAILY_LOGIN = "DAILY_LOGIN"
    STUDY_STREAK = "STUDY_STREAK"
    STUDY_TIME = "STUDY_TIME"
    PROFILE_COMPLETION = "PROFILE_COMPLETION"
    FIRST_TIME_ACTIVITIES = "FIRST_TIME_ACTIVITIES"
    TIME_BASED_ACCESS = "TIME_BASED_ACCESS"
    CONTENT_TYPE_DIVERSITY = "CONTENT_TYPE_DIVERSITY"

    @classmethod
    def values(cls):
        return [c.value for c in cls]


MAX_CRITERIA_VALUE = 10000


@dataclass
class DefaultAchievement:
    id: Optional[str] = None
    name: str = ""
    description: str = ""
    icon_url: str = ""
    criteria_type: str = CriteriaType.LESSON_COMPLETION.value
    criteria_value: int = 1
    category: str = ""
    is_globally_enabled: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "icon_url": self.icon_url,
            "criteria_type": self.criteria_type,
            "criteria_value": self.criteria_value,
            "category": self.category,
            "is_globally_enabled": self.is_globally_enabled,
            "version": self.version,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> DefaultAchievement:
        return cls(
            id=doc_id or data.get("id"),
            name=data.get("name", ""),
            description=data.get("description", ""),
            icon_url=data.get("icon_url", ""),
            criteria_type=data.get("criteria_type", CriteriaType.LESSON_COMPLETION.value),
            criteria_value=data.get("criteria_value", 1),
            category=data.get("category", ""),
            is_globally_enabled=data.get("is_globally_enabled", True),
            version=data.get("version", 1),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class InstitutionAchievement:
    id: Optional[str] = None
    institution_id: str = ""
    name: str = ""
    description: str = ""
    icon_url: str = ""
    criteria_type: str = CriteriaType.LESSON_COMPLETION.value
    criteria_value: int = 1
    is_active: bool = True
    template_id: Optional[str] = None
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        require(self.institution_id, 'Institution ID cannot be empty')
        require(self.name, 'Achievement name cannot be empty')
        if len(self.name) > 100:
            raise ValidationError('Achievement name cannot exceed 100 characters')
        require(self.description, 'Achievement description cannot be empty')
        if len(self.description) > 500:
            raise ValidationError('Achievement description cannot exceed 500 characters')
        require(self.icon_url, 'Achievement icon URL cannot be empty')
        require(self.created_by, 'Created by user ID cannot be empty')
        if self.criteria_type not in CriteriaType.values():
            raise ValidationError(f'Invalid achievement criteria type: {self.criteria_type}')
        if self.criteria_value <= 0:
            raise ValidationError('Achievement criteria value must be greater than zero')
        if self.criteria_value > MAX_CRITERIA_VALUE:
            raise ValidationError(f'Achievement criteria value cannot exceed {MAX_CRITERIA_VALUE}')

    def is_criteria_met(self, value) -> bool:
        return value >= self.criteria_value

    def progress_percentage(self, value) -> int:
        if value >= self.criteria_value:
            return 100
        # 100 is reserved for a met criterion
        return min(99, round(value / self.criteria_value * 100))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "institution_id": self.institution_id,
            "name": self.name,
            "description": self.description,
            "icon_url": self.icon_url,
            "criteria_type": self.criteria_type,
            "criteria_value": self.criteria_value,
            "is_active": self.is_active,
            "template_id": self.template_id,
            "created_by": self.created_by,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> InstitutionAchievement:
        return cls(
            id=doc_id or data.get("id"),
            institution_id=data.get("institution_id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            icon_url=data.get("icon_url", ""),
            criteria_type=data.get("criteria_type", CriteriaType.LESSON_COMPLETION.value),
            criteria_value=data.get("criteria_value", 1),
            is_active=data.get("is_active", True),
            template_id=data.get("template_id"),
            created_by=data.get("created_by", ""),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class StudentAchievement:
    id: Optional[str] = None
    user_id: str = ""
    achievement_id: str = ""
    institution_id: str = ""
    progress: float = 0
    is_completed: bool = False
    awarded_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @staticmethod
    def make_id(user_id, achievement_id) -> str:
        return f"{user_id}_{achievement_id}"

    def update_progress(self, value) -> None:
        if value < 0:
            raise ValidationError('Progress cannot be negative')
        self.progress = max(self.progress, value)
        self.updated_at = _now()

    def mark_completed(self, when=None, trigger_event=None, final_count=None) -> None:
        if self.is_completed:
            raise InvalidTransitionError('Achievement already awarded')
        self.progress = 100
        self.is_completed = True
        self.awarded_at = when or _now()
        self.updated_at = _now()
        if trigger_event:
            self.metadata = {**self.metadata, "trigger_event": trigger_event,
                             "final_count": final_count}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "achievement_id": self.achievement_id,
            "institution_id": self.institution_id,
            "progress": self.progress,
            "is_completed": self.is_completed,
            "awarded_at": self.awarded_at,
            "metadata": self.metadata,
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> StudentAchievement:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            achievement_id=data.get("achievement_id", ""),
            institution_id=data.get("institution_id", ""),
            progress=data.get("progress", 0),
            is_completed=data.get("is_completed", False),
            awarded_at=_parse_datetime(data.get("awarded_at")),
            metadata=dict(data.get("metadata") or {}),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


# ===========================================================================
# 9. Certificate
# ===========================================================================

CERTIFICATE_NUMBER_RE = re.compile(r'^CERT-[0-9A-Z]+-[0-9A-Z]+$')
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


@dataclass
class Certificate:
    id: Optional[str] = None
    user_id: str = ""
    course_id: str = ""
    institution_id: str = ""
    certificate_number: str = ""
    certificate_url: str = ""
    storage_path: Optional[str] = None
    course_name: str = ""
    grade: Optional[float] = None
    hours_completed: Optional[float] = None
    issued_at: Optional[datetime] = None

    @staticmethod
    def generate_number() -> str:
        timestamp = _to_base36(int(time.time() * 1000))
        suffix = uuid.uuid4().hex[:8].upper()
        return f"CERT-{timestamp}-{suffix}"

    def is_authentic(self) -> bool:
        return bool(CERTIFICATE_NUMBER_RE.match(self.certificate_number or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "institution_id": self.institution_id,
            "certificate_number": self.certificate_number,
            "certificate_url": self.certificate_url,
            "storage_path": self.storage_path,
            "course_name": self.course_name,
            "grade": self.grade,
            "hours_completed": self.hours_completed,
            "issued_at": self.issued_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Certificate:
        return cls(
            id=doc_id or data.get("id"),
            user_id=data.get("user_id", ""),
            course_id=data.get("course_id", ""),
            institution_id=data.get("institution_id", ""),
            certificate_number=data.get("certificate_number", ""),
            certificate_url=data.get("certificate_url", ""),
            storage_path=data.get("storage_path"),
            course_name=data.get("course_name", ""),
            grade=data.get("grade"),
            hours_completed=data.get("hours_completed"),
            issued_at=_parse_datetime(data.get("issued_at")),
        )


# ===========================================================================
# 10. Social
# ===========================================================================

class PostStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


@dataclass
class Post:
    id: Optional[str] = None
    author_id: str = ""
    author_name: str = ""
    institution_id: str = ""
    title: str = ""
    content: str = ""
    status: str = PostStatus.DRAFT.value
    likes_count: int = 0
    comments_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @staticmethod
    def validate_title(title) -> str:
        title = (title or "").strip()
        if not title:
            raise ValidationError('Post title is required')
        if len(title) < 3:
            raise ValidationError('Post title must be at least 3 characters long')
        if len(title) > 200:
            raise ValidationError('Post title must not exceed 200 characters')
        return title

    @staticmethod
    def validate_content(content) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError('Post content is required')
        if len(content) < 10:
            raise ValidationError('Post content must be at least 10 characters long')
        if len(content) > 50000:
            raise ValidationError('Post content must not exceed 50,000 characters')
        return content

    def is_draft(self) -> bool:
        return self.status == PostStatus.DRAFT.value

    def is_published(self) -> bool:
        return self.status == PostStatus.PUBLISHED.value

    def publish(self) -> None:
        if not self.is_draft():
            raise InvalidTransitionError('Only draft posts can be published')
        self.status = PostStatus.PUBLISHED.value
        self.published_at = _now()
        self.updated_at = _now()

    def archive(self) -> None:
        if not self.is_published():
            raise InvalidTransitionError('Only published posts can be archived')
        self.status = PostStatus.ARCHIVED.value
        self.updated_at = _now()

    def update_content(self, title, content) -> None:
        if not self.is_draft():
            raise InvalidTransitionError('Only draft posts can be updated')
        self.title = self.validate_title(title)
        self.content = self.validate_content(content)
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author_id": self.author_id,
            "author_name": self.author_name,
            "institution_id": self.institution_id,
            "title": self.title,
            "content": self.content,
            "status": self.status,
            "likes_count": self.likes_count,
            "comments_count": self.comments_count,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
            "published_at": self.published_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Post:
        return cls(
            id=doc_id or data.get("id"),
            author_id=data.get("author_id", ""),
            author_name=data.get("author_name", ""),
            institution_id=data.get("institution_id", ""),
            title=data.get("title", ""),
            content=data.get("content", ""),
            status=data.get("status", PostStatus.DRAFT.value),
            likes_count=data.get("likes_count", 0),
            comments_count=data.get("comments_count", 0),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            published_at=_parse_datetime(data.get("published_at")),
        )


def validate_comment_content(content) -> str:
    content = (content or "").strip()
    if not content:
        raise ValidationError('Comment content is required')
    if len(content) > 2000:
        raise ValidationError('Comment content must not exceed 2,000 characters')
    return content


def validate_chat_message(text) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationError('Message cannot be empty')
    if len(text) > 2000:
        raise ValidationError('Message must not exceed 2,000 characters')
    return text
