"""SQLModel models for the exam attempt & grading engine."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.utils import utcnow

ROLE_STUDENT = "student"
ROLE_TEACHER = "teacher"
ROLE_ADMIN = "admin"
STAFF_ROLES = [ROLE_TEACHER, ROLE_ADMIN]

EXAM_TYPE_INSTANT = "instant"
EXAM_TYPE_DELAYED = "delayed"

ENTITY_TASK = "task"
ENTITY_TEXT = "text"

# all timestamps are stored as naive UTC (see app.utils.utcnow)
NAIVE_UTC = DateTime(timezone=False)


class User(SQLModel, table=True):
    """Application user that can log in and own a role (student / teacher / admin)."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    password_hash: str
    role: str = Field(default=ROLE_STUDENT)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)


class Topic(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None


class Enrollment(SQLModel, table=True):
    """Grants a student access to every exam of a topic."""

    __table_args__ = (UniqueConstraint("topic_id", "user_id", name="uq_topic_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    topic_id: int = Field(foreign_key="topic.id")
    user_id: int = Field(foreign_key="user.id")
    enrolled_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    topic_id: int = Field(foreign_key="topic.id", index=True)
    name: str
    description: Optional[str] = None
    tries_count: int = Field(default=0)  # 0 = unlimited
    duration: int = Field(default=0)  # seconds, 0 = unlimited
    type: str = Field(default=EXAM_TYPE_INSTANT)  # instant | delayed
    starts_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
    ends_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)


class Task(SQLModel, table=True):
    """Gradable task. `configuration` holds a serialized TaskConfig."""

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    task_type: str
    points: int = Field(default=0)
    configuration: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)


class TextEntity(SQLModel, table=True):
    """Free text shown between tasks of an exam."""

    __tablename__ = "examtext"

    id: Optional[int] = Field(default=None, primary_key=True)
    text: str


class ExamEntity(SQLModel, table=True):
    """One slot of an exam's ordered content: either a task or a text."""

    __table_args__ = (
        UniqueConstraint("exam_id", "task_id", name="uq_exam_task"),
        UniqueConstraint("exam_id", "text_id", name="uq_exam_text"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    entity_type: str  # task | text
    task_id: Optional[int] = Field(default=None, foreign_key="task.id")
    text_id: Optional[int] = Field(default=None, foreign_key="examtext.id")
    order_index: int


class ExamAttempt(SQLModel, table=True):
    """One timed session of a user taking an exam.

    `scoring_data` is written once, guarded by `scored_at`; `pending_review`
    mirrors whether any verdict is still on review so listings can sort on it.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    started_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    ends_at: datetime = Field(sa_type=NAIVE_UTC)
    scoring_data: dict = Field(
        default_factory=lambda: {"show_results": False, "results": {}},
        sa_column=Column(JSON, nullable=False),
    )
    scored_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
    pending_review: bool = Field(default=False)


class AttemptAnswer(SQLModel, table=True):
    """Latest answer of an attempt for one task (last write wins)."""

    __table_args__ = (UniqueConstraint("attempt_id", "task_id", name="uq_attempt_task"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id", index=True)
    task_id: int
    answer: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    saved_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
