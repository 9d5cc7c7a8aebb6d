"""SQLModel models for exams, questions, submissions and answers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from examroom.utils import utcnow

ROLE_TEACHER = "teacher"
ROLE_STUDENT = "student"
ROLES = (ROLE_TEACHER, ROLE_STUDENT)

QUESTION_MCQ = "mcq"
QUESTION_WRITTEN = "written"
QUESTION_TYPES = (QUESTION_MCQ, QUESTION_WRITTEN)


def _utc_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class Profile(SQLModel, table=True):
    """An account that can sign in as either a teacher or a student."""

    __table_args__ = (UniqueConstraint("email", name="uq_profile_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str
    full_name: Optional[str] = None
    role: str = Field(default=ROLE_STUDENT)  # "teacher" | "student"
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="profile.id", index=True)
    title: str
    description: Optional[str] = None
    duration_minutes: int
    is_published: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class Question(SQLModel, table=True):
    """A question belonging to exactly one exam.

    ``options`` and ``correct_answer`` are only set for mcq questions.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_order: int
    type: str = Field(default=QUESTION_MCQ)  # "mcq" | "written"
    question_text: str
    image_url: Optional[str] = None
    options: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    correct_answer: Optional[str] = None
    marks: int = Field(default=1)
    solution: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class Submission(SQLModel, table=True):
    """One student's single attempt at one exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_submission_exam_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    student_id: int = Field(foreign_key="profile.id", index=True)
    started_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    submitted_at: Optional[datetime] = Field(default=None, sa_column=_utc_column(nullable=True))
    total_marks: int = Field(default=0)
    is_submitted: bool = Field(default=False)


class Answer(SQLModel, table=True):
    """Answer to one question within a submission (one row per pair)."""

    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_answer_submission_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    answer_text: Optional[str] = None
    answer_image_url: Optional[str] = None
    marks_obtained: int = Field(default=0)
    is_correct: Optional[bool] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
