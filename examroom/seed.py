"""Demo accounts and a sample exam for a fresh database."""

import logging

from sqlmodel import Session, select

from examroom.auth_utils import hash_password
from examroom.models import QUESTION_MCQ, QUESTION_WRITTEN, ROLE_STUDENT, ROLE_TEACHER, Profile
from examroom.services.exam_service import ExamInput, QuestionInput, create_exam

logger = logging.getLogger(__name__)

DEMO_TEACHER_EMAIL = "teacher@example.com"
DEMO_STUDENT_EMAIL = "student@example.com"
DEMO_PASSWORD = "password123"

SAMPLE_EXAM = ExamInput(
    title="Algebra basics",
    description="A short warm-up: two multiple choice questions and one written working.",
    duration_minutes=15,
    questions=[
        QuestionInput(type=QUESTION_MCQ, question_text="What is 2 + 2?", marks=1, options=["2", "4"], correct_answer="4"),
        QuestionInput(
            type=QUESTION_MCQ, question_text="Simplify x + x.", marks=1, options=["x", "2x"], correct_answer="2x"
        ),
        QuestionInput(
            type=QUESTION_WRITTEN,
            question_text="Solve 3x + 1 = 10 and show your working.",
            marks=3,
            solution="3x = 9, so x = 3.",
        ),
    ],
)


def seed_demo_data(session: Session) -> bool:
    """Create the demo teacher, student and sample exam if no profiles exist.

    Returns True when anything was written.
    """
    if session.exec(select(Profile)).first() is not None:
        return False

    teacher = Profile(
        email=DEMO_TEACHER_EMAIL,
        full_name="Demo Teacher",
        role=ROLE_TEACHER,
        password_hash=hash_password(DEMO_PASSWORD),
    )
    student = Profile(
        email=DEMO_STUDENT_EMAIL,
        full_name="Demo Student",
        role=ROLE_STUDENT,
        password_hash=hash_password(DEMO_PASSWORD),
    )
    session.add(teacher)
    session.add(student)
    session.commit()
    session.refresh(teacher)

    create_exam(session, teacher.id, SAMPLE_EXAM, publish=True)
    logger.info("Seeded demo accounts %s and %s / %s", DEMO_TEACHER_EMAIL, DEMO_STUDENT_EMAIL, DEMO_PASSWORD)
    return True
