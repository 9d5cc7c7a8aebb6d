"""Exam authoring: exams, their ordered questions and teacher listings."""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from examroom.imaging import compress_image
from examroom.models import (
    QUESTION_MCQ,
    QUESTION_TYPES,
    QUESTION_WRITTEN,
    Answer,
    Exam,
    Profile,
    Question,
    Submission,
)
from examroom.storage import QUESTION_IMAGES, question_image_key
from examroom.utils import sanitize_plain, sanitize_question_text

logger = logging.getLogger(__name__)

MAX_QUESTION_MARKS = 100


class ExamValidationError(ValueError):
    """A required field is missing or an authoring rule is broken."""


@dataclass
class QuestionInput:
    type: str
    question_text: str
    marks: int = 1
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    solution: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class ExamInput:
    title: str
    duration_minutes: int
    description: Optional[str] = None
    questions: List[QuestionInput] = field(default_factory=list)


def _clean_details(title: str, description: Optional[str], duration_minutes) -> dict:
    title = sanitize_plain(title or "")
    if not title:
        raise ExamValidationError("Exam title is required.")
    try:
        duration = int(duration_minutes)
    except (TypeError, ValueError):
        raise ExamValidationError("Duration must be a whole number of minutes.")
    if duration < 1:
        raise ExamValidationError("Duration must be at least 1 minute.")
    description = sanitize_plain(description) if description else None
    return {"title": title, "description": description or None, "duration_minutes": duration}


def _clean_question(data: QuestionInput, number: Optional[int] = None) -> dict:
    """Validate one question and return the column values to store.

    Options and the correct answer are trimmed here; they are compared by
    exact equality when a submission is scored.
    """
    label = f"Question {number}: " if number else ""
    if data.type not in QUESTION_TYPES:
        raise ExamValidationError(f"{label}type must be one of {', '.join(QUESTION_TYPES)}.")

    text = sanitize_question_text(data.question_text or "")
    if not text:
        raise ExamValidationError(f"{label}question text is required.")

    try:
        marks = int(data.marks)
    except (TypeError, ValueError):
        raise ExamValidationError(f"{label}marks must be a whole number.")
    if marks < 1:
        raise ExamValidationError(f"{label}marks must be at least 1.")
    if marks > MAX_QUESTION_MARKS:
        raise ExamValidationError(f"{label}marks cannot exceed {MAX_QUESTION_MARKS}.")

    options = None
    correct_answer = None
    if data.type == QUESTION_MCQ:
        options = [o.strip() for o in (data.options or []) if o and o.strip()]
        if len(options) < 2:
            raise ExamValidationError(f"{label}multiple choice questions need at least two options.")
        if len(set(options)) != len(options):
            raise ExamValidationError(f"{label}options must all be different.")
        correct_answer = (data.correct_answer or "").strip()
        if not correct_answer:
            raise ExamValidationError(f"{label}select the correct answer.")
        if correct_answer not in options:
            raise ExamValidationError(f"{label}the correct answer must be one of the options.")

    solution = sanitize_question_text(data.solution) if data.solution else None
    return {
        "type": data.type,
        "question_text": text,
        "marks": marks,
        "options": options,
        "correct_answer": correct_answer,
        "solution": solution or None,
        "image_url": data.image_url or None,
    }


def create_exam(session: Session, owner_id: int, data: ExamInput, publish: bool = False) -> Exam:
    """Create an exam and its questions in one transaction.

    Everything is validated before anything is written, so a bad question
    leaves no partial exam behind.
    """
    details = _clean_details(data.title, data.description, data.duration_minutes)
    questions = [_clean_question(q, i) for i, q in enumerate(data.questions, start=1)]
    if publish and not questions:
        raise ExamValidationError("Add at least one question before publishing.")

    exam = Exam(owner_id=owner_id, is_published=publish, **details)
    session.add(exam)
    session.flush()
    for order, values in enumerate(questions, start=1):
        session.add(Question(exam_id=exam.id, question_order=order, **values))
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s created by profile %s with %d questions", exam.id, owner_id, len(questions))
    return exam


def get_owned_exam(session: Session, exam_id: int, owner_id: int) -> Optional[Exam]:
    exam = session.get(Exam, exam_id)
    if exam is None or exam.owner_id != owner_id:
        return None
    return exam


def get_published_exam(session: Session, exam_id: int) -> Optional[Exam]:
    exam = session.get(Exam, exam_id)
    if exam is None or not exam.is_published:
        return None
    return exam


def list_questions(session: Session, exam_id: int) -> List[Question]:
    return session.exec(
        select(Question).where(Question.exam_id == exam_id).order_by(Question.question_order)
    ).all()


def total_marks(questions: List[Question]) -> int:
    return sum(q.marks for q in questions)


def update_exam_details(
    session: Session, exam: Exam, title: str, description: Optional[str], duration_minutes
) -> Exam:
    for key, value in _clean_details(title, description, duration_minutes).items():
        setattr(exam, key, value)
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def question_has_answers(session: Session, question_id: int) -> bool:
    return session.exec(select(Answer).where(Answer.question_id == question_id)).first() is not None


def add_question(session: Session, exam: Exam, data: QuestionInput) -> Question:
    values = _clean_question(data)
    last = session.exec(
        select(func.max(Question.question_order)).where(Question.exam_id == exam.id)
    ).one()
    question = Question(exam_id=exam.id, question_order=(last or 0) + 1, **values)
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def update_question(session: Session, question: Question, data: QuestionInput) -> Question:
    """Update a question in place.

    Once students have answered it, only the wording, solution and image may
    change: type, options, correct answer and marks are what existing
    answers were scored against.
    """
    values = _clean_question(data)
    if data.image_url is None:
        values.pop("image_url")
    if question_has_answers(session, question.id):
        locked = ("type", "marks", "options", "correct_answer")
        if any(getattr(question, key) != values[key] for key in locked):
            raise ExamValidationError(
                "Cannot change type, options, answer or marks after students have submitted answers."
            )
    for key, value in values.items():
        setattr(question, key, value)
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def _renumber(session: Session, exam_id: int) -> None:
    for order, q in enumerate(list_questions(session, exam_id), start=1):
        if q.question_order != order:
            q.question_order = order
            session.add(q)


def exam_has_open_attempts(session: Session, exam_id: int) -> bool:
    return session.exec(
        select(Submission).where(Submission.exam_id == exam_id, Submission.is_submitted == False)  # noqa: E712
    ).first() is not None


def delete_question(session: Session, question: Question) -> None:
    if question_has_answers(session, question.id):
        raise ExamValidationError("Cannot delete questions after students have submitted answers.")
    if exam_has_open_attempts(session, question.exam_id):
        raise ExamValidationError("Cannot delete questions while students are taking this exam.")
    exam_id = question.exam_id
    session.delete(question)
    session.flush()
    _renumber(session, exam_id)
    session.commit()


def move_question(session: Session, question: Question, offset: int) -> List[Question]:
    """Swap a question with its neighbour ``offset`` places away (+1 / -1)."""
    questions = list_questions(session, question.exam_id)
    index = next(i for i, q in enumerate(questions) if q.id == question.id)
    target = index + offset
    if 0 <= target < len(questions):
        other = questions[target]
        question.question_order, other.question_order = other.question_order, question.question_order
        session.add(question)
        session.add(other)
        session.commit()
    return list_questions(session, question.exam_id)


def set_question_image(session: Session, question: Question, storage, data: bytes) -> Question:
    """Compress ``data`` and attach it to the question as its image.

    Raises:
        ImageDecodeError: if the upload is not an image.
        StorageError: if the object store rejects the write.
    """
    image = compress_image(data)
    key = question_image_key(question.exam_id, question.id, int(time.time() * 1000))
    storage.upload(QUESTION_IMAGES, key, image.data)
    question.image_url = storage.public_url(QUESTION_IMAGES, key)
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def remove_question_image(session: Session, question: Question) -> Question:
    question.image_url = None
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def toggle_publish(session: Session, exam: Exam) -> Exam:
    if not exam.is_published and not list_questions(session, exam.id):
        raise ExamValidationError("Add at least one question before publishing.")
    exam.is_published = not exam.is_published
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s %s", exam.id, "published" if exam.is_published else "unpublished")
    return exam


# --- Teacher listings ---


def _count_by_exam(session: Session, model, exam_ids: List[int]) -> dict:
    if not exam_ids:
        return {}
    rows = session.exec(
        select(model.exam_id, func.count(model.id))
        .where(model.exam_id.in_(exam_ids))
        .group_by(model.exam_id)
    ).all()
    return dict(rows)


def list_teacher_exams(session: Session, owner_id: int) -> List[dict]:
    exams = session.exec(
        select(Exam).where(Exam.owner_id == owner_id).order_by(Exam.created_at.desc(), Exam.id.desc())
    ).all()
    ids = [e.id for e in exams]
    question_counts = _count_by_exam(session, Question, ids)
    submission_counts = _count_by_exam(session, Submission, ids)
    return [
        {
            "exam": e,
            "question_count": question_counts.get(e.id, 0),
            "submission_count": submission_counts.get(e.id, 0),
        }
        for e in exams
    ]


def teacher_dashboard_stats(session: Session, owner_id: int) -> dict:
    exams = list_teacher_exams(session, owner_id)
    published = sum(1 for row in exams if row["exam"].is_published)
    return {
        "total_exams": len(exams),
        "published_exams": published,
        "draft_exams": len(exams) - published,
        "total_submissions": sum(row["submission_count"] for row in exams),
        "recent_exams": exams[:5],
    }


def _written_progress(session: Session, submission_id: int) -> tuple:
    rows = session.exec(
        select(Answer.marks_obtained)
        .join(Question, Question.id == Answer.question_id)
        .where(Answer.submission_id == submission_id, Question.type == QUESTION_WRITTEN)
    ).all()
    return len(rows), sum(1 for marks in rows if marks == 0)


def list_exam_submissions(session: Session, exam: Exam) -> List[dict]:
    """Submissions for one exam, newest first, with grading progress.

    A written answer still at 0 marks counts as ungraded.
    """
    rows = session.exec(
        select(Submission, Profile)
        .join(Profile, Profile.id == Submission.student_id)
        .where(Submission.exam_id == exam.id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
    ).all()
    result = []
    for submission, student in rows:
        written_count, ungraded_count = _written_progress(session, submission.id)
        result.append(
            {
                "submission": submission,
                "student": student,
                "written_count": written_count,
                "ungraded_count": ungraded_count,
            }
        )
    return result


def list_teacher_submissions(session: Session, owner_id: int) -> List[dict]:
    rows = session.exec(
        select(Submission, Exam, Profile)
        .join(Exam, Exam.id == Submission.exam_id)
        .join(Profile, Profile.id == Submission.student_id)
        .where(Exam.owner_id == owner_id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
    ).all()
    return [
        {"submission": submission, "exam": exam, "student": student}
        for submission, exam, student in rows
    ]
