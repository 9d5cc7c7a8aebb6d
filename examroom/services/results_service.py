"""Student-facing listings: available exams, dashboard and results."""

from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from examroom.models import Answer, Exam, Question, Submission

STATUS_AVAILABLE = "available"
STATUS_ONGOING = "ongoing"
STATUS_COMPLETED = "completed"


def submission_status(submission: Optional[Submission]) -> str:
    if submission is None:
        return STATUS_AVAILABLE
    return STATUS_COMPLETED if submission.is_submitted else STATUS_ONGOING


def list_published_exams(session: Session, student_id: int) -> List[dict]:
    exams = session.exec(
        select(Exam).where(Exam.is_published == True).order_by(Exam.created_at.desc(), Exam.id.desc())  # noqa: E712
    ).all()
    ids = [e.id for e in exams]
    question_counts = {}
    if ids:
        question_counts = dict(
            session.exec(
                select(Question.exam_id, func.count(Question.id))
                .where(Question.exam_id.in_(ids))
                .group_by(Question.exam_id)
            ).all()
        )
    submissions = {
        s.exam_id: s
        for s in session.exec(select(Submission).where(Submission.student_id == student_id)).all()
    }
    return [
        {
            "exam": e,
            "question_count": question_counts.get(e.id, 0),
            "submission": submissions.get(e.id),
            "status": submission_status(submissions.get(e.id)),
        }
        for e in exams
    ]


def student_dashboard(session: Session, student_id: int) -> dict:
    rows = session.exec(
        select(Submission, Exam)
        .join(Exam, Exam.id == Submission.exam_id)
        .where(Submission.student_id == student_id)
        .order_by(Submission.started_at.desc())
    ).all()
    completed = [s for s, _ in rows if s.is_submitted]
    available = [
        row for row in list_published_exams(session, student_id) if row["status"] == STATUS_AVAILABLE
    ]
    return {
        "completed_count": len(completed),
        "ongoing_count": sum(1 for s, _ in rows if not s.is_submitted),
        "total_score": sum(s.total_marks or 0 for s in completed),
        "available_exams": available[:5],
        "recent_submissions": [{"submission": s, "exam": e} for s, e in rows[:5]],
    }


def list_student_results(session: Session, student_id: int) -> List[dict]:
    rows = session.exec(
        select(Submission, Exam)
        .join(Exam, Exam.id == Submission.exam_id)
        .where(Submission.student_id == student_id, Submission.is_submitted == True)  # noqa: E712
        .order_by(Submission.submitted_at.desc())
    ).all()
    return [{"submission": s, "exam": e} for s, e in rows]


def result_detail(session: Session, submission_id: int, student_id: int) -> Optional[dict]:
    """A student's own submitted result, answers ordered by question."""
    submission = session.get(Submission, submission_id)
    if submission is None or submission.student_id != student_id or not submission.is_submitted:
        return None
    exam = session.get(Exam, submission.exam_id)
    rows = session.exec(
        select(Answer, Question)
        .join(Question, Question.id == Answer.question_id)
        .where(Answer.submission_id == submission.id)
        .order_by(Question.question_order)
    ).all()
    items = [{"answer": a, "question": q} for a, q in rows]
    max_marks = sum(q.marks for _, q in rows)
    return {
        "submission": submission,
        "exam": exam,
        "items": items,
        "max_marks": max_marks,
        "correct_count": sum(1 for a, _ in rows if a.is_correct is True),
        "percentage": round(submission.total_marks / max_marks * 100, 1) if max_marks else 0,
    }
