"""Teacher review of a submitted attempt."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from examroom.models import QUESTION_WRITTEN, Answer, Exam, Profile, Question, Submission
from examroom.utils import clamp_marks

logger = logging.getLogger(__name__)


class GradingError(ValueError):
    pass


@dataclass
class ReviewItem:
    answer: Answer
    question: Question

    @property
    def is_written(self) -> bool:
        return self.question.type == QUESTION_WRITTEN


def load_owned_submission(session: Session, submission_id: int, owner_id: int, exam_id: Optional[int] = None):
    """Return ``(submission, exam)`` if the submission belongs to the owner's exam."""
    submission = session.get(Submission, submission_id)
    if submission is None:
        return None, None
    exam = session.get(Exam, submission.exam_id)
    if exam is None or exam.owner_id != owner_id:
        return None, None
    if exam_id is not None and exam.id != exam_id:
        return None, None
    return submission, exam


def recompute_total(session: Session, submission: Submission) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(Answer.marks_obtained), 0)).where(
            Answer.submission_id == submission.id
        )
    ).one()
    submission.total_marks = int(total)
    session.add(submission)
    return submission.total_marks


class GradingReviewController:
    """Manual marks for the written answers of one submission.

    Marks typed by the teacher are clamped to ``[0, question.marks]``.
    Saving writes each changed answer and then recomputes the submission
    total from all of its answers.
    """

    def __init__(self, session: Session, submission: Submission):
        self.session = session
        self.submission = submission
        rows = session.exec(
            select(Answer, Question)
            .join(Question, Question.id == Answer.question_id)
            .where(Answer.submission_id == submission.id)
            .order_by(Question.question_order)
        ).all()
        self.items: List[ReviewItem] = [ReviewItem(answer=a, question=q) for a, q in rows]
        self.grades: Dict[int, int] = {
            item.answer.id: item.answer.marks_obtained for item in self.items if item.is_written
        }

    @property
    def student(self) -> Optional[Profile]:
        return self.session.get(Profile, self.submission.student_id)

    def _item(self, answer_id: int) -> ReviewItem:
        for item in self.items:
            if item.answer.id == answer_id:
                return item
        raise GradingError(f"Answer {answer_id} is not part of this submission")

    def set_grade(self, answer_id: int, marks) -> int:
        item = self._item(answer_id)
        if not item.is_written:
            raise GradingError("Multiple choice answers are graded automatically")
        value = clamp_marks(marks, item.question.marks)
        self.grades[answer_id] = value
        return value

    def current_total(self) -> int:
        return sum(
            self.grades.get(item.answer.id, 0) if item.is_written else item.answer.marks_obtained
            for item in self.items
        )

    def max_marks(self) -> int:
        return sum(item.question.marks for item in self.items)

    def save(self) -> Submission:
        if not self.submission.is_submitted:
            raise GradingError("Only submitted attempts can be graded")
        changed = 0
        for item in self.items:
            if not item.is_written:
                continue
            marks = self.grades.get(item.answer.id, item.answer.marks_obtained)
            if marks != item.answer.marks_obtained:
                item.answer.marks_obtained = marks
                self.session.add(item.answer)
                changed += 1
        self.session.flush()
        recompute_total(self.session, self.submission)
        self.session.commit()
        self.session.refresh(self.submission)
        logger.info(
            "Saved %d grade(s) for submission %s, total now %s",
            changed, self.submission.id, self.submission.total_marks,
        )
        return self.submission
