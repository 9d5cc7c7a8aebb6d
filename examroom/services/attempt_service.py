"""Taking an exam: the student's attempt from overview to submission.

An attempt moves through ``overview -> in_progress -> submitting ->
submitted``. Answers recorded while in progress live in the draft store
only; submitting scores the mcq answers, uploads captured images, upserts
one Answer row per question and only then flips the submission to
submitted, all in one database transaction. A failure anywhere rolls back
and leaves the attempt in progress with its draft untouched, so the student
can simply submit again.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from examroom.drafts import AttemptKey, Draft, DraftAnswer, DraftStore
from examroom.imaging import ImageDecodeError, compress_image, from_data_url
from examroom.models import QUESTION_MCQ, QUESTION_WRITTEN, Answer, Exam, Question, Submission
from examroom.services.exam_service import list_questions
from examroom.storage import ANSWER_IMAGES, StorageError, answer_image_key
from examroom.timer import CountdownTimer
from examroom.utils import utcnow

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    OVERVIEW = "overview"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class AttemptError(Exception):
    """The requested action is not valid in the attempt's current state."""


class AnswerRejected(ValueError):
    """A recorded answer does not fit the question."""


class SubmissionFailed(Exception):
    """Writing the submission failed; the attempt is still in progress."""


class SubmissionInProgress(AttemptError):
    """Another request is already submitting this attempt."""


# Submission ids currently being written by this process. Guards the race
# between the timer's auto-submit and the student's manual submit.
_in_flight = set()
_in_flight_lock = threading.Lock()


@contextmanager
def _submit_guard(submission_id: int):
    with _in_flight_lock:
        acquired = submission_id not in _in_flight
        if acquired:
            _in_flight.add(submission_id)
    try:
        yield acquired
    finally:
        if acquired:
            with _in_flight_lock:
                _in_flight.discard(submission_id)


def score_mcq(question: Question, answer_text: Optional[str]) -> tuple:
    """Return ``(is_correct, marks_obtained)`` for an mcq answer.

    Exact, case-sensitive comparison against the stored correct answer; an
    unanswered question is neither right nor wrong.
    """
    if not answer_text:
        return None, 0
    is_correct = answer_text == question.correct_answer
    return is_correct, question.marks if is_correct else 0


@dataclass
class SubmitSummary:
    total: int
    answered: int

    @property
    def unanswered(self) -> int:
        return self.total - self.answered


def find_submission(session: Session, exam_id: int, student_id: int) -> Optional[Submission]:
    return session.exec(
        select(Submission).where(
            Submission.exam_id == exam_id, Submission.student_id == student_id
        )
    ).first()


class ExamSessionController:
    """Drives one student's attempt at one exam.

    The controller is cheap to rebuild: each request constructs it from the
    database rows and the persisted draft.
    """

    def __init__(
        self,
        session: Session,
        exam: Exam,
        student_id: int,
        drafts: DraftStore,
        storage,
        questions: Optional[List[Question]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.exam = exam
        self.student_id = student_id
        self.drafts = drafts
        self.storage = storage
        self.clock = clock
        self.questions = questions if questions is not None else list_questions(session, exam.id)
        self.current_index = 0
        self.submission = find_submission(session, exam.id, student_id)
        self.answers: Draft = {}
        if self.submission is None:
            self.state = AttemptState.OVERVIEW
        elif self.submission.is_submitted:
            self.state = AttemptState.SUBMITTED
        else:
            self.state = AttemptState.IN_PROGRESS
            self.answers = self.drafts.get(self.key)

    @property
    def key(self) -> AttemptKey:
        if self.submission is None:
            raise AttemptError("The exam has not been started")
        return AttemptKey(self.exam.id, self.submission.id)

    # --- Overview -> InProgress ---

    def start(self) -> Submission:
        """Create the submission row; a second start resumes the first."""
        if self.state != AttemptState.OVERVIEW:
            return self.submission
        if not self.questions:
            raise AttemptError("This exam has no questions yet")
        submission = Submission(
            exam_id=self.exam.id, student_id=self.student_id, started_at=self.clock()
        )
        self.session.add(submission)
        try:
            self.session.commit()
        except IntegrityError:
            # Started concurrently from another tab; use that row.
            self.session.rollback()
            submission = find_submission(self.session, self.exam.id, self.student_id)
        else:
            self.session.refresh(submission)
            logger.info(
                "Student %s started exam %s (submission %s)",
                self.student_id, self.exam.id, submission.id,
            )
        self.submission = submission
        self.state = AttemptState.SUBMITTED if submission.is_submitted else AttemptState.IN_PROGRESS
        self.answers = self.drafts.get(self.key) if self.state == AttemptState.IN_PROGRESS else {}
        return submission

    # --- InProgress ---

    def _require_in_progress(self) -> None:
        if self.state != AttemptState.IN_PROGRESS:
            raise AttemptError(f"Cannot change answers while the attempt is {self.state.value}")

    def go_to(self, index: int) -> int:
        if not self.questions:
            self.current_index = 0
        else:
            self.current_index = min(max(0, index), len(self.questions) - 1)
        return self.current_index

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def answer_for(self, question_id: int) -> DraftAnswer:
        return self.answers.get(question_id, DraftAnswer())

    def record_text(self, text: str) -> DraftAnswer:
        """Record the selected option for the current mcq question."""
        self._require_in_progress()
        question = self.current_question
        if question is None:
            raise AnswerRejected("This exam has no questions left to answer")
        if question.type != QUESTION_MCQ:
            raise AnswerRejected("Only multiple choice questions take a selected option")
        if text not in (question.options or []):
            raise AnswerRejected("Selected answer is not one of the options")
        self.answers = self.drafts.record(self.key, question.id, text=text)
        return self.answers[question.id]

    def record_image(self, data: bytes) -> DraftAnswer:
        """Compress a captured image and record it for the current written question.

        Raises:
            ImageDecodeError: if ``data`` is not an image; the draft is unchanged.
        """
        self._require_in_progress()
        question = self.current_question
        if question is None:
            raise AnswerRejected("This exam has no questions left to answer")
        if question.type != QUESTION_WRITTEN:
            raise AnswerRejected("Only written questions take an image")
        image = compress_image(data)
        self.answers = self.drafts.record(self.key, question.id, image=image.to_data_url())
        return self.answers[question.id]

    def summary(self) -> SubmitSummary:
        answered = sum(1 for q in self.questions if self.answer_for(q.id).is_answered)
        return SubmitSummary(total=len(self.questions), answered=answered)

    def timer(self, on_complete: Optional[Callable[[], None]] = None) -> CountdownTimer:
        """A countdown for this attempt; by default completion submits."""
        if self.submission is None:
            raise AttemptError("The exam has not been started")
        return CountdownTimer(
            self.submission.started_at,
            self.exam.duration_minutes,
            on_complete=on_complete or self.submit,
            clock=self.clock,
        )

    # --- Submitting -> Submitted ---

    def _upload_image(self, question: Question, data_url: str) -> str:
        try:
            data = from_data_url(data_url)
        except ImageDecodeError as exc:
            raise StorageError(f"Draft image for question {question.id} is unreadable: {exc}") from exc
        key = answer_image_key(self.submission.id, question.id)
        self.storage.upload(ANSWER_IMAGES, key, data)
        return self.storage.public_url(ANSWER_IMAGES, key)

    def _build_answers(self) -> Dict[int, dict]:
        records = {}
        for question in self.questions:
            draft = self.answer_for(question.id)
            is_correct, marks = None, 0
            if question.type == QUESTION_MCQ:
                is_correct, marks = score_mcq(question, draft.text)
            image_url = None
            if draft.image:
                image_url = self._upload_image(question, draft.image)
            records[question.id] = {
                "answer_text": draft.text or None,
                "answer_image_url": image_url,
                "marks_obtained": marks,
                "is_correct": is_correct,
            }
        return records

    def _upsert_answers(self, records: Dict[int, dict]) -> None:
        existing = {
            a.question_id: a
            for a in self.session.exec(
                select(Answer).where(Answer.submission_id == self.submission.id)
            ).all()
        }
        for question_id, values in records.items():
            answer = existing.get(question_id)
            if answer is None:
                answer = Answer(submission_id=self.submission.id, question_id=question_id)
            for key, value in values.items():
                setattr(answer, key, value)
            self.session.add(answer)

    def submit(self) -> Submission:
        """Score, persist and finalise the attempt.

        Safe to call from both the timer and the submit button: only the
        first call writes, later calls return the submitted row.

        Raises:
            SubmissionInProgress: another request is writing this attempt.
            SubmissionFailed: a write failed; state is back to in progress.
        """
        if self.state == AttemptState.SUBMITTED:
            return self.submission
        if self.state == AttemptState.SUBMITTING:
            raise SubmissionInProgress("Submission already in progress")
        self._require_in_progress()

        with _submit_guard(self.submission.id) as acquired:
            if not acquired:
                logger.info("Ignoring duplicate submit for submission %s", self.submission.id)
                raise SubmissionInProgress("Submission already in progress")

            self.session.refresh(self.submission)
            if self.submission.is_submitted:
                self.state = AttemptState.SUBMITTED
                return self.submission

            self.state = AttemptState.SUBMITTING
            try:
                records = self._build_answers()
                # Written answers start at 0, so this is the mcq score.
                total = sum(r["marks_obtained"] for r in records.values())
                self._upsert_answers(records)
                self.session.flush()
                result = self.session.exec(
                    update(Submission)
                    .where(Submission.id == self.submission.id, Submission.is_submitted == False)  # noqa: E712
                    .values(is_submitted=True, submitted_at=self.clock(), total_marks=total)
                )
                if result.rowcount == 0:
                    # Another process finalised it first; keep its answers.
                    self.session.rollback()
                    logger.info("Submission %s was already finalised elsewhere", self.submission.id)
                else:
                    self.session.commit()
            except (SQLAlchemyError, StorageError, OSError) as exc:
                self.session.rollback()
                self.session.refresh(self.submission)
                if self.submission.is_submitted:
                    self.state = AttemptState.SUBMITTED
                    return self.submission
                self.state = AttemptState.IN_PROGRESS
                logger.warning(
                    "Submission %s failed, attempt left in progress: %s", self.submission.id, exc
                )
                raise SubmissionFailed("Your answers could not be submitted. Please try again.") from exc

            self.session.refresh(self.submission)
            self.drafts.clear(self.key)
            self.answers = {}
            self.state = AttemptState.SUBMITTED
            logger.info(
                "Submission %s submitted with %s marks", self.submission.id, self.submission.total_marks
            )
            return self.submission
