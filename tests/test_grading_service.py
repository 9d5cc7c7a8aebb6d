import pytest

from examroom.models import Answer, Submission
from examroom.services.exam_service import list_questions
from examroom.services.grading_service import (
    GradingError,
    GradingReviewController,
    load_owned_submission,
    recompute_total,
)
from examroom.utils import clamp_marks, utcnow


@pytest.fixture
def graded_submission(session, sample_exam, student):
    """A submitted attempt: first mcq right, second wrong, written ungraded."""
    questions = list_questions(session, sample_exam.id)
    submission = Submission(
        exam_id=sample_exam.id, student_id=student.id, is_submitted=True, submitted_at=utcnow(), total_marks=1
    )
    session.add(submission)
    session.commit()
    session.refresh(submission)
    session.add(Answer(submission_id=submission.id, question_id=questions[0].id, answer_text="4", is_correct=True, marks_obtained=1))
    session.add(Answer(submission_id=submission.id, question_id=questions[1].id, answer_text="x", is_correct=False, marks_obtained=0))
    session.add(Answer(submission_id=submission.id, question_id=questions[2].id, answer_image_url="/media/answer-images/x.jpg"))
    session.commit()
    return submission


def _written(review):
    return next(item for item in review.items if item.is_written)


def _mcq(review):
    return next(item for item in review.items if not item.is_written)


@pytest.mark.parametrize("raw, expected", [(2, 2), ("3", 3), (10, 3), (-5, 0), ("abc", 0), (None, 0), ("2.7", 2), ("inf", 3), ("1e309", 3), ("-inf", 0), ("nan", 0)])
def test_clamp_marks(raw, expected):
    assert clamp_marks(raw, 3) == expected


def test_items_follow_question_order(session, graded_submission):
    review = GradingReviewController(session, graded_submission)
    assert [item.question.question_order for item in review.items] == [1, 2, 3]
    assert review.max_marks() == 5
    assert review.student.email == "student@example.com"


def test_out_of_range_marks_are_clamped(session, graded_submission):
    review = GradingReviewController(session, graded_submission)
    written = _written(review)
    assert review.set_grade(written.answer.id, 99) == 3
    assert review.current_total() == 4
    review.save()
    session.refresh(written.answer)
    assert written.answer.marks_obtained == 3
    assert graded_submission.total_marks == 4


def test_mcq_marks_are_not_editable(session, graded_submission):
    review = GradingReviewController(session, graded_submission)
    with pytest.raises(GradingError):
        review.set_grade(_mcq(review).answer.id, 0)
    with pytest.raises(GradingError):
        review.set_grade(999999, 1)


def test_total_is_recomputed_from_answers(session, graded_submission):
    graded_submission.total_marks = 42
    assert recompute_total(session, graded_submission) == 1
    review = GradingReviewController(session, graded_submission)
    review.set_grade(_written(review).answer.id, 2)
    saved = review.save()
    answers = [item.answer for item in review.items]
    assert saved.total_marks == sum(a.marks_obtained for a in answers) == 3


def test_unsubmitted_attempt_cannot_be_graded(session, sample_exam, student):
    submission = Submission(exam_id=sample_exam.id, student_id=student.id)
    session.add(submission)
    session.commit()
    with pytest.raises(GradingError):
        GradingReviewController(session, submission).save()


def test_only_the_exam_owner_can_load(session, graded_submission, teacher, other_teacher, sample_exam):
    submission, exam = load_owned_submission(session, graded_submission.id, teacher.id)
    assert submission.id == graded_submission.id
    assert exam.id == sample_exam.id
    assert load_owned_submission(session, graded_submission.id, other_teacher.id) == (None, None)
    assert load_owned_submission(session, graded_submission.id, teacher.id, exam_id=sample_exam.id + 1) == (None, None)
    assert load_owned_submission(session, 12345, teacher.id) == (None, None)
