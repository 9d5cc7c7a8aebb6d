from sqlmodel import Session, select

from conftest import login, make_image_bytes, test_engine
from examroom.drafts import AttemptKey
from examroom.models import Answer, Submission
from examroom.routers import student as student_routes
from examroom.services.exam_service import ExamInput, create_exam, list_questions


def _submission(exam_id, student_id):
    with Session(test_engine) as session:
        return session.exec(
            select(Submission).where(Submission.exam_id == exam_id, Submission.student_id == student_id)
        ).first()


def _answers(submission_id):
    with Session(test_engine) as session:
        return session.exec(select(Answer).where(Answer.submission_id == submission_id)).all()


def test_dashboard_lists_available_exams(student_client, sample_exam):
    response = student_client.get("/student")
    assert response.status_code == 200
    assert "Sample exam" in response.text
    exams = student_client.get("/student/exams")
    assert "Available" in exams.text


def test_unpublished_exam_is_not_found(student_client, teacher):
    with Session(test_engine) as session:
        draft = create_exam(session, teacher.id, ExamInput(title="Hidden", duration_minutes=5))
    assert student_client.get(f"/student/exams/{draft.id}").status_code == 404
    assert "Hidden" not in student_client.get("/student/exams").text


def test_overview_then_start(student_client, sample_exam, student):
    overview = student_client.get(f"/student/exams/{sample_exam.id}")
    assert overview.status_code == 200
    assert "Start exam" in overview.text
    assert "5 marks in total" in overview.text
    assert _submission(sample_exam.id, student.id) is None

    response = student_client.post(f"/student/exams/{sample_exam.id}/start", follow_redirects=False)
    assert response.status_code == 303
    assert _submission(sample_exam.id, student.id) is not None

    attempt = student_client.get(f"/student/exams/{sample_exam.id}")
    assert "Question 1 of 3" in attempt.text
    assert 'id="exam-timer"' in attempt.text


def test_full_attempt_flow(student_client, sample_exam, student):
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")

    response = student_client.post(f"{exam_url}/answer", data={"q": "0", "answer_text": "4", "goto": "1"}, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == f"{exam_url}?q=1"
    student_client.post(f"{exam_url}/answer", data={"q": "1", "answer_text": "x"})
    student_client.post(
        f"{exam_url}/answer",
        data={"q": "2"},
        files={"image": ("working.png", make_image_bytes(), "image/png")},
    )

    # answers are restored on reload
    page = student_client.get(f"{exam_url}?q=0")
    assert 'value="4" checked' in page.text
    assert "3 answered" in page.text

    confirm = student_client.get(f"{exam_url}/confirm")
    assert "answered 3 of 3" in confirm.text

    response = student_client.post(f"{exam_url}/submit", follow_redirects=False)
    submission = _submission(sample_exam.id, student.id)
    assert response.headers["location"] == f"/student/results/{submission.id}"
    assert submission.is_submitted
    assert submission.total_marks == 1
    answers = _answers(submission.id)
    assert len(answers) == 3
    assert sum(a.marks_obtained for a in answers) == submission.total_marks

    result = student_client.get(f"/student/results/{submission.id}")
    assert result.status_code == 200
    assert "1 / 5" in result.text
    assert "Pending" in result.text
    assert "Sample exam" in student_client.get("/student/results").text

    # the exam page now goes straight to the result
    again = student_client.get(exam_url, follow_redirects=False)
    assert again.headers["location"] == f"/student/results/{submission.id}"


def test_double_submit_is_harmless(student_client, sample_exam, student):
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")
    student_client.post(f"{exam_url}/answer", data={"q": "0", "answer_text": "4"})
    first = student_client.post(f"{exam_url}/submit", follow_redirects=False)
    second = student_client.post(f"{exam_url}/timeout", follow_redirects=False)
    assert first.headers["location"] == second.headers["location"]
    submission = _submission(sample_exam.id, student.id)
    assert len(_answers(submission.id)) == 3
    assert submission.total_marks == 1


def test_invalid_answers_are_rejected(student_client, sample_exam):
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")
    response = student_client.post(f"{exam_url}/answer", data={"q": "0", "answer_text": "five"})
    assert response.status_code == 400
    assert "not one of the options" in response.text
    response = student_client.post(
        f"{exam_url}/answer",
        data={"q": "2"},
        files={"image": ("notes.png", b"not really a png", "image/png")},
    )
    assert response.status_code == 400
    assert "not an image we can read" in response.text


def test_early_timeout_post_is_ignored(student_client, sample_exam, student):
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")
    response = student_client.post(f"{exam_url}/timeout", follow_redirects=False)
    assert response.headers["location"] == exam_url
    assert not _submission(sample_exam.id, student.id).is_submitted


def test_expired_attempt_is_submitted_on_load(student_client, expired_submission, drafts, sample_exam):
    with Session(test_engine) as session:
        first_question = list_questions(session, sample_exam.id)[0]
    drafts.record(AttemptKey(sample_exam.id, expired_submission.id), first_question.id, text="4")

    response = student_client.get(f"/student/exams/{sample_exam.id}", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == f"/student/results/{expired_submission.id}"
    with Session(test_engine) as session:
        submission = session.get(Submission, expired_submission.id)
        assert submission.is_submitted
        assert submission.total_marks == 1
    assert drafts.get(AttemptKey(sample_exam.id, expired_submission.id)) == {}


def test_results_of_other_students_are_not_found(client, sample_exam, student, other_student):
    with Session(test_engine) as session:
        submission = Submission(exam_id=sample_exam.id, student_id=student.id, is_submitted=True)
        session.add(submission)
        session.commit()
        session.refresh(submission)
    login(client, other_student.email)
    assert client.get(f"/student/results/{submission.id}").status_code == 404


def test_attempt_with_every_question_removed_goes_to_confirm(student_client, sample_exam, student):
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")
    with Session(test_engine) as session:
        for question in list_questions(session, sample_exam.id):
            session.delete(question)
        session.commit()

    page = student_client.get(exam_url, follow_redirects=False)
    assert page.status_code == 303
    assert page.headers["location"] == f"{exam_url}/confirm"
    answer = student_client.post(f"{exam_url}/answer", data={"q": "0", "answer_text": "4"}, follow_redirects=False)
    assert answer.headers["location"] == f"{exam_url}/confirm"

    confirm = student_client.get(f"{exam_url}/confirm")
    assert confirm.status_code == 200
    assert "answered 0 of 0" in confirm.text

    response = student_client.post(f"{exam_url}/submit", follow_redirects=False)
    submission = _submission(sample_exam.id, student.id)
    assert response.headers["location"] == f"/student/results/{submission.id}"
    assert submission.is_submitted
    assert submission.total_marks == 0


def test_captured_image_is_compressed_in_the_threadpool(student_client, sample_exam, monkeypatch):
    calls = []

    async def recording_threadpool(func, *args, **kwargs):
        calls.append(func.__name__)
        return func(*args, **kwargs)

    monkeypatch.setattr(student_routes, "run_in_threadpool", recording_threadpool)
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")
    response = student_client.post(
        f"{exam_url}/answer",
        data={"q": "2"},
        files={"image": ("working.png", make_image_bytes(), "image/png")},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert calls == ["record_image"]


def test_questions_and_results_load_the_math_renderer(student_client, sample_exam, student):
    with Session(test_engine) as session:
        first = list_questions(session, sample_exam.id)[0]
        first.question_text = "Solve $x^2 = 4$ for positive $x$"
        session.add(first)
        session.commit()
    exam_url = f"/student/exams/{sample_exam.id}"
    student_client.post(f"{exam_url}/start")

    attempt = student_client.get(f"{exam_url}?q=0")
    assert 'class="card math"' in attempt.text
    assert "Solve $x^2 = 4$ for positive $x$" in attempt.text
    assert "/dist/contrib/auto-render.min.js" in attempt.text
    assert '<script defer src="/static/math.js"></script>' in attempt.text

    student_client.post(f"{exam_url}/submit")
    submission = _submission(sample_exam.id, student.id)
    result = student_client.get(f"/student/results/{submission.id}")
    assert 'class="card math"' in result.text
    assert "/static/math.js" in result.text

    script = student_client.get("/static/math.js")
    assert script.status_code == 200
    assert "renderMathInElement" in script.text
