"""Teacher pages: dashboard, exam authoring, submissions and grading."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi import status as http_status
from fastapi.responses import RedirectResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from examroom.database import get_session
from examroom.deps import get_storage, require_teacher
from examroom.imaging import ImageDecodeError
from examroom.models import QUESTION_MCQ, QUESTION_TYPES, Exam, Profile, Question
from examroom.services import exam_service
from examroom.services.exam_service import ExamInput, ExamValidationError, QuestionInput
from examroom.services.grading_service import (
    GradingError,
    GradingReviewController,
    load_owned_submission,
)
from examroom.services.quiz_import import QuizImportError, parse_quiz_json, to_exam_input
from examroom.storage import StorageError
from examroom.templating import templates

router = APIRouter()


def _get_owned_exam(exam_id: int, session: Session, current_user: Profile) -> Exam:
    """Get the teacher's exam by ID or raise 404."""
    exam = exam_service.get_owned_exam(session, exam_id, current_user.id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam


def _get_exam_question(exam: Exam, question_id: int, session: Session) -> Question:
    question = session.get(Question, question_id)
    if not question or question.exam_id != exam.id:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=http_status.HTTP_303_SEE_OTHER)


def _question_input(
    type: str,
    question_text: str,
    marks: str,
    options: List[str],
    correct_index: Optional[str],
    solution: Optional[str],
) -> QuestionInput:
    """Build a QuestionInput from the question form.

    The correct answer is chosen by radio button index over the typed options.
    """
    correct_answer = None
    if type == QUESTION_MCQ and correct_index not in (None, ""):
        try:
            index = int(correct_index)
        except ValueError:
            index = -1
        if 0 <= index < len(options):
            correct_answer = options[index]
    return QuestionInput(
        type=type,
        question_text=question_text,
        marks=marks,
        options=options if type == QUESTION_MCQ else None,
        correct_answer=correct_answer,
        solution=solution,
    )


async def _read_upload(upload: Optional[UploadFile]) -> Optional[bytes]:
    if upload is None or not upload.filename:
        return None
    data = await upload.read()
    return data or None


def _render_edit(
    request: Request,
    session: Session,
    exam: Exam,
    current_user: Profile,
    error: Optional[str] = None,
    form: Optional[dict] = None,
    status_code: int = http_status.HTTP_200_OK,
):
    questions = exam_service.list_questions(session, exam.id)
    context = {
        "exam": exam,
        "questions": questions,
        "locked": {q.id: exam_service.question_has_answers(session, q.id) for q in questions},
        "total_marks": exam_service.total_marks(questions),
        "question_types": QUESTION_TYPES,
        "error": error,
        "form": form or {},
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "teacher/exam_edit.html", context, status_code=status_code)


def _render_new(
    request: Request,
    current_user: Profile,
    form: Optional[dict] = None,
    error: Optional[str] = None,
    import_errors: Optional[list] = None,
    status_code: int = http_status.HTTP_200_OK,
):
    context = {
        "form": form or {},
        "error": error,
        "import_errors": import_errors or [],
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "teacher/exam_new.html", context, status_code=status_code)


# --- Dashboard & listings ---


@router.get("")
def dashboard(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    stats = exam_service.teacher_dashboard_stats(session, current_user.id)
    return templates.TemplateResponse(
        request, "teacher/dashboard.html", {"stats": stats, "current_user": current_user}
    )


@router.get("/exams")
def exam_list(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exams = exam_service.list_teacher_exams(session, current_user.id)
    return templates.TemplateResponse(
        request, "teacher/exams.html", {"exams": exams, "current_user": current_user}
    )


@router.get("/submissions")
def all_submissions(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    rows = exam_service.list_teacher_submissions(session, current_user.id)
    return templates.TemplateResponse(
        request, "teacher/submissions.html", {"rows": rows, "exam": None, "current_user": current_user}
    )


# --- Creating exams ---


@router.get("/exams/new")
def new_exam_form(request: Request, current_user: Profile = Depends(require_teacher)):
    return _render_new(request, current_user)


@router.post("/exams/new")
def create_exam(
    request: Request,
    title: str = Form(""),
    description: Optional[str] = Form(None),
    duration_minutes: str = Form(""),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    """Create an unpublished exam; questions are added on the edit page."""
    data = ExamInput(title=title, description=description, duration_minutes=duration_minutes)
    try:
        exam = exam_service.create_exam(session, current_user.id, data)
    except ExamValidationError as exc:
        form = {"title": title, "description": description, "duration_minutes": duration_minutes}
        return _render_new(
            request, current_user, form=form, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/import")
async def import_exam(
    request: Request,
    quiz_json: Optional[str] = Form(None),
    quiz_file: Optional[UploadFile] = File(None),
    publish: bool = Form(False),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    """Create an exam from an uploaded or pasted quiz JSON document."""
    raw = await _read_upload(quiz_file)
    text = raw.decode("utf-8", errors="replace") if raw else (quiz_json or "")
    form = {"quiz_json": quiz_json or ""}
    if not text.strip():
        return _render_new(
            request,
            current_user,
            form=form,
            error="Paste quiz JSON or choose a file to import.",
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    try:
        quiz = parse_quiz_json(text)
        exam = exam_service.create_exam(session, current_user.id, to_exam_input(quiz), publish=publish)
    except QuizImportError as exc:
        return _render_new(
            request,
            current_user,
            form=form,
            error="The quiz file is not valid.",
            import_errors=exc.errors,
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    except ExamValidationError as exc:
        return _render_new(
            request, current_user, form=form, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}")


# --- One exam ---


@router.get("/exams/{exam_id}")
def exam_detail(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    questions = exam_service.list_questions(session, exam.id)
    context = {
        "exam": exam,
        "questions": questions,
        "total_marks": exam_service.total_marks(questions),
        "error": request.query_params.get("error"),
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "teacher/exam_detail.html", context)


@router.post("/exams/{exam_id}/publish")
def toggle_publish(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    try:
        exam_service.toggle_publish(session, exam)
    except ExamValidationError:
        return _redirect(f"/teacher/exams/{exam.id}?error=no_questions")
    return _redirect(f"/teacher/exams/{exam.id}")


@router.get("/exams/{exam_id}/edit")
def edit_exam_form(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    return _render_edit(request, session, exam, current_user)


@router.post("/exams/{exam_id}/edit")
def edit_exam(
    exam_id: int,
    request: Request,
    title: str = Form(""),
    description: Optional[str] = Form(None),
    duration_minutes: str = Form(""),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    try:
        exam_service.update_exam_details(session, exam, title, description, duration_minutes)
    except ExamValidationError as exc:
        session.refresh(exam)
        return _render_edit(
            request, session, exam, current_user, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


# --- Questions ---


@router.post("/exams/{exam_id}/questions")
async def add_question(
    exam_id: int,
    request: Request,
    type: str = Form(QUESTION_MCQ),
    question_text: str = Form(""),
    marks: str = Form("1"),
    options: List[str] = Form([]),
    correct_index: Optional[str] = Form(None),
    solution: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
    storage=Depends(get_storage),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    data = _question_input(type, question_text, marks, options, correct_index, solution)
    image_data = await _read_upload(image)
    try:
        question = exam_service.add_question(session, exam, data)
    except ExamValidationError as exc:
        form = {
            "type": type,
            "question_text": question_text,
            "marks": marks,
            "options": options,
            "correct_index": correct_index,
            "solution": solution,
        }
        return _render_edit(
            request,
            session,
            exam,
            current_user,
            error=str(exc),
            form=form,
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    if image_data:
        try:
            await run_in_threadpool(exam_service.set_question_image, session, question, storage, image_data)
        except (ImageDecodeError, StorageError):
            return _render_edit(
                request,
                session,
                exam,
                current_user,
                error="The question was saved but its image could not be processed.",
                status_code=http_status.HTTP_400_BAD_REQUEST,
            )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/{exam_id}/questions/{question_id}")
def update_question(
    exam_id: int,
    question_id: int,
    request: Request,
    type: str = Form(QUESTION_MCQ),
    question_text: str = Form(""),
    marks: str = Form("1"),
    options: List[str] = Form([]),
    correct_index: Optional[str] = Form(None),
    solution: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    question = _get_exam_question(exam, question_id, session)
    data = _question_input(type, question_text, marks, options, correct_index, solution)
    try:
        exam_service.update_question(session, question, data)
    except ExamValidationError as exc:
        session.refresh(question)
        return _render_edit(
            request, session, exam, current_user, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/{exam_id}/questions/{question_id}/delete")
def delete_question(
    exam_id: int,
    question_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    question = _get_exam_question(exam, question_id, session)
    try:
        exam_service.delete_question(session, question)
    except ExamValidationError as exc:
        return _render_edit(
            request, session, exam, current_user, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/{exam_id}/questions/{question_id}/move")
def move_question(
    exam_id: int,
    question_id: int,
    direction: str = Form("down"),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    question = _get_exam_question(exam, question_id, session)
    exam_service.move_question(session, question, -1 if direction == "up" else 1)
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/{exam_id}/questions/{question_id}/image")
async def upload_question_image(
    exam_id: int,
    question_id: int,
    request: Request,
    image: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
    storage=Depends(get_storage),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    question = _get_exam_question(exam, question_id, session)
    data = await _read_upload(image)
    error = None
    if not data:
        error = "Choose an image to upload."
    else:
        try:
            await run_in_threadpool(exam_service.set_question_image, session, question, storage, data)
        except ImageDecodeError:
            error = "That file is not an image we can read."
        except StorageError:
            error = "The image could not be stored. Please try again."
    if error:
        return _render_edit(
            request, session, exam, current_user, error=error, status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/edit")


@router.post("/exams/{exam_id}/questions/{question_id}/image/delete")
def remove_question_image(
    exam_id: int,
    question_id: int,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    question = _get_exam_question(exam, question_id, session)
    exam_service.remove_question_image(session, question)
    return _redirect(f"/teacher/exams/{exam.id}/edit")


# --- Submissions & grading ---


@router.get("/exams/{exam_id}/submissions")
def exam_submissions(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    exam = _get_owned_exam(exam_id, session, current_user)
    questions = exam_service.list_questions(session, exam.id)
    context = {
        "exam": exam,
        "rows": exam_service.list_exam_submissions(session, exam),
        "max_marks": exam_service.total_marks(questions),
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "teacher/submissions.html", context)


def _review_context(review: GradingReviewController, exam: Exam, current_user: Profile, **extra) -> dict:
    context = {
        "exam": exam,
        "submission": review.submission,
        "student": review.student,
        "items": review.items,
        "grades": review.grades,
        "total": review.current_total(),
        "max_marks": review.max_marks(),
        "saved": False,
        "error": None,
        "current_user": current_user,
    }
    context.update(extra)
    return context


@router.get("/exams/{exam_id}/submissions/{submission_id}")
def review_submission(
    exam_id: int,
    submission_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    submission, exam = load_owned_submission(session, submission_id, current_user.id, exam_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    review = GradingReviewController(session, submission)
    context = _review_context(review, exam, current_user, saved=request.query_params.get("saved") == "1")
    return templates.TemplateResponse(request, "teacher/review.html", context)


@router.post("/exams/{exam_id}/submissions/{submission_id}")
def save_grades(
    exam_id: int,
    submission_id: int,
    request: Request,
    answer_id: List[int] = Form([]),
    marks: List[str] = Form([]),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_teacher),
):
    """Save marks for written answers; values are clamped to each question's maximum."""
    submission, exam = load_owned_submission(session, submission_id, current_user.id, exam_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    review = GradingReviewController(session, submission)
    try:
        for aid, value in zip(answer_id, marks):
            review.set_grade(aid, value)
        review.save()
    except GradingError as exc:
        context = _review_context(review, exam, current_user, error=str(exc))
        return templates.TemplateResponse(
            request, "teacher/review.html", context, status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/teacher/exams/{exam.id}/submissions/{submission.id}?saved=1")
