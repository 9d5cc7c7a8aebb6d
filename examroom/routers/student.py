"""Student pages: dashboard, taking an exam and viewing results."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi import status as http_status
from fastapi.responses import RedirectResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from examroom.database import get_session
from examroom.deps import get_drafts, get_storage, require_student
from examroom.drafts import DraftStore
from examroom.imaging import ImageDecodeError
from examroom.models import Profile
from examroom.services import exam_service, results_service
from examroom.services.attempt_service import (
    AnswerRejected,
    AttemptError,
    AttemptState,
    ExamSessionController,
    SubmissionFailed,
    SubmissionInProgress,
)
from examroom.templating import templates
from examroom.timer import CountdownTimer
from examroom.utils import as_utc

logger = logging.getLogger(__name__)

router = APIRouter()


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=http_status.HTTP_303_SEE_OTHER)


def _controller(
    exam_id: int, session: Session, current_user: Profile, drafts: DraftStore, storage
) -> ExamSessionController:
    """Load a published exam's attempt for the student or raise 404."""
    exam = exam_service.get_published_exam(session, exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return ExamSessionController(session, exam, current_user.id, drafts, storage)


def _mount_timer(controller: ExamSessionController) -> CountdownTimer:
    """Mount the attempt's countdown; an expired attempt is submitted on the spot."""
    timer = controller.timer()
    timer.mount()
    return timer


def _result_redirect(controller: ExamSessionController) -> RedirectResponse:
    return _redirect(f"/student/results/{controller.submission.id}")


def _render_overview(
    request: Request,
    controller: ExamSessionController,
    current_user: Profile,
    error: Optional[str] = None,
    status_code: int = http_status.HTTP_200_OK,
):
    context = {
        "exam": controller.exam,
        "question_count": len(controller.questions),
        "total_marks": exam_service.total_marks(controller.questions),
        "error": error,
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "student/overview.html", context, status_code=status_code)


def _render_confirm(
    request: Request,
    controller: ExamSessionController,
    current_user: Profile,
    error: Optional[str] = None,
    status_code: int = http_status.HTTP_200_OK,
):
    context = {
        "exam": controller.exam,
        "summary": controller.summary(),
        "error": error,
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "student/confirm.html", context, status_code=status_code)


def _render_attempt(
    request: Request,
    controller: ExamSessionController,
    current_user: Profile,
    timer: Optional[CountdownTimer] = None,
    error: Optional[str] = None,
    status_code: int = http_status.HTTP_200_OK,
):
    if controller.current_question is None:
        # Every question was removed after the attempt started.
        return _render_confirm(request, controller, current_user, error=error, status_code=status_code)
    if timer is None:
        timer = controller.timer(on_complete=lambda: None)
        timer.mount()
    question = controller.current_question
    started_at = controller.submission.started_at
    context = {
        "exam": controller.exam,
        "submission": controller.submission,
        "questions": controller.questions,
        "index": controller.current_index,
        "question": question,
        "answer": controller.answer_for(question.id),
        "answered": {q.id for q in controller.questions if controller.answer_for(q.id).is_answered},
        "summary": controller.summary(),
        "remaining": timer.remaining,
        "severity": timer.severity,
        "started_at_ms": int(as_utc(started_at).timestamp() * 1000),
        "error": error,
        "current_user": current_user,
    }
    return templates.TemplateResponse(request, "student/attempt.html", context, status_code=status_code)


# --- Dashboard & listings ---


@router.get("")
def dashboard(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
):
    stats = results_service.student_dashboard(session, current_user.id)
    return templates.TemplateResponse(
        request, "student/dashboard.html", {"stats": stats, "current_user": current_user}
    )


@router.get("/exams")
def exam_list(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
):
    exams = results_service.list_published_exams(session, current_user.id)
    return templates.TemplateResponse(
        request, "student/exams.html", {"exams": exams, "current_user": current_user}
    )


# --- Taking an exam ---


@router.get("/exams/{exam_id}")
def exam_page(
    exam_id: int,
    request: Request,
    q: int = 0,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    """Overview before starting, the question view while in progress."""
    controller = _controller(exam_id, session, current_user, drafts, storage)
    if controller.state == AttemptState.OVERVIEW:
        return _render_overview(request, controller, current_user)
    if controller.state == AttemptState.SUBMITTED:
        return _result_redirect(controller)

    try:
        timer = _mount_timer(controller)
    except SubmissionFailed as exc:
        controller.go_to(q)
        return _render_attempt(
            request, controller, current_user, error=str(exc),
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    except SubmissionInProgress:
        return _redirect("/student/results")
    if controller.state == AttemptState.SUBMITTED:
        return _result_redirect(controller)
    if not controller.questions:
        return _redirect(f"/student/exams/{exam_id}/confirm")

    controller.go_to(q)
    return _render_attempt(request, controller, current_user, timer=timer)


@router.post("/exams/{exam_id}/start")
def start_exam(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    controller = _controller(exam_id, session, current_user, drafts, storage)
    try:
        controller.start()
    except AttemptError as exc:
        return _render_overview(
            request, controller, current_user, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )
    return _redirect(f"/student/exams/{exam_id}")


@router.post("/exams/{exam_id}/answer")
async def record_answer(
    exam_id: int,
    request: Request,
    q: int = Form(0),
    answer_text: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    goto: Optional[int] = Form(None),
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    """Record the answer for question ``q`` in the draft, then move to ``goto``."""
    controller = _controller(exam_id, session, current_user, drafts, storage)
    if controller.state != AttemptState.IN_PROGRESS:
        return _redirect(f"/student/exams/{exam_id}")

    try:
        _mount_timer(controller)
    except (SubmissionFailed, SubmissionInProgress):
        return _redirect(f"/student/exams/{exam_id}?q={q}")
    if controller.state == AttemptState.SUBMITTED:
        return _result_redirect(controller)
    if not controller.questions:
        return _redirect(f"/student/exams/{exam_id}/confirm")

    controller.go_to(q)
    data = None
    if image is not None and image.filename:
        data = await image.read()
    try:
        if data:
            await run_in_threadpool(controller.record_image, data)
        elif answer_text:
            controller.record_text(answer_text)
    except ImageDecodeError:
        return _render_attempt(
            request, controller, current_user,
            error="That file is not an image we can read. Please capture it again.",
            status_code=http_status.HTTP_400_BAD_REQUEST,
        )
    except AnswerRejected as exc:
        return _render_attempt(
            request, controller, current_user, error=str(exc), status_code=http_status.HTTP_400_BAD_REQUEST
        )

    target = controller.current_index if goto is None else goto
    return _redirect(f"/student/exams/{exam_id}?q={target}")


@router.get("/exams/{exam_id}/confirm")
def confirm_submit(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    controller = _controller(exam_id, session, current_user, drafts, storage)
    if controller.state != AttemptState.IN_PROGRESS:
        return _redirect(f"/student/exams/{exam_id}")
    return _render_confirm(request, controller, current_user)


def _submit(request: Request, controller: ExamSessionController, current_user: Profile):
    try:
        controller.submit()
    except SubmissionInProgress:
        return _redirect("/student/results")
    except SubmissionFailed as exc:
        return _render_attempt(
            request, controller, current_user, error=str(exc),
            status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return _result_redirect(controller)


@router.post("/exams/{exam_id}/submit")
def submit_exam(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    controller = _controller(exam_id, session, current_user, drafts, storage)
    if controller.state == AttemptState.OVERVIEW:
        return _redirect(f"/student/exams/{exam_id}")
    return _submit(request, controller, current_user)


@router.post("/exams/{exam_id}/timeout")
def exam_timeout(
    exam_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
    drafts: DraftStore = Depends(get_drafts),
    storage=Depends(get_storage),
):
    """Posted by the page when its countdown reaches zero.

    The server checks the time itself; an early post just reloads the page.
    """
    controller = _controller(exam_id, session, current_user, drafts, storage)
    if controller.state == AttemptState.OVERVIEW:
        return _redirect(f"/student/exams/{exam_id}")
    if controller.state == AttemptState.SUBMITTED:
        return _result_redirect(controller)
    expired = []
    timer = controller.timer(on_complete=lambda: expired.append(True))
    timer.mount()
    if not expired:
        return _redirect(f"/student/exams/{exam_id}")
    logger.info("Time expired for submission %s, submitting", controller.submission.id)
    return _submit(request, controller, current_user)


# --- Results ---


@router.get("/results")
def results(
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
):
    rows = results_service.list_student_results(session, current_user.id)
    return templates.TemplateResponse(
        request, "student/results.html", {"rows": rows, "current_user": current_user}
    )


@router.get("/results/{submission_id}")
def result_detail(
    submission_id: int,
    request: Request,
    session: Session = Depends(get_session),
    current_user: Profile = Depends(require_student),
):
    detail = results_service.result_detail(session, submission_id, current_user.id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Result not found")
    detail["current_user"] = current_user
    return templates.TemplateResponse(request, "student/result_detail.html", detail)
