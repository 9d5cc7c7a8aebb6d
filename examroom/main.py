"""FastAPI entrypoint for ExamRoom."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from examroom.config import settings
from examroom.database import create_db_and_tables, engine
from examroom.deps import get_current_user
from examroom.logging_config import configure_logging
from examroom.models import Profile
from examroom.routers import auth as auth_router_module
from examroom.routers import student as student_router_module
from examroom.routers import teacher as teacher_router_module
from examroom.routers.auth import home_url_for
from examroom.seed import seed_demo_data
from examroom.storage import BUCKETS
from examroom.templating import templates

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"

FIELD_NAMES = {
    "full_name": "Full name",
    "email": "Email address",
    "password": "Password",
    "duration_minutes": "Duration",
    "marks": "Marks",
    "q": "Question",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise logging and the database schema, and seed demo data if enabled."""
    configure_logging(settings.log_level)
    create_db_and_tables()
    for bucket in BUCKETS:
        (Path(settings.media_dir) / bucket).mkdir(parents=True, exist_ok=True)
    if settings.seed_demo_data:
        with Session(engine) as session:
            seed_demo_data(session)
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "") or request.method == "GET"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return readable field errors for form posts and JSON for API calls."""
    if "application/json" in request.headers.get("content-type", ""):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()},
        )

    errors = {}
    for error in exc.errors():
        loc = error.get("loc", [])
        if not loc:
            continue
        field_name = str(loc[-1])
        display_name = FIELD_NAMES.get(field_name, field_name.replace("_", " ").title())
        if error.get("type") == "missing":
            errors[field_name] = f"{display_name} is required."
        else:
            errors[field_name] = f"{display_name}: {error.get('msg', 'Invalid input')}"
    return templates.TemplateResponse(
        request,
        "error.html",
        {"title": "Please check your input", "errors": errors, "current_user": getattr(request.state, "user", None)},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Turn auth failures into redirects and not-found into an HTML page."""
    if exc.status_code == 303 and exc.headers and exc.headers.get("Location"):
        return RedirectResponse(url=exc.headers["Location"], status_code=status.HTTP_303_SEE_OTHER)
    if exc.status_code == 403 and _wants_html(request):
        return RedirectResponse(url="/?error=access_denied", status_code=status.HTTP_303_SEE_OTHER)
    if exc.status_code == 404 and _wants_html(request):
        return templates.TemplateResponse(
            request,
            "not_found.html",
            {"detail": exc.detail, "current_user": getattr(request.state, "user", None)},
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Session middleware for cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)

# Static assets and the public image buckets
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
app.mount(settings.media_url, StaticFiles(directory=settings.media_dir, check_dir=False), name="media")

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(teacher_router_module.router, prefix="/teacher", tags=["teacher"])
app.include_router(student_router_module.router, prefix="/student", tags=["student"])


@app.get("/")
def home(
    request: Request,
    current_user: Optional[Profile] = Depends(get_current_user),
    error: Optional[str] = Query(None),
):
    """Landing page; signed-in users go straight to their dashboard."""
    if current_user and not error:
        return RedirectResponse(url=home_url_for(current_user), status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "home.html", {"current_user": current_user, "error": error})
