"""Sign up, sign in and sign out."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from examroom.auth_utils import hash_password, verify_password
from examroom.database import get_session
from examroom.deps import get_current_user
from examroom.models import ROLE_TEACHER, ROLES, Profile
from examroom.templating import templates
from examroom.utils import sanitize_plain, validate_email

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 6


def home_url_for(user: Profile) -> str:
    return "/teacher" if user.role == ROLE_TEACHER else "/student"


@router.get("/login")
def login_form(request: Request, current_user: Optional[Profile] = Depends(get_current_user)):
    if current_user:
        return RedirectResponse(url=home_url_for(current_user), status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "auth/login.html", {"form": None, "error": None})


@router.post("/login")
def login(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    session: Session = Depends(get_session),
):
    email_clean = email.strip().lower()
    user = None
    if email_clean and password:
        user = session.exec(select(Profile).where(Profile.email == email_clean)).first()
        if user and not verify_password(password, user.password_hash):
            user = None

    if user is None:
        context = {"form": {"email": email}, "error": "Invalid email or password."}
        return templates.TemplateResponse(
            request, "auth/login.html", context, status_code=status.HTTP_400_BAD_REQUEST
        )

    request.session.clear()
    request.session["user_id"] = user.id
    logger.info("Profile %s signed in", user.id)
    return RedirectResponse(url=home_url_for(user), status_code=status.HTTP_303_SEE_OTHER)


@router.get("/signup")
def signup_form(request: Request, current_user: Optional[Profile] = Depends(get_current_user)):
    if current_user:
        return RedirectResponse(url=home_url_for(current_user), status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "auth/signup.html", {"form": {}, "errors": {}})


@router.post("/signup")
def signup(
    request: Request,
    full_name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    role: str = Form(""),
    session: Session = Depends(get_session),
):
    errors: dict[str, str] = {}

    name_clean = sanitize_plain(full_name)
    email_clean = email.strip().lower()

    if not name_clean:
        errors["full_name"] = "Full name is required."

    ok, message = validate_email(email_clean)
    if not ok:
        errors["email"] = message
    elif session.exec(select(Profile).where(Profile.email == email_clean)).first():
        errors["email"] = "This email is already registered. Please sign in instead."

    if not password:
        errors["password"] = "Password is required."
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."

    if role not in ROLES:
        errors["role"] = "Choose whether you are a teacher or a student."

    form = {"full_name": full_name, "email": email, "role": role}
    if errors:
        return templates.TemplateResponse(
            request,
            "auth/signup.html",
            {"form": form, "errors": errors},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    user = Profile(
        email=email_clean,
        full_name=name_clean,
        role=role,
        password_hash=hash_password(password),
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        # Same email registered concurrently
        session.rollback()
        errors["email"] = "This email is already registered. Please sign in instead."
        return templates.TemplateResponse(
            request,
            "auth/signup.html",
            {"form": form, "errors": errors},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    session.refresh(user)
    logger.info("Profile %s signed up as %s", user.id, user.role)

    request.session.clear()
    request.session["user_id"] = user.id
    return RedirectResponse(url=home_url_for(user), status_code=status.HTTP_303_SEE_OTHER)


@router.get("/logout")
def logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/logout")
def logout_post(request: Request):
    return logout(request)
