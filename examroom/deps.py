"""Shared FastAPI dependencies for database access, storage and authentication."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from examroom.config import settings
from examroom.database import get_session
from examroom.drafts import DraftStore, FileDraftStore
from examroom.models import ROLE_STUDENT, ROLE_TEACHER, Profile
from examroom.storage import LocalObjectStorage


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[Profile]:
    """Return the signed-in profile from the session cookie, if any.

    The profile is looked up once per request and kept on ``request.state``
    so templates and handlers share the same object.
    """
    if hasattr(request.state, "user"):
        return request.state.user
    user = None
    user_id = request.session.get("user_id")
    if user_id:
        user = session.get(Profile, user_id)
        if user is None:
            # Stale cookie for a deleted profile
            request.session.clear()
    request.state.user = user
    return user


def require_login(current_user: Optional[Profile] = Depends(get_current_user)) -> Profile:
    """Ensure that a user is logged in; otherwise redirect to login."""
    if current_user is None:
        raise HTTPException(status_code=303, headers={"Location": "/auth/login"})
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: Profile = Depends(require_login)) -> Profile:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


require_teacher = require_role([ROLE_TEACHER])
require_student = require_role([ROLE_STUDENT])


def get_storage() -> LocalObjectStorage:
    return LocalObjectStorage(settings.media_dir, settings.media_url)


_drafts = FileDraftStore(settings.drafts_dir)


def get_drafts() -> DraftStore:
    return _drafts
