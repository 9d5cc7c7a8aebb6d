"""Jinja2 environment shared by the routers and the exception handlers."""

from datetime import datetime
from pathlib import Path

from fastapi.templating import Jinja2Templates

from examroom.config import settings
from examroom.timer import format_seconds

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _format_datetime(value, fmt: str = "%d %b %Y, %H:%M") -> str:
    if not isinstance(value, datetime):
        return ""
    return value.strftime(fmt)


templates.env.filters["datetime"] = _format_datetime
templates.env.filters["clock"] = format_seconds
templates.env.globals["app_name"] = settings.app_name
