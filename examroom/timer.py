"""Exam countdown.

The remaining time is always derived from the attempt's fixed start
timestamp, so a reloaded page picks up where it left off and an attempt
whose time already ran out completes as soon as the timer is mounted.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from examroom.utils import as_utc, utcnow

WARNING_SECONDS = 5 * 60
DANGER_SECONDS = 60

SEVERITY_NORMAL = "normal"
SEVERITY_WARNING = "warning"
SEVERITY_DANGER = "danger"


def remaining_seconds(start_time: datetime, duration_minutes: int, now: datetime) -> int:
    elapsed = int((as_utc(now) - as_utc(start_time)).total_seconds())
    return max(0, duration_minutes * 60 - elapsed)


def format_seconds(seconds: int) -> str:
    hours, rest = divmod(max(0, seconds), 3600)
    mins, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"


class CountdownTimer:
    def __init__(
        self,
        start_time: datetime,
        duration_minutes: int,
        on_complete: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.start_time = start_time
        self.duration_minutes = duration_minutes
        self.on_complete = on_complete
        self.clock = clock
        self.remaining = duration_minutes * 60
        self.completed = False

    def mount(self) -> int:
        """Compute the remaining seconds from the start time.

        Fires completion straight away when nothing remains.
        """
        self.remaining = remaining_seconds(self.start_time, self.duration_minutes, self.clock())
        if self.remaining == 0:
            self._complete()
        return self.remaining

    def tick(self) -> int:
        if self.completed:
            return 0
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            self._complete()
        return self.remaining

    def _complete(self) -> None:
        if self.completed:
            return
        self.completed = True
        if self.on_complete is not None:
            self.on_complete()

    @property
    def severity(self) -> str:
        if self.remaining <= DANGER_SECONDS:
            return SEVERITY_DANGER
        if self.remaining <= WARNING_SECONDS:
            return SEVERITY_WARNING
        return SEVERITY_NORMAL

    def format_remaining(self) -> str:
        return format_seconds(self.remaining)

    async def run(self, interval: float = 1.0) -> None:
        """Mount, then tick once per ``interval`` seconds until completion."""
        self.mount()
        while not self.completed:
            await asyncio.sleep(interval)
            self.tick()
