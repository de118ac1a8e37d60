# scheduler.py
from __future__ import annotations

import signal
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .ui.console import get_console


# Every Monday at 06:00 UTC ("0 6 * * MON")
WEEKLY_WEEKDAY = 0
WEEKLY_HOUR = 6
WEEKLY_MINUTE = 0


def next_weekly_run(
    after: datetime,
    weekday: int = WEEKLY_WEEKDAY,
    hour: int = WEEKLY_HOUR,
    minute: int = WEEKLY_MINUTE,
) -> datetime:
    """First slot strictly after `after` (naive datetimes are taken as UTC)."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    after = after.astimezone(timezone.utc)

    candidate = after.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
    if candidate <= after:
        candidate += timedelta(days=7)
    return candidate


class WeeklyScheduler:
    """
    Fires `job(cancel)` once per weekly slot until stopped (SIGINT/SIGTERM or stop()).

    Stopping also sets `cancel`, which the job hands to run_pipeline so a run
    in progress is cancelled rather than waited for.
    """

    def __init__(
        self,
        job: Callable[[threading.Event], object],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time.sleep,
        tick: float = 60.0,
    ):
        self.job = job
        self.clock = clock
        self.sleep = sleep
        self.tick = tick
        self.running = True
        self.cancel = threading.Event()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        get_console().print_info(f"\nReceived signal {signum}, stopping scheduler...")
        self.running = False
        self.cancel.set()

    def stop(self) -> None:
        self.running = False
        self.cancel.set()

    def run(self, max_runs: Optional[int] = None) -> int:
        """Returns how many times the job fired."""
        console = get_console()
        fired = 0
        due = next_weekly_run(self.clock())
        console.print_info(f"Next scheduled run: {due.isoformat()}")

        while self.running and (max_runs is None or fired < max_runs):
            now = self.clock()
            if now < due:
                self.sleep(min(self.tick, (due - now).total_seconds()))
                continue

            fired += 1
            try:
                self.job(self.cancel)
            except Exception as e:
                # A broken run must not kill the schedule
                console.print_exception(e)
            due = next_weekly_run(self.clock())
            console.print_info(f"Next scheduled run: {due.isoformat()}")

        return fired
