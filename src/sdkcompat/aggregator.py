# aggregator.py
from __future__ import annotations

import threading
from typing import Iterable, Optional, Set

from .config import DEFAULT_SERVER_TEAM
from .model import ImageReference, JobExecution, PipelineSummary, SdkResult, TriggerKind
from .notify import Notification, NotificationError, Notifier
from .ui.console import get_console


class Aggregator:
    """
    Joins finished SDK jobs into a PipelineSummary and tells the server team
    when anything broke.

    Aggregating the same finished executions twice yields byte-identical
    summaries, and a given summary is only ever notified once.
    """

    def __init__(self, notifier: Optional[Notifier] = None, team: str = DEFAULT_SERVER_TEAM):
        self.notifier = notifier
        self.team = team
        self._notified: Set[str] = set()
        self._lock = threading.Lock()

    def aggregate(
        self,
        executions: Iterable[JobExecution],
        *,
        image: ImageReference,
        trigger: TriggerKind,
        cause: Optional[str] = None,
    ) -> PipelineSummary:
        executions = list(executions)
        unfinished = sorted(e.sdk for e in executions if not e.is_terminal)
        if unfinished:
            raise ValueError(f"Cannot aggregate unfinished SDK jobs: {unfinished}")

        names = [e.sdk for e in executions]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate executions for SDK(s): {dupes}")

        results = tuple(
            SdkResult.from_execution(e) for e in sorted(executions, key=lambda e: e.sdk)
        )
        summary = PipelineSummary(image=image, trigger=trigger, results=results, cause=cause)

        if summary.failed:
            self._notify(summary)
        return summary

    def _notify(self, summary: PipelineSummary) -> None:
        if self.notifier is None:
            return
        digest = summary.digest
        with self._lock:
            if digest in self._notified:
                return
            self._notified.add(digest)
        try:
            self.notifier.send(Notification.from_summary(summary, self.team))
        except NotificationError as e:
            get_console().print_error(
                "Notification failed",
                str(e),
                suggestion="The summary is still written; check the webhook URL.",
            )
