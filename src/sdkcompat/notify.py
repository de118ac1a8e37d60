# notify.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .model import PipelineSummary, SdkResult
from .ui.console import get_console


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""
    pass


@dataclass(frozen=True)
class Notification:
    """What the server team gets when SDKs break against an image."""
    team: str
    image: str
    trigger: str
    failures: List[SdkResult] = field(default_factory=list)
    cause: Optional[str] = None

    @property
    def title(self) -> str:
        names = ", ".join(f.sdk for f in self.failures)
        return f"SDK tests failed against {self.image}: {names}"

    @property
    def text(self) -> str:
        lines = [
            self.title,
            f"Attention {self.team}: make sure these breaking changes are expected, "
            f"then contact the integration team.",
            f"Trigger: {self.trigger}",
        ]
        if self.cause:
            lines.append(f"Cause: {self.cause}")
        for f in self.failures:
            line = f"- {f.sdk}: {f.status.value}"
            if f.failed_step is not None:
                line += f" at step {f.failed_step} ({f.failed_step_name})"
            if f.commit:
                line += f" @ {f.commit[:12]}"
            lines.append(line)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "team": self.team,
            "image": self.image,
            "trigger": self.trigger,
            "cause": self.cause,
            "failures": [f.to_dict() for f in self.failures],
        }

    @classmethod
    def from_summary(cls, summary: PipelineSummary, team: str) -> Notification:
        return cls(
            team=team,
            image=summary.image.image,
            trigger=summary.trigger.value,
            failures=summary.failures,
            cause=summary.cause,
        )


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


class ConsoleNotifier:
    """Prints the notification. Used when no webhook is configured."""

    def send(self, notification: Notification) -> None:
        console = get_console()
        console.print_header("NOTIFICATION")
        console.print_info(notification.text)
        for f in notification.failures:
            if f.output:
                console.print_debug(f"[{f.sdk}] output tail:\n{f.output}")


class WebhookNotifier:
    """POSTs the notification as JSON (a Slack-compatible `text` field is included)."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        data = json.dumps(notification.to_dict()).encode("utf-8")
        req = urllib.request.Request(
            self.url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise NotificationError(f"Webhook rejected notification: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise NotificationError(f"Network error: {e.reason}")


def build_notifier(url: Optional[str]) -> Notifier:
    return WebhookNotifier(url) if url else ConsoleNotifier()
