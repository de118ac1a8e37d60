# model.py
from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from string import Template
from typing import Dict, List, Mapping, Optional, Tuple


DEFAULT_IMAGE_REPOSITORY = "getmeili/meilisearch"

# Output kept per step and per summary entry
MAX_CAPTURED_CHARS = 20_000
SUMMARY_OUTPUT_CHARS = 4_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------

class TriggerKind(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class ImageSource(str, Enum):
    DEFAULT = "default"
    OVERRIDE = "override"


class ToolchainKind(str, Enum):
    NODE = "node"
    PHP = "php"
    PYTHON = "python"
    GO = "go"
    RUBY = "ruby"
    RUST = "rust"


class StepPhase(str, Enum):
    INSTALL = "install"
    TEST = "test"
    BUILD = "build"
    CHECK = "check"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.PASSED, JobStatus.FAILED, JobStatus.ERRORED)


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.ERRORED},
    JobStatus.RUNNING: {JobStatus.PASSED, JobStatus.FAILED, JobStatus.ERRORED},
    JobStatus.PASSED: set(),
    JobStatus.FAILED: set(),
    JobStatus.ERRORED: set(),
}


class InvalidTransition(ValueError):
    """Raised when a JobExecution is moved backwards or mutated after completion."""


# ---------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ImageReference:
    """The server build under test. One per pipeline run."""
    tag: str
    source: ImageSource
    repository: str = DEFAULT_IMAGE_REPOSITORY

    @property
    def image(self) -> str:
        return f"{self.repository}:{self.tag}"

    def __str__(self) -> str:
        return self.image


@dataclass(frozen=True)
class Step:
    """A single shell command inside an SDK job."""
    name: str
    run: str
    cwd: str | None = None
    phase: StepPhase = StepPhase.TEST

    def render(self, context: Mapping[str, str]) -> str:
        # $VAR placeholders we know about are filled in, anything else is left
        # for the shell to expand.
        return Template(self.run).safe_substitute(context)


@dataclass(frozen=True)
class SdkJobSpec:
    """
    Static descriptor of one SDK job.

    `repository` is either "owner/name" (GitHub) or a full git URL.
    `ref` pins a branch/tag/commit; None means the SDK's default branch.
    """
    name: str
    repository: str
    toolchain: ToolchainKind
    steps: Tuple[Step, ...]
    env: Dict[str, str] = field(default_factory=dict)
    requires: Tuple[str, ...] = ()
    ref: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"SDK job '{self.name}' has no steps")


# ---------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutput:
    index: int  # 1-based position in SdkJobSpec.steps
    name: str
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, limit: int = SUMMARY_OUTPUT_CHARS) -> str:
        text = self.stdout
        if self.stderr:
            text = f"{text}\n{self.stderr}" if text else self.stderr
        return text[-limit:]


@dataclass
class JobExecution:
    """
    Runtime record of one SDK job.

    Owned by a single runner while running, read-only once terminal.
    """
    sdk: str
    status: JobStatus = JobStatus.PENDING
    steps: Tuple[StepOutput, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_step: Optional[int] = None
    failed_step_name: Optional[str] = None
    error: Optional[str] = None
    commit: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _advance(self, new: JobStatus) -> None:
        if new not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"[{self.sdk}] cannot move from {self.status.value} to {new.value}"
            )
        self.status = new

    def _check_open(self) -> None:
        if self.is_terminal:
            raise InvalidTransition(f"[{self.sdk}] execution is already {self.status.value}")

    def start(self) -> None:
        self._advance(JobStatus.RUNNING)
        self.started_at = _utcnow()

    def set_commit(self, sha: str) -> None:
        self._check_open()
        self.commit = sha

    def record(self, output: StepOutput) -> None:
        self._check_open()
        self.steps = self.steps + (output,)

    def passed(self) -> None:
        self._advance(JobStatus.PASSED)
        self.finished_at = _utcnow()

    def failed(self, output: StepOutput) -> None:
        self._advance(JobStatus.FAILED)
        self.failed_step = output.index
        self.failed_step_name = output.name
        self.error = f"step {output.index} '{output.name}' exited with {output.exit_code}"
        self.finished_at = _utcnow()

    def errored(self, message: str, *, step: Optional[int] = None, step_name: Optional[str] = None) -> None:
        self._advance(JobStatus.ERRORED)
        self.error = message
        self.failed_step = step
        self.failed_step_name = step_name
        self.finished_at = _utcnow()

    @property
    def output_tail(self) -> str:
        if self.failed_step is None:
            return ""
        for out in self.steps:
            if out.index == self.failed_step:
                return out.tail()
        return ""

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class PipelineRun:
    """One image, the configured SDK specs, and at most one execution per spec."""
    trigger: TriggerKind
    image: ImageReference
    specs: Tuple[SdkJobSpec, ...]
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    executions: Dict[str, JobExecution] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = [s.name for s in self.specs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate SDK names found: {dupes}")

    @property
    def sdk_names(self) -> List[str]:
        return [s.name for s in self.specs]

    def record(self, execution: JobExecution) -> None:
        if execution.sdk not in self.sdk_names:
            raise ValueError(f"Unknown SDK '{execution.sdk}' for run {self.run_id}")
        if execution.sdk in self.executions:
            raise ValueError(f"SDK '{execution.sdk}' already has an execution in run {self.run_id}")
        self.executions[execution.sdk] = execution

    @property
    def missing(self) -> List[str]:
        return [n for n in self.sdk_names if n not in self.executions]


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------

def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class SdkResult:
    sdk: str
    status: JobStatus
    failed_step: Optional[int] = None
    failed_step_name: Optional[str] = None
    commit: Optional[str] = None
    error: Optional[str] = None
    output: str = ""

    @classmethod
    def from_execution(cls, execution: JobExecution) -> SdkResult:
        return cls(
            sdk=execution.sdk,
            status=execution.status,
            failed_step=execution.failed_step,
            failed_step_name=execution.failed_step_name,
            commit=execution.commit,
            error=execution.error,
            output=execution.output_tail,
        )

    def to_dict(self) -> dict:
        return {
            "sdk": self.sdk,
            "status": self.status.value,
            "failed_step": self.failed_step,
            "failed_step_name": self.failed_step_name,
            "commit": self.commit,
            "error": self.error,
            "output": self.output,
        }


@dataclass(frozen=True)
class PipelineSummary:
    image: ImageReference
    trigger: TriggerKind
    results: Tuple[SdkResult, ...]
    cause: Optional[str] = None

    @property
    def status(self) -> str:
        bad = (JobStatus.FAILED, JobStatus.ERRORED)
        return "failed" if any(r.status in bad for r in self.results) else "passed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def failures(self) -> List[SdkResult]:
        return [r for r in self.results if r.status in (JobStatus.FAILED, JobStatus.ERRORED)]

    def to_dict(self) -> dict:
        return {
            "image": self.image.image,
            "image_source": self.image.source.value,
            "trigger": self.trigger.value,
            "status": self.status,
            "cause": self.cause,
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self) -> str:
        return _json_dumps_stable(self.to_dict())

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()

    def write(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), sort_keys=True, indent=2) + "\n", encoding="utf-8")
        return p

