# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import subprocess
import threading
import time
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .aggregator import Aggregator
from .config import PipelineConfig
from .git_facts import git
from .model import (
    MAX_CAPTURED_CHARS,
    JobExecution,
    PipelineRun,
    PipelineSummary,
    SdkJobSpec,
    Step,
    StepOutput,
    TriggerKind,
)
from .notify import Notifier
from .resolver import parse_trigger, resolve
from .service import LaunchError, ServiceEndpoint, launch
from .toolchains.registry import get_toolchain
from .ui.console import get_console


@dataclass
class CIError(Exception):
    """
    Structured infrastructure error (not the SDK's fault) with enough context for:
      - clean CLI output
      - the per-SDK summary
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    """An SDK step exited non-zero: the SDK's fault, not the pipeline's."""
    job: str
    output: StepOutput

    def __str__(self) -> str:
        o = self.output
        return f"[{self.job}] step {o.index} '{o.name}' failed (exit={o.exit_code}): {o.command}"


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "node": "Install Node.js or fix PATH.",
    "yarn": "Enable corepack (corepack enable) or install yarn.",
    "php": "Install PHP (e.g., shivammathur/setup-php or your package manager).",
    "composer": "Install Composer: https://getcomposer.org/download/",
    "python3": "Install Python 3 or fix PATH (python3).",
    "pipenv": "Install pipenv (e.g., pip install --user pipenv).",
    "go": "Install Go or fix PATH.",
    "ruby": "Install Ruby 3 or fix PATH.",
    "bundle": "Install bundler (gem install bundler).",
    "cargo": "Install Rust via rustup or fix PATH.",
}

# How often a running step checks for cancellation
_CANCEL_POLL_SECONDS = 0.5


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[SdkJobSpec]:
    """
    Load SDK job specs from a python file path.

    The file must define either:
      - workflow() -> List[SdkJobSpec]
      - SDKS = [SdkJobSpec, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"sdkcompat_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    specs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            specs = globals_dict["workflow"]()
        except TypeError as e:
            if "positional arguments but" in str(e) and "was given" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from sdkcompat import wf, sdk, sh` then "
                    "`def workflow(): return wf(sdk(...), sdk(...))`"
                ) from e
            raise
    elif "SDKS" in globals_dict:
        specs = globals_dict["SDKS"]

    if not isinstance(specs, list) or not all(isinstance(s, SdkJobSpec) for s in specs):
        raise TypeError(
            "Workflow must return/define a List[SdkJobSpec]. "
            "Define workflow() -> List[SdkJobSpec] or SDKS = [SdkJobSpec, ...]."
        )

    return specs


def select_sdks(specs: Sequence[SdkJobSpec], names: Iterable[str] = ()) -> List[SdkJobSpec]:
    """Keep only the named SDKs (all of them when no names are given)."""
    wanted = list(names)
    if not wanted:
        return list(specs)
    known = {s.name for s in specs}
    unknown = sorted(set(wanted) - known)
    if unknown:
        raise ValueError(f"Unknown SDK(s): {unknown}. Known SDKs: {sorted(known)}")
    return [s for s in specs if s.name in wanted]


# ----------------------------------------------------------------------
# Job runner
# ----------------------------------------------------------------------

class JobRunner:
    """
    Runs one SDK job against the shared service.

    The runner owns its checkout directory and its JobExecution. It only
    reads the service endpoint and never stops the service.
    """

    def __init__(
        self,
        spec: SdkJobSpec,
        service: ServiceEndpoint,
        work_dir: Path,
        cancel: Optional[threading.Event] = None,
    ):
        self.spec = spec
        self.service = service
        self.checkout_dir = Path(work_dir).resolve() / spec.name
        self.cancel = cancel or threading.Event()
        self.execution = JobExecution(sdk=spec.name)
        self.toolchain = get_toolchain(spec.toolchain)

    # ---- environment ----

    def _step_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.spec.env)
        env.update(self.service.env())
        return env

    def _render_context(self) -> Dict[str, str]:
        ctx = dict(self.spec.env)
        ctx.update(self.service.env())
        return ctx

    # ---- phases ----

    def _checkout(self) -> None:
        if self.checkout_dir.exists():
            shutil.rmtree(self.checkout_dir)
        self.checkout_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            git.clone(self.spec.repository, self.checkout_dir, ref=self.spec.ref)
            self.execution.set_commit(git.head_sha(self.checkout_dir))
        except subprocess.CalledProcessError as e:
            raise CIError(
                kind="checkout_failed",
                job=self.spec.name,
                step=None,
                message=f"could not fetch {self.spec.repository}",
                details={"stderr": (e.stderr or "").strip()[-2000:]},
            ) from e
        except FileNotFoundError as e:
            raise CIError(
                kind="checkout_failed",
                job=self.spec.name,
                step=None,
                message="git command not found",
                details={"hint": TOOL_HINTS["git"]},
            ) from e

    def _run_step(self, index: int, step: Step, env: Dict[str, str]) -> StepOutput:
        cwd = (self.checkout_dir / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise CIError(
                kind="cwd_missing",
                job=self.spec.name,
                step=step.name,
                message=f"step cwd not found: {cwd}",
            )

        cmd = step.render(self._render_context())
        started = time.monotonic()
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=env,
            # Test output is not always valid UTF-8
            encoding="utf-8",
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_CANCEL_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if self.cancel.is_set():
                    proc.terminate()
                    try:
                        proc.communicate(timeout=10)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                        proc.communicate()
                    raise CIError(
                        kind="cancelled",
                        job=self.spec.name,
                        step=step.name,
                        message="run cancelled",
                    )

        return StepOutput(
            index=index,
            name=step.name,
            command=cmd,
            exit_code=proc.returncode,
            stdout=(stdout or "")[-MAX_CAPTURED_CHARS:],
            stderr=(stderr or "")[-MAX_CAPTURED_CHARS:],
            duration=time.monotonic() - started,
        )

    def run(self) -> JobExecution:
        """Never raises: every outcome ends up on the returned execution."""
        console = get_console()
        execution = self.execution
        console.print_job_start(self.spec.name)
        current: Optional[tuple[int, str]] = None

        try:
            if self.cancel.is_set():
                raise CIError(kind="cancelled", job=self.spec.name, step=None, message="run cancelled")
            execution.start()
            self._checkout()
            provisioned = self.toolchain.provision(self.spec.name, extra=self.spec.requires, env=self.spec.env)
            if provisioned:
                console.print_debug(f"[{self.spec.name}] provisioned: {', '.join(provisioned)}")

            env = self._step_env()
            for index, step in enumerate(self.spec.steps, start=1):
                if self.cancel.is_set():
                    raise CIError(kind="cancelled", job=self.spec.name, step=step.name, message="run cancelled")
                current = (index, step.name)
                console.print_step(self.spec.name, index, step.name)
                output = self._run_step(index, step, env)
                execution.record(output)
                if not output.ok:
                    raise StepFailure(job=self.spec.name, output=output)
            execution.passed()

        except StepFailure as e:
            console.print_debug(str(e))
            execution.failed(e.output)
        except CIError as e:
            step_index, step_name = current if current and e.step else (None, None)
            execution.errored(str(e), step=step_index, step_name=step_name)
        except Exception as e:
            # Anything unexpected is infrastructure, not an SDK regression
            execution.errored(f"{type(e).__name__}: {e}")
            console.print_exception(e)

        console.print_job_finished(execution)
        return execution


def run_sdk_job(
    spec: SdkJobSpec,
    service: ServiceEndpoint,
    *,
    work_dir: str | Path,
    cancel: Optional[threading.Event] = None,
) -> JobExecution:
    return JobRunner(spec, service, Path(work_dir), cancel).run()


# ----------------------------------------------------------------------
# Pipeline orchestration
# ----------------------------------------------------------------------

def run_pipeline(
    specs: Sequence[SdkJobSpec],
    *,
    trigger: TriggerKind | str = TriggerKind.MANUAL,
    docker_image: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
    notifier: Optional[Notifier] = None,
    cancel: Optional[threading.Event] = None,
    workflow_name: Optional[str] = None,
) -> PipelineSummary:
    """
    Resolve the image, start the service, fan out one job per SDK, join, aggregate.

    A LaunchError is fatal: no job starts and every SDK is reported as errored
    with the launch failure as shared cause. KeyboardInterrupt, or `cancel`
    being set by a signal handler, cancels all in-flight jobs; the summary
    still covers every SDK.
    """
    console = get_console()
    config = config or PipelineConfig()
    cancel = cancel or threading.Event()
    trigger_kind = parse_trigger(trigger)

    image = resolve(
        trigger_kind,
        docker_image,
        default=config.default_tag,
        repository=config.service.image_repository,
    )
    run = PipelineRun(trigger=trigger_kind, image=image, specs=tuple(specs))
    aggregator = Aggregator(notifier=notifier, team=config.server_team)

    console.print_run_started(
        image=image.image,
        trigger=trigger_kind.value,
        sdk_count=len(run.specs),
        workflow=workflow_name,
    )

    try:
        handle = launch(image, config.service, cancel=cancel)
    except LaunchError as e:
        console.print_error("Service launch failed", str(e))
        cause = f"{e.kind.value}: {e.message}"
        for spec in run.specs:
            execution = JobExecution(sdk=spec.name)
            execution.errored(f"service launch failed ({cause})")
            run.record(execution)
        return aggregator.aggregate(run.executions.values(), image=image, trigger=trigger_kind, cause=cause)

    interrupted = False
    with handle:
        max_workers = config.max_workers or max(1, len(run.specs))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sdk") as pool:
            futures = {
                pool.submit(run_sdk_job, spec, handle.endpoint, work_dir=config.work_dir, cancel=cancel): spec.name
                for spec in run.specs
            }
            pending = set(futures)
            while pending:
                try:
                    _done, pending = wait(pending, return_when=ALL_COMPLETED)
                except KeyboardInterrupt:
                    console.print_info("\nInterrupted: cancelling in-flight SDK jobs...")
                    interrupted = True
                    cancel.set()

            for fut, name in futures.items():
                try:
                    execution = fut.result()
                except Exception as e:
                    execution = JobExecution(sdk=name)
                    execution.errored(f"{type(e).__name__}: {e}")
                run.record(execution)

    summary = aggregator.aggregate(
        run.executions.values(),
        image=image,
        trigger=trigger_kind,
        cause="cancelled" if interrupted or cancel.is_set() else None,
    )
    if interrupted:
        raise PipelineInterrupted(summary)
    return summary


class PipelineInterrupted(KeyboardInterrupt):
    """Raised after a cancelled run has been cleaned up and summarised."""

    def __init__(self, summary: PipelineSummary):
        super().__init__("pipeline interrupted")
        self.summary = summary
