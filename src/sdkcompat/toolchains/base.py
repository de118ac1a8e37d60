# toolchains/base.py
from __future__ import annotations

import os
import shutil
import subprocess
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple

from ..model import Step, StepPhase, ToolchainKind


# (step name, shell command)
Command = Tuple[str, str]

DEFAULT_PHASE_ORDER: Tuple[StepPhase, ...] = (
    StepPhase.INSTALL,
    StepPhase.TEST,
    StepPhase.BUILD,
    StepPhase.CHECK,
)


class Toolchain:
    """
    One ecosystem's way of installing, testing and building an SDK.

    Subclasses only declare data: the tools they need, how to provision the
    ones that can be installed on the fly, and the default command for each
    phase. Adding an ecosystem means adding one subclass to the registry.
    """

    kind: ClassVar[ToolchainKind]
    tools: ClassVar[Tuple[str, ...]] = ()
    # tool -> shell command that makes it available
    provisioners: ClassVar[Dict[str, str]] = {}
    phase_order: ClassVar[Tuple[StepPhase, ...]] = DEFAULT_PHASE_ORDER

    install: ClassVar[Tuple[Command, ...]] = ()
    test: ClassVar[Tuple[Command, ...]] = ()
    build: ClassVar[Tuple[Command, ...]] = ()
    check: ClassVar[Tuple[Command, ...]] = ()

    # ---- capability interface ----

    def install_steps(self, cwd: str | None = None) -> List[Step]:
        return self._steps(StepPhase.INSTALL, self.install, cwd)

    def test_steps(self, cwd: str | None = None) -> List[Step]:
        return self._steps(StepPhase.TEST, self.test, cwd)

    def build_steps(self, cwd: str | None = None) -> List[Step]:
        return self._steps(StepPhase.BUILD, self.build, cwd)

    def check_steps(self, cwd: str | None = None) -> List[Step]:
        return self._steps(StepPhase.CHECK, self.check, cwd)

    def default_steps(self, phase: StepPhase, cwd: str | None = None) -> List[Step]:
        return {
            StepPhase.INSTALL: self.install_steps,
            StepPhase.TEST: self.test_steps,
            StepPhase.BUILD: self.build_steps,
            StepPhase.CHECK: self.check_steps,
        }[phase](cwd)

    def steps(
        self,
        overrides: Optional[Dict[StepPhase, Sequence[Step]]] = None,
        cwd: str | None = None,
    ) -> List[Step]:
        """
        Assemble a full step list in this toolchain's phase order.

        A phase present in `overrides` (even as an empty list) replaces the
        toolchain default for that phase.
        """
        overrides = overrides or {}
        out: List[Step] = []
        for phase in self.phase_order:
            if phase in overrides:
                out.extend(overrides[phase])
            else:
                out.extend(self.default_steps(phase, cwd))
        return out

    @staticmethod
    def _steps(phase: StepPhase, commands: Iterable[Command], cwd: str | None) -> List[Step]:
        return [Step(name=name, run=cmd, cwd=cwd, phase=phase) for name, cmd in commands]

    # ---- provisioning ----

    def missing_tools(self, extra: Iterable[str] = ()) -> List[str]:
        wanted: List[str] = []
        for tool in (*self.tools, *extra):
            if tool not in wanted:
                wanted.append(tool)
        return [t for t in wanted if shutil.which(t) is None]

    def provision(
        self,
        job: str,
        extra: Iterable[str] = (),
        env: Optional[Dict[str, str]] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> List[str]:
        """
        Make sure every tool the job needs is on PATH.

        Returns the tools that had to be provisioned. Raises CIError when a
        provisioning command fails or a tool is still missing afterwards.
        """
        # Import here to avoid circular import
        from ..runner import TOOL_HINTS, CIError

        extra = list(extra)
        provisioned: List[str] = []
        for tool in self.missing_tools(extra):
            cmd = self.provisioners.get(tool)
            if cmd is None:
                continue
            proc = runner(
                cmd,
                shell=True,
                env={**os.environ, **(env or {})},
                text=True,
                capture_output=True,
            )
            if proc.returncode != 0:
                raise CIError(
                    kind="provision_failed",
                    job=job,
                    step=None,
                    message=f"could not provision {tool}",
                    details={"cmd": cmd, "exit_code": proc.returncode, "stderr": (proc.stderr or "")[-2000:]},
                )
            provisioned.append(tool)

        still_missing = self.missing_tools(extra)
        if still_missing:
            tool = still_missing[0]
            raise CIError(
                kind="tool_unavailable",
                job=job,
                step=None,
                message=f"{tool} is not available",
                details={
                    "hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."),
                    "missing": ", ".join(still_missing),
                },
            )
        return provisioned
