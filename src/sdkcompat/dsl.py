# src/sdkcompat/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .model import SdkJobSpec, Step, StepPhase, ToolchainKind
from .toolchains.registry import get_toolchain


# A step can be declared as a Step, a bare command, or a (name, command) pair
StepLike = Union[Step, str, Tuple[str, str]]


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, phase: StepPhase = StepPhase.TEST) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, phase=phase)


def _coerce(item: StepLike, phase: StepPhase, cwd: str | None) -> Step:
    if isinstance(item, Step):
        step = replace(item, phase=phase)
    elif isinstance(item, tuple):
        name, cmd = item
        step = Step(name=name, run=cmd, phase=phase)
    else:
        step = Step(name=item, run=item, phase=phase)
    if cwd is not None and step.cwd is None:
        step = replace(step, cwd=cwd)
    return step


def _phase_overrides(
    cwd: str | None,
    **phases: Optional[Sequence[StepLike]],
) -> Dict[StepPhase, List[Step]]:
    out: Dict[StepPhase, List[Step]] = {}
    for key, items in phases.items():
        if items is None:
            continue
        phase = StepPhase(key)
        out[phase] = [_coerce(i, phase, cwd) for i in items]
    return out


# ---------------------------------------------------------------------
# Functional SDK helper
# ---------------------------------------------------------------------

def sdk(
    name: str,
    repository: str,
    toolchain: ToolchainKind | str,
    *steps: Step,  # allow: sdk("x", "org/x", "go", sh(...), sh(...))
    install: Optional[Sequence[StepLike]] = None,
    test: Optional[Sequence[StepLike]] = None,
    build: Optional[Sequence[StepLike]] = None,
    check: Optional[Sequence[StepLike]] = None,
    env: Optional[Dict[str, str]] = None,
    requires: Optional[List[str]] = None,
    ref: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> SdkJobSpec:
    """
    Declare one SDK job.

    Explicit positional steps are used verbatim. Otherwise the steps come
    from the toolchain's defaults, with any phase given here (install/test/
    build/check) replacing that phase's defaults; pass [] to drop a phase.
    """
    tc = get_toolchain(toolchain)

    if steps:
        steps_final = [s if s.cwd is not None or cwd is None else replace(s, cwd=cwd) for s in steps]
    else:
        overrides = _phase_overrides(cwd, install=install, test=test, build=build, check=check)
        steps_final = tc.steps(overrides, cwd=cwd)

    if not steps_final:
        raise ValueError(f"sdk({name!r}) must have at least one step")

    return SdkJobSpec(
        name=name,
        repository=repository,
        toolchain=tc.kind,
        steps=tuple(steps_final),
        env={k: str(v) for k, v in (env or {}).items()},
        requires=tuple(requires or ()),
        ref=ref,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class SdkBuilder:
    def __init__(self, name: str):
        self.name = name
        self._repository: Optional[str] = None
        self._toolchain: Optional[ToolchainKind | str] = None
        self._phases: Dict[StepPhase, List[Step]] = {}
        self._env: dict[str, str] = {}
        self._requires: list[str] = []
        self._ref: Optional[str] = None

    def from_repository(self, repository: str, ref: Optional[str] = None):
        self._repository = repository
        self._ref = ref
        return self

    def using(self, toolchain: ToolchainKind | str):
        self._toolchain = toolchain
        return self

    def define_requirements(self, *tools: str):
        self._requires.extend(tools)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, phase: StepPhase = StepPhase.TEST):
        self._phases.setdefault(phase, []).append(Step(name=name, run=run, cwd=cwd, phase=phase))
        return self

    def skip_phase(self, phase: StepPhase):
        self._phases[phase] = []
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> SdkJobSpec:
        if not self._repository:
            raise ValueError(f"SDK '{self.name}' has no repository")
        if self._toolchain is None:
            raise ValueError(f"SDK '{self.name}' has no toolchain")

        tc = get_toolchain(self._toolchain)
        steps = tc.steps(self._phases)
        if not steps:
            raise ValueError(f"SDK '{self.name}' has no steps")

        return SdkJobSpec(
            name=self.name,
            repository=self._repository,
            toolchain=tc.kind,
            steps=tuple(steps),
            env=dict(self._env),
            requires=tuple(self._requires),
            ref=self._ref,
        )


def build(name: str) -> SdkBuilder:
    """Convenience: build('meilisearch-go').from_repository(...).using('go').build()"""
    return SdkBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*items: Union[SdkJobSpec, List[SdkJobSpec]]) -> List[SdkJobSpec]:
    """
    Workflow definition helper. Lists of SDK specs are flattened.

        from sdkcompat import wf, sdk

        def workflow():
            return wf(
                sdk(...),
                sdk(...),
            )

    Or use SDKS directly:
        SDKS = wf(sdk(...), sdk(...))
    """
    out: List[SdkJobSpec] = []
    for item in items:
        if isinstance(item, list):
            out.extend(item)
        else:
            out.append(item)
    return out
