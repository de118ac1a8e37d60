# toolchains/rust.py
from __future__ import annotations

from ..model import StepPhase, ToolchainKind
from .base import Toolchain


class RustToolchain(Toolchain):
    """Cargo builds before testing so compile errors surface as the build step."""

    kind = ToolchainKind.RUST
    tools = ("cargo",)
    phase_order = (StepPhase.INSTALL, StepPhase.BUILD, StepPhase.TEST, StepPhase.CHECK)

    build = (("Build", "cargo build --verbose"),)
    test = (("Run tests", "cargo test --verbose"),)
