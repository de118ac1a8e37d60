# toolchains/registry.py
from __future__ import annotations

from typing import Dict, Type

from ..model import ToolchainKind
from .base import Toolchain
from .go import GoToolchain
from .node import NodeToolchain
from .php import PhpToolchain
from .python import PythonToolchain
from .ruby import RubyToolchain
from .rust import RustToolchain


TOOLCHAINS: Dict[ToolchainKind, Type[Toolchain]] = {
    tc.kind: tc
    for tc in (
        NodeToolchain,
        PhpToolchain,
        PythonToolchain,
        GoToolchain,
        RubyToolchain,
        RustToolchain,
    )
}


def get_toolchain(kind: ToolchainKind | str) -> Toolchain:
    try:
        key = ToolchainKind(kind)
    except ValueError:
        known = ", ".join(k.value for k in ToolchainKind)
        raise ValueError(f"Unknown toolchain {kind!r} (known: {known})") from None
    return TOOLCHAINS[key]()
