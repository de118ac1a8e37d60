# toolchains/node.py
from __future__ import annotations

from ..model import ToolchainKind
from .base import Toolchain


class NodeToolchain(Toolchain):
    """Node SDKs driven by yarn."""

    kind = ToolchainKind.NODE
    tools = ("node", "yarn")
    provisioners = {"yarn": "corepack enable"}

    install = (("Install dependencies", "yarn install"),)
    test = (("Run tests", "yarn test"),)
    build = (("Build project", "yarn build"),)
