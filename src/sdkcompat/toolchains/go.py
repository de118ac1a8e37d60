# toolchains/go.py
from __future__ import annotations

from ..model import ToolchainKind
from .base import Toolchain


class GoToolchain(Toolchain):
    kind = ToolchainKind.GO
    tools = ("go",)

    # Older SDK branches still vendor through dep
    install = ((
        "Get dependencies",
        "go get -v -t -d ./...\n"
        "if [ -f Gopkg.toml ]; then\n"
        "    curl https://raw.githubusercontent.com/golang/dep/master/install.sh | sh\n"
        "    dep ensure\n"
        "fi",
    ),)
    test = (("Run integration tests", "go test -v ./..."),)
