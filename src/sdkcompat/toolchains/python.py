# toolchains/python.py
from __future__ import annotations

from ..model import ToolchainKind
from .base import Toolchain


class PythonToolchain(Toolchain):
    """Python SDKs managed with pipenv."""

    kind = ToolchainKind.PYTHON
    tools = ("python3", "pipenv")
    provisioners = {"pipenv": "python3 -m pip install --user pipenv"}

    install = (("Install dependencies", "pipenv install --dev"),)
    test = (("Test with pytest", "pipenv run pytest"),)
