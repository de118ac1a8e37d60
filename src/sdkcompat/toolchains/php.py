# toolchains/php.py
from __future__ import annotations

from ..model import ToolchainKind
from .base import Toolchain


class PhpToolchain(Toolchain):
    kind = ToolchainKind.PHP
    tools = ("php", "composer")

    install = (
        ("Validate composer.json and composer.lock", "composer validate"),
        ("Install dependencies", "composer update --prefer-dist --no-progress"),
    )
    test = (("Run test suite", "vendor/bin/phpunit"),)
