# toolchains/ruby.py
from __future__ import annotations

from ..model import ToolchainKind
from .base import Toolchain


class RubyToolchain(Toolchain):
    kind = ToolchainKind.RUBY
    tools = ("ruby", "bundle")
    provisioners = {"bundle": "gem install bundler"}

    install = (("Install ruby dependencies", "bundle install --with test"),)
    test = (("Run test suite", "bundle exec rspec"),)
