"""Shared fixtures for sdkcompat tests."""
from pathlib import Path
from unittest.mock import patch

import pytest

from sdkcompat.config import PipelineConfig
from sdkcompat.model import ImageReference, ImageSource, JobExecution, SdkJobSpec, Step, StepOutput, ToolchainKind
from sdkcompat.service import ServiceEndpoint, ServiceHandle
from sdkcompat.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    """Fresh non-debug console per test so debug flags never leak between tests."""
    console = Console(debug=False)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def endpoint():
    return ServiceEndpoint(base_url="http://127.0.0.1:7700", host="127.0.0.1", port=7700, api_key="masterKey")


@pytest.fixture
def nightly():
    return ImageReference(tag="nightly", source=ImageSource.DEFAULT)


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(work_dir=tmp_path / "work", summary_path=None)


@pytest.fixture
def running_service(nightly, endpoint):
    """A launched server whose container stop is recorded instead of run."""
    handle = ServiceHandle("c0ffee", nightly, endpoint)
    with patch("sdkcompat.runner.launch", return_value=handle) as launch, \
            patch("sdkcompat.service._stop_container") as stop:
        yield launch, stop


@pytest.fixture
def fake_checkout():
    """Replace git clone/rev-parse with a plain directory so steps run locally."""
    def _clone(locator, dest, ref=None, depth=1):
        Path(dest).mkdir(parents=True, exist_ok=True)
        return dest

    with patch("sdkcompat.git_facts.git.clone", side_effect=_clone) as clone, \
            patch("sdkcompat.git_facts.git.head_sha", return_value="0123456789abcdef0123456789abcdef01234567"), \
            patch("sdkcompat.toolchains.base.shutil.which", return_value="/usr/bin/true"):
        yield clone


def make_spec(name, *commands, toolchain=ToolchainKind.GO, env=None):
    """SdkJobSpec with one step per shell command."""
    steps = tuple(Step(name=f"step {i}", run=cmd) for i, cmd in enumerate(commands, start=1))
    return SdkJobSpec(name=name, repository=f"meilisearch/{name}", toolchain=toolchain, steps=steps, env=env or {})


def finished(sdk, outcome="passed", commit=None):
    """A terminal JobExecution built through the normal transitions."""
    execution = JobExecution(sdk=sdk)
    if outcome == "errored":
        execution.errored("boom")
        return execution
    execution.start()
    if commit:
        execution.set_commit(commit)
    if outcome == "failed":
        output = StepOutput(index=2, name="Run tests", command="exit 1", exit_code=1, stdout="1 failing")
        execution.record(output)
        execution.failed(output)
    else:
        execution.passed()
    return execution
