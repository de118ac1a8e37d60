"""Tests for the sdkcompat command line."""
import json
import signal
import threading
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from sdkcompat.cli import cli
from sdkcompat.model import ImageReference, ImageSource, PipelineSummary, SdkResult, TriggerKind
from sdkcompat.runner import PipelineInterrupted

from conftest import finished

WORKFLOW = '''
from sdkcompat import wf, sdk

SDKS = wf(
    sdk("meilisearch-go", "meilisearch/meilisearch-go", "go"),
    sdk("meilisearch-rust", "meilisearch/meilisearch-rust", "rust"),
)
'''


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("SDKCOMPAT_DEFAULT_IMAGE", "SDKCOMPAT_IMAGE_REPOSITORY", "SDKCOMPAT_NOTIFY_URL", "SDKCOMPAT_WORKERS"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "sdk_workflow.py"
    path.write_text(WORKFLOW)
    return path


def _summary(*outcomes):
    return PipelineSummary(
        image=ImageReference(tag="nightly", source=ImageSource.DEFAULT),
        trigger=TriggerKind.MANUAL,
        results=tuple(SdkResult.from_execution(finished(f"sdk-{i}", o)) for i, o in enumerate(outcomes)),
    )


def test_run_passes(workflow_file, tmp_path):
    out = tmp_path / "summary.json"
    with patch("sdkcompat.cli.run_pipeline", return_value=_summary("passed")) as run_pipeline:
        result = CliRunner().invoke(cli, [
            "run", "--workflow", str(workflow_file), "--docker-image", "v1.2.0",
            "--summary-out", str(out), "--workers", "2",
        ])

    assert result.exit_code == 0, result.output
    assert "Pipeline: PASSED" in result.output
    assert json.loads(out.read_text())["status"] == "passed"
    kwargs = run_pipeline.call_args.kwargs
    assert kwargs["docker_image"] == "v1.2.0"
    assert kwargs["trigger"] == "manual"
    assert kwargs["config"].max_workers == 2
    assert [s.name for s in run_pipeline.call_args.args[0]] == ["meilisearch-go", "meilisearch-rust"]


def test_run_exits_non_zero_on_failure(workflow_file, tmp_path):
    with patch("sdkcompat.cli.run_pipeline", return_value=_summary("passed", "failed")):
        result = CliRunner().invoke(cli, [
            "run", "--workflow", str(workflow_file), "--summary-out", str(tmp_path / "s.json"),
        ])
    assert result.exit_code == 1
    assert "Pipeline: FAILED" in result.output


def test_run_selected_sdk(workflow_file, tmp_path):
    with patch("sdkcompat.cli.run_pipeline", return_value=_summary("passed")) as run_pipeline:
        CliRunner().invoke(cli, [
            "run", "--workflow", str(workflow_file), "--sdk", "meilisearch-rust",
            "--summary-out", str(tmp_path / "s.json"),
        ])
    assert [s.name for s in run_pipeline.call_args.args[0]] == ["meilisearch-rust"]


def test_run_unknown_sdk(workflow_file):
    with patch("sdkcompat.cli.run_pipeline") as run_pipeline:
        result = CliRunner().invoke(cli, ["run", "--workflow", str(workflow_file), "--sdk", "nope"])
    assert result.exit_code == 1
    run_pipeline.assert_not_called()


def test_run_interrupted_still_writes_summary(workflow_file, tmp_path):
    out = tmp_path / "summary.json"
    with patch("sdkcompat.cli.run_pipeline", side_effect=PipelineInterrupted(_summary("errored"))):
        result = CliRunner().invoke(cli, ["run", "--workflow", str(workflow_file), "--summary-out", str(out)])
    assert result.exit_code == 130
    assert out.exists()


def test_run_sigterm_cancels_jobs(workflow_file, tmp_path):
    out = tmp_path / "summary.json"
    original = signal.getsignal(signal.SIGTERM)

    def terminated_mid_run(specs, **kwargs):
        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        assert kwargs["cancel"].is_set()
        return _summary("passed", "errored")

    with patch("sdkcompat.cli.run_pipeline", side_effect=terminated_mid_run):
        result = CliRunner().invoke(cli, ["run", "--workflow", str(workflow_file), "--summary-out", str(out)])

    assert result.exit_code == 143, result.output
    assert "cancelling SDK jobs" in result.output
    assert out.exists()
    assert signal.getsignal(signal.SIGTERM) is original


def test_schedule_passes_cancel_to_pipeline(workflow_file, tmp_path):
    args = ["schedule", "--workflow", str(workflow_file), "--summary-out", str(tmp_path / "s.json")]
    with patch("sdkcompat.scheduler.WeeklyScheduler") as scheduler_cls:
        result = CliRunner().invoke(cli, args)
    assert result.exit_code == 0, result.output
    scheduler_cls.return_value.install_signal_handlers.assert_called_once()

    job = scheduler_cls.call_args[0][0]
    cancel = threading.Event()
    with patch("sdkcompat.cli.run_pipeline", return_value=_summary("passed")) as run_pipeline:
        job(cancel)
    assert run_pipeline.call_args.kwargs["cancel"] is cancel
    assert run_pipeline.call_args.kwargs["trigger"] is TriggerKind.SCHEDULED


def test_missing_workflow(tmp_path):
    result = CliRunner().invoke(cli, ["run", "--workflow", str(tmp_path / "nope.py")])
    assert result.exit_code == 1


def test_list(workflow_file):
    result = CliRunner().invoke(cli, ["list", "--workflow", str(workflow_file)])
    assert result.exit_code == 0, result.output
    assert "meilisearch-rust [rust]" in result.output
    assert "cargo build --verbose" in result.output


@pytest.mark.parametrize("args,expected", [
    (["resolve", "--docker-image", "v1.2.0"], "getmeili/meilisearch:v1.2.0"),
    (["resolve", "--trigger", "scheduled", "--docker-image", "v1.2.0"], "getmeili/meilisearch:nightly"),
    (["resolve"], "getmeili/meilisearch:nightly"),
])
def test_resolve(args, expected):
    result = CliRunner().invoke(cli, args)
    assert result.exit_code == 0
    assert result.output.strip() == expected


def test_submit():
    with patch("sdkcompat.agent.api_client.APIClient.dispatch_run", return_value={"run_id": "r1", "image": "getmeili/meilisearch:v1.2.0"}) as dispatch:
        result = CliRunner().invoke(cli, ["submit", "--api", "http://cp:8000", "--docker-image", "v1.2.0"])
    assert result.exit_code == 0, result.output
    assert "Run ID: r1" in result.output
    dispatch.assert_called_once_with(docker_image="v1.2.0", trigger="manual", sdks=[])
