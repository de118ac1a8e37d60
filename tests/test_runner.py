"""Tests for SDK job execution and pipeline orchestration."""
import subprocess
import threading
from unittest.mock import MagicMock, patch

import pytest

from sdkcompat.model import JobStatus, Step, TriggerKind
from sdkcompat.runner import JobRunner, PipelineInterrupted, run_pipeline, run_sdk_job
from sdkcompat.service import LaunchError, LaunchErrorKind
from sdkcompat.ui.console import Console, set_console

from conftest import make_spec


class TestJobRunner:
    def test_all_steps_pass(self, endpoint, tmp_path, fake_checkout):
        execution = run_sdk_job(make_spec("meilisearch-go", "true", "echo ok"), endpoint, work_dir=tmp_path)

        assert execution.status is JobStatus.PASSED
        assert [s.index for s in execution.steps] == [1, 2]
        assert execution.steps[1].stdout.strip() == "ok"
        assert execution.commit.startswith("0123456789ab")
        fake_checkout.assert_called_once()

    def test_first_failing_step_stops_the_job(self, endpoint, tmp_path, fake_checkout):
        spec = make_spec("meilisearch-ruby", "true", "echo broken >&2; exit 3", "touch never-ran")
        execution = run_sdk_job(spec, endpoint, work_dir=tmp_path)

        assert execution.status is JobStatus.FAILED
        assert execution.failed_step == 2
        assert execution.failed_step_name == "step 2"
        assert "broken" in execution.output_tail
        assert len(execution.steps) == 2
        assert not (tmp_path / "meilisearch-ruby" / "never-ran").exists()

    def test_service_env_is_visible_to_steps(self, endpoint, tmp_path, fake_checkout):
        spec = make_spec("meilisearch-python", "printenv MEILISEARCH_URL EXTRA", env={"EXTRA": "1"})
        execution = run_sdk_job(spec, endpoint, work_dir=tmp_path)
        assert execution.status is JobStatus.PASSED
        assert execution.steps[0].stdout.split() == ["http://127.0.0.1:7700", "1"]

    def test_non_utf8_output_passes(self, endpoint, tmp_path, fake_checkout):
        execution = run_sdk_job(make_spec("meilisearch-php", r"printf '\377\376 ok'"), endpoint, work_dir=tmp_path)
        assert execution.status is JobStatus.PASSED
        assert "ok" in execution.steps[0].stdout

    def test_non_utf8_output_of_failing_step_is_failed(self, endpoint, tmp_path, fake_checkout):
        execution = run_sdk_job(make_spec("meilisearch-php", r"printf '\377 boom'; exit 1"), endpoint, work_dir=tmp_path)
        assert execution.status is JobStatus.FAILED
        assert execution.failed_step == 1
        assert "boom" in execution.output_tail

    def test_failing_step_is_logged_in_debug(self, endpoint, tmp_path, fake_checkout, capsys):
        set_console(Console(debug=True))
        spec = make_spec("meilisearch-ruby", "true", "exit 3")
        execution = run_sdk_job(spec, endpoint, work_dir=tmp_path)
        assert execution.status is JobStatus.FAILED
        assert "[meilisearch-ruby] step 2 'step 2' failed (exit=3): exit 3" in capsys.readouterr().err

    def test_checkout_failure_is_errored(self, endpoint, tmp_path):
        err = subprocess.CalledProcessError(128, ["git", "clone"], stderr="Repository not found")
        with patch("sdkcompat.git_facts.git.clone", side_effect=err):
            execution = run_sdk_job(make_spec("meilisearch-php", "true"), endpoint, work_dir=tmp_path)

        assert execution.status is JobStatus.ERRORED
        assert "checkout_failed" in execution.error
        assert "Repository not found" in execution.error
        assert execution.failed_step is None

    def test_missing_step_cwd_is_errored(self, endpoint, tmp_path, fake_checkout):
        spec = make_spec("meilisearch-js", "true")
        spec = type(spec)(
            name=spec.name,
            repository=spec.repository,
            toolchain=spec.toolchain,
            steps=(Step(name="in subdir", run="true", cwd="packages/missing"),),
        )
        execution = run_sdk_job(spec, endpoint, work_dir=tmp_path)
        assert execution.status is JobStatus.ERRORED
        assert "cwd_missing" in execution.error
        assert execution.failed_step == 1

    def test_cancelled_before_start(self, endpoint, tmp_path, fake_checkout):
        cancel = threading.Event()
        cancel.set()
        execution = run_sdk_job(make_spec("meilisearch-go", "true"), endpoint, work_dir=tmp_path, cancel=cancel)
        assert execution.status is JobStatus.ERRORED
        assert "cancelled" in execution.error
        fake_checkout.assert_not_called()

    def test_cancel_terminates_running_step(self, endpoint, tmp_path, fake_checkout):
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            execution = run_sdk_job(make_spec("meilisearch-rust", "exec sleep 30"), endpoint, work_dir=tmp_path, cancel=cancel)
        finally:
            timer.cancel()
        assert execution.status is JobStatus.ERRORED
        assert "cancelled" in execution.error
        assert execution.failed_step == 1

    def test_unexpected_exception_is_errored(self, endpoint, tmp_path, fake_checkout):
        runner = JobRunner(make_spec("meilisearch-go", "true"), endpoint, tmp_path)
        with patch.object(runner, "_run_step", side_effect=RuntimeError("disk full")):
            execution = runner.run()
        assert execution.status is JobStatus.ERRORED
        assert execution.error == "RuntimeError: disk full"


SEVEN = [
    "meilisearch-js",
    "instant-meilisearch",
    "meilisearch-php",
    "meilisearch-python",
    "meilisearch-go",
    "meilisearch-ruby",
    "meilisearch-rust",
]


class TestRunPipeline:
    def test_one_sdk_failing_at_step_two(self, config, fake_checkout, running_service):
        launch, stop = running_service
        specs = [
            make_spec(name, "true", "exit 1" if name == "meilisearch-ruby" else "true")
            for name in SEVEN
        ]
        notifier = MagicMock()

        summary = run_pipeline(specs, trigger="scheduled", config=config, notifier=notifier)

        assert summary.failed
        assert len(summary.results) == 7
        by_sdk = {r.sdk: r for r in summary.results}
        assert by_sdk["meilisearch-ruby"].status is JobStatus.FAILED
        assert by_sdk["meilisearch-ruby"].failed_step == 2
        assert all(r.status is JobStatus.PASSED for n, r in by_sdk.items() if n != "meilisearch-ruby")
        assert summary.image.image == "getmeili/meilisearch:nightly"
        stop.assert_called_once_with("c0ffee")
        notifier.send.assert_called_once()

    def test_jobs_run_concurrently(self, config, fake_checkout, running_service):
        # Each job only passes once it has seen the other one's marker
        wait_for = "touch ../{me}.ready; for _ in $(seq 1 50); do [ -f ../{other}.ready ] && exit 0; sleep 0.1; done; exit 1"
        specs = [
            make_spec("left", wait_for.format(me="left", other="right")),
            make_spec("right", wait_for.format(me="right", other="left")),
        ]
        summary = run_pipeline(specs, config=config)
        assert [r.status for r in summary.results] == [JobStatus.PASSED, JobStatus.PASSED]
        assert summary.status == "passed"

    def test_manual_override_image(self, config, fake_checkout, running_service):
        launch, _stop = running_service
        summary = run_pipeline([make_spec("meilisearch-go", "true")], trigger=TriggerKind.MANUAL, docker_image="v1.2.0", config=config)
        assert summary.status == "passed"
        assert launch.call_args[0][0].image == "getmeili/meilisearch:v1.2.0"

    def test_launch_timeout_starts_no_runner(self, config):
        specs = [make_spec(name, "true") for name in SEVEN]
        err = LaunchError(kind=LaunchErrorKind.STARTUP_TIMEOUT, image="getmeili/meilisearch:nightly", message="service not ready after 60s")
        with patch("sdkcompat.runner.launch", side_effect=err), \
                patch("sdkcompat.runner.run_sdk_job") as run_job:
            summary = run_pipeline(specs, trigger="scheduled", config=config)

        run_job.assert_not_called()
        assert len(summary.results) == 7
        assert all(r.status is JobStatus.ERRORED for r in summary.results)
        assert summary.cause == "startup_timeout: service not ready after 60s"
        assert all("startup_timeout" in r.error for r in summary.results)

    def test_crashing_worker_is_still_reported(self, config, running_service):
        with patch("sdkcompat.runner.run_sdk_job", side_effect=RuntimeError("worker died")):
            summary = run_pipeline([make_spec("meilisearch-go", "true")], config=config)
        assert summary.results[0].status is JobStatus.ERRORED
        assert "worker died" in summary.results[0].error

    def test_interrupt_cancels_and_summarises(self, config, fake_checkout, running_service):
        _launch, stop = running_service
        with patch("sdkcompat.runner.wait", side_effect=[KeyboardInterrupt(), (set(), set())]), \
                patch("sdkcompat.runner.run_sdk_job") as run_job:
            run_job.side_effect = lambda spec, *a, **kw: _errored(spec.name)
            with pytest.raises(PipelineInterrupted) as exc:
                run_pipeline([make_spec("meilisearch-go", "true")], config=config)

        assert exc.value.summary.cause == "cancelled"
        assert len(exc.value.summary.results) == 1
        stop.assert_called_once()


def _errored(name):
    from sdkcompat.model import JobExecution
    execution = JobExecution(sdk=name)
    execution.errored("cancelled: run cancelled")
    return execution
