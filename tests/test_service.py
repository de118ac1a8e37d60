"""Tests for launching and stopping the server under test (docker is mocked)."""
import subprocess
import threading
from unittest.mock import patch

import pytest

from sdkcompat.config import ServiceConfig
from sdkcompat.service import LaunchError, LaunchErrorKind, ServiceHandle, launch


class FakeDocker:
    """Records docker invocations and answers with canned results."""

    def __init__(self, pull_rc=0, run_rc=0, run_stderr="", version_rc=0):
        self.calls = []
        self.pull_rc = pull_rc
        self.run_rc = run_rc
        self.run_stderr = run_stderr
        self.version_rc = version_rc

    def __call__(self, args):
        self.calls.append(list(args))
        verb = args[0]
        if verb == "--version":
            return subprocess.CompletedProcess(args, self.version_rc, "Docker version 24", "")
        if verb == "pull":
            return subprocess.CompletedProcess(args, self.pull_rc, "", "manifest unknown" if self.pull_rc else "")
        if verb == "run":
            return subprocess.CompletedProcess(args, self.run_rc, "" if self.run_rc else "c0ffee\n", self.run_stderr)
        return subprocess.CompletedProcess(args, 0, "", "")

    def verbs(self, verb):
        return [c for c in self.calls if c[0] == verb]


@pytest.fixture
def config():
    return ServiceConfig(readiness_timeout=0, poll_interval=0)


@pytest.fixture
def free_port():
    with patch("sdkcompat.service._port_in_use", return_value=False):
        yield


def test_launch_ready(nightly, config, free_port):
    docker = FakeDocker()
    with patch("sdkcompat.service._docker", side_effect=docker), \
            patch("sdkcompat.service._probe", return_value=True):
        handle = launch(nightly, config)

    assert handle.container_id == "c0ffee"
    assert handle.base_url == "http://127.0.0.1:7700"
    run_args = docker.verbs("run")[0]
    assert "7700:7700" in run_args
    assert "MEILI_MASTER_KEY=masterKey" in run_args
    assert "MEILI_NO_ANALYTICS=true" in run_args
    assert run_args[-1] == "getmeili/meilisearch:nightly"


def test_startup_timeout_removes_container(nightly, config, free_port):
    docker = FakeDocker()
    with patch("sdkcompat.service._docker", side_effect=docker), \
            patch("sdkcompat.service._probe", return_value=False):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, config)

    assert exc.value.kind is LaunchErrorKind.STARTUP_TIMEOUT
    assert docker.verbs("rm") == [["rm", "-f", "c0ffee"]]


def test_pull_failure(nightly, config, free_port):
    docker = FakeDocker(pull_rc=1)
    with patch("sdkcompat.service._docker", side_effect=docker):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, config)
    assert exc.value.kind is LaunchErrorKind.IMAGE_PULL_FAILED
    assert "manifest unknown" in str(exc.value)
    assert docker.verbs("run") == []


def test_port_already_bound(nightly, config):
    with patch("sdkcompat.service._docker", side_effect=FakeDocker()), \
            patch("sdkcompat.service._port_in_use", return_value=True):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, config)
    assert exc.value.kind is LaunchErrorKind.PORT_CONFLICT


def test_port_conflict_reported_by_docker(nightly, config, free_port):
    docker = FakeDocker(run_rc=125, run_stderr="Bind for 0.0.0.0:7700 failed: port is already allocated")
    with patch("sdkcompat.service._docker", side_effect=docker):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, config)
    assert exc.value.kind is LaunchErrorKind.PORT_CONFLICT


def test_docker_missing(nightly, config):
    with patch("sdkcompat.service._docker", side_effect=FileNotFoundError("docker")):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, config)
    assert exc.value.kind is LaunchErrorKind.RUNTIME_UNAVAILABLE


def test_cancel_while_waiting(nightly, free_port):
    docker = FakeDocker()
    cancel = threading.Event()
    cancel.set()
    with patch("sdkcompat.service._docker", side_effect=docker), \
            patch("sdkcompat.service._probe", return_value=False):
        with pytest.raises(LaunchError) as exc:
            launch(nightly, ServiceConfig(readiness_timeout=60), cancel=cancel)
    assert exc.value.kind is LaunchErrorKind.CANCELLED
    assert len(docker.verbs("rm")) == 1


class TestShutdown:
    """shutdown() is idempotent and never raises."""

    def test_container_removed_once(self, nightly, endpoint):
        handle = ServiceHandle("c0ffee", nightly, endpoint)
        with patch("sdkcompat.service._stop_container") as stop:
            with handle:
                pass
            handle.shutdown()
            handle.shutdown()
        stop.assert_called_once_with("c0ffee")
        assert handle.closed

    def test_concurrent_shutdown(self, nightly, endpoint):
        handle = ServiceHandle("c0ffee", nightly, endpoint)
        with patch("sdkcompat.service._stop_container") as stop:
            threads = [threading.Thread(target=handle.shutdown) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        assert stop.call_count == 1

    def test_docker_error_is_reported_not_raised(self, nightly, endpoint, capsys):
        handle = ServiceHandle("c0ffee", nightly, endpoint)
        with patch("sdkcompat.service._stop_container", side_effect=subprocess.SubprocessError("daemon gone")):
            handle.shutdown()
        assert "daemon gone" in capsys.readouterr().err


def test_endpoint_env(endpoint):
    env = endpoint.env()
    assert env["MEILISEARCH_URL"] == "http://127.0.0.1:7700"
    assert env["MEILISEARCH_API_KEY"] == "masterKey"
    with pytest.raises(AttributeError):
        endpoint.port = 1
