# service.py
from __future__ import annotations

import json
import socket
import subprocess
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .config import ServiceConfig
from .model import ImageReference
from .ui.console import get_console


class LaunchErrorKind(str, Enum):
    IMAGE_PULL_FAILED = "image_pull_failed"
    STARTUP_TIMEOUT = "startup_timeout"
    PORT_CONFLICT = "port_conflict"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"
    CANCELLED = "cancelled"


_PORT_CONFLICT_MARKERS = (
    "port is already allocated",
    "address already in use",
    "bind: address already in use",
)


@dataclass
class LaunchError(Exception):
    """The server under test never became ready. Fatal for the whole run."""
    kind: LaunchErrorKind
    image: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind.value}: {self.message}", f"image={self.image}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(frozen=True)
class ServiceEndpoint:
    """Read-only view of the running service handed to SDK jobs."""
    base_url: str
    host: str
    port: int
    api_key: str

    def env(self) -> Dict[str, str]:
        return {
            "MEILISEARCH_URL": self.base_url,
            "MEILISEARCH_HOST": self.host,
            "MEILISEARCH_PORT": str(self.port),
            "MEILISEARCH_API_KEY": self.api_key,
            "MEILI_MASTER_KEY": self.api_key,
        }


class ServiceHandle:
    """
    A running server container.

    `shutdown()` is serialized and idempotent and never raises, so it can be
    called from any error path. Use the handle as a context manager.
    """

    def __init__(self, container_id: str, image: ImageReference, endpoint: ServiceEndpoint):
        self.container_id = container_id
        self.image = image
        self.endpoint = endpoint
        self._lock = threading.Lock()
        self._closed = False

    @property
    def base_url(self) -> str:
        return self.endpoint.base_url

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        console = get_console()
        try:
            _stop_container(self.container_id)
            console.print_service_stopped(self.base_url)
        except (subprocess.SubprocessError, OSError) as e:
            console.print_error(
                "Service shutdown failed",
                f"Could not remove container {self.container_id[:12]}",
                details=[str(e)],
                suggestion=f"Remove it manually:\n  docker rm -f {self.container_id}",
            )

    def __enter__(self) -> ServiceHandle:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


# ---------------------------------------------------------------------
# Docker primitives
# ---------------------------------------------------------------------

def _docker(args: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(["docker", *args], text=True, capture_output=True)


def _check_docker_available(image: str) -> None:
    try:
        proc = _docker(["--version"])
    except FileNotFoundError:
        proc = None
    if proc is None or proc.returncode != 0:
        raise LaunchError(
            kind=LaunchErrorKind.RUNTIME_UNAVAILABLE,
            image=image,
            message="Docker is not available",
            details={"hint": "Install Docker and ensure the daemon is running."},
        )


def _stop_container(container_id: str) -> None:
    proc = _docker(["rm", "-f", container_id])
    if proc.returncode != 0:
        raise subprocess.SubprocessError(proc.stderr.strip() or f"docker rm exited {proc.returncode}")


def _port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(0.5)
        return s.connect_ex((host, port)) == 0


def _probe(url: str, timeout: float = 2.0) -> bool:
    """One readiness probe: HTTP 200 and, when JSON, status 'available'."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            if response.status != 200:
                return False
            body = response.read().decode("utf-8")
    except (urllib.error.URLError, ConnectionError, TimeoutError, OSError):
        return False
    if not body:
        return True
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return True
    return not isinstance(data, dict) or data.get("status", "available") == "available"


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def launch(
    image: ImageReference,
    config: ServiceConfig,
    *,
    cancel: Optional[threading.Event] = None,
) -> ServiceHandle:
    """
    Start the server under test and block until it answers its health probe.

    Raises LaunchError. When the container was started but never became ready
    it is removed before the error propagates.
    """
    console = get_console()
    ref = image.image

    _check_docker_available(ref)

    if _port_in_use(config.host, config.port):
        raise LaunchError(
            kind=LaunchErrorKind.PORT_CONFLICT,
            image=ref,
            message=f"port {config.port} is already in use",
            details={"host": config.host},
        )

    console.print_service_starting(ref, config.port)
    pull = _docker(["pull", ref])
    if pull.returncode != 0:
        raise LaunchError(
            kind=LaunchErrorKind.IMAGE_PULL_FAILED,
            image=ref,
            message="docker pull failed",
            details={"exit_code": pull.returncode, "stderr": pull.stderr.strip()[-2000:]},
        )

    cmd = ["run", "-d", "--rm", "-p", f"{config.port}:{config.container_port}"]
    for key, value in config.container_env().items():
        cmd.extend(["-e", f"{key}={value}"])
    cmd.append(ref)

    started = _docker(cmd)
    if started.returncode != 0:
        stderr = started.stderr.strip()
        kind = LaunchErrorKind.IMAGE_PULL_FAILED
        if any(m in stderr.lower() for m in _PORT_CONFLICT_MARKERS):
            kind = LaunchErrorKind.PORT_CONFLICT
        raise LaunchError(
            kind=kind,
            image=ref,
            message="docker run failed",
            details={"exit_code": started.returncode, "stderr": stderr[-2000:]},
        )

    container_id = started.stdout.strip().splitlines()[-1] if started.stdout.strip() else ""
    endpoint = ServiceEndpoint(
        base_url=config.base_url,
        host=config.host,
        port=config.port,
        api_key=config.master_key,
    )
    handle = ServiceHandle(container_id, image, endpoint)

    health_url = config.base_url + config.health_path
    begin = time.monotonic()
    deadline = begin + config.readiness_timeout
    try:
        while True:
            if cancel is not None and cancel.is_set():
                raise LaunchError(
                    kind=LaunchErrorKind.CANCELLED,
                    image=ref,
                    message="run cancelled while waiting for the service",
                )
            if _probe(health_url):
                console.print_service_ready(handle.base_url, time.monotonic() - begin)
                return handle
            if time.monotonic() >= deadline:
                raise LaunchError(
                    kind=LaunchErrorKind.STARTUP_TIMEOUT,
                    image=ref,
                    message=f"service not ready after {config.readiness_timeout:g}s",
                    details={"health_url": health_url},
                )
            time.sleep(config.poll_interval)
    except BaseException:
        # Never leave a half-started container behind
        handle.shutdown()
        raise
