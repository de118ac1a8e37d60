# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from .model import DEFAULT_IMAGE_REPOSITORY


DEFAULT_IMAGE_TAG = "nightly"
DEFAULT_PORT = 7700
DEFAULT_MASTER_KEY = "masterKey"
DEFAULT_WORK_DIR = ".sdkcompat/work"
DEFAULT_SUMMARY_PATH = ".sdkcompat/summary.json"
DEFAULT_SERVER_TEAM = "engine team"

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE


@dataclass(frozen=True)
class ServiceConfig:
    """Everything the launcher needs to start the server under test."""
    master_key: str = DEFAULT_MASTER_KEY
    analytics_disabled: bool = True
    port: int = DEFAULT_PORT
    container_port: int = DEFAULT_PORT
    host: str = "127.0.0.1"
    readiness_timeout: float = 60.0
    poll_interval: float = 1.0
    health_path: str = "/health"
    image_repository: str = DEFAULT_IMAGE_REPOSITORY

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def container_env(self) -> Dict[str, str]:
        """Environment passed verbatim to the server container."""
        return {
            "MEILI_MASTER_KEY": self.master_key,
            "MEILI_NO_ANALYTICS": "true" if self.analytics_disabled else "false",
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServiceConfig:
        env = os.environ if environ is None else environ
        return cls(
            master_key=env.get("MEILI_MASTER_KEY", DEFAULT_MASTER_KEY),
            analytics_disabled=_env_bool(env.get("MEILI_NO_ANALYTICS"), True),
            port=int(env.get("SDKCOMPAT_PORT", DEFAULT_PORT)),
            host=env.get("SDKCOMPAT_HOST", "127.0.0.1"),
            readiness_timeout=float(env.get("SDKCOMPAT_READINESS_TIMEOUT", 60.0)),
            image_repository=env.get("SDKCOMPAT_IMAGE_REPOSITORY", DEFAULT_IMAGE_REPOSITORY),
        )


@dataclass(frozen=True)
class PipelineConfig:
    service: ServiceConfig = field(default_factory=ServiceConfig)
    default_tag: str = DEFAULT_IMAGE_TAG
    work_dir: Path = Path(DEFAULT_WORK_DIR)
    max_workers: Optional[int] = None
    notify_url: Optional[str] = None
    server_team: str = DEFAULT_SERVER_TEAM
    summary_path: Optional[Path] = Path(DEFAULT_SUMMARY_PATH)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PipelineConfig:
        env = os.environ if environ is None else environ
        workers = env.get("SDKCOMPAT_WORKERS")
        return cls(
            service=ServiceConfig.from_env(env),
            default_tag=env.get("SDKCOMPAT_DEFAULT_IMAGE", DEFAULT_IMAGE_TAG),
            work_dir=Path(env.get("SDKCOMPAT_WORK_DIR", DEFAULT_WORK_DIR)),
            max_workers=int(workers) if workers else None,
            notify_url=env.get("SDKCOMPAT_NOTIFY_URL") or None,
            server_team=env.get("SDKCOMPAT_SERVER_TEAM", DEFAULT_SERVER_TEAM),
        )
