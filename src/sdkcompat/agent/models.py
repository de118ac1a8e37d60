# agent/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Lease:
    """A pipeline run claimed from the control plane (ClaimedRun response)."""
    run_id: str
    trigger: str  # "manual" | "scheduled"
    docker_image: Optional[str]
    lease_expires_at: str  # ISO format timestamp
    sdks: list[str] = field(default_factory=list)  # empty = every SDK in the workflow

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Lease:
        """Create Lease from API ClaimedRun response dictionary."""
        return cls(
            run_id=data["run_id"],
            trigger=data.get("trigger", "manual"),
            docker_image=data.get("docker_image"),
            lease_expires_at=data["lease_expires_at"],
            sdks=list(data.get("sdks") or []),
        )


@dataclass
class ExecutionResult:
    """Result of executing a leased pipeline run."""
    status: str  # "passed" | "failed"
    logs: str
    summary: Dict[str, Any]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API submission."""
        return {
            "status": self.status,
            "logs": self.logs,
            "summary": self.summary,
            "error": self.error,
        }
