from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

# -------------------- Requests --------------------

class DispatchRequest(BaseModel):
    """Manual (or externally scheduled) trigger. docker_image only counts for manual runs."""
    docker_image: str | None = None
    trigger: Literal["manual", "scheduled"] = "manual"
    sdks: list[str] = Field(default_factory=list)

class ClaimRequest(BaseModel):
    agent_id: str

class CompleteRequest(BaseModel):
    agent_id: str
    status: Literal["passed", "failed"]
    summary: dict[str, Any] = Field(default_factory=dict)
    logs: str | None = None
    error: str | None = None

# -------------------- Responses --------------------

class DispatchResponse(BaseModel):
    run_id: str
    image: str

class ClaimedRun(BaseModel):
    run_id: str
    trigger: str
    docker_image: str | None
    sdks: list[str]
    lease_expires_at: str

class SdkResultResponse(BaseModel):
    sdk: str
    status: str
    failed_step: int | None = None
    failed_step_name: str | None = None
    commit: str | None = None
    error: str | None = None
    output: str | None = None

class RunResponse(BaseModel):
    id: str
    trigger: str
    image: str
    status: str
    created_at: datetime
    finished_at: datetime | None = None
    error: str | None = None
    results: list[SdkResultResponse] = Field(default_factory=list)

def results_from_summary(summary: dict[str, Any]) -> list[SdkResultResponse]:
    """Per-SDK rows from a PipelineSummary.to_dict() payload; malformed entries are skipped."""
    out: list[SdkResultResponse] = []
    for item in summary.get("results") or []:
        if not isinstance(item, dict) or "sdk" not in item or "status" not in item:
            continue
        out.append(SdkResultResponse(
            sdk=item["sdk"],
            status=item["status"],
            failed_step=item.get("failed_step"),
            failed_step_name=item.get("failed_step_name"),
            commit=item.get("commit"),
            error=item.get("error"),
            output=item.get("output"),
        ))
    return out
