# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Optional
from urllib.parse import urljoin

from .models import Lease


class APIError(Exception):
    """The control plane could not be reached or rejected a call."""


class APIClient:
    """
    JSON-over-HTTP client used by `sdkcompat submit` and the agent loop.

    Every call is a POST with a JSON body. A 204 or an empty reply decodes
    to an empty dict.
    """

    timeout = 30.0

    def __init__(self, base_url: str, agent_id: str = ""):
        self.base_url = base_url.rstrip("/")
        self.agent_id = agent_id

    def _url(self, path: str) -> str:
        return urljoin(f"{self.base_url}/", path.lstrip("/"))

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        body = None if data is None else json.dumps(data).encode("utf-8")
        request = urllib.request.Request(
            self._url(path),
            data=body,
            headers={"Content-Type": "application/json", **(headers or {})},
            method=method,
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as e:
            message = f"{method} {path} returned {e.code} {e.reason}"
            detail = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if detail:
                message += f": {detail}"
            raise APIError(message) from e
        except urllib.error.URLError as e:
            raise APIError(f"cannot reach {self.base_url}: {e.reason}") from e

        if not raw:
            return {}
        try:
            return json.loads(raw)
        except ValueError as e:
            raise APIError(f"{method} {path} sent a non-JSON reply: {e}") from e

    def _post(self, path: str, payload: dict) -> Any:
        return self._request("POST", path, data=payload)

    def dispatch_run(self, docker_image: Optional[str] = None, trigger: str = "manual", sdks: Optional[list[str]] = None) -> dict:
        """Queue a run; the reply carries `run_id` and the resolved `image`."""
        return self._post("/runs", {"docker_image": docker_image, "trigger": trigger, "sdks": sdks or []})

    def claim_lease(self) -> Optional[Lease]:
        """Take the oldest queued run, or None when the queue is empty."""
        reply = self._post("/leases/claim", {"agent_id": self.agent_id})
        if isinstance(reply, dict) and {"run_id", "lease_expires_at"} <= reply.keys():
            return Lease.from_dict(reply)
        return None

    def complete_lease(self, run_id: str, status: str, summary: dict, logs: str = "", error: Optional[str] = None) -> None:
        # The control plane only knows passed and failed
        self._post(f"/leases/{run_id}/complete", {
            "agent_id": self.agent_id,
            "status": "passed" if status == "passed" else "failed",
            "summary": summary,
            "logs": logs,
            "error": error,
        })
