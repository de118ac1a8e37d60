from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from fastapi import FastAPI, HTTPException, Response

from sdkcompat.resolver import resolve

from .db import SessionLocal, init_models
from .models import Run, SdkResult, Lease
from .redisq import enqueue_run, dequeue_run, requeue_run, r, lease_lock_key
from .schemas import (
    ClaimRequest,
    ClaimedRun,
    CompleteRequest,
    DispatchRequest,
    DispatchResponse,
    RunResponse,
    SdkResultResponse,
    results_from_summary,
)
from .settings import DEFAULT_IMAGE_TAG, LEASE_SECONDS

app = FastAPI(title="sdkcompat control plane")

# Queue entries skipped per claim before giving up (already leased or finished runs)
MAX_CLAIM_ATTEMPTS = 10

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    await init_models()

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def _parse_run_id(run_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(run_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Run not found")

# -------------------- Endpoints --------------------

@app.post("/runs", response_model=DispatchResponse)
async def dispatch_run(req: DispatchRequest):
    image = resolve(req.trigger, req.docker_image, default=DEFAULT_IMAGE_TAG)

    async with SessionLocal() as s:
        async with s.begin():
            run = Run(
                trigger=req.trigger,
                docker_image=req.docker_image,
                image=image.image,
                sdks=req.sdks,
                status="queued",
            )
            s.add(run)
            await s.flush()
            run_id = str(run.id)

    # push to Redis after DB commit
    await enqueue_run(run_id)

    return DispatchResponse(run_id=run_id, image=image.image)

@app.post("/leases/claim", response_model=ClaimedRun)
async def claim(req: ClaimRequest):
    for _ in range(MAX_CLAIM_ATTEMPTS):
        run_id = await dequeue_run(timeout_s=5)
        if not run_id:
            return Response(status_code=204)

        # Lock in Redis to reduce duplicate leasing during retries
        lock_key = lease_lock_key(run_id)
        got_lock = await r.set(lock_key, req.agent_id, nx=True, ex=LEASE_SECONDS)
        if not got_lock:
            continue

        expires_at = now_utc() + timedelta(seconds=LEASE_SECONDS)

        async with SessionLocal() as s:
            async with s.begin():
                run = await s.get(Run, uuid.UUID(run_id))
                if not run or run.status in ("passed", "failed", "canceled"):
                    # stale queue entry
                    await r.delete(lock_key)
                    continue

                lease = await s.get(Lease, uuid.UUID(run_id))
                if lease and lease.expires_at > now_utc():
                    await r.delete(lock_key)
                    await requeue_run(run_id)
                    continue

                if lease:
                    lease.agent_id = req.agent_id
                    lease.leased_at = now_utc()
                    lease.expires_at = expires_at
                else:
                    s.add(Lease(run_id=uuid.UUID(run_id), agent_id=req.agent_id, leased_at=now_utc(), expires_at=expires_at))

                run.status = "running"

                return ClaimedRun(
                    run_id=run_id,
                    trigger=run.trigger,
                    docker_image=run.docker_image,
                    sdks=list(run.sdks or []),
                    lease_expires_at=expires_at.isoformat(),
                )

    return Response(status_code=204)

@app.post("/leases/{run_id}/complete")
async def complete(run_id: str, req: CompleteRequest):
    rid = _parse_run_id(run_id)

    async with SessionLocal() as s:
        async with s.begin():
            run = await s.get(Run, rid)
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")

            lease = await s.get(Lease, rid)
            if not lease:
                raise HTTPException(status_code=409, detail="No lease for run")
            if lease.agent_id != req.agent_id:
                raise HTTPException(status_code=403, detail="Lease owned by different agent")

            # Replace any results from an earlier, expired lease
            await s.execute(sa.delete(SdkResult).where(SdkResult.run_id == rid))
            for row in results_from_summary(req.summary):
                s.add(SdkResult(run_id=rid, **row.model_dump()))

            run.status = req.status
            run.summary_json = req.summary or None
            run.logs = req.logs or None
            run.error = req.error
            run.finished_at = now_utc()
            await s.delete(lease)

    await r.delete(lease_lock_key(run_id))
    return {"ok": True}

@app.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(run_id: str):
    """Get a run with its per-SDK results."""
    rid = _parse_run_id(run_id)

    async with SessionLocal() as s:
        run = await s.get(Run, rid)
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")

        rows = (await s.execute(
            sa.select(SdkResult).where(SdkResult.run_id == rid).order_by(SdkResult.sdk)
        )).scalars().all()

        return RunResponse(
            id=str(run.id),
            trigger=run.trigger,
            image=run.image,
            status=run.status,
            created_at=run.created_at,
            finished_at=run.finished_at,
            error=run.error,
            results=[
                SdkResultResponse(
                    sdk=row.sdk,
                    status=row.status,
                    failed_step=row.failed_step,
                    failed_step_name=row.failed_step_name,
                    commit=row.commit,
                    error=row.error,
                    output=row.output,
                )
                for row in rows
            ],
        )
