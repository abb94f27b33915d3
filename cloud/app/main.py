from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import sqlalchemy as sa
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crossci.gate import AggregationPolicy, dependents, settle, topo_levels

from .models import Base, Run, Job, Lease
from .redisq import enqueue_jobs, dequeue_job, requeue_job, r, lease_lock_key
from .settings import DATABASE_URL, LEASE_SECONDS

engine = create_async_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

app = FastAPI(title="crossci control plane")

# -------------------- Schemas --------------------

class CreateRunJob(BaseModel):
    job_name: str
    needs: list[str] = Field(default_factory=list)
    is_matrix: bool = False
    payload_json: dict[str, Any] = Field(default_factory=dict)

class CreateRunRequest(BaseModel):
    repo: str
    policy: AggregationPolicy = AggregationPolicy.NATIVE_GATE
    jobs: list[CreateRunJob]

class CreateRunResponse(BaseModel):
    run_id: str
    job_ids: list[str]

class ClaimRequest(BaseModel):
    agent_id: str

class ClaimedJob(BaseModel):
    job_id: str
    run_id: str
    job_name: str
    payload_json: dict[str, Any]
    lease_expires_at: str

class CompleteRequest(BaseModel):
    agent_id: str
    status: str  # ok|failed
    details: dict[str, Any] = Field(default_factory=dict)

class JobResponse(BaseModel):
    id: str
    job_name: str
    status: str
    needs: list[str]
    reason: str | None
    logs: str | None
    created_at: datetime

class RunResponse(BaseModel):
    id: str
    repo: str
    status: str
    policy: str
    jobs: list[JobResponse]

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    # uuid-ossp extension must exist for the server defaults
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def _job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=str(job.id),
        job_name=job.job_name,
        status=job.status,
        needs=list(job.needs or []),
        reason=job.reason,
        logs=job.logs,
        created_at=job.created_at,
    )

# -------------------- Endpoints --------------------

@app.post("/runs", response_model=CreateRunResponse)
async def create_run(req: CreateRunRequest):
    names = [j.job_name for j in req.jobs]
    if len(set(names)) != len(names):
        raise HTTPException(status_code=400, detail="duplicate job names")
    needs = {j.job_name: set(j.needs) for j in req.jobs}
    for name, deps in needs.items():
        missing = deps - set(names)
        if missing:
            raise HTTPException(status_code=400, detail=f"job {name!r} needs unknown jobs {sorted(missing)}")
    try:
        topo_levels(dependents(needs), {n: len(d) for n, d in needs.items()})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job_ids: list[str] = []
    ready_ids: list[str] = []

    async with SessionLocal() as s:
        async with s.begin():
            run = Run(repo=req.repo, status="queued", policy=req.policy.value)
            s.add(run)
            await s.flush()

            for j in req.jobs:
                status = "waiting" if j.needs else "queued"
                job = Job(
                    run_id=run.id,
                    job_name=j.job_name,
                    status=status,
                    needs=j.needs,
                    is_matrix=j.is_matrix,
                    payload_json=j.payload_json,
                )
                s.add(job)
                await s.flush()
                job_ids.append(str(job.id))
                if status == "queued":
                    ready_ids.append(str(job.id))

            run_id = str(run.id)

    # push to Redis after DB commit
    await enqueue_jobs(ready_ids)

    return CreateRunResponse(run_id=run_id, job_ids=job_ids)

@app.post("/leases/claim", response_model=ClaimedJob)
async def claim(req: ClaimRequest):
    job_id = await dequeue_job(timeout_s=5)
    if not job_id:
        return Response(status_code=204)

    # Lock in Redis to reduce duplicate leasing during retries
    lock_key = lease_lock_key(job_id)
    got_lock = await r.set(lock_key, req.agent_id, nx=True, ex=LEASE_SECONDS)
    if not got_lock:
        return await claim(req)  # try again

    expires_at = now_utc() + timedelta(seconds=LEASE_SECONDS)

    async with SessionLocal() as s:
        async with s.begin():
            job = await s.get(Job, uuid.UUID(job_id))
            if not job:
                await r.delete(lock_key)
                raise HTTPException(status_code=404, detail="Job not found")

            if job.status != "queued":
                await r.delete(lock_key)
                raise HTTPException(status_code=409, detail=f"Job is {job.status}")

            lease = await s.get(Lease, uuid.UUID(job_id))
            if lease and lease.expires_at > now_utc():
                await r.delete(lock_key)
                await requeue_job(job_id)
                return await claim(req)

            if lease:
                lease.agent_id = req.agent_id
                lease.leased_at = now_utc()
                lease.expires_at = expires_at
            else:
                s.add(Lease(job_id=uuid.UUID(job_id), agent_id=req.agent_id, leased_at=now_utc(), expires_at=expires_at))

            job.status = "leased"

            run = await s.get(Run, job.run_id)
            if run and run.status == "queued":
                run.status = "running"

            return ClaimedJob(
                job_id=job_id,
                run_id=str(job.run_id),
                job_name=job.job_name,
                payload_json=job.payload_json,
                lease_expires_at=expires_at.isoformat(),
            )

@app.post("/leases/{job_id}/complete")
async def complete(job_id: str, req: CompleteRequest):
    if req.status not in ("ok", "failed"):
        raise HTTPException(status_code=400, detail="status must be ok|failed")

    release_ids: list[str] = []

    async with SessionLocal() as s:
        async with s.begin():
            job = await s.get(Job, uuid.UUID(job_id))
            if not job:
                raise HTTPException(status_code=404, detail="Job not found")

            lease = await s.get(Lease, uuid.UUID(job_id))
            if not lease:
                raise HTTPException(status_code=409, detail="No lease for job")
            if lease.agent_id != req.agent_id:
                raise HTTPException(status_code=403, detail="Lease owned by different agent")

            job.logs = req.details.get("logs") or None
            job.reason = req.details.get("error") or None
            job.status = req.status
            await s.delete(lease)

            siblings = (await s.execute(sa.select(Job).where(Job.run_id == job.run_id))).scalars().all()
            by_name = {j.job_name: j for j in siblings}
            run = await s.get(Run, job.run_id)

            outcome = settle(
                job.job_name,
                {j.job_name: j.status for j in siblings},
                {j.job_name: set(j.needs or []) for j in siblings},
                policy=run.policy if run else AggregationPolicy.NATIVE_GATE,
                matrix_jobs=[j.job_name for j in siblings if j.is_matrix],
            )
            for name in outcome.released:
                nxt = by_name[name]
                nxt.status = "queued"
                release_ids.append(str(nxt.id))
            for name, reason in outcome.skipped.items():
                by_name[name].status = "skipped"
                by_name[name].reason = reason

            if run:
                run.status = outcome.run_status or "running"

    await r.delete(lease_lock_key(job_id))
    await enqueue_jobs(release_ids)
    return {"ok": True, "released": release_ids}

@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    async with SessionLocal() as s:
        job = await s.get(Job, uuid.UUID(job_id))
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return _job_response(job)

@app.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(run_id: str):
    async with SessionLocal() as s:
        run = await s.get(Run, uuid.UUID(run_id))
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")
        jobs = (await s.execute(sa.select(Job).where(Job.run_id == run.id).order_by(Job.created_at))).scalars().all()
        return RunResponse(
            id=str(run.id),
            repo=run.repo,
            status=run.status,
            policy=run.policy,
            jobs=[_job_response(j) for j in jobs],
        )
