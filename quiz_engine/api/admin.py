from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from rq.exceptions import NoSuchJobError
from rq.job import Job

from quiz_engine.core.auth import require_roles
from quiz_engine.jobs import queue as job_queue
from quiz_engine.jobs.reconcile_job import reconcile_stats_job

router = APIRouter()


class StartReconcile(BaseModel):
    dry_run: bool = False


class ReconcileStatus(BaseModel):
    job_id: str
    state: str
    drift_found: Optional[int] = None
    repaired: Optional[int] = None
    result: Optional[dict] = None


@router.post("/stats/reconcile", status_code=202, dependencies=[Depends(require_roles("admin"))])
def start_reconcile(payload: StartReconcile):
    job = job_queue.queue.enqueue(reconcile_stats_job, payload.dry_run, job_timeout=3600)
    return {"job_id": job.get_id(), "dry_run": payload.dry_run}


@router.get("/stats/reconcile/status", response_model=ReconcileStatus, dependencies=[Depends(require_roles("admin"))])
def reconcile_status(job_id: str):
    try:
        job = Job.fetch(job_id, connection=job_queue.redis)
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    meta = job.meta or {}
    status = job.get_status()
    state = meta.get("state") or getattr(status, "value", status) or "unknown"
    return ReconcileStatus(
        job_id=job_id,
        state=state,
        drift_found=meta.get("drift_found"),
        repaired=meta.get("repaired"),
        result=job.return_value() if state == "done" else None,
    )
