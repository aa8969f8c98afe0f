"""
Rebuild the denormalized statistics from the attempt history.

Submits maintain question counters and running score means incrementally.
This job recomputes them from completed attempts and repairs any drift,
for use after manual data fixes or a crash between counter updates.
"""
import logging
from typing import Optional

from rq import get_current_job
from sqlalchemy.orm import sessionmaker

from quiz_engine.core.database import SessionLocal
from quiz_engine.services.stats import apply_drift, find_drift, lock_counter_rows

logger = logging.getLogger(__name__)


def _update_meta(job, **values) -> None:
    if job is None:
        return
    job.meta.update(values)
    job.save_meta()


def reconcile_stats_job(dry_run: bool = False, session_factory: Optional[sessionmaker] = None) -> dict:
    job = get_current_job()
    _update_meta(job, state="running", dry_run=dry_run)
    db = (session_factory or SessionLocal)()
    try:
        if not dry_run:
            lock_counter_rows(db)
        drift = find_drift(db)
        _update_meta(job, drift_found=len(drift))
        if not dry_run:
            apply_drift(db, drift)
            db.commit()
        result = {"dry_run": dry_run, "drift_found": len(drift), "repaired": 0 if dry_run else len(drift),
                  "drift": drift}
        _update_meta(job, state="done", repaired=result["repaired"])
        logger.info("Stats reconcile finished: drift=%d repaired=%d dry_run=%s",
                    len(drift), result["repaired"], dry_run)
        return result
    except Exception:
        db.rollback()
        _update_meta(job, state="failed")
        logger.exception("Stats reconcile failed")
        raise
    finally:
        db.close()
