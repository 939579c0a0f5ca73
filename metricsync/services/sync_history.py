"""
Sync run history

Persists one SyncRun row per tenant-run and answers "what happened last time"
for the API and CLI.
"""
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from metricsync.models.base import SessionLocal
from metricsync.models.credential import Provider
from metricsync.models.sync_run import SyncRun
from metricsync.utils.logger import log


def record_run(result, session_factory: Callable[[], Session] = SessionLocal) -> Optional[int]:
    """
    Persist a TenantRunResult.
    Returns the run id or None if the write failed.

    A failure here is logged and swallowed so that run bookkeeping never turns
    a finished tenant run into an error.
    """
    db = session_factory()
    try:
        run = SyncRun(
            tenant_id=result.tenant_id,
            provider=Provider.parse(result.provider).value,
            run_type=result.run_type,
            start_date=result.start_date,
            end_date=result.end_date,
            dry_run=result.dry_run,
            status=result.status.value,
            state=result.state.value,
            skip_reason=result.skip_reason.value if result.skip_reason else None,
            binding=result.binding,
            granular_rows_fetched=result.granular.rows_fetched,
            granular_rows_written=result.granular.rows_written,
            aggregate_rows_fetched=result.aggregate.rows_fetched,
            aggregate_rows_written=result.aggregate.rows_written,
            chunks_failed=result.granular.chunks_failed + result.aggregate.chunks_failed,
            chunks_truncated=result.granular.chunks_truncated + result.aggregate.chunks_truncated,
            last_error=result.last_error,
            started_at=result.started_at,
            completed_at=result.completed_at,
            duration_seconds=result.duration_seconds,
        )
        db.add(run)
        db.commit()
        log.debug(f"[SyncHistory] Recorded run {run.id} for tenant {result.tenant_id} ({run.status})")
        return run.id
    except Exception as e:
        db.rollback()
        log.error(f"[SyncHistory] Failed to record run for tenant {result.tenant_id}: {e}")
        return None
    finally:
        db.close()


def run_to_dict(run: SyncRun) -> dict:
    return {
        "id": run.id,
        "tenant_id": run.tenant_id,
        "provider": run.provider,
        "run_type": run.run_type,
        "start_date": run.start_date.isoformat(),
        "end_date": run.end_date.isoformat(),
        "dry_run": run.dry_run,
        "status": run.status,
        "state": run.state,
        "skip_reason": run.skip_reason,
        "binding": run.binding,
        "granular_rows_written": run.granular_rows_written,
        "aggregate_rows_written": run.aggregate_rows_written,
        "chunks_failed": run.chunks_failed,
        "chunks_truncated": run.chunks_truncated,
        "last_error": run.last_error,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "duration_seconds": run.duration_seconds,
    }


def recent_runs(
    tenant_id: int,
    provider=None,
    limit: int = 20,
    session_factory: Callable[[], Session] = SessionLocal
) -> List[dict]:
    """Latest runs for a tenant, newest first"""
    db = session_factory()
    try:
        query = db.query(SyncRun).filter(SyncRun.tenant_id == tenant_id)
        if provider is not None:
            query = query.filter(SyncRun.provider == Provider.parse(provider).value)
        runs = query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit).all()
        return [run_to_dict(run) for run in runs]
    finally:
        db.close()


def last_run(tenant_id: int, provider, session_factory: Callable[[], Session] = SessionLocal) -> Optional[dict]:
    runs = recent_runs(tenant_id, provider, limit=1, session_factory=session_factory)
    return runs[0] if runs else None
