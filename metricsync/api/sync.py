"""
Sync trigger endpoints
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel, Field

from metricsync.models.credential import Provider
from metricsync.services.backfill import BackfillRunner
from metricsync.services.metric_sync import SyncOptions
from metricsync.services.sync_history import recent_runs
from metricsync.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


class BackfillRequest(BaseModel):
    start_date: date
    end_date: date
    dry_run: bool = False
    chunk_days: Optional[int] = Field(None, ge=1, description="Granular chunk size in days")
    aggregate_chunk_days: Optional[int] = Field(None, ge=1, description="Aggregate chunk size in days")
    run_in_background: bool = False


def parse_provider(value: str) -> Provider:
    try:
        return Provider.parse(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {value}. Use gsc or ga4")


async def _run_backfill(runner: BackfillRunner, tenant_id: int, provider: Provider, request: BackfillRequest):
    """Background task: one tenant backfill"""
    result = await runner.run(
        tenant_id, provider, request.start_date, request.end_date,
        dry_run=request.dry_run,
        chunk_days=request.chunk_days,
        aggregate_chunk_days=request.aggregate_chunk_days,
    )
    log.info(f"Background backfill for tenant {tenant_id} {provider.short_name} finished: {result.status.value}")


@router.post("/{provider}/tenants/{tenant_id}")
async def sync_tenant(
    request: Request,
    provider: str,
    tenant_id: int,
    start_date: Optional[date] = Query(None, description="Defaults to yesterday in the sync time zone"),
    end_date: Optional[date] = Query(None, description="Defaults to start_date"),
    dry_run: bool = Query(False),
):
    """
    Run one tenant's sync now.
    Covers yesterday unless a range is given.
    """
    provider = parse_provider(provider)
    start = start_date or request.app.state.scheduler.yesterday()
    end = end_date or start
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    result = await request.app.state.sync_service.run(
        tenant_id, provider, start, end,
        SyncOptions(dry_run=dry_run, run_type="manual")
    )
    return result.to_dict()


@router.post("/{provider}/tenants/{tenant_id}/backfill")
async def backfill_tenant(
    request: Request,
    provider: str,
    tenant_id: int,
    body: BackfillRequest,
    background_tasks: BackgroundTasks,
):
    """
    Backfill a date range for one tenant.
    Long ranges can run in the background; check GET /sync/{provider}/tenants/{tenant_id}/runs
    """
    provider = parse_provider(provider)
    runner: BackfillRunner = request.app.state.backfill_runner
    try:
        runner.validate(body.start_date, body.end_date, body.chunk_days, body.aggregate_chunk_days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if body.run_in_background:
        background_tasks.add_task(_run_backfill, runner, tenant_id, provider, body)
        return {
            "message": "Backfill started in background",
            "tenant_id": tenant_id,
            "provider": provider.value,
            "check_progress": f"/sync/{provider.short_name}/tenants/{tenant_id}/runs",
        }

    result = await runner.run(
        tenant_id, provider, body.start_date, body.end_date,
        dry_run=body.dry_run,
        chunk_days=body.chunk_days,
        aggregate_chunk_days=body.aggregate_chunk_days,
    )
    return result.to_dict()


@router.get("/{provider}/tenants/{tenant_id}/runs")
def list_runs(
    request: Request,
    provider: str,
    tenant_id: int,
    limit: int = Query(20, ge=1, le=200),
):
    """Recent sync runs for one tenant, newest first"""
    provider = parse_provider(provider)
    session_factory = request.app.state.sync_service.session_factory
    return {"runs": recent_runs(tenant_id, provider, limit=limit, session_factory=session_factory)}


@router.get("/jobs")
def list_jobs(request: Request):
    """Scheduled daily jobs"""
    scheduler = request.app.state.scheduler
    return {
        "running": scheduler.running,
        "timezone": scheduler.settings.sync_timezone,
        "jobs": scheduler.get_jobs(),
    }
