"""
Scheduler for the daily incremental syncs

Uses APScheduler to run one cron job per provider in the configured time zone.
Each job syncs "yesterday" for every tenant holding a live credential.
"""
import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from metricsync.config import get_settings
from metricsync.models.credential import Provider
from metricsync.services.credential_store import CredentialStore, StoredCredential
from metricsync.services.metric_sync import (
    DualGranularitySync,
    RunStatus,
    SyncOptions,
    TenantRunResult,
)
from metricsync.services.sync_history import record_run
from metricsync.utils.logger import log


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncScheduler:
    """
    Owns the cron jobs and the per-trigger tenant loop.

    Built once with its dependencies; start() and shutdown() are called from
    the application lifespan. run_once() is the job body and can be called
    directly.
    """

    JOB_IDS = {
        Provider.SEARCH_CONSOLE: "gsc_daily_sync",
        Provider.ANALYTICS: "ga4_daily_sync",
    }

    def __init__(
        self,
        sync: DualGranularitySync,
        credential_store: Optional[CredentialStore] = None,
        settings=None,
        clock: Callable[[], datetime] = _utcnow,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.settings = settings or get_settings()
        self.sync = sync
        self.credential_store = credential_store or CredentialStore(sync.session_factory)
        self.clock = clock
        self.timezone = ZoneInfo(self.settings.sync_timezone)
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)

    def yesterday(self) -> date:
        """The previous calendar day in the sync time zone"""
        return self.clock().astimezone(self.timezone).date() - timedelta(days=1)

    def setup(self) -> None:
        """
        Configure the cron jobs.

        - Search Console: daily at gsc_sync_hour:gsc_sync_minute (default 02:00)
        - GA4:            daily at ga4_sync_hour:ga4_sync_minute (default 02:30)
        """
        self.scheduler.add_job(
            self.run_once,
            trigger=CronTrigger(
                hour=self.settings.gsc_sync_hour,
                minute=self.settings.gsc_sync_minute,
                timezone=self.timezone
            ),
            args=[Provider.SEARCH_CONSOLE],
            id=self.JOB_IDS[Provider.SEARCH_CONSOLE],
            name='Search Console Daily Sync',
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.add_job(
            self.run_once,
            trigger=CronTrigger(
                hour=self.settings.ga4_sync_hour,
                minute=self.settings.ga4_sync_minute,
                timezone=self.timezone
            ),
            args=[Provider.ANALYTICS],
            id=self.JOB_IDS[Provider.ANALYTICS],
            name='GA4 Daily Sync',
            replace_existing=True,
            max_instances=1
        )
        log.info(f"[Scheduler] Configured daily sync jobs (timezone: {self.settings.sync_timezone})")

    def start(self) -> None:
        """Start the scheduler"""
        self.setup()
        self.scheduler.start()
        log.info("[Scheduler] Started")

    def shutdown(self) -> None:
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("[Scheduler] Stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def run_once(self, provider) -> List[TenantRunResult]:
        """
        Sync yesterday for every tenant with a live credential.

        Tenants are isolated: one tenant's failure is recorded in its result
        and the loop moves on. Nothing is raised to the caller.
        """
        provider = Provider.parse(provider)
        day = self.yesterday()
        started = self.clock()

        try:
            now_utc = started.astimezone(timezone.utc).replace(tzinfo=None)
            credentials = self.credential_store.list_live(provider, now=now_utc)
        except Exception as e:
            log.error(f"[Scheduler] Could not list {provider.short_name} credentials: {e}")
            return []

        log.info(f"[Scheduler] {provider.short_name} daily sync for {day}: {len(credentials)} tenants")

        semaphore = asyncio.Semaphore(max(1, self.settings.sync_max_concurrency))
        results = await asyncio.gather(*[
            self._run_tenant(credential, provider, day, semaphore)
            for credential in credentials
        ])

        counts = {}
        for result in results:
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        summary = ", ".join(f"{count} {status}" for status, count in sorted(counts.items())) or "no tenants"
        log.info(f"[Scheduler] {provider.short_name} daily sync for {day} finished: {summary}")
        return results

    async def _run_tenant(
        self,
        credential: StoredCredential,
        provider: Provider,
        day: date,
        semaphore: asyncio.Semaphore
    ) -> TenantRunResult:
        async with semaphore:
            try:
                result = await self.sync.run(
                    credential.tenant_id, provider, day, day,
                    SyncOptions(run_type="daily")
                )
            except Exception as e:
                log.error(f"[Scheduler] Tenant {credential.tenant_id} {provider.short_name} crashed: {e}")
                return self._crashed_result(credential, provider, day, e)

            if result.status in (RunStatus.FAILED, RunStatus.SKIPPED):
                log.warning(
                    f"[Scheduler] Tenant {credential.tenant_id} {provider.short_name}: {result.status.value}"
                    + (f" ({result.skip_reason.value})" if result.skip_reason else "")
                    + (f" - {result.last_error}" if result.last_error else "")
                )
            return result

    def _crashed_result(
        self,
        credential: StoredCredential,
        provider: Provider,
        day: date,
        error: Exception
    ) -> TenantRunResult:
        now = datetime.utcnow()
        result = TenantRunResult(
            tenant_id=credential.tenant_id,
            provider=provider.value,
            start_date=day,
            end_date=day,
            run_type="daily",
            started_at=now,
            completed_at=now,
        )
        result.fail(error)
        result.run_id = record_run(result, self.sync.session_factory)
        return result

    def get_jobs(self) -> list:
        """
        Get list of all scheduled jobs

        Returns:
            List of job info dicts
        """
        jobs = []

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)

            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })

        return jobs
