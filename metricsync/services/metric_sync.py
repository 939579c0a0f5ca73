"""
Dual-Granularity Sync

Runs one tenant + provider + date range through two independent passes:

- granular: every dimension, small chunks, upserted on the full natural key
- aggregate: date dimension only, large chunks, upserted on (tenant, binding, date)

The aggregate pass is fetched separately because the providers do not return
the same totals for a date-only query as the sum of a multi-dimension one.
Every failure below the tenant boundary ends up in the TenantRunResult; run()
does not raise.
"""
import asyncio
import enum
import time
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from metricsync.config import get_settings
from metricsync.connectors.base_connector import ReportingClient
from metricsync.connectors.types import ReportQuery
from metricsync.exceptions import BindingNotFound, CredentialInvalid
from metricsync.models.base import SessionLocal
from metricsync.models.credential import Provider
from metricsync.services.bindings import Binding, BindingResolver
from metricsync.services.credential_store import CredentialStore
from metricsync.services.date_chunker import chunk_date_range
from metricsync.services.paginator import fetch_all
from metricsync.services.profiles import Granularity, ProviderProfile, get_profile
from metricsync.services.sync_history import record_run
from metricsync.services.token_manager import TokenLifecycleManager
from metricsync.services.upsert_writer import IdempotentUpsertWriter
from metricsync.utils.logger import log

ClientFactory = Callable[[Provider, str], ReportingClient]


class RunState(str, enum.Enum):
    RESOLVING_BINDING = "resolving_binding"
    FETCHING_GRANULAR = "fetching_granular"
    WRITING_GRANULAR = "writing_granular"
    FETCHING_AGGREGATE = "fetching_aggregate"
    WRITING_AGGREGATE = "writing_aggregate"
    DONE = "done"
    SKIPPED = "skipped"


class SkipReason(str, enum.Enum):
    NO_CREDENTIAL = "no_credential"
    CREDENTIAL_INVALID = "credential_invalid"
    BINDING_NOT_FOUND = "binding_not_found"
    EMPTY_RESULT = "empty_result"


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SyncOptions:
    """Per-run knobs; None means use the configured default"""
    dry_run: bool = False
    granular_chunk_days: Optional[int] = None
    aggregate_chunk_days: Optional[int] = None
    sample_size: Optional[int] = None
    strict_pagination: bool = False
    run_type: str = "manual"  # daily, backfill, manual
    record: bool = True


@dataclass
class PassStats:
    """Counts for one granularity pass"""
    chunks: int = 0
    pages: int = 0
    rows_fetched: int = 0
    rows_written: int = 0
    chunks_failed: int = 0
    chunks_truncated: int = 0
    batches_failed: int = 0
    samples: List[Any] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return self.chunks_failed + self.batches_failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunks": self.chunks,
            "pages": self.pages,
            "rows_fetched": self.rows_fetched,
            "rows_written": self.rows_written,
            "chunks_failed": self.chunks_failed,
            "chunks_truncated": self.chunks_truncated,
            "batches_failed": self.batches_failed,
            "samples": [_sample_to_dict(sample) for sample in self.samples],
        }


def _sample_to_dict(sample: Any) -> Any:
    if not is_dataclass(sample):
        return sample
    flat = {}
    for key, value in asdict(sample).items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    return {key: (str(value) if not isinstance(value, (int, float, str)) else value)
            for key, value in flat.items()}


@dataclass
class TenantRunResult:
    """Terminal record of one tenant-run"""
    tenant_id: int
    provider: str
    start_date: date
    end_date: date
    run_type: str = "manual"
    dry_run: bool = False
    state: RunState = RunState.RESOLVING_BINDING
    status: RunStatus = RunStatus.SUCCESS
    skip_reason: Optional[SkipReason] = None
    binding: Optional[str] = None
    granular: PassStats = field(default_factory=PassStats)
    aggregate: PassStats = field(default_factory=PassStats)
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    run_id: Optional[int] = None

    def skip(self, reason: SkipReason, message: Optional[str] = None) -> None:
        self.state = RunState.SKIPPED
        self.status = RunStatus.SKIPPED
        self.skip_reason = reason
        if message:
            self.last_error = message

    def fail(self, error: Exception) -> None:
        self.status = RunStatus.FAILED
        self.last_error = f"{type(error).__name__}: {error}"

    @property
    def rows_written(self) -> int:
        return self.granular.rows_written + self.aggregate.rows_written

    @property
    def rows_fetched(self) -> int:
        return self.granular.rows_fetched + self.aggregate.rows_fetched

    @property
    def failures(self) -> int:
        return self.granular.failures + self.aggregate.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "tenant_id": self.tenant_id,
            "provider": self.provider,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "run_type": self.run_type,
            "dry_run": self.dry_run,
            "state": self.state.value,
            "status": self.status.value,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "binding": self.binding,
            "granular": self.granular.to_dict(),
            "aggregate": self.aggregate.to_dict(),
            "last_error": self.last_error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class ClientHandle:
    """The reporting client for one tenant-run and the access token it was built with"""
    tenant_id: int
    provider: Provider
    access_token: str
    client: ReportingClient


class DualGranularitySync:
    """Orchestrates one tenant-run: token, binding, granular pass, aggregate pass"""

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        client_factory: ClientFactory,
        session_factory: Callable[[], Session] = SessionLocal,
        settings=None,
        credential_store: Optional[CredentialStore] = None,
        binding_resolver: Optional[BindingResolver] = None
    ):
        self.settings = settings or get_settings()
        self.token_manager = token_manager
        self.client_factory = client_factory
        self.session_factory = session_factory
        self.credential_store = credential_store or CredentialStore(session_factory)
        self.binding_resolver = binding_resolver or BindingResolver(session_factory)
        self._locks: Dict[Tuple[int, str], asyncio.Lock] = {}

    def _lock_for(self, key: Tuple[int, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def run(
        self,
        tenant_id: int,
        provider,
        start: date,
        end: date,
        options: Optional[SyncOptions] = None
    ) -> TenantRunResult:
        """Run both passes for one tenant and record the outcome"""
        provider = Provider.parse(provider)
        options = options or SyncOptions()
        result = TenantRunResult(
            tenant_id=tenant_id,
            provider=provider.value,
            start_date=start,
            end_date=end,
            run_type=options.run_type,
            dry_run=options.dry_run,
        )

        async with self._lock_for((tenant_id, provider.value)):
            result.started_at = datetime.utcnow()
            start_time = time.time()
            try:
                await self._run(result, provider, options)
            except CredentialInvalid as e:
                log.warning(f"[DualGranularitySync] Tenant {tenant_id} {provider.short_name}: credential invalid ({e})")
                result.skip(SkipReason.CREDENTIAL_INVALID, str(e))
            except BindingNotFound as e:
                log.warning(f"[DualGranularitySync] Tenant {tenant_id} {provider.short_name}: {e}")
                result.skip(SkipReason.BINDING_NOT_FOUND, str(e))
            except Exception as e:
                log.error(
                    f"[DualGranularitySync] Tenant {tenant_id} {provider.short_name} failed "
                    f"in {result.state.value}: {e}"
                )
                result.fail(e)
            finally:
                result.completed_at = datetime.utcnow()
                result.duration_seconds = time.time() - start_time

        self._finalize(result)
        if options.record:
            result.run_id = record_run(result, self.session_factory)

        log.info(
            f"[DualGranularitySync] Tenant {tenant_id} {provider.short_name} {start}..{end}: "
            f"{result.status.value} ({result.state.value}) granular "
            f"{result.granular.rows_fetched}/{result.granular.rows_written} aggregate "
            f"{result.aggregate.rows_fetched}/{result.aggregate.rows_written} fetched/written "
            f"in {result.duration_seconds:.1f}s"
            + (f", skipped: {result.skip_reason.value}" if result.skip_reason else "")
        )
        return result

    async def _run(self, result: TenantRunResult, provider: Provider, options: SyncOptions) -> None:
        tenant_id = result.tenant_id

        credential = self.credential_store.get(tenant_id, provider)
        if credential is None:
            result.skip(SkipReason.NO_CREDENTIAL)
            return
        if credential.invalidated_at is not None:
            result.skip(SkipReason.CREDENTIAL_INVALID, "Credential was invalidated; tenant must re-authorize")
            return

        access_token = await self.token_manager.get_valid_token(credential)
        handle = ClientHandle(tenant_id, provider, access_token, self.client_factory(provider, access_token))

        binding = await self.binding_resolver.resolve(tenant_id, provider, handle.client)
        result.binding = binding.identifier

        profile = get_profile(provider)
        granular_days = options.granular_chunk_days or self.settings.granular_chunk_days
        aggregate_days = options.aggregate_chunk_days or self.settings.aggregate_chunk_days

        await self._run_pass(
            result, result.granular, profile, profile.granular, handle, binding, granular_days, options,
            fetching=RunState.FETCHING_GRANULAR, writing=RunState.WRITING_GRANULAR
        )
        await self._run_pass(
            result, result.aggregate, profile, profile.aggregate, handle, binding, aggregate_days, options,
            fetching=RunState.FETCHING_AGGREGATE, writing=RunState.WRITING_AGGREGATE
        )

        if result.rows_fetched == 0 and result.failures == 0:
            result.skip(SkipReason.EMPTY_RESULT)
            return
        result.state = RunState.DONE

    async def _run_pass(
        self,
        result: TenantRunResult,
        stats: PassStats,
        profile: ProviderProfile,
        granularity: Granularity,
        handle: ClientHandle,
        binding: Binding,
        chunk_days: int,
        options: SyncOptions,
        fetching: RunState,
        writing: RunState
    ) -> None:
        sample_size = options.sample_size if options.sample_size is not None else self.settings.backfill_sample_size
        writer = IdempotentUpsertWriter(
            granularity.model,
            key_columns=granularity.key_columns,
            metric_columns=profile.metric_columns,
            session_factory=self.session_factory,
            batch_size=self.settings.upsert_batch_size,
        )

        for chunk in chunk_date_range(result.start_date, result.end_date, chunk_days):
            stats.chunks += 1
            result.state = fetching
            query = ReportQuery(
                binding_id=binding.identifier,
                start_date=chunk.start,
                end_date=chunk.end,
                dimensions=granularity.dimensions,
                metrics=profile.metrics,
            )
            label = f"tenant {result.tenant_id} {profile.provider.short_name} {granularity.name} {chunk}"

            try:
                pages = await self._fetch_chunk(handle, query, profile, granularity, options, label)
            except CredentialInvalid as e:
                # Nothing produced yet: the whole run is skipped
                if result.rows_fetched == 0:
                    raise
                stats.chunks_failed += 1
                result.last_error = f"{granularity.name} {chunk}: credential rejected: {e}"
                log.error(f"[DualGranularitySync] Credential rejected for {label}: {e}")
                continue
            except Exception as e:
                stats.chunks_failed += 1
                result.last_error = f"{granularity.name} {chunk}: {type(e).__name__}: {e}"
                log.error(f"[DualGranularitySync] Fetch failed for {label}: {e}")
                continue

            stats.pages += pages.pages
            stats.rows_fetched += len(pages.rows)
            if pages.truncated:
                stats.chunks_truncated += 1

            if options.dry_run:
                remaining = sample_size - len(stats.samples)
                if remaining > 0:
                    stats.samples.extend(pages.rows[:remaining])
                continue

            if not pages.rows:
                continue

            result.state = writing
            records = [row.to_record(result.tenant_id, binding.identifier) for row in pages.rows]
            try:
                written = await asyncio.to_thread(writer.upsert, records)
            except Exception as e:
                stats.chunks_failed += 1
                result.last_error = f"{granularity.name} {chunk}: {type(e).__name__}: {e}"
                log.error(f"[DualGranularitySync] Write failed for {label}: {e}")
                continue

            stats.rows_written += written.rows_written
            if written.batches_failed:
                stats.batches_failed += written.batches_failed
                result.last_error = str(written.errors[-1])

    async def _fetch_chunk(
        self,
        handle: ClientHandle,
        query: ReportQuery,
        profile: ProviderProfile,
        granularity: Granularity,
        options: SyncOptions,
        label: str
    ):
        """
        Fetch every page of one chunk.

        The stored token is re-checked before the chunk, so a run that outlives
        an access token picks up the refreshed one. A 401/403 from the provider
        forces one refresh and the chunk is fetched again from the first page.
        """
        async def fetch(client: ReportingClient):
            return await fetch_all(
                lambda offset, limit: client.query(query, offset, limit),
                page_size=profile.page_size(self.settings),
                max_pages=self.settings.pagination_max_pages,
                strict=options.strict_pagination,
                parse=granularity.parse,
                label=label,
            )

        client = await self._current_client(handle)
        try:
            return await fetch(client)
        except CredentialInvalid as e:
            log.warning(f"[DualGranularitySync] Access token rejected for {label} ({e}); refreshing and retrying")
            client = await self._refreshed_client(handle)
            return await fetch(client)

    def _stored_credential(self, handle: ClientHandle):
        credential = self.credential_store.get(handle.tenant_id, handle.provider)
        if credential is None:
            raise CredentialInvalid(
                "Credential was removed during the run",
                tenant_id=handle.tenant_id, provider=handle.provider.value
            )
        if credential.invalidated_at is not None:
            raise CredentialInvalid(
                "Credential was invalidated during the run",
                tenant_id=handle.tenant_id, provider=handle.provider.value
            )
        return credential

    async def _current_client(self, handle: ClientHandle) -> ReportingClient:
        token = await self.token_manager.get_valid_token(self._stored_credential(handle))
        return self._retoken(handle, token)

    async def _refreshed_client(self, handle: ClientHandle) -> ReportingClient:
        refreshed = await self.token_manager.force_refresh(self._stored_credential(handle))
        return self._retoken(handle, refreshed.access_token)

    def _retoken(self, handle: ClientHandle, token: str) -> ReportingClient:
        if token != handle.access_token:
            handle.client = self.client_factory(handle.provider, token)
            handle.access_token = token
        return handle.client

    @staticmethod
    def _finalize(result: TenantRunResult) -> None:
        if result.state is RunState.SKIPPED:
            result.status = RunStatus.SKIPPED
            return
        if result.status is RunStatus.FAILED:
            return

        if result.failures == 0:
            result.status = RunStatus.SUCCESS
            return

        produced = result.rows_fetched if result.dry_run else result.rows_written
        result.status = RunStatus.PARTIAL if produced > 0 else RunStatus.FAILED


def build_sync_service(
    settings=None,
    session_factory: Callable[[], Session] = SessionLocal,
    oauth_client=None,
    client_factory: Optional[ClientFactory] = None
) -> DualGranularitySync:
    """Wire a DualGranularitySync from settings with the real Google clients"""
    from metricsync.connectors import GoogleOAuthClient, build_reporting_client

    settings = settings or get_settings()
    oauth_client = oauth_client or GoogleOAuthClient.from_settings(settings)
    if client_factory is None:
        def client_factory(provider, access_token):
            return build_reporting_client(provider, access_token, settings)

    token_manager = TokenLifecycleManager(
        oauth_client,
        session_factory=session_factory,
        buffer_seconds=settings.token_expiry_buffer_seconds,
        timeout=settings.request_timeout_seconds,
    )
    return DualGranularitySync(token_manager, client_factory, session_factory=session_factory, settings=settings)
