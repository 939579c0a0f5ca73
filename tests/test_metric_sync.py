"""
Tenant-run orchestration: both granularity passes, skip reasons, partial
failures, dry runs and run history.
"""
import asyncio
import threading
import time
from datetime import date, datetime, timedelta

from conftest import (
    FakeHttpError,
    FakeReportingClient,
    _run,
    gsc_responder,
    gsc_row,
    gsc_total,
    paged,
)
from metricsync.connectors.types import BindingCandidate, ReportRow
from metricsync.models import (
    GA4DailyTotal,
    GA4Property,
    GA4TrafficFact,
    SearchConsoleDailyTotal,
    SearchConsoleFact,
    SearchConsoleSite,
    SyncRun,
)
from metricsync.services.credential_store import CredentialStore
from metricsync.services.metric_sync import RunState, RunStatus, SkipReason, SyncOptions
from metricsync.services.sync_history import recent_runs

DAY = date(2024, 6, 10)


def _count(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


def _first(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).first()
    finally:
        db.close()


def _granular_day(day, count, clicks=1):
    return [gsc_row(day.isoformat(), query=f"query {i}", clicks=clicks) for i in range(count)]


# ────────────────────────────────────────────
# DAILY RUN
# ────────────────────────────────────────────


class TestDailyRun:

    def test_writes_both_granularities(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 50), [gsc_total(DAY.isoformat(), clicks=77)]))

        result = _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY, SyncOptions(run_type="daily")))

        assert result.status is RunStatus.SUCCESS
        assert result.state is RunState.DONE
        assert result.binding == "sc-domain:acme.example"
        assert result.granular.rows_written == 50
        assert result.aggregate.rows_written == 1
        assert _count(session_factory, SearchConsoleFact) == 50
        total = _first(session_factory, SearchConsoleDailyTotal)
        assert (total.site_url, total.date, total.clicks) == ("sc-domain:acme.example", DAY, 77)
        assert _first(session_factory, SearchConsoleSite).site_url == "sc-domain:acme.example"

    def test_aggregate_is_not_derived_from_granular(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        # granular sums to 30 clicks, the date-only total says 100
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 10, clicks=3), [gsc_total(DAY.isoformat())]))

        _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY))

        assert _first(session_factory, SearchConsoleDailyTotal).clicks == 100

    def test_pages_through_large_results(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 50), [gsc_total(DAY.isoformat())]))

        result = _run(build_sync(client, gsc_page_size=20).run(tenant_id, "gsc", DAY, DAY))

        assert result.granular.pages == 3
        assert result.granular.rows_written == 50
        granular_offsets = [start for query, start, limit in client.calls if len(query.dimensions) > 1]
        assert granular_offsets == [0, 20, 40]

    def test_rerun_overwrites_instead_of_duplicating(self, session_factory, make_tenant, make_credential,
                                                     build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        first = FakeReportingClient(gsc_responder(_granular_day(DAY, 5, clicks=10), [gsc_total(DAY.isoformat())]))
        second = FakeReportingClient(gsc_responder(_granular_day(DAY, 5, clicks=25), [gsc_total(DAY.isoformat())]))

        _run(build_sync(first).run(tenant_id, "gsc", DAY, DAY))
        _run(build_sync(second).run(tenant_id, "gsc", DAY, DAY))

        assert _count(session_factory, SearchConsoleFact) == 5
        assert _count(session_factory, SearchConsoleDailyTotal) == 1
        assert _first(session_factory, SearchConsoleFact).clicks == 25

    def test_chunks_follow_configured_sizes(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        client = FakeReportingClient(gsc_responder([], [gsc_total("2024-06-01")]))

        _run(build_sync(client).run(
            tenant_id, "gsc", date(2024, 6, 1), date(2024, 6, 10),
            SyncOptions(granular_chunk_days=7, aggregate_chunk_days=30)
        ))

        granular = [(q.start_date, q.end_date) for q, _, _ in client.calls if len(q.dimensions) > 1]
        aggregate = [(q.start_date, q.end_date) for q, _, _ in client.calls if q.dimensions == ("date",)]
        assert granular == [(date(2024, 6, 1), date(2024, 6, 7)), (date(2024, 6, 8), date(2024, 6, 10))]
        assert aggregate == [(date(2024, 6, 1), date(2024, 6, 10))]

    def test_stale_token_refreshed_before_fetch(self, make_tenant, make_credential, build_sync, session_factory):
        from conftest import FakeOAuthClient

        tenant_id = make_tenant()
        make_credential(tenant_id, expires_in=timedelta(minutes=1))
        oauth = FakeOAuthClient()
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 1), []))

        result = _run(build_sync(client, oauth_client=oauth).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.SUCCESS
        assert len(oauth.calls) == 1
        assert CredentialStore(session_factory).get(tenant_id, "gsc").access_token == "refreshed-access-1"


class TestAnalyticsRun:

    def test_ga4_run_uses_property_and_defaults(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id, provider="ga4")
        granular = [
            ReportRow(keys=("20240610", "google", "organic", "mobile"), metrics=(100, 80, 40, 0.5, 60.0, 4, 99.5)),
            ReportRow(keys=("20240610", "(not set)", "(not set)", ""), metrics=(20, 18, 10, 0.3, 15.0, 0, 0)),
        ]
        totals = [ReportRow(keys=("20240610",), metrics=(130, 100, 55, 0.45, 50.0, 4, 99.5))]

        def respond(query, start_row, row_limit):
            assert query.binding_id == "123456789"
            assert "sessions" in query.metrics
            return paged(totals if query.dimensions == ("date",) else granular, start_row, row_limit)

        client = FakeReportingClient(respond, candidates=[BindingCandidate("123456789", name="Acme GA4")])
        result = _run(build_sync(client).run(tenant_id, "ga4", DAY, DAY))

        assert result.status is RunStatus.SUCCESS
        assert _first(session_factory, GA4Property).property_id == "123456789"
        assert _count(session_factory, GA4TrafficFact) == 2

        db = session_factory()
        try:
            direct = db.query(GA4TrafficFact).filter(GA4TrafficFact.source == "(direct)").one()
            assert (direct.medium, direct.device_category) == ("(none)", "desktop")
            organic = db.query(GA4TrafficFact).filter(GA4TrafficFact.source == "google").one()
            assert organic.conversion_rate == 0.04
        finally:
            db.close()

        total = _first(session_factory, GA4DailyTotal)
        assert (total.property_id, total.sessions) == ("123456789", 130)


# ────────────────────────────────────────────
# SKIPS
# ────────────────────────────────────────────


class TestSkips:

    def test_no_credential(self, make_tenant, build_sync):
        tenant_id = make_tenant()
        client = FakeReportingClient()

        result = _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.SKIPPED
        assert result.skip_reason is SkipReason.NO_CREDENTIAL
        assert client.request_count == 0

    def test_invalidated_credential(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id, invalidated_at=datetime.utcnow())

        result = _run(build_sync(FakeReportingClient()).run(tenant_id, "gsc", DAY, DAY))

        assert result.skip_reason is SkipReason.CREDENTIAL_INVALID

    def test_refresh_rejected(self, session_factory, make_tenant, make_credential, build_sync):
        from conftest import FakeOAuthClient

        tenant_id = make_tenant()
        make_credential(tenant_id, expires_in=timedelta(seconds=-5), refresh_token="revoked")

        result = _run(build_sync(FakeReportingClient(), oauth_client=FakeOAuthClient(rejected={"revoked"})).run(
            tenant_id, "gsc", DAY, DAY
        ))

        assert result.skip_reason is SkipReason.CREDENTIAL_INVALID
        assert CredentialStore(session_factory).get(tenant_id, "gsc").invalidated_at is not None

    def test_access_token_rejected_by_provider(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)

        def respond(query, start_row, row_limit):
            raise FakeHttpError(401, "Invalid Credentials")

        result = _run(build_sync(FakeReportingClient(respond)).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.SKIPPED
        assert result.skip_reason is SkipReason.CREDENTIAL_INVALID
        # only a rejected refresh token invalidates the stored credential
        assert CredentialStore(session_factory).get(tenant_id, "gsc").invalidated_at is None

    def test_binding_not_found(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)

        result = _run(build_sync(FakeReportingClient(candidates=[])).run(tenant_id, "gsc", DAY, DAY))

        assert result.skip_reason is SkipReason.BINDING_NOT_FOUND

    def test_empty_result(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)

        result = _run(build_sync(FakeReportingClient()).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.SKIPPED
        assert result.skip_reason is SkipReason.EMPTY_RESULT
        assert _count(session_factory, SearchConsoleFact) == 0


# ────────────────────────────────────────────
# FAILURES
# ────────────────────────────────────────────


class TestFailures:

    def test_failed_chunk_makes_run_partial(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        start, end = date(2024, 6, 8), date(2024, 6, 10)
        rows = _granular_day(start, 2) + _granular_day(date(2024, 6, 9), 2) + _granular_day(end, 2)
        serve = gsc_responder(rows, [gsc_total(start.isoformat()), gsc_total(end.isoformat())])

        def respond(query, start_row, row_limit):
            if len(query.dimensions) > 1 and query.start_date == date(2024, 6, 9):
                raise FakeHttpError(503, "Backend Error")
            return serve(query, start_row, row_limit)

        result = _run(build_sync(FakeReportingClient(respond)).run(
            tenant_id, "gsc", start, end, SyncOptions(granular_chunk_days=1)
        ))

        assert result.status is RunStatus.PARTIAL
        assert result.granular.chunks_failed == 1
        assert result.granular.rows_written == 4
        assert result.aggregate.rows_written == 2
        assert "2024-06-09" in result.last_error
        assert _count(session_factory, SearchConsoleFact) == 4

    def test_every_chunk_failing_fails_the_run(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)

        def respond(query, start_row, row_limit):
            raise FakeHttpError(500, "Internal Error")

        result = _run(build_sync(FakeReportingClient(respond)).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.FAILED
        assert result.failures == 2
        assert result.rows_written == 0

    def test_transient_error_retried_within_page(self, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        serve = gsc_responder(_granular_day(DAY, 3), [gsc_total(DAY.isoformat())])
        attempts = []

        def respond(query, start_row, row_limit):
            attempts.append(query.dimensions)
            if len(attempts) == 1:
                raise FakeHttpError(429, "Rate Limit Exceeded")
            return serve(query, start_row, row_limit)

        client = FakeReportingClient(respond, retry_attempts=2)
        result = _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.SUCCESS
        assert client.retry_count == 1
        assert result.granular.rows_written == 3

    def test_unexpected_error_is_contained(self, make_tenant, make_credential, session_factory, settings):
        from conftest import FakeOAuthClient
        from metricsync.services.metric_sync import DualGranularitySync
        from metricsync.services.token_manager import TokenLifecycleManager

        tenant_id = make_tenant()
        make_credential(tenant_id)

        def broken_factory(provider, access_token):
            raise RuntimeError("client construction failed")

        sync = DualGranularitySync(
            TokenLifecycleManager(FakeOAuthClient(), session_factory=session_factory),
            broken_factory,
            session_factory=session_factory,
            settings=settings,
        )
        result = _run(sync.run(tenant_id, "gsc", DAY, DAY))

        assert result.status is RunStatus.FAILED
        assert "client construction failed" in result.last_error


# ────────────────────────────────────────────
# TOKEN EXPIRY DURING A RUN
# ────────────────────────────────────────────

JAN_1, JAN_15, JAN_28 = date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 28)


def _january():
    days = [JAN_1 + timedelta(days=offset) for offset in range(28)]
    granular = [gsc_row(day.isoformat(), query="acme plumbing") for day in days]
    totals = [gsc_total(day.isoformat()) for day in days]
    return gsc_responder(granular, totals)


class TestTokenExpiryMidRun:

    def _expiring_client(self, reject_any_token=False):
        """Granular chunks from Jan 15 on answer 401 to the original access token"""
        serve = _january()

        def respond(query, start_row, row_limit):
            late_granular = len(query.dimensions) > 1 and query.start_date >= JAN_15
            if late_granular and (reject_any_token or client.access_token == "stored-access"):
                raise FakeHttpError(401, "Request had invalid authentication credentials.")
            return serve(query, start_row, row_limit)

        client = FakeReportingClient(respond)
        return client

    def test_expired_token_refreshed_and_chunk_retried(self, session_factory, make_tenant, make_credential,
                                                       build_sync):
        from conftest import FakeOAuthClient

        tenant_id = make_tenant()
        # valid for longer than the buffer, so the run starts with the stored token
        make_credential(tenant_id, expires_in=timedelta(minutes=6))
        oauth = FakeOAuthClient()
        client = self._expiring_client()

        result = _run(build_sync(client, oauth_client=oauth).run(
            tenant_id, "gsc", JAN_1, JAN_28, SyncOptions(run_type="backfill")
        ))

        assert result.status is RunStatus.SUCCESS
        assert result.skip_reason is None
        assert len(oauth.calls) == 1
        assert client.tokens_used == ["stored-access", "refreshed-access-1"]
        assert result.granular.chunks == 4
        assert result.granular.rows_written == 28
        assert result.aggregate.rows_written == 28
        assert _count(session_factory, SearchConsoleFact) == 28
        assert CredentialStore(session_factory).get(tenant_id, "gsc").access_token == "refreshed-access-1"

    def test_later_chunks_reuse_refreshed_token(self, make_tenant, make_credential, build_sync):
        from conftest import FakeOAuthClient

        tenant_id = make_tenant()
        make_credential(tenant_id, expires_in=timedelta(minutes=6))
        oauth = FakeOAuthClient()
        client = self._expiring_client()

        _run(build_sync(client, oauth_client=oauth).run(tenant_id, "gsc", JAN_1, JAN_28))

        # chunk 4 and the aggregate pass pick up the stored token without another refresh
        late = [q for q, _, _ in client.calls if q.start_date == date(2024, 1, 22)]
        assert len(late) == 1
        assert len(oauth.calls) == 1

    def test_credential_rejected_after_progress_is_partial(self, session_factory, make_tenant, make_credential,
                                                           build_sync):
        from conftest import FakeOAuthClient

        tenant_id = make_tenant()
        make_credential(tenant_id, expires_in=timedelta(minutes=6), refresh_token="revoked")
        oauth = FakeOAuthClient(rejected={"revoked"})
        client = self._expiring_client(reject_any_token=True)

        result = _run(build_sync(client, oauth_client=oauth).run(tenant_id, "gsc", JAN_1, JAN_28))

        assert result.status is RunStatus.PARTIAL
        assert result.skip_reason is None
        assert result.granular.rows_written == 14
        assert result.granular.chunks_failed == 2
        # the credential is invalidated, so the aggregate pass fails without a provider call
        assert result.aggregate.chunks_failed == 1
        assert not [q for q, _, _ in client.calls if q.dimensions == ("date",)]
        assert len(oauth.calls) == 1
        assert CredentialStore(session_factory).get(tenant_id, "gsc").invalidated_at is not None
        assert _count(session_factory, SearchConsoleFact) == 14


# ────────────────────────────────────────────
# DRY RUN AND HISTORY
# ────────────────────────────────────────────


class TestDryRunAndHistory:

    def test_dry_run_writes_nothing(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 50), [gsc_total(DAY.isoformat())]))

        result = _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY, SyncOptions(dry_run=True)))

        assert result.status is RunStatus.SUCCESS
        assert result.granular.rows_fetched == 50
        assert result.rows_written == 0
        assert len(result.granular.samples) == 2
        assert result.to_dict()["granular"]["samples"][0]["query"] == "query 0"
        assert _count(session_factory, SearchConsoleFact) == 0
        assert _count(session_factory, SearchConsoleDailyTotal) == 0

    def test_run_is_recorded(self, session_factory, make_tenant, make_credential, build_sync):
        tenant_id = make_tenant()
        make_credential(tenant_id)
        client = FakeReportingClient(gsc_responder(_granular_day(DAY, 4), [gsc_total(DAY.isoformat())]))

        result = _run(build_sync(client).run(tenant_id, "gsc", DAY, DAY, SyncOptions(run_type="daily")))

        runs = recent_runs(tenant_id, "gsc", session_factory=session_factory)
        assert len(runs) == 1
        assert runs[0]["id"] == result.run_id
        assert runs[0]["status"] == "success"
        assert runs[0]["run_type"] == "daily"
        assert runs[0]["granular_rows_written"] == 4

    def test_skips_are_recorded_with_reason(self, session_factory, make_tenant, build_sync):
        tenant_id = make_tenant()
        _run(build_sync(FakeReportingClient()).run(tenant_id, "ga4", DAY, DAY))

        run = _first(session_factory, SyncRun)
        assert (run.status, run.skip_reason) == ("skipped", "no_credential")

    def test_record_can_be_disabled(self, session_factory, make_tenant, build_sync):
        tenant_id = make_tenant()
        _run(build_sync(FakeReportingClient()).run(tenant_id, "gsc", DAY, DAY, SyncOptions(record=False)))
        assert _count(session_factory, SyncRun) == 0


def test_same_tenant_runs_do_not_overlap(make_tenant, make_credential, build_sync):
    tenant_id = make_tenant()
    make_credential(tenant_id)
    serve = gsc_responder(_granular_day(DAY, 2), [gsc_total(DAY.isoformat())])
    guard = threading.Lock()
    active = {"now": 0, "peak": 0}

    def respond(query, start_row, row_limit):
        with guard:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        time.sleep(0.02)
        with guard:
            active["now"] -= 1
        return serve(query, start_row, row_limit)

    sync = build_sync(FakeReportingClient(respond))

    async def both():
        return await asyncio.gather(
            sync.run(tenant_id, "gsc", DAY, DAY),
            sync.run(tenant_id, "gsc", DAY, DAY),
        )

    results = _run(both())

    assert [r.status for r in results] == [RunStatus.SUCCESS, RunStatus.SUCCESS]
    assert active["peak"] == 1
