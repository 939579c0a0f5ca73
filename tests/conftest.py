"""
Shared fixtures: an in-memory database per test, fake Google clients and
row builders.
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="metricsync-logs-"))
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from metricsync.config import Settings
from metricsync.connectors.base_connector import ReportingClient
from metricsync.connectors.types import BindingCandidate, ReportRow, TokenGrant
from metricsync.exceptions import CredentialInvalid
from metricsync.models import OAuthCredential, Provider, Tenant
from metricsync.models.base import enable_sqlite_foreign_keys, init_db
from metricsync.services.metric_sync import DualGranularitySync
from metricsync.services.token_manager import TokenLifecycleManager


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def settings():
    return Settings(
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        scheduler_enabled=False,
        gsc_page_size=100,
        ga4_page_size=100,
        provider_retry_attempts=2,
        provider_retry_base_delay=0.0,
        request_timeout_seconds=5.0,
        backfill_sample_size=2,
    )


@pytest.fixture
def make_tenant(session_factory):
    def _make(name="Acme Plumbing", domain="acme.example"):
        db = session_factory()
        try:
            tenant = Tenant(name=name, domain=domain)
            db.add(tenant)
            db.commit()
            return tenant.id
        finally:
            db.close()
    return _make


@pytest.fixture
def make_credential(session_factory):
    def _make(
        tenant_id,
        provider=Provider.SEARCH_CONSOLE,
        expires_in=timedelta(hours=1),
        access_token="stored-access",
        refresh_token="stored-refresh",
        invalidated_at=None,
        refresh_token_expires_at=None,
    ):
        db = session_factory()
        try:
            db.add(OAuthCredential(
                tenant_id=tenant_id,
                provider=Provider.parse(provider).value,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=datetime.utcnow() + expires_in,
                scope="https://www.googleapis.com/auth/webmasters.readonly",
                invalidated_at=invalidated_at,
                refresh_token_expires_at=refresh_token_expires_at,
            ))
            db.commit()
        finally:
            db.close()
    return _make


# ---------------------------------------------------------------------------
# Fake Google clients
# ---------------------------------------------------------------------------

class FakeOAuthClient:
    """Token endpoint stand-in; rejects refresh tokens listed in `rejected`"""

    def __init__(self, lifetime=timedelta(hours=1), rotate=False, rejected=()):
        self.lifetime = lifetime
        self.rotate = rotate
        self.rejected = set(rejected)
        self.calls = []

    def refresh(self, refresh_token):
        self.calls.append(refresh_token)
        if refresh_token in self.rejected:
            raise CredentialInvalid("invalid_grant: Token has been expired or revoked.")
        return TokenGrant(
            access_token=f"refreshed-access-{len(self.calls)}",
            expires_at=datetime.utcnow() + self.lifetime,
            refresh_token=f"rotated-refresh-{len(self.calls)}" if self.rotate else None,
        )


class FakeHttpError(Exception):
    def __init__(self, status, message="provider error"):
        super().__init__(f"{status} {message}")
        self.status = status


class FakeReportingClient(ReportingClient):
    """
    ReportingClient whose provider call is a plain function.

    responder(query, start_row, row_limit) returns one page of ReportRows or
    raises.
    """

    def __init__(self, responder=None, candidates=None, retry_attempts=1):
        super().__init__("Fake Provider", timeout=5.0, retry_attempts=retry_attempts, retry_base_delay=0.0)
        self.responder = responder or (lambda query, start_row, row_limit: [])
        self.candidates = [BindingCandidate("sc-domain:acme.example")] if candidates is None else candidates
        self.access_token = None
        self.tokens_used = []
        self.calls = []

    @staticmethod
    def _status_code(error):
        return getattr(error, "status", None)

    def _run_query(self, query, start_row, row_limit):
        self.calls.append((query, start_row, row_limit))
        return self.responder(query, start_row, row_limit)

    def _list_bindings(self):
        return list(self.candidates)


def paged(rows, start_row, row_limit):
    return rows[start_row:start_row + row_limit]


def gsc_row(day, page="https://acme.example/", query="acme plumbing", country="usa", device="DESKTOP",
            clicks=1, impressions=10, ctr=0.1, position=3.0):
    return ReportRow(keys=(day, page, query, country, device), metrics=(clicks, impressions, ctr, position))


def gsc_total(day, clicks=100, impressions=1000, ctr=0.1, position=5.5):
    return ReportRow(keys=(day,), metrics=(clicks, impressions, ctr, position))


def gsc_responder(granular_rows, aggregate_rows):
    """Serve granular rows for multi-dimension queries and totals for date-only ones"""
    def respond(query, start_row, row_limit):
        rows = aggregate_rows if query.dimensions == ("date",) else granular_rows
        in_range = [
            row for row in rows
            if query.start_date.isoformat() <= row.keys[0] <= query.end_date.isoformat()
        ]
        return paged(in_range, start_row, row_limit)
    return respond


def _token_recording_factory(client):
    """Client factory that hands back the same fake, remembering the token it was built with"""
    def factory(provider, access_token):
        client.access_token = access_token
        client.tokens_used.append(access_token)
        return client
    return factory


@pytest.fixture
def build_sync(session_factory, settings):
    """Wire a DualGranularitySync around fake clients"""
    def _build(client, oauth_client=None, **overrides):
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        oauth_client = oauth_client or FakeOAuthClient()
        token_manager = TokenLifecycleManager(
            oauth_client,
            session_factory=session_factory,
            buffer_seconds=run_settings.token_expiry_buffer_seconds,
            timeout=run_settings.request_timeout_seconds,
        )
        return DualGranularitySync(
            token_manager,
            _token_recording_factory(client),
            session_factory=session_factory,
            settings=run_settings,
        )
    return _build
