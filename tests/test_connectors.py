"""
Provider clients: error mapping, retries and timeouts in the shared base, and
response parsing for Search Console, GA4 and the token endpoint.
"""
import time
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest
from google.auth.exceptions import RefreshError, TransportError

from conftest import FakeHttpError, FakeReportingClient, _run
from metricsync.config import Settings
from metricsync.connectors import GA4Client, GoogleOAuthClient, SearchConsoleClient, build_reporting_client
from metricsync.connectors import oauth as oauth_module
from metricsync.connectors.ga4 import property_resource
from metricsync.connectors.types import ReportQuery, ReportRow
from metricsync.exceptions import ConfigurationError, CredentialInvalid, TransientFetchError

QUERY = ReportQuery(
    binding_id="sc-domain:acme.example",
    start_date=date(2024, 6, 10),
    end_date=date(2024, 6, 10),
    dimensions=("date", "page"),
)


def _failing(*errors, then=None):
    """Responder raising the given errors in order, then returning `then`"""
    remaining = list(errors)

    def respond(query, start_row, row_limit):
        if remaining:
            raise remaining.pop(0)
        return then or []
    return respond


# ────────────────────────────────────────────
# SHARED CALL WRAPPER
# ────────────────────────────────────────────


class TestReportingClientCall:

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors_map_to_credential_invalid(self, status):
        client = FakeReportingClient(_failing(FakeHttpError(status)), retry_attempts=3)
        with pytest.raises(CredentialInvalid):
            _run(client.query(QUERY, 0, 10))
        assert client.request_count == 1

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_errors_exhaust_retries(self, status):
        client = FakeReportingClient(_failing(*[FakeHttpError(status)] * 3), retry_attempts=2)
        with pytest.raises(TransientFetchError) as exc_info:
            _run(client.query(QUERY, 0, 10))
        assert exc_info.value.status_code == status
        assert client.request_count == 2
        assert client.retry_count == 1

    def test_transient_error_then_success(self):
        row = ReportRow(keys=("2024-06-10", "/"), metrics=(1, 2, 0.5, 1))
        client = FakeReportingClient(_failing(FakeHttpError(503), then=[row]), retry_attempts=2)
        assert _run(client.query(QUERY, 0, 10)) == [row]

    def test_other_errors_propagate_unchanged(self):
        client = FakeReportingClient(_failing(FakeHttpError(400, "Bad Request")), retry_attempts=3)
        with pytest.raises(FakeHttpError):
            _run(client.query(QUERY, 0, 10))
        assert client.request_count == 1

    def test_network_error_is_transient(self):
        client = FakeReportingClient(_failing(ConnectionError("connection reset")), retry_attempts=1)
        with pytest.raises(TransientFetchError):
            _run(client.query(QUERY, 0, 10))

    def test_slow_call_times_out(self):
        def respond(query, start_row, row_limit):
            time.sleep(0.3)
            return []

        client = FakeReportingClient(respond, retry_attempts=1)
        client.timeout = 0.05
        with pytest.raises(TransientFetchError) as exc_info:
            _run(client.query(QUERY, 0, 10))
        assert "timed out" in str(exc_info.value)

    def test_status_counts(self):
        client = FakeReportingClient()
        _run(client.query(QUERY, 0, 10))
        status = client.get_status()
        assert status["request_count"] == 1
        assert status["retry_config"]["max_attempts"] == 1


# ────────────────────────────────────────────
# SEARCH CONSOLE
# ────────────────────────────────────────────


class FakeSearchConsoleService:
    def __init__(self, response=None, sites=None):
        self.response = response or {}
        self.sites_response = sites or {}
        self.requests = []

    def searchanalytics(self):
        return self

    def sites(self):
        return self

    def query(self, siteUrl, body):
        self.requests.append((siteUrl, body))
        return SimpleNamespace(execute=lambda: self.response)

    def list(self):
        return SimpleNamespace(execute=lambda: self.sites_response)


class TestSearchConsoleClient:

    def test_query_body_and_rows(self):
        service = FakeSearchConsoleService({"rows": [
            {"keys": ["2024-06-10", "https://acme.example/"], "clicks": 3, "impressions": 40,
             "ctr": 0.075, "position": 2.5},
            {"keys": ["2024-06-10", "https://acme.example/blog"], "impressions": 5},
        ]})
        client = SearchConsoleClient("token", search_type="web", retry_attempts=1)
        client._service = service

        rows = _run(client.query(QUERY, 25000, 25000))

        site_url, body = service.requests[0]
        assert site_url == "sc-domain:acme.example"
        assert body == {
            "startDate": "2024-06-10",
            "endDate": "2024-06-10",
            "dimensions": ["date", "page"],
            "type": "web",
            "rowLimit": 25000,
            "startRow": 25000,
        }
        assert rows[0] == ReportRow(keys=("2024-06-10", "https://acme.example/"), metrics=(3.0, 40.0, 0.075, 2.5))
        assert rows[1].metrics == (0.0, 5.0, 0.0, 0.0)

    def test_empty_response(self):
        client = SearchConsoleClient("token")
        client._service = FakeSearchConsoleService({})
        assert _run(client.query(QUERY, 0, 10)) == []

    def test_unverified_sites_excluded(self):
        client = SearchConsoleClient("token")
        client._service = FakeSearchConsoleService(sites={"siteEntry": [
            {"siteUrl": "https://acme.example/", "permissionLevel": "siteOwner"},
            {"siteUrl": "sc-domain:other.example", "permissionLevel": "siteUnverifiedUser"},
        ]})

        sites = _run(client.list_sites())

        assert [site.identifier for site in sites] == ["https://acme.example/"]
        assert sites[0].permission_level == "siteOwner"


# ────────────────────────────────────────────
# GA4
# ────────────────────────────────────────────


def _value(value):
    return SimpleNamespace(value=value)


class FakeDataClient:
    def __init__(self, rows):
        self.rows = rows
        self.requests = []

    def run_report(self, request, timeout=None):
        self.requests.append(request)
        return SimpleNamespace(rows=self.rows)


class FakeAdmin:
    def __init__(self, pages):
        self.pages = list(pages)
        self.tokens = []

    def accountSummaries(self):
        return self

    def list(self, pageSize, pageToken):
        self.tokens.append(pageToken)
        page = self.pages.pop(0)
        return SimpleNamespace(execute=lambda: page)


class TestGA4Client:

    def test_property_resource(self):
        assert property_resource("123") == "properties/123"
        assert property_resource("properties/123") == "properties/123"

    def test_run_report_request_and_rows(self):
        data_client = FakeDataClient([SimpleNamespace(
            dimension_values=[_value("20240610"), _value("google")],
            metric_values=[_value("12"), _value("0.5"), _value("")],
        )])
        client = GA4Client("token", retry_attempts=1)
        client._client = data_client
        query = ReportQuery("123456789", date(2024, 6, 1), date(2024, 6, 7), ("date", "sessionSource"),
                            ("sessions", "engagementRate", "totalRevenue"))

        rows = _run(client.query(query, 10000, 10000))

        request = data_client.requests[0]
        assert request.property == "properties/123456789"
        assert request.offset == 10000
        assert request.limit == 10000
        assert [d.name for d in request.dimensions] == ["date", "sessionSource"]
        assert request.date_ranges[0].start_date == "2024-06-01"
        assert rows == [ReportRow(keys=("20240610", "google"), metrics=(12.0, 0.5, 0.0))]

    def test_properties_across_account_pages(self):
        client = GA4Client("token")
        client._admin = FakeAdmin([
            {"accountSummaries": [{"propertySummaries": [
                {"property": "properties/111", "displayName": "Main"},
            ]}], "nextPageToken": "next"},
            {"accountSummaries": [{"propertySummaries": [
                {"property": "properties/222", "displayName": "Blog"},
            ]}]},
        ])

        properties = _run(client.list_properties())

        assert [(p.identifier, p.name) for p in properties] == [("111", "Main"), ("222", "Blog")]
        assert client._admin.tokens == [None, "next"]

    def test_grpc_status_mapping(self):
        from google.api_core.exceptions import PermissionDenied, ServiceUnavailable

        assert GA4Client._status_code(PermissionDenied("no access")) == 403
        assert GA4Client._status_code(ServiceUnavailable("down")) == 503
        assert GA4Client._status_code(ValueError("x")) is None


def test_build_reporting_client(settings):
    gsc = build_reporting_client("gsc", "token", settings)
    ga4 = build_reporting_client("google_analytics", "token", settings)

    assert isinstance(gsc, SearchConsoleClient)
    assert gsc.search_type == "web"
    assert isinstance(ga4, GA4Client)
    assert ga4.RETRY_MAX_ATTEMPTS == settings.provider_retry_attempts
    assert ga4.timeout == settings.request_timeout_seconds


# ────────────────────────────────────────────
# TOKEN ENDPOINT
# ────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload or {}
        self.text = str(self.payload)

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")


def _oauth_client():
    return GoogleOAuthClient("client-id", "client-secret", redirect_uri="https://app.example/callback")


class TestGoogleOAuthClient:

    def test_refresh_keeps_refresh_token_when_not_rotated(self, monkeypatch):
        expiry = datetime.utcnow() + timedelta(hours=1)

        def fake_refresh(credentials, request):
            credentials.token = "new-access"
            credentials.expiry = expiry

        monkeypatch.setattr(oauth_module.Credentials, "refresh", fake_refresh)

        grant = _oauth_client().refresh("stored-refresh")

        assert grant.access_token == "new-access"
        assert grant.expires_at == expiry
        assert grant.refresh_token is None

    def test_refresh_rejected(self, monkeypatch):
        def fake_refresh(credentials, request):
            raise RefreshError("invalid_grant: Token has been expired or revoked.")

        monkeypatch.setattr(oauth_module.Credentials, "refresh", fake_refresh)
        with pytest.raises(CredentialInvalid):
            _oauth_client().refresh("revoked")

    def test_refresh_network_failure(self, monkeypatch):
        def fake_refresh(credentials, request):
            raise TransportError("connection reset")

        monkeypatch.setattr(oauth_module.Credentials, "refresh", fake_refresh)
        with pytest.raises(TransientFetchError):
            _oauth_client().refresh("stored-refresh")

    def test_exchange_code(self, monkeypatch):
        posted = {}

        def fake_post(url, data, timeout):
            posted.update(data)
            return FakeResponse(200, {
                "access_token": "first-access",
                "refresh_token": "first-refresh",
                "expires_in": 3599,
                "scope": "https://www.googleapis.com/auth/webmasters.readonly",
                "token_type": "Bearer",
            })

        monkeypatch.setattr(oauth_module.requests, "post", fake_post)

        before = datetime.utcnow()
        grant = _oauth_client().exchange_code("auth-code")

        assert posted["grant_type"] == "authorization_code"
        assert posted["redirect_uri"] == "https://app.example/callback"
        assert grant.refresh_token == "first-refresh"
        assert grant.scopes == ["https://www.googleapis.com/auth/webmasters.readonly"]
        assert before + timedelta(seconds=3590) < grant.expires_at <= datetime.utcnow() + timedelta(seconds=3599)

    @pytest.mark.parametrize("status,error", [
        (400, CredentialInvalid),
        (401, CredentialInvalid),
        (429, TransientFetchError),
        (503, TransientFetchError),
    ])
    def test_exchange_code_errors(self, monkeypatch, status, error):
        monkeypatch.setattr(oauth_module.requests, "post", lambda url, data, timeout: FakeResponse(status))
        with pytest.raises(error):
            _oauth_client().exchange_code("auth-code")


# ────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────


def test_missing_oauth_client_is_fatal():
    settings = Settings(google_client_id="", google_client_secret="secret")
    with pytest.raises(ConfigurationError) as exc_info:
        settings.require_oauth_client()
    assert "GOOGLE_CLIENT_ID" in str(exc_info.value)


def test_configured_oauth_client_passes(settings):
    settings.require_oauth_client()
