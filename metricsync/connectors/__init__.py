"""Provider clients for Search Console and GA4"""

from metricsync.connectors.base_connector import ReportingClient
from metricsync.connectors.search_console import SearchConsoleClient
from metricsync.connectors.ga4 import GA4Client
from metricsync.connectors.oauth import GoogleOAuthClient
from metricsync.connectors.types import BindingCandidate, ReportQuery, ReportRow, TokenGrant
from metricsync.models.credential import Provider


def build_reporting_client(provider, access_token: str, settings) -> ReportingClient:
    """Create the reporting client for a provider, configured from settings."""
    options = dict(
        timeout=settings.request_timeout_seconds,
        retry_attempts=settings.provider_retry_attempts,
        retry_base_delay=settings.provider_retry_base_delay,
    )
    if Provider.parse(provider) is Provider.SEARCH_CONSOLE:
        return SearchConsoleClient(access_token, search_type=settings.gsc_search_type, **options)
    return GA4Client(access_token, **options)


__all__ = [
    "ReportingClient",
    "SearchConsoleClient",
    "GA4Client",
    "GoogleOAuthClient",
    "BindingCandidate",
    "ReportQuery",
    "ReportRow",
    "TokenGrant",
    "build_reporting_client",
]
