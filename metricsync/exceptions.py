"""
Error taxonomy for the sync engine.

Everything except ConfigurationError is caught at the tenant-run boundary and
converted into a per-tenant result record.
"""
from typing import Optional


class MetricSyncError(Exception):
    """Base class for sync engine errors"""


class ConfigurationError(MetricSyncError):
    """The client application itself is misconfigured (fatal at startup)"""


class CredentialInvalid(MetricSyncError):
    """The provider rejected the refresh token; the tenant must re-authorize"""

    def __init__(self, message: str, tenant_id: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.provider = provider


class BindingNotFound(MetricSyncError):
    """No site or property could be discovered for the tenant"""


class TransientFetchError(MetricSyncError):
    """Network failure, timeout, rate limit or 5xx from the provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaginationSafetyLimitExceeded(MetricSyncError):
    """Pagination stopped at the page cap while pages were still full"""

    def __init__(self, pages: int, rows: int):
        super().__init__(f"Pagination safety limit reached after {pages} pages ({rows} rows)")
        self.pages = pages
        self.rows = rows


class WriteBatchError(MetricSyncError):
    """A single upsert batch failed and was rolled back"""

    def __init__(self, message: str, batch_index: int, first_key=None, last_key=None):
        super().__init__(message)
        self.batch_index = batch_index
        self.first_key = first_key
        self.last_key = last_key
