"""
Base class for provider reporting clients
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import asyncio

from metricsync.connectors.types import BindingCandidate, ReportQuery, ReportRow
from metricsync.exceptions import CredentialInvalid, TransientFetchError
from metricsync.utils.logger import log
from metricsync.utils.retry import is_retryable_error, calculate_backoff


class ReportingClient(ABC):
    """
    Common interface for Search Console and GA4.

    Subclasses implement the blocking provider calls; this class runs them in
    a worker thread with a timeout, retries transient failures a bounded number
    of times and maps provider errors onto the engine's error types.
    """

    # Retry configuration (can be overridden per instance)
    RETRY_MAX_ATTEMPTS = 2
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    def __init__(
        self,
        name: str,
        timeout: float = 60.0,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None
    ):
        self.name = name
        self.timeout = timeout
        if retry_attempts is not None:
            self.RETRY_MAX_ATTEMPTS = max(1, retry_attempts)
        if retry_base_delay is not None:
            self.RETRY_BASE_DELAY = retry_base_delay
        self.request_count = 0
        self.retry_count = 0

    @abstractmethod
    def _run_query(self, query: ReportQuery, start_row: int, row_limit: int) -> List[ReportRow]:
        """Blocking provider call returning one page of rows"""
        pass

    @abstractmethod
    def _list_bindings(self) -> List[BindingCandidate]:
        """Blocking provider call listing accessible sites or properties"""
        pass

    @staticmethod
    def _status_code(error: Exception) -> Optional[int]:
        """HTTP status carried by a provider exception, if any"""
        return None

    async def query(self, query: ReportQuery, start_row: int, row_limit: int) -> List[ReportRow]:
        """Fetch one page of a report"""
        return await self._call(
            lambda: self._run_query(query, start_row, row_limit),
            operation_name=f"query {query.describe()} @{start_row}"
        )

    async def list_bindings(self) -> List[BindingCandidate]:
        """List sites/properties the connected account can read"""
        return await self._call(self._list_bindings, operation_name="list_bindings")

    async def _call(self, operation: Callable[[], Any], operation_name: str = "operation") -> Any:
        """
        Execute a blocking operation with timeout and retry.

        Args:
            operation: Blocking callable to execute in a worker thread
            operation_name: Name for logging

        Returns:
            Result of the operation

        Raises:
            CredentialInvalid: provider answered 401 or 403
            TransientFetchError: timeout, network failure, 429 or 5xx after retries
        """
        for attempt in range(1, self.RETRY_MAX_ATTEMPTS + 1):
            self.request_count += 1
            try:
                return await asyncio.wait_for(asyncio.to_thread(operation), timeout=self.timeout)

            except asyncio.TimeoutError as e:
                error: Exception = e
                status_code = None
                message = f"{self.name} {operation_name} timed out after {self.timeout:.0f}s"

            except Exception as e:
                error = e
                status_code = self._status_code(e)
                if status_code in (401, 403):
                    raise CredentialInvalid(f"{self.name} rejected the access token: {e}") from e
                if not is_retryable_error(e, status_code=status_code):
                    raise
                message = f"{self.name} {operation_name} failed: {e}"

            if attempt >= self.RETRY_MAX_ATTEMPTS:
                raise TransientFetchError(message, status_code=status_code) from error

            delay = calculate_backoff(
                attempt,
                base_delay=self.RETRY_BASE_DELAY,
                max_delay=self.RETRY_MAX_DELAY
            )
            self.retry_count += 1
            log.warning(f"{message} (attempt {attempt}). Retrying in {delay:.1f}s...")
            await asyncio.sleep(delay)

        raise RuntimeError("Retry exhausted")

    def get_status(self) -> Dict[str, Any]:
        """Get client call statistics"""
        return {
            "name": self.name,
            "request_count": self.request_count,
            "retry_count": self.retry_count,
            "retry_config": {
                "max_attempts": self.RETRY_MAX_ATTEMPTS,
                "base_delay": self.RETRY_BASE_DELAY,
                "max_delay": self.RETRY_MAX_DELAY,
                "timeout": self.timeout
            }
        }
