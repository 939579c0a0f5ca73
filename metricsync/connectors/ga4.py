"""
Google Analytics 4 reporting client

Reports go through the Data API; property discovery goes through the Admin
API's account summaries.
"""
from typing import List, Optional

import httplib2
from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Dimension,
    Metric,
    RunReportRequest,
)
from google.api_core.exceptions import GoogleAPICallError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from metricsync.connectors.base_connector import ReportingClient
from metricsync.connectors.types import BindingCandidate, ReportQuery, ReportRow


def property_resource(property_id: str) -> str:
    """'123' or 'properties/123' -> 'properties/123'"""
    property_id = str(property_id)
    if property_id.startswith("properties/"):
        return property_id
    return f"properties/{property_id}"


class GA4Client(ReportingClient):
    """Client for the GA4 Data API (v1beta)"""

    def __init__(self, access_token: str, **kwargs):
        super().__init__("Google Analytics 4", **kwargs)
        self.access_token = access_token
        self._client = None
        self._admin = None

    @property
    def client(self) -> BetaAnalyticsDataClient:
        if self._client is None:
            self._client = BetaAnalyticsDataClient(credentials=Credentials(token=self.access_token))
        return self._client

    @property
    def admin(self):
        if self._admin is None:
            http = AuthorizedHttp(
                Credentials(token=self.access_token),
                http=httplib2.Http(timeout=self.timeout)
            )
            self._admin = build('analyticsadmin', 'v1beta', http=http, cache_discovery=False)
        return self._admin

    @staticmethod
    def _status_code(error: Exception) -> Optional[int]:
        if isinstance(error, GoogleAPICallError):
            code = error.code
            return int(code) if isinstance(code, int) else None
        if isinstance(error, HttpError):
            return error.resp.status
        return None

    def _run_query(self, query: ReportQuery, start_row: int, row_limit: int) -> List[ReportRow]:
        request = RunReportRequest(
            property=property_resource(query.binding_id),
            date_ranges=[DateRange(
                start_date=query.start_date.isoformat(),
                end_date=query.end_date.isoformat()
            )],
            dimensions=[Dimension(name=name) for name in query.dimensions],
            metrics=[Metric(name=name) for name in query.metrics],
            offset=start_row,
            limit=row_limit,
        )
        response = self.client.run_report(request, timeout=self.timeout)

        rows = []
        for row in response.rows:
            rows.append(ReportRow(
                keys=tuple(value.value for value in row.dimension_values),
                metrics=tuple(_to_float(value.value) for value in row.metric_values)
            ))
        return rows

    def _list_bindings(self) -> List[BindingCandidate]:
        candidates = []
        page_token = None
        while True:
            response = self.admin.accountSummaries().list(
                pageSize=200,
                pageToken=page_token
            ).execute()

            for account in response.get('accountSummaries', []):
                for summary in account.get('propertySummaries', []):
                    candidates.append(BindingCandidate(
                        identifier=summary['property'].split('/')[-1],
                        name=summary.get('displayName')
                    ))

            page_token = response.get('nextPageToken')
            if not page_token:
                break
        return candidates

    async def list_properties(self) -> List[BindingCandidate]:
        """GA4 properties across every account the user can read"""
        return await self.list_bindings()


def _to_float(value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
