"""
Google Search Console reporting client
Runs Search Analytics queries on behalf of a tenant's OAuth access token
"""
from typing import List, Optional

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from metricsync.connectors.base_connector import ReportingClient
from metricsync.connectors.types import BindingCandidate, ReportQuery, ReportRow

SEARCH_ANALYTICS_METRICS = ("clicks", "impressions", "ctr", "position")


class SearchConsoleClient(ReportingClient):
    """Client for the Search Console API (searchconsole v1)"""

    def __init__(self, access_token: str, search_type: str = "web", **kwargs):
        super().__init__("Google Search Console", **kwargs)
        self.access_token = access_token
        self.search_type = search_type
        self._service = None

    @property
    def service(self):
        if self._service is None:
            http = AuthorizedHttp(
                Credentials(token=self.access_token),
                http=httplib2.Http(timeout=self.timeout)
            )
            self._service = build('searchconsole', 'v1', http=http, cache_discovery=False)
        return self._service

    @staticmethod
    def _status_code(error: Exception) -> Optional[int]:
        if isinstance(error, HttpError):
            return error.resp.status
        return None

    def _run_query(self, query: ReportQuery, start_row: int, row_limit: int) -> List[ReportRow]:
        body = {
            'startDate': query.start_date.isoformat(),
            'endDate': query.end_date.isoformat(),
            'dimensions': list(query.dimensions),
            'type': self.search_type,
            'rowLimit': row_limit,
            'startRow': start_row
        }
        response = self.service.searchanalytics().query(
            siteUrl=query.binding_id,
            body=body
        ).execute()

        return [
            ReportRow(
                keys=tuple(row.get('keys', [])),
                metrics=tuple(float(row.get(name, 0) or 0) for name in SEARCH_ANALYTICS_METRICS)
            )
            for row in response.get('rows', [])
        ]

    def _list_bindings(self) -> List[BindingCandidate]:
        response = self.service.sites().list().execute()
        return [
            BindingCandidate(
                identifier=entry['siteUrl'],
                permission_level=entry.get('permissionLevel')
            )
            for entry in response.get('siteEntry', [])
            if entry.get('permissionLevel') != 'siteUnverifiedUser'
        ]

    async def list_sites(self) -> List[BindingCandidate]:
        """Verified sites for the connected account"""
        return await self.list_bindings()
