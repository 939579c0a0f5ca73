"""Database models for the metrics sync engine"""

from metricsync.models.tenant import Tenant

from metricsync.models.credential import (
    Provider,
    OAuthCredential,
    SearchConsoleSite,
    GA4Property
)

from metricsync.models.search_console_data import (
    SearchConsoleFact,
    SearchConsoleDailyTotal
)

from metricsync.models.ga4_data import (
    GA4TrafficFact,
    GA4DailyTotal
)

from metricsync.models.sync_run import SyncRun
