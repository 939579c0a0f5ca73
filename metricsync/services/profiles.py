"""
Provider profiles

Everything that differs between Search Console and GA4 in a sync run: the
dimensions of each pass, the metric list, the target tables and their keys,
and how a wire row becomes a typed domain row.
"""
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Tuple

from metricsync.connectors.types import ReportRow
from metricsync.models.credential import Provider
from metricsync.models.ga4_data import GA4DailyTotal, GA4TrafficFact
from metricsync.models.search_console_data import SearchConsoleDailyTotal, SearchConsoleFact


def parse_report_date(value: str) -> date:
    """Search Console sends YYYY-MM-DD, GA4 sends YYYYMMDD"""
    if len(value) == 8 and value.isdigit():
        return datetime.strptime(value, "%Y%m%d").date()
    return date.fromisoformat(value)


# ── Search Console ───────────────────────────────────

GSC_GRANULAR_DIMENSIONS = ("date", "page", "query", "country", "device")
GSC_AGGREGATE_DIMENSIONS = ("date",)
GSC_METRIC_COLUMNS = ("clicks", "impressions", "ctr", "position")


@dataclass(frozen=True)
class SearchMetrics:
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0  # 0-1
    position: float = 0.0

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "SearchMetrics":
        clicks, impressions, ctr, position = (tuple(row.metrics) + (0, 0, 0, 0))[:4]
        return cls(
            clicks=int(clicks),
            impressions=int(impressions),
            ctr=round(float(ctr), 6),
            position=round(float(position), 2),
        )


@dataclass(frozen=True)
class SearchMetricsRow:
    """One date x page x query x country x device row"""
    date: date
    page: str
    query: str
    country: str
    device: str
    metrics: SearchMetrics

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "SearchMetricsRow":
        keys = row.dimension_map(GSC_GRANULAR_DIMENSIONS)
        return cls(
            date=parse_report_date(keys["date"]),
            page=keys["page"],
            query=keys["query"],
            country=keys["country"],
            device=keys["device"],
            metrics=SearchMetrics.from_report_row(row),
        )

    def to_record(self, tenant_id: int, binding_id: str) -> Dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "date": self.date,
            "page": self.page,
            "query": self.query,
            "country": self.country,
            "device": self.device,
            **asdict(self.metrics),
        }


@dataclass(frozen=True)
class SearchMetricsTotal:
    """Date-only Search Console totals"""
    date: date
    metrics: SearchMetrics

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "SearchMetricsTotal":
        keys = row.dimension_map(GSC_AGGREGATE_DIMENSIONS)
        return cls(date=parse_report_date(keys["date"]), metrics=SearchMetrics.from_report_row(row))

    def to_record(self, tenant_id: int, binding_id: str) -> Dict[str, Any]:
        return {"tenant_id": tenant_id, "site_url": binding_id, "date": self.date, **asdict(self.metrics)}


# ── GA4 ──────────────────────────────────────────────

GA4_GRANULAR_DIMENSIONS = ("date", "sessionSource", "sessionMedium", "deviceCategory")
GA4_AGGREGATE_DIMENSIONS = ("date",)
GA4_METRICS = (
    "sessions",
    "totalUsers",
    "newUsers",
    "engagementRate",
    "averageSessionDuration",
    "conversions",
    "totalRevenue",
)
GA4_METRIC_COLUMNS = (
    "sessions",
    "users",
    "new_users",
    "engagement_rate",
    "average_session_duration",
    "conversions",
    "conversion_rate",
    "revenue",
)

# GA4 returns "(not set)" or nothing for these on some rows
GA4_DEFAULT_SOURCE = "(direct)"
GA4_DEFAULT_MEDIUM = "(none)"
GA4_DEFAULT_DEVICE = "desktop"


@dataclass(frozen=True)
class TrafficMetrics:
    sessions: int = 0
    users: int = 0
    new_users: int = 0
    engagement_rate: float = 0.0
    average_session_duration: float = 0.0  # seconds
    conversions: int = 0
    conversion_rate: float = 0.0
    revenue: Decimal = Decimal("0.00")

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "TrafficMetrics":
        values = row.metric_map(GA4_METRICS)
        sessions = int(values["sessions"])
        conversions = int(values["conversions"])
        return cls(
            sessions=sessions,
            users=int(values["totalUsers"]),
            new_users=int(values["newUsers"]),
            engagement_rate=round(float(values["engagementRate"]), 6),
            average_session_duration=round(float(values["averageSessionDuration"]), 2),
            conversions=conversions,
            conversion_rate=round(conversions / sessions, 6) if sessions > 0 else 0.0,
            revenue=Decimal(str(values["totalRevenue"])).quantize(Decimal("0.01")),
        )


def _or_default(value: str, default: str) -> str:
    if not value or value in ("all", "(not set)"):
        return default
    return value


@dataclass(frozen=True)
class TrafficRow:
    """One date x source x medium x device category row"""
    date: date
    source: str
    medium: str
    device_category: str
    metrics: TrafficMetrics

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "TrafficRow":
        keys = row.dimension_map(GA4_GRANULAR_DIMENSIONS)
        return cls(
            date=parse_report_date(keys["date"]),
            source=_or_default(keys["sessionSource"], GA4_DEFAULT_SOURCE),
            medium=_or_default(keys["sessionMedium"], GA4_DEFAULT_MEDIUM),
            device_category=_or_default(keys["deviceCategory"], GA4_DEFAULT_DEVICE),
            metrics=TrafficMetrics.from_report_row(row),
        )

    def to_record(self, tenant_id: int, binding_id: str) -> Dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "date": self.date,
            "source": self.source,
            "medium": self.medium,
            "device_category": self.device_category,
            **asdict(self.metrics),
        }


@dataclass(frozen=True)
class TrafficTotal:
    """Date-only GA4 property totals"""
    date: date
    metrics: TrafficMetrics

    @classmethod
    def from_report_row(cls, row: ReportRow) -> "TrafficTotal":
        keys = row.dimension_map(GA4_AGGREGATE_DIMENSIONS)
        return cls(date=parse_report_date(keys["date"]), metrics=TrafficMetrics.from_report_row(row))

    def to_record(self, tenant_id: int, binding_id: str) -> Dict[str, Any]:
        return {"tenant_id": tenant_id, "property_id": binding_id, "date": self.date, **asdict(self.metrics)}


# ── Profiles ─────────────────────────────────────────

@dataclass(frozen=True)
class Granularity:
    """One pass of a sync run: what to ask for and where it lands"""
    name: str  # granular | aggregate
    dimensions: Tuple[str, ...]
    model: Any
    key_columns: Tuple[str, ...]
    parse: Callable[[ReportRow], Any]


@dataclass(frozen=True)
class ProviderProfile:
    provider: Provider
    metrics: Tuple[str, ...]  # requested metric names (empty: provider returns a fixed set)
    metric_columns: Tuple[str, ...]
    granular: Granularity
    aggregate: Granularity
    page_size_setting: str

    def page_size(self, settings) -> int:
        return getattr(settings, self.page_size_setting)


SEARCH_CONSOLE_PROFILE = ProviderProfile(
    provider=Provider.SEARCH_CONSOLE,
    metrics=(),
    metric_columns=GSC_METRIC_COLUMNS,
    granular=Granularity(
        name="granular",
        dimensions=GSC_GRANULAR_DIMENSIONS,
        model=SearchConsoleFact,
        key_columns=("tenant_id", "date", "page", "query", "country", "device"),
        parse=SearchMetricsRow.from_report_row,
    ),
    aggregate=Granularity(
        name="aggregate",
        dimensions=GSC_AGGREGATE_DIMENSIONS,
        model=SearchConsoleDailyTotal,
        key_columns=("tenant_id", "site_url", "date"),
        parse=SearchMetricsTotal.from_report_row,
    ),
    page_size_setting="gsc_page_size",
)

ANALYTICS_PROFILE = ProviderProfile(
    provider=Provider.ANALYTICS,
    metrics=GA4_METRICS,
    metric_columns=GA4_METRIC_COLUMNS,
    granular=Granularity(
        name="granular",
        dimensions=GA4_GRANULAR_DIMENSIONS,
        model=GA4TrafficFact,
        key_columns=("tenant_id", "date", "source", "medium", "device_category"),
        parse=TrafficRow.from_report_row,
    ),
    aggregate=Granularity(
        name="aggregate",
        dimensions=GA4_AGGREGATE_DIMENSIONS,
        model=GA4DailyTotal,
        key_columns=("tenant_id", "property_id", "date"),
        parse=TrafficTotal.from_report_row,
    ),
    page_size_setting="ga4_page_size",
)

PROFILES = {
    Provider.SEARCH_CONSOLE: SEARCH_CONSOLE_PROFILE,
    Provider.ANALYTICS: ANALYTICS_PROFILE,
}


def get_profile(provider) -> ProviderProfile:
    return PROFILES[Provider.parse(provider)]
