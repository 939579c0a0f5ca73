"""
Granular vs aggregate totals

Reports, per date, how far the summed granular rows are from the date-only
totals. Neither table is changed; the gap is expected and this only makes it
visible.
"""
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from metricsync.models.base import SessionLocal
from metricsync.models.credential import Provider
from metricsync.services.profiles import get_profile

# Additive metrics compared per provider. GA4 users are distinct counts and do
# not sum across source/medium/device rows.
COMPARED_METRICS = {
    Provider.SEARCH_CONSOLE: ("clicks", "impressions"),
    Provider.ANALYTICS: ("sessions", "conversions"),
}


@dataclass
class TotalsDifference:
    date: date
    metric: str
    granular: float
    aggregate: float

    @property
    def difference(self) -> float:
        return self.aggregate - self.granular

    @property
    def percent(self) -> float:
        """Share of the aggregate missing from the granular sum"""
        if not self.aggregate:
            return 0.0
        return round(self.difference / self.aggregate * 100, 2)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "metric": self.metric,
            "granular": self.granular,
            "aggregate": self.aggregate,
            "difference": self.difference,
            "percent": self.percent,
        }


def _sum_by_date(db: Session, model, tenant_id: int, metrics, start: date, end: date) -> Dict[date, Tuple]:
    rows = db.query(
        model.date,
        *[func.coalesce(func.sum(getattr(model, metric)), 0) for metric in metrics]
    ).filter(
        model.tenant_id == tenant_id,
        model.date >= start,
        model.date <= end
    ).group_by(model.date).all()
    return {row[0]: tuple(row[1:]) for row in rows}


def compare_totals(
    tenant_id: int,
    provider,
    start: date,
    end: date,
    session_factory: Callable[[], Session] = SessionLocal
) -> List[TotalsDifference]:
    """Per-date, per-metric granular sum vs stored aggregate"""
    provider = Provider.parse(provider)
    profile = get_profile(provider)
    metrics = COMPARED_METRICS[provider]

    db = session_factory()
    try:
        granular = _sum_by_date(db, profile.granular.model, tenant_id, metrics, start, end)
        aggregate = _sum_by_date(db, profile.aggregate.model, tenant_id, metrics, start, end)
    finally:
        db.close()

    differences = []
    for day in sorted(set(granular) | set(aggregate)):
        granular_values = granular.get(day, (0,) * len(metrics))
        aggregate_values = aggregate.get(day, (0,) * len(metrics))
        for index, metric in enumerate(metrics):
            differences.append(TotalsDifference(
                date=day,
                metric=metric,
                granular=float(granular_values[index]),
                aggregate=float(aggregate_values[index]),
            ))
    return differences


def summarize(differences: List[TotalsDifference]) -> Dict[str, dict]:
    """Range totals per metric"""
    summary: Dict[str, dict] = {}
    for item in differences:
        entry = summary.setdefault(item.metric, {"granular": 0.0, "aggregate": 0.0})
        entry["granular"] += item.granular
        entry["aggregate"] += item.aggregate
    for entry in summary.values():
        entry["difference"] = entry["aggregate"] - entry["granular"]
        entry["percent"] = round(entry["difference"] / entry["aggregate"] * 100, 2) if entry["aggregate"] else 0.0
    return summary
