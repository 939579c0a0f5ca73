"""
Wire-format structures shared by the provider clients.

Provider responses are converted into these once, inside the client, so no
raw API dicts travel further into the engine.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

# Value used for any dimension the provider leaves out of a row
MISSING_DIMENSION = "all"


@dataclass(frozen=True)
class ReportQuery:
    """One report request, minus pagination"""
    binding_id: str  # site URL or GA4 property id
    start_date: date
    end_date: date
    dimensions: Tuple[str, ...]
    metrics: Tuple[str, ...] = ()

    def describe(self) -> str:
        return f"{self.binding_id} {self.start_date}..{self.end_date} [{','.join(self.dimensions)}]"


@dataclass(frozen=True)
class ReportRow:
    """Ordered dimension keys plus ordered metric values, as the provider returns them"""
    keys: Tuple[str, ...]
    metrics: Tuple[float, ...]

    def dimension_map(self, dimensions: Sequence[str]) -> Dict[str, str]:
        """Zip requested dimensions against the key array positionally."""
        mapped = {}
        for index, name in enumerate(dimensions):
            value = self.keys[index] if index < len(self.keys) else None
            mapped[name] = value if value else MISSING_DIMENSION
        return mapped

    def metric_map(self, metrics: Sequence[str]) -> Dict[str, float]:
        return {
            name: (self.metrics[index] if index < len(self.metrics) else 0)
            for index, name in enumerate(metrics)
        }


@dataclass(frozen=True)
class BindingCandidate:
    """A site or property the connected account can read"""
    identifier: str
    name: Optional[str] = None
    permission_level: Optional[str] = None


@dataclass
class TokenGrant:
    """Result of an authorization-code or refresh-token exchange"""
    access_token: str
    expires_at: datetime  # naive UTC
    refresh_token: Optional[str] = None  # only set when the provider issued one
    token_type: str = "Bearer"
    scope: str = ""
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def scopes(self) -> List[str]:
        return self.scope.split() if self.scope else []
