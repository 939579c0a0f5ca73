"""
Google Search Console Data Models

Two granularities are stored side by side:
- SearchConsoleFact: date x page x query x country x device breakdown
- SearchConsoleDailyTotal: date-only totals, matching the Search Console dashboard

Summing SearchConsoleFact.clicks for a day does not reproduce the daily total;
the provider aggregates multi-dimension and date-only queries differently.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Date, ForeignKey, UniqueConstraint, Index
from datetime import datetime

from metricsync.models.base import Base


class SearchConsoleFact(Base):
    """Fully-dimensioned Search Analytics row"""
    __tablename__ = "gsc_data"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'date', 'page', 'query', 'country', 'device', name='uq_gsc_data_key'),
        Index('ix_gsc_data_tenant_date', 'tenant_id', 'date'),
        Index('ix_gsc_data_tenant_page', 'tenant_id', 'page'),
        Index('ix_gsc_data_tenant_query', 'tenant_id', 'query'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)

    # Dimensions
    date = Column(Date, nullable=False)
    page = Column(String(1000), nullable=False)
    query = Column(String(500), nullable=False)
    country = Column(String(10), nullable=False, default="all")
    # ISO 3166-1 alpha-3, lower case (e.g. usa, vnm)
    device = Column(String(20), nullable=False, default="all")
    # DESKTOP, MOBILE, TABLET

    # Performance metrics
    clicks = Column(Integer, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    ctr = Column(Float, nullable=False, default=0)
    # Decimal 0-1
    position = Column(Float, nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SearchConsoleFact '{self.query}' {self.page} - {self.date}>"


class SearchConsoleDailyTotal(Base):
    """Date-only Search Analytics totals for one site"""
    __tablename__ = "gsc_data_aggregated"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'site_url', 'date', name='uq_gsc_data_aggregated_key'),
        Index('ix_gsc_data_aggregated_tenant_date', 'tenant_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    site_url = Column(String(500), nullable=False)
    date = Column(Date, nullable=False)

    clicks = Column(Integer, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    ctr = Column(Float, nullable=False, default=0)
    position = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SearchConsoleDailyTotal {self.site_url} - {self.date}: {self.clicks} clicks>"
