"""
Google Analytics 4 Data Models

Stores traffic by source/medium/device and the date-only property totals.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Numeric, ForeignKey, UniqueConstraint, Index
from datetime import datetime

from metricsync.models.base import Base


class GA4TrafficFact(Base):
    """Daily traffic by source / medium / device category"""
    __tablename__ = "ga4_data"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'date', 'source', 'medium', 'device_category', name='uq_ga4_data_key'),
        Index('ix_ga4_data_tenant_date', 'tenant_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)

    # Dimensions
    date = Column(Date, nullable=False)
    source = Column(String(255), nullable=False, default="(direct)")
    medium = Column(String(100), nullable=False, default="(none)")
    device_category = Column(String(50), nullable=False, default="desktop")

    # Traffic metrics
    sessions = Column(Integer, nullable=False, default=0)
    users = Column(Integer, nullable=False, default=0)
    new_users = Column(Integer, nullable=False, default=0)

    # Engagement metrics
    engagement_rate = Column(Float, nullable=False, default=0)
    average_session_duration = Column(Float, nullable=False, default=0)
    # In seconds

    # Conversion metrics
    conversions = Column(Integer, nullable=False, default=0)
    conversion_rate = Column(Float, nullable=False, default=0)
    revenue = Column(Numeric(12, 2), nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GA4TrafficFact {self.source}/{self.medium} {self.device_category} - {self.date}>"


class GA4DailyTotal(Base):
    """
    Date-only property totals.

    Fetched with the date dimension alone so the numbers line up with the GA4
    reports UI; not derived from GA4TrafficFact.
    """
    __tablename__ = "ga4_data_aggregated"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'property_id', 'date', name='uq_ga4_data_aggregated_key'),
        Index('ix_ga4_data_aggregated_tenant_date', 'tenant_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    property_id = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)

    sessions = Column(Integer, nullable=False, default=0)
    users = Column(Integer, nullable=False, default=0)
    new_users = Column(Integer, nullable=False, default=0)
    engagement_rate = Column(Float, nullable=False, default=0)
    average_session_duration = Column(Float, nullable=False, default=0)
    conversions = Column(Integer, nullable=False, default=0)
    conversion_rate = Column(Float, nullable=False, default=0)
    revenue = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GA4DailyTotal {self.property_id} - {self.date}: {self.sessions} sessions>"
