"""
Sync run history

One row per tenant-run so "this tenant had 0 rows synced, see reason" is
answerable after the fact.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Boolean, Text, ForeignKey, Index
from datetime import datetime

from metricsync.models.base import Base


class SyncRun(Base):
    """Outcome of one DualGranularitySync run for a tenant and provider"""
    __tablename__ = "sync_runs"
    __table_args__ = (
        Index('ix_sync_runs_tenant_provider', 'tenant_id', 'provider'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(50), nullable=False)
    run_type = Column(String(20), nullable=False)  # daily, backfill, manual

    # Requested range
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    dry_run = Column(Boolean, default=False, nullable=False)

    # Outcome
    status = Column(String(20), nullable=False, index=True)  # success, partial, failed, skipped
    state = Column(String(30), nullable=False)  # terminal state of the run
    skip_reason = Column(String(50), nullable=True)
    binding = Column(String(500), nullable=True)  # site URL or property id

    # Counts
    granular_rows_fetched = Column(Integer, default=0)
    granular_rows_written = Column(Integer, default=0)
    aggregate_rows_fetched = Column(Integer, default=0)
    aggregate_rows_written = Column(Integer, default=0)
    chunks_failed = Column(Integer, default=0)
    chunks_truncated = Column(Integer, default=0)

    # Error tracking
    last_error = Column(Text, nullable=True)

    # Timing
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SyncRun tenant={self.tenant_id} {self.provider} {self.status}>"
