"""
Tenant model

A tenant is a customer project that owns its credentials, bindings and facts.
"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime

from metricsync.models.base import Base


class Tenant(Base):
    """Customer project/account"""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Tenant {self.id} {self.name}>"
