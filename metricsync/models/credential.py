"""
OAuth credential and provider binding models
"""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime

from metricsync.models.base import Base


class Provider(str, enum.Enum):
    """External reporting APIs a tenant can connect"""
    SEARCH_CONSOLE = "google_search_console"
    ANALYTICS = "google_analytics"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        """Accept the stored value or the short aliases used by the API and CLI."""
        aliases = {"gsc": cls.SEARCH_CONSOLE, "ga4": cls.ANALYTICS}
        if value in aliases:
            return aliases[value]
        return cls(value)

    @property
    def short_name(self) -> str:
        return "gsc" if self is Provider.SEARCH_CONSOLE else "ga4"


class OAuthCredential(Base):
    """
    OAuth tokens for one (tenant, provider) pair.

    Mutated in place on every refresh. invalidated_at is set when the provider
    rejects the refresh token and cleared when the tenant re-authorizes.
    """
    __tablename__ = "oauth_credentials"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'provider', name='uq_oauth_credentials_tenant_provider'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(50), nullable=False, index=True)

    # Token data
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)  # naive UTC
    token_type = Column(String(50), nullable=False, default="Bearer")
    scope = Column(Text, nullable=False, default="")

    # Account info
    account_email = Column(String(255), nullable=True)

    # Liveness
    refresh_token_expires_at = Column(DateTime, nullable=True)
    invalidated_at = Column(DateTime, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<OAuthCredential tenant={self.tenant_id} {self.provider} expires={self.expires_at}>"


class SearchConsoleSite(Base):
    """Search Console property a tenant's search metrics are fetched from"""
    __tablename__ = "gsc_sites"
    __table_args__ = (
        UniqueConstraint('tenant_id', name='uq_gsc_sites_tenant'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    site_url = Column(String(500), nullable=False)
    # e.g. sc-domain:example.com or https://www.example.com/
    permission_level = Column(String(50), nullable=True)
    # siteOwner, siteFullUser, siteRestrictedUser

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SearchConsoleSite tenant={self.tenant_id} {self.site_url}>"


class GA4Property(Base):
    """GA4 property a tenant's analytics metrics are fetched from"""
    __tablename__ = "ga4_properties"
    __table_args__ = (
        UniqueConstraint('tenant_id', name='uq_ga4_properties_tenant'),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    property_id = Column(String(100), nullable=False)  # numeric id, without the properties/ prefix
    property_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<GA4Property tenant={self.tenant_id} {self.property_id}>"
