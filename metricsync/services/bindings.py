"""
Binding discovery

A tenant's search metrics come from exactly one Search Console site and its
analytics metrics from exactly one GA4 property. The binding is discovered
from the provider the first time it is needed and stored; after that the
stored value is used as-is.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from metricsync.connectors.types import BindingCandidate
from metricsync.exceptions import BindingNotFound
from metricsync.models.base import SessionLocal
from metricsync.models.credential import GA4Property, Provider, SearchConsoleSite
from metricsync.utils.logger import log

DOMAIN_PROPERTY_PREFIX = "sc-domain:"


@dataclass(frozen=True)
class Binding:
    provider: Provider
    identifier: str  # site URL or GA4 property id
    name: Optional[str] = None


def select_site(candidates: Sequence[BindingCandidate]) -> Optional[BindingCandidate]:
    """Prefer a domain property, since it covers every protocol and subdomain"""
    if not candidates:
        return None
    for candidate in candidates:
        if candidate.identifier.startswith(DOMAIN_PROPERTY_PREFIX):
            return candidate
    return candidates[0]


def select_property(candidates: Sequence[BindingCandidate]) -> Optional[BindingCandidate]:
    return candidates[0] if candidates else None


class BindingResolver:
    """Looks up, discovers and stores tenant bindings"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def get(self, tenant_id: int, provider) -> Optional[Binding]:
        provider = Provider.parse(provider)
        db = self.session_factory()
        try:
            if provider is Provider.SEARCH_CONSOLE:
                site = db.query(SearchConsoleSite).filter(SearchConsoleSite.tenant_id == tenant_id).first()
                return Binding(provider, site.site_url, site.permission_level) if site else None

            prop = db.query(GA4Property).filter(GA4Property.tenant_id == tenant_id).first()
            return Binding(provider, prop.property_id, prop.property_name) if prop else None
        finally:
            db.close()

    @staticmethod
    def choose(provider, candidates: Sequence[BindingCandidate]) -> Optional[BindingCandidate]:
        if Provider.parse(provider) is Provider.SEARCH_CONSOLE:
            return select_site(candidates)
        return select_property(candidates)

    async def discover(self, provider, client) -> List[BindingCandidate]:
        """List the provider's candidates without storing anything"""
        return await client.list_bindings()

    async def resolve(self, tenant_id: int, provider, client) -> Binding:
        """
        Return the stored binding, discovering and storing one if absent.

        Raises:
            BindingNotFound: the provider lists no usable site/property
        """
        provider = Provider.parse(provider)
        existing = self.get(tenant_id, provider)
        if existing is not None:
            return existing

        candidates = await self.discover(provider, client)
        chosen = self.choose(provider, candidates)
        if chosen is None:
            raise BindingNotFound(f"No {provider.short_name} binding available for tenant {tenant_id}")

        self.store(tenant_id, provider, chosen)
        # Re-read: a concurrent resolver may have stored a different candidate first
        binding = self.get(tenant_id, provider)
        log.info(f"[Bindings] Tenant {tenant_id} {provider.short_name} bound to {binding.identifier}")
        return binding

    def store(self, tenant_id: int, provider, candidate: BindingCandidate) -> None:
        """Insert-if-absent; an existing binding is never replaced"""
        provider = Provider.parse(provider)
        if provider is Provider.SEARCH_CONSOLE:
            table = SearchConsoleSite.__table__
            values = {
                "tenant_id": tenant_id,
                "site_url": candidate.identifier,
                "permission_level": candidate.permission_level,
            }
        else:
            table = GA4Property.__table__
            values = {
                "tenant_id": tenant_id,
                "property_id": candidate.identifier,
                "property_name": candidate.name,
            }

        db = self.session_factory()
        try:
            insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
            stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=["tenant_id"])
            db.execute(stmt)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
