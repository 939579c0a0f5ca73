"""
Credential Store

Reads and writes the per-tenant OAuth credential rows. Callers get plain
StoredCredential snapshots so nothing downstream holds a live ORM object
across an await.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from metricsync.connectors.types import TokenGrant
from metricsync.models.base import SessionLocal
from metricsync.models.credential import OAuthCredential, Provider
from metricsync.utils.logger import log


@dataclass(frozen=True)
class StoredCredential:
    """Immutable snapshot of an oauth_credentials row"""
    id: int
    tenant_id: int
    provider: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "Bearer"
    scope: str = ""
    account_email: Optional[str] = None
    refresh_token_expires_at: Optional[datetime] = None
    invalidated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: OAuthCredential) -> "StoredCredential":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            provider=row.provider,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=row.expires_at,
            token_type=row.token_type or "Bearer",
            scope=row.scope or "",
            account_email=row.account_email,
            refresh_token_expires_at=row.refresh_token_expires_at,
            invalidated_at=row.invalidated_at,
        )

    @property
    def key(self):
        return (self.tenant_id, self.provider)

    def is_live(self, now: datetime) -> bool:
        """Usable for an unattended run: not invalidated and refresh token not expired"""
        if self.invalidated_at is not None:
            return False
        if self.refresh_token_expires_at is not None and self.refresh_token_expires_at <= now:
            return False
        return True


class CredentialStore:
    """Access to oauth_credentials"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def get(self, tenant_id: int, provider) -> Optional[StoredCredential]:
        provider = Provider.parse(provider).value
        db = self.session_factory()
        try:
            row = self._query(db, tenant_id, provider).first()
            return StoredCredential.from_model(row) if row else None
        finally:
            db.close()

    @staticmethod
    def _query(db: Session, tenant_id: int, provider: str):
        return db.query(OAuthCredential).filter(
            OAuthCredential.tenant_id == tenant_id,
            OAuthCredential.provider == provider
        )

    def lock_for_update(self, db: Session, tenant_id: int, provider: str) -> Optional[OAuthCredential]:
        """Re-read the row inside db's transaction, locking it where the dialect supports it"""
        return self._query(db, tenant_id, provider).with_for_update().first()

    @staticmethod
    def apply_grant(row: OAuthCredential, grant: TokenGrant) -> None:
        """Copy a refreshed token onto a row; the refresh token only changes if a new one was issued"""
        row.access_token = grant.access_token
        row.expires_at = grant.expires_at
        row.token_type = grant.token_type or row.token_type
        if grant.scope:
            row.scope = grant.scope
        if grant.refresh_token:
            row.refresh_token = grant.refresh_token
        row.updated_at = datetime.utcnow()

    def save_grant(
        self,
        tenant_id: int,
        provider,
        grant: TokenGrant,
        account_email: Optional[str] = None,
        refresh_token_expires_at: Optional[datetime] = None
    ) -> StoredCredential:
        """
        Store tokens from an authorization-code exchange.

        Re-authorizing replaces the existing row's tokens and clears any
        invalidation marker.
        """
        provider = Provider.parse(provider).value
        db = self.session_factory()
        try:
            row = self._query(db, tenant_id, provider).first()
            if row is None:
                if not grant.refresh_token:
                    raise ValueError("Initial authorization must include a refresh token")
                row = OAuthCredential(
                    tenant_id=tenant_id,
                    provider=provider,
                    refresh_token=grant.refresh_token,
                )
                db.add(row)
            self.apply_grant(row, grant)
            row.scope = grant.scope or row.scope or ""
            if account_email:
                row.account_email = account_email
            row.refresh_token_expires_at = refresh_token_expires_at
            row.invalidated_at = None
            db.commit()
            db.refresh(row)
            log.info(f"[CredentialStore] Stored {provider} credential for tenant {tenant_id}")
            return StoredCredential.from_model(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def mark_invalid(self, tenant_id: int, provider, when: Optional[datetime] = None) -> None:
        provider = Provider.parse(provider).value
        db = self.session_factory()
        try:
            row = self._query(db, tenant_id, provider).first()
            if row is not None and row.invalidated_at is None:
                row.invalidated_at = when or datetime.utcnow()
                db.commit()
                log.warning(f"[CredentialStore] Marked {provider} credential invalid for tenant {tenant_id}")
        finally:
            db.close()

    def list_live(self, provider, now: Optional[datetime] = None) -> List[StoredCredential]:
        """Credentials eligible for the daily run, ordered by tenant"""
        provider = Provider.parse(provider).value
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            rows = db.query(OAuthCredential).filter(
                OAuthCredential.provider == provider,
                OAuthCredential.invalidated_at.is_(None),
                or_(
                    OAuthCredential.refresh_token_expires_at.is_(None),
                    OAuthCredential.refresh_token_expires_at > now
                )
            ).order_by(OAuthCredential.tenant_id).all()
            return [StoredCredential.from_model(row) for row in rows]
        finally:
            db.close()

    def delete(self, tenant_id: int, provider) -> bool:
        """Disconnect a provider. Returns False if nothing was stored."""
        provider = Provider.parse(provider).value
        db = self.session_factory()
        try:
            deleted = self._query(db, tenant_id, provider).delete(synchronize_session=False)
            db.commit()
            if deleted:
                log.info(f"[CredentialStore] Disconnected {provider} for tenant {tenant_id}")
            return bool(deleted)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def status(self, tenant_id: int, now: Optional[datetime] = None) -> Dict[str, dict]:
        """Connection status per provider for one tenant"""
        now = now or datetime.utcnow()
        statuses = {}
        for provider in Provider:
            credential = self.get(tenant_id, provider)
            if credential is None:
                statuses[provider.short_name] = {"connected": False}
                continue
            statuses[provider.short_name] = {
                "connected": True,
                "live": credential.is_live(now),
                "account_email": credential.account_email,
                "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
                "invalidated_at": credential.invalidated_at.isoformat() if credential.invalidated_at else None,
                "scope": credential.scope,
            }
        return statuses
