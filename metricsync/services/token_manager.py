"""
Token Lifecycle Manager

Hands out access tokens that are valid for at least the expiry buffer,
refreshing and persisting them when they are not.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from metricsync.config import get_settings
from metricsync.exceptions import CredentialInvalid, TransientFetchError
from metricsync.models.base import SessionLocal
from metricsync.services.credential_store import CredentialStore, StoredCredential
from metricsync.utils.logger import log


class TokenLifecycleManager:
    """
    Refresh-and-persist for OAuth access tokens.

    Refreshes for the same (tenant, provider) are serialized twice: an asyncio
    lock per key inside this process, and a row lock on the credential for
    other processes. The row is re-read under both locks, so a caller that
    waited behind a concurrent refresh reuses that token.
    """

    def __init__(
        self,
        oauth_client,
        session_factory: Callable[[], Session] = SessionLocal,
        store: Optional[CredentialStore] = None,
        buffer_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        settings = get_settings()
        self.oauth_client = oauth_client
        self.session_factory = session_factory
        self.store = store or CredentialStore(session_factory)
        self.buffer = timedelta(seconds=buffer_seconds if buffer_seconds is not None
                                else settings.token_expiry_buffer_seconds)
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self.clock = clock
        self._locks: Dict[Tuple[int, str], asyncio.Lock] = {}
        self.refresh_count = 0

    def needs_refresh(self, credential: StoredCredential, now: Optional[datetime] = None) -> bool:
        """True once now is within the buffer of expiry"""
        now = now or self.clock()
        return now >= credential.expires_at - self.buffer

    async def get_valid_token(self, credential: StoredCredential) -> str:
        """Return an access token valid for at least the buffer, refreshing if needed"""
        if not self.needs_refresh(credential):
            return credential.access_token

        refreshed = await self._refresh(credential, force=False)
        return refreshed.access_token

    async def force_refresh(self, credential: StoredCredential) -> StoredCredential:
        """Refresh regardless of the stored expiry"""
        return await self._refresh(credential, force=True)

    def _lock_for(self, key: Tuple[int, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _refresh(self, credential: StoredCredential, force: bool) -> StoredCredential:
        async with self._lock_for(credential.key):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self._refresh_locked, credential, force),
                    timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                raise TransientFetchError(
                    f"Token refresh timed out after {self.timeout:.0f}s "
                    f"(tenant {credential.tenant_id}, {credential.provider})"
                ) from e

    def _refresh_locked(self, credential: StoredCredential, force: bool) -> StoredCredential:
        db = self.session_factory()
        try:
            row = self.store.lock_for_update(db, credential.tenant_id, credential.provider)
            if row is None:
                raise CredentialInvalid(
                    "Credential was removed during refresh",
                    tenant_id=credential.tenant_id,
                    provider=credential.provider
                )

            current = StoredCredential.from_model(row)
            if not force and not self.needs_refresh(current):
                # Refreshed by a concurrent caller while we waited
                db.rollback()
                return current

            try:
                grant = self.oauth_client.refresh(row.refresh_token)
            except CredentialInvalid as e:
                row.invalidated_at = self.clock()
                db.commit()
                log.warning(
                    f"[TokenManager] Refresh token rejected for tenant {credential.tenant_id} "
                    f"({credential.provider}); marked invalid"
                )
                raise CredentialInvalid(
                    str(e), tenant_id=credential.tenant_id, provider=credential.provider
                ) from e

            self.store.apply_grant(row, grant)
            db.commit()
            db.refresh(row)
            self.refresh_count += 1

            log.info(
                f"[TokenManager] Refreshed {credential.provider} token for tenant "
                f"{credential.tenant_id}, expires {row.expires_at.isoformat()}"
            )
            return StoredCredential.from_model(row)

        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
