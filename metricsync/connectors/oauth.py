"""
Google OAuth 2.0 token endpoint client

Used by the token manager to refresh access tokens and by the authorization
callback to exchange a code for the first token pair.
"""
from datetime import datetime, timedelta
from typing import Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from metricsync.connectors.types import TokenGrant
from metricsync.exceptions import CredentialInvalid, TransientFetchError
from metricsync.utils.logger import log

# Scopes requested per provider at authorization time
PROVIDER_SCOPES = {
    "google_search_console": ["https://www.googleapis.com/auth/webmasters.readonly"],
    "google_analytics": ["https://www.googleapis.com/auth/analytics.readonly"],
}


class GoogleOAuthClient:
    """Talks to the Google token endpoint with the application's OAuth client"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str = "https://oauth2.googleapis.com/token",
        redirect_uri: Optional[str] = None,
        timeout: float = 30.0
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "GoogleOAuthClient":
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=settings.google_token_uri,
            redirect_uri=settings.google_redirect_uri,
            timeout=settings.request_timeout_seconds,
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token (blocking).

        Raises:
            CredentialInvalid: the provider rejected the refresh token
            TransientFetchError: the token endpoint could not be reached
        """
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        session = requests.Session()
        try:
            credentials.refresh(Request(session=session))
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise TransientFetchError(f"Token refresh failed: {e}") from e
            raise CredentialInvalid(f"Refresh token rejected: {e}") from e
        except TransportError as e:
            raise TransientFetchError(f"Token endpoint unreachable: {e}") from e
        finally:
            session.close()

        # google-auth keeps the old refresh token when none is returned
        rotated = credentials.refresh_token if credentials.refresh_token != refresh_token else None
        expires_at = credentials.expiry or (datetime.utcnow() + timedelta(hours=1))
        granted = getattr(credentials, "granted_scopes", None) or []

        return TokenGrant(
            access_token=credentials.token,
            expires_at=expires_at,
            refresh_token=rotated,
            scope=" ".join(granted),
        )

    def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for the first token pair (blocking)."""
        try:
            response = requests.post(
                self.token_uri,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientFetchError(f"Token endpoint unreachable: {e}") from e

        if response.status_code in (400, 401):
            log.warning(f"Authorization code exchange rejected: {response.text[:200]}")
            raise CredentialInvalid("Authorization code rejected by provider")
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientFetchError(
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code
            )
        response.raise_for_status()

        payload = response.json()
        return TokenGrant(
            access_token=payload["access_token"],
            expires_at=datetime.utcnow() + timedelta(seconds=int(payload.get("expires_in", 3600))),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope", ""),
        )
