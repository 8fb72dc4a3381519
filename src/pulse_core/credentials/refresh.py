"""OAuth token refresh for platform credentials.

X, TikTok and Amazon use the standard refresh_token grant. Meta page tokens
are long-lived and carry no refresh token, so Facebook and Instagram
credentials are never refreshed here; an auth failure means reconnect.
"""
import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Optional

from ..config import OAuthClientConfig, oauth_client_from_env
from ..errors import SourceFetchError, TokenExpiredError
from ..fetch.client import ResilientFetchClient
from ..schemas.analytics import Platform, SourceCredential, utcnow


logger = logging.getLogger(__name__)


TOKEN_ENDPOINTS = {
    Platform.TWITTER: "https://api.twitter.com/2/oauth2/token",
    Platform.TIKTOK: "https://open.tiktokapis.com/v2/oauth/token/",
    Platform.AMAZON: "https://api.amazon.com/auth/o2/token",
}

CLIENT_ENV_VARS = {
    Platform.TWITTER: ("TWITTER_CLIENT_ID", "TWITTER_CLIENT_SECRET"),
    Platform.TIKTOK: ("TIKTOK_CLIENT_KEY", "TIKTOK_CLIENT_SECRET"),
    Platform.AMAZON: ("AMAZON_CLIENT_ID", "AMAZON_CLIENT_SECRET"),
}


def oauth_clients_from_env() -> dict[Platform, OAuthClientConfig]:
    """Load OAuth app credentials for every platform that has them configured."""
    clients = {}
    for platform, (id_var, secret_var) in CLIENT_ENV_VARS.items():
        config = oauth_client_from_env(id_var, secret_var)
        if config is not None:
            clients[platform] = config
    return clients


class CredentialRefresher(ABC):
    """Collaborator that trades a rejected credential for a fresh one."""

    @abstractmethod
    def can_refresh(self, credential: SourceCredential) -> bool:
        """Return True if a refresh attempt is possible for this credential."""

    @abstractmethod
    async def refresh(self, credential: SourceCredential) -> SourceCredential:
        """Return a refreshed credential.

        Raises:
            TokenExpiredError: If the refresh was rejected or failed
        """


class OAuthCredentialRefresher(CredentialRefresher):
    """Refreshes credentials against each platform's OAuth token endpoint."""

    def __init__(
        self,
        client: ResilientFetchClient,
        clients: dict[Platform, OAuthClientConfig],
        on_refreshed: Optional[Callable[[SourceCredential], None]] = None,
    ) -> None:
        """Initialize refresher.

        Args:
            client: Shared resilient fetch client
            clients: OAuth app credentials per platform
            on_refreshed: Called with each refreshed credential (persistence
                hook); run in a worker thread
        """
        self.client = client
        self.clients = clients
        self.on_refreshed = on_refreshed

    def can_refresh(self, credential: SourceCredential) -> bool:
        return (
            credential.platform in TOKEN_ENDPOINTS
            and credential.platform in self.clients
            and bool(credential.refresh_token)
        )

    async def refresh(self, credential: SourceCredential) -> SourceCredential:
        """Exchange the credential for a new access token.

        Args:
            credential: Credential rejected by the platform

        Returns:
            Copy of the credential with the new token and expiry

        Raises:
            TokenExpiredError: If no refresh is possible or the platform rejects it
        """
        if not self.can_refresh(credential):
            raise TokenExpiredError(
                f"No refresh available for {credential.platform.value} credential"
            )

        try:
            data = await self._token_request(credential, self.clients[credential.platform])
        except SourceFetchError as exc:
            logger.warning(
                "Token refresh failed: platform=%s, credential=%s, kind=%s",
                credential.platform.value,
                credential.id,
                exc.kind.value,
            )
            raise TokenExpiredError(
                f"Token refresh failed for {credential.platform.value}",
                status=exc.status,
            ) from exc

        # TikTok nests the token payload under "data" on some API versions
        if "access_token" not in data and isinstance(data.get("data"), dict):
            data = data["data"]

        access_token = data.get("access_token")
        if not access_token:
            raise TokenExpiredError(
                f"Token refresh for {credential.platform.value} returned no access token"
            )

        update: dict[str, Any] = {
            "access_token": access_token,
            "refresh_token": data.get("refresh_token") or credential.refresh_token,
            "expires_at": None,
        }
        expires_in = data.get("expires_in")
        if expires_in:
            update["expires_at"] = utcnow() + timedelta(seconds=int(expires_in))

        refreshed = credential.model_copy(update=update)
        logger.info(
            "Refreshed credential: platform=%s, credential=%s",
            credential.platform.value,
            credential.id,
        )

        if self.on_refreshed is not None:
            # Persistence hooks may block (sqlite3); run them in a worker thread
            await asyncio.to_thread(self.on_refreshed, refreshed)

        return refreshed

    async def _token_request(
        self, credential: SourceCredential, app: OAuthClientConfig
    ) -> dict:
        url = TOKEN_ENDPOINTS[credential.platform]
        secrets = [
            credential.access_token,
            credential.refresh_token,
            app.client_secret,
        ]

        form = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        if credential.platform == Platform.TWITTER:
            basic = base64.b64encode(
                f"{app.client_id}:{app.client_secret}".encode("utf-8")
            ).decode("ascii")
            headers["Authorization"] = f"Basic {basic}"
            form["client_id"] = app.client_id
        elif credential.platform == Platform.TIKTOK:
            form["client_key"] = app.client_id
            form["client_secret"] = app.client_secret
        else:
            form["client_id"] = app.client_id
            form["client_secret"] = app.client_secret

        return await self.client.call(
            "POST",
            url,
            headers=headers,
            data=form,
            max_retries=1,
            secrets=secrets,
        )
