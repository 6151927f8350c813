"""Bearer token credentials for the management API."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from src.control.arm import is_transient_http_error
from src.scaling.config import RetryPolicy
from src.scaling.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
DEFAULT_SCOPE = "https://management.azure.com/.default"

# Refresh a cached token this many seconds before it expires
REFRESH_MARGIN_SECONDS = 300


class StaticTokenCredential:
    """A pre-issued bearer token."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("token must not be empty")
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ClientSecretCredential:
    """Client-credentials OAuth2 flow with an in-memory token cache."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        client: Optional[httpx.AsyncClient] = None,
        authority: str = DEFAULT_AUTHORITY,
        scope: str = DEFAULT_SCOPE,
        clock=time.monotonic,
        retry: Optional[RetryPolicy] = None,
    ):
        """Initialize the credential.

        Args:
            tenant_id: Directory (tenant) ID
            client_id: Service principal client ID
            client_secret: Service principal secret
            client: HTTP client; one is created when omitted
            authority: Identity provider base URL
            scope: Requested scope
            clock: Monotonic clock, injectable for tests
            retry: Retry budget for throttled or failed token requests
        """
        if not (tenant_id and client_id and client_secret):
            raise ValueError("tenant_id, client_id and client_secret are required")
        self.token_url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0
        self._lock = asyncio.Lock()
        self._fetch_token = retry_with_exponential_backoff(
            retry or RetryPolicy(), is_transient_http_error
        )(self._fetch_token)

    async def get_token(self) -> str:
        """Return a valid access token, requesting a new one when needed.

        Raises:
            httpx.HTTPStatusError: If the identity provider rejects the request
        """
        if self._is_fresh():
            return self._token

        async with self._lock:
            if not self._is_fresh():
                await self._fetch_token()
            return self._token

    def _is_fresh(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at - REFRESH_MARGIN_SECONDS

    async def _fetch_token(self) -> None:
        response = await self._client.post(
            self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "scope": self.scope,
            },
        )
        response.raise_for_status()
        payload = response.json()
        self._token = payload["access_token"]
        self._expires_at = self._clock() + float(payload.get("expires_in", 3600))
        logger.info(f"Acquired management API token for client {self.client_id}")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
