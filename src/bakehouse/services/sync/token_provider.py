"""
Service-account bearer tokens for the external store.

A signed JWT assertion (RS256, one hour lifetime) is exchanged at the token
endpoint for an access token, which is cached until shortly before it
expires.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import jwt

from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.config import SyncCredentials, SyncSettings

logger = get_service_logger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600
EXPIRY_MARGIN = 60


@dataclass
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenProvider:
    """
    Fetches and caches access tokens for a service account.

    Errors from the token endpoint are left to the caller: transport
    failures surface as httpx.TransportError and rejected requests as
    httpx.HTTPStatusError, so the Sheets client retries them like any other
    request.
    """

    def __init__(
        self,
        credentials: SyncCredentials,
        settings: Optional[SyncSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._credentials = credentials
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    def build_assertion(self, now: Optional[float] = None) -> str:
        """Sign the JWT assertion presented to the token endpoint."""
        issued_at = int(now if now is not None else self._clock())
        claims = {
            "iss": self._credentials.client_email,
            "scope": self._settings.scope,
            "aud": self._settings.token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME,
        }
        return jwt.encode(claims, self._credentials.private_key, algorithm="RS256")

    def invalidate(self) -> None:
        """Drop the cached token (e.g. after a 401)."""
        self._token = None

    async def get_token(self, client: httpx.AsyncClient) -> str:
        """
        Return a valid access token, fetching a new one if needed.

        Args:
            client: HTTP client used for the token exchange

        Raises:
            httpx.TransportError: If the token endpoint cannot be reached
            httpx.HTTPStatusError: If the token endpoint rejects the assertion
        """
        async with self._lock:
            now = self._clock()
            if self._token is not None and self._token.is_valid(now):
                return self._token.value

            response = await client.post(
                self._settings.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion(now)},
                timeout=self._settings.request_timeout,
            )
            response.raise_for_status()
            payload = response.json()

            expires_in = int(payload.get("expires_in", ASSERTION_LIFETIME))
            self._token = AccessToken(
                value=payload["access_token"],
                expires_at=now + expires_in - EXPIRY_MARGIN,
            )
            log_operation(
                logger,
                operation="get_token",
                outcome="refreshed",
                expires_in=expires_in,
            )
            return self._token.value
