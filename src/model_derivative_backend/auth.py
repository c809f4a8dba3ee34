"""
Two-legged OAuth token provider for Autodesk Platform Services.

Each provider holds one cached access token for a fixed set of scopes and
refreshes it on demand. Refreshes are single-flight: concurrent callers that
find the token expired wait on the same lock, and only the first one issues
the token request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, Optional

import httpx
from pydantic import ValidationError

from .exceptions import AuthenticationFailed
from .models import AccessToken

logger = logging.getLogger(__name__)

TOKEN_PATH = "/authentication/v2/token"

# Refresh tokens this many seconds before they expire.
REFRESH_MARGIN_SECONDS = 60


class TokenProvider:
    """
    Cached client-credentials token for one scope set.

    Attributes:
        scopes: Space-separated scope string sent with token requests
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        scopes: Iterable[str],
        base_url: str,
    ) -> None:
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = base_url.rstrip("/") + TOKEN_PATH
        self.scopes = " ".join(scopes)
        self._token: Optional[AccessToken] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _is_valid(self) -> bool:
        return self._token is not None and time.monotonic() < self._expires_at - REFRESH_MARGIN_SECONDS

    async def get_token(self) -> AccessToken:
        """
        Return a valid access token, requesting a new one if needed.

        Raises:
            AuthenticationFailed: If the identity service rejects the request or is unreachable
        """
        if self._is_valid():
            return self._token  # type: ignore[return-value]

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._is_valid():
                return self._token  # type: ignore[return-value]
            self._token = await self._request_token()
            self._expires_at = time.monotonic() + self._token.expires_in
            return self._token

    async def get_access_token(self) -> str:
        return (await self.get_token()).access_token

    async def _request_token(self) -> AccessToken:
        logger.info(f"Requesting access token for scopes '{self.scopes}'")
        try:
            response = await self._http.post(
                self._token_url,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials", "scope": self.scopes},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AuthenticationFailed(f"Token request failed: {exc}") from exc

        if response.status_code != 200:
            raise AuthenticationFailed(
                f"Token request rejected with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return AccessToken.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthenticationFailed(
                f"Token response could not be read: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
