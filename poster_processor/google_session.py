"""
Authenticated access to Google REST APIs.
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp


logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN = 60


class GoogleAPIError(Exception):
    """A Google API call failed."""

    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class GoogleSession:
    """
    OAuth2 session for Drive, Calendar and Photos calls.

    Exchanges a long-lived refresh token for access tokens and caches them
    until shortly before they expire. Use as an async context manager, or
    pass in an existing aiohttp session which the caller then closes.
    """

    def __init__(self, client_id: str, client_secret: str, refresh_token: str,
                 session: Optional[aiohttp.ClientSession] = None, timeout: int = 30):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None
        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._owns_session and self.session:
            await self.session.close()
            self.session = None

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    async def access_token(self) -> str:
        """Return a valid access token, refreshing it when needed."""
        async with self._lock:
            if self._access_token and time.time() < self._expires_at:
                return self._access_token

            if not self.configured:
                raise GoogleAPIError(401, "Google OAuth2 credentials are not configured")

            data = {
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'refresh_token': self.refresh_token,
                'grant_type': 'refresh_token',
            }
            payload = await self._send('POST', TOKEN_URL, authorize=False, data=data)
            if not isinstance(payload, dict) or not payload.get('access_token'):
                raise GoogleAPIError(200, "No access_token in token response")

            try:
                expires_in = int(payload.get('expires_in', 3600))
            except (TypeError, ValueError):
                expires_in = 3600

            self._access_token = payload['access_token']
            self._expires_at = time.time() + expires_in - EXPIRY_MARGIN
            logger.debug("Google access token refreshed")
            return self._access_token

    async def request(self, method: str, url: str, **kwargs) -> Any:
        """Authorized request returning the decoded JSON body (None when empty)."""
        return await self._send(method, url, **kwargs)

    async def request_text(self, method: str, url: str, **kwargs) -> str:
        """Authorized request returning the raw body text."""
        return await self._send(method, url, as_text=True, **kwargs)

    async def _send(self, method: str, url: str, authorize: bool = True,
                    as_text: bool = False, headers: Optional[dict] = None, **kwargs) -> Any:
        if self.session is None:
            raise RuntimeError("GoogleSession used outside of its context")

        headers = dict(headers or {})
        if authorize:
            headers['Authorization'] = f'Bearer {await self.access_token()}'

        try:
            async with self.session.request(method, url, headers=headers, **kwargs) as response:
                body = await response.text()
                if response.status >= 400:
                    raise GoogleAPIError(response.status, _error_message(body))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GoogleAPIError(0, f"Request to {url} failed: {e}") from e

        if as_text:
            return body
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError:
            raise GoogleAPIError(response.status, f"Invalid JSON from {url}")


def _error_message(body: str) -> str:
    try:
        error = json.loads(body).get('error')
    except (ValueError, AttributeError):
        return body[:300]
    if isinstance(error, dict):
        return error.get('message') or str(error)
    return str(error or body[:300])
