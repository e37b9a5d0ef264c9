"""
Google OAuth client (authorization code flow).

Builds the consent-screen URL and exchanges the callback code for the
user's OpenID profile. HTTP goes through httpx; tests pass a client backed
by httpx.MockTransport.
"""
from typing import Optional
from urllib.parse import urlencode

import httpx

from coach.core.config import Settings, get_settings
from coach.core.exceptions import ConfigurationError
from coach.core.logging_config import LoggerMixin
from coach.services.auth_service import GoogleUserInfo

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SCOPES = "openid email profile"
HTTP_TIMEOUT_SECONDS = 10.0


class OAuthExchangeError(Exception):
    """The code exchange or profile fetch failed."""


class GoogleOAuthClient(LoggerMixin):
    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http_client = http_client

    def require_config(self) -> None:
        if not self.settings.oauth_configured():
            raise ConfigurationError("Google OAuth is not configured")

    def authorization_url(self, state: str) -> str:
        """Consent URL; prompt=select_account always shows the account picker."""
        self.require_config()
        return f"{GOOGLE_AUTH_URL}?" + urlencode({
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "prompt": "select_account",
        })

    async def fetch_user_info(self, code: str) -> GoogleUserInfo:
        """
        Exchange an authorization code and fetch the signed-in profile.

        Raises:
            OAuthExchangeError: Google rejected the code or the profile request
        """
        self.require_config()
        try:
            if self._http_client is not None:
                return await self._exchange(self._http_client, code)
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
                return await self._exchange(client, code)
        except httpx.HTTPError as e:
            self.logger.error(f"Google OAuth request failed: {e}")
            raise OAuthExchangeError(f"Request to Google failed: {e}") from e
        except ValueError as e:
            raise OAuthExchangeError(f"Google returned a malformed response: {e}") from e

    async def _exchange(self, client: httpx.AsyncClient, code: str) -> GoogleUserInfo:
        token_response = await client.post(GOOGLE_TOKEN_URL, data={
            "code": code,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "redirect_uri": self.settings.google_callback_url,
            "grant_type": "authorization_code",
        })
        if token_response.status_code != 200:
            raise OAuthExchangeError(f"Token exchange failed: HTTP {token_response.status_code}")

        token_payload = token_response.json()
        access_token = token_payload.get("access_token") if isinstance(token_payload, dict) else None
        if not access_token:
            raise OAuthExchangeError("Token response has no access_token")

        info_response = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if info_response.status_code != 200:
            self.logger.error("Failed to fetch user info from Google")
            raise OAuthExchangeError(f"Userinfo request failed: HTTP {info_response.status_code}")

        info_payload = info_response.json()
        if not isinstance(info_payload, dict):
            raise OAuthExchangeError("Userinfo response is not an object")
        try:
            return GoogleUserInfo.from_dict(info_payload)
        except KeyError as e:
            raise OAuthExchangeError(f"Userinfo response missing {e}") from e


def get_google_oauth() -> GoogleOAuthClient:
    return GoogleOAuthClient()
