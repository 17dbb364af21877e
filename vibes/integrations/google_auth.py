"""
Vibes Assistant — Google Calendar Authentication.

Web-server OAuth2 flow: each user opens a consent URL whose `state` is their
Telegram ID; Google redirects back to /api/google-auth/callback with a code
that is exchanged for a long-lived refresh token. Only the refresh token is
stored; access tokens are minted on demand for every API call.
"""

from __future__ import annotations

import logging

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _client_config() -> dict:
    from vibes.config import settings

    return {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": _AUTH_URI,
            "token_uri": _TOKEN_URI,
            "redirect_uris": [settings.GOOGLE_REDIRECT_URI],
        }
    }


def _build_flow() -> Flow:
    from vibes.config import settings

    # No PKCE: the consent URL and the code exchange use separate Flow objects.
    return Flow.from_client_config(
        _client_config(),
        scopes=SCOPES,
        redirect_uri=settings.GOOGLE_REDIRECT_URI,
        autogenerate_code_verifier=False,
    )


def get_google_auth_url(telegram_id: int) -> str:
    """Return the consent URL for one user. Offline access → refresh token."""
    flow = _build_flow()
    auth_url, _ = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
        state=str(telegram_id),
    )
    return auth_url


def exchange_google_auth_code(code: str) -> str:
    """Exchange an authorization code and return the refresh token.

    Raises:
        ValueError: If Google did not issue a refresh token.
    """
    flow = _build_flow()
    flow.fetch_token(code=code)
    refresh_token = flow.credentials.refresh_token
    if not refresh_token:
        raise ValueError("Google did not return a refresh token")
    return refresh_token


def get_calendar_service_for_user(refresh_token: str):
    """Build a Google Calendar API service from a stored refresh token."""
    from vibes.config import settings

    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=_TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
    )
    return build("calendar", "v3", credentials=creds, cache_discovery=False)
