"""OAuth 2.0 helpers: consent URL, code exchange, token refresh, service building."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import Resource, build

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.exceptions import AuthenticationError, ConfigurationError
from gmail_digest.core.models import TokenGrant

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"


def _build_flow(settings: GmailDigestSettings, state: str | None = None) -> Flow:
    if not settings.client_id or not settings.client_secret:
        raise ConfigurationError("GMAIL_DIGEST_CLIENT_ID and GMAIL_DIGEST_CLIENT_SECRET must be set")

    client_config = {
        "web": {
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": settings.token_uri,
            "redirect_uris": [settings.redirect_uri],
        }
    }
    # Consent and code exchange happen in separate Flow instances, so no PKCE verifier.
    return Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        redirect_uri=settings.redirect_uri,
        state=state,
        autogenerate_code_verifier=False,
    )


def authorization_url(settings: GmailDigestSettings, state: str | None = None) -> str:
    """Build the Google consent URL asking for offline Gmail access.

    Args:
        settings: Settings carrying the OAuth client id/secret and redirect URI.
        state: Opaque value echoed back to the redirect URI (e.g. the user id).

    Returns:
        URL the user should open in a browser.
    """
    flow = _build_flow(settings, state=state)
    url, _ = flow.authorization_url(access_type="offline", prompt="consent")
    return url


def exchange_code(settings: GmailDigestSettings, code: str) -> TokenGrant:
    """Exchange an authorization code for access and refresh tokens.

    Raises:
        AuthenticationError: If the token endpoint rejects the code.
    """
    flow = _build_flow(settings)
    try:
        flow.fetch_token(code=code)
    except Exception as e:
        raise AuthenticationError(f"Token exchange failed: {e}") from e

    creds = flow.credentials
    if not creds.refresh_token:
        raise AuthenticationError("Token exchange returned no refresh token")

    logger.info("Authorization code exchanged for tokens")
    return TokenGrant(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=_aware(creds.expiry),
    )


def access_credentials(access_token: str) -> Credentials:
    """Credentials carrying only an access token.

    A 401 surfaces to the caller instead of being refreshed silently inside the
    HTTP transport; refreshing is done explicitly with refresh_access_token().
    """
    return Credentials(token=access_token)


def refresh_access_token(settings: GmailDigestSettings, refresh_token: str) -> TokenGrant:
    """Exchange a refresh token for a new access token (grant_type=refresh_token).

    Returns:
        TokenGrant with the new access token, its expiry, and the refresh token
        to store from now on (rotated if Google issued a new one).

    Raises:
        google.auth.exceptions.RefreshError: If the token endpoint rejects it.
    """
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=settings.token_uri,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
    )
    creds.refresh(Request())
    return TokenGrant(
        access_token=creds.token,
        refresh_token=creds.refresh_token or refresh_token,
        expiry=_aware(creds.expiry),
    )


def build_gmail_service(creds: Credentials) -> Resource:
    """Build a Gmail API service resource."""
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def _aware(expiry: datetime | None) -> datetime | None:
    """google-auth reports expiry as naive UTC."""
    if expiry is None:
        return None
    return expiry if expiry.tzinfo else expiry.replace(tzinfo=UTC)
