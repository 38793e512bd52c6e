"""
Calendar provider clients

Every call builds its own httpx.AsyncClient from freshly decrypted credentials
and closes it when done. Nothing about one user's credentials outlives the
request that used them.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

import httpx

from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI
from ..domain.calendar.schemas import CredentialSecrets, CredentialView
from ..domain.calendar.vault import CredentialVault
from ..exceptions import CredentialUnavailable, ProviderError, ValidationError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Refresh a little before the provider would reject the token
EXPIRY_MARGIN = timedelta(minutes=5)
DEFAULT_TIMEOUT = httpx.Timeout(15.0)

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:displayname/></d:prop></d:propfind>'
)


def build_client(
    secrets: Optional[CredentialSecrets] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Short-lived client authenticated for one integration (Bearer for Google, Basic for CalDAV)"""
    headers = {}
    auth = None
    if secrets is not None:
        if secrets.provider == "google":
            headers["Authorization"] = f"Bearer {secrets.accessToken}"
        else:
            auth = httpx.BasicAuth(secrets.username or "", secrets.password or "")
    return httpx.AsyncClient(headers=headers, auth=auth, timeout=DEFAULT_TIMEOUT, transport=transport)


def _oauth_error(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("error")
    except ValueError:
        return None


def build_google_auth_url() -> str:
    """
    Google consent screen URL for connecting a calendar

    ``access_type=offline`` with ``prompt=consent`` makes Google return a
    refresh token on every exchange, which the callback requires.
    """
    if not GOOGLE_CLIENT_ID or not GOOGLE_REDIRECT_URI:
        raise ProviderError("Google Calendar not configured")

    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_google_code(
    code: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict:
    """
    Exchange an OAuth authorization code for tokens and account details

    Returns:
        Dict with access_token, refresh_token, expires_at, account_email and calendar_id
    """
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise ProviderError("Google Calendar not configured")

    try:
        async with build_client(transport=transport) as client:
            token_response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "redirect_uri": GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
            )
            if token_response.status_code != 200:
                logger.error(
                    f"❌ Google token exchange failed: {token_response.status_code} {_oauth_error(token_response)}"
                )
                raise ValidationError("Failed to exchange authorization code")

            tokens = token_response.json()
            access_token = tokens.get("access_token")
            refresh_token = tokens.get("refresh_token")
            expires_in = tokens.get("expires_in", 3600)
            if not access_token or not refresh_token:
                raise ValidationError("Invalid token response")

            bearer = {"Authorization": f"Bearer {access_token}"}
            user_info_response = await client.get(GOOGLE_USERINFO_URL, headers=bearer)
            if user_info_response.status_code != 200:
                logger.error(f"❌ Failed to get Google user info: {user_info_response.status_code}")
                raise ProviderError("Failed to get user info")
            account_email = user_info_response.json().get("email")
            if not account_email:
                raise ProviderError("Google account has no email address")

            calendar_id = "primary"
            calendar_response = await client.get(
                f"{GOOGLE_CALENDAR_API}/users/me/calendarList/primary", headers=bearer
            )
            if calendar_response.status_code == 200:
                calendar_id = calendar_response.json().get("id", "primary")
    except httpx.HTTPError as e:
        logger.error(f"❌ Google token exchange request failed: {type(e).__name__}: {e}")
        raise ProviderError() from e

    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": datetime.utcnow() + timedelta(seconds=expires_in),
        "account_email": account_email.lower(),
        "calendar_id": calendar_id,
    }


async def ensure_fresh_google_credentials(
    vault: CredentialVault,
    integration_id: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CredentialSecrets:
    """
    Decrypted Google credentials with an access token that is good for a while

    Refreshes through the token endpoint when the stored token is about to
    expire. A revoked grant raises CredentialUnavailable.
    """
    secrets = await asyncio.to_thread(vault.load, integration_id, include_secrets=True)
    if secrets.provider != "google":
        return secrets

    if secrets.expiresAt and secrets.expiresAt > datetime.utcnow() + EXPIRY_MARGIN:
        return secrets

    if not secrets.refreshToken:
        await asyncio.to_thread(vault.mark_unavailable, integration_id)
        raise CredentialUnavailable()

    logger.info(f"🔄 Google Calendar token for credential {integration_id} expired, refreshing...")
    try:
        async with build_client(transport=transport) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "refresh_token": secrets.refreshToken,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"❌ Token refresh request failed for credential {integration_id}: {type(e).__name__}")
        raise ProviderError() from e

    if response.status_code != 200:
        error = _oauth_error(response)
        logger.error(f"❌ Token refresh failed for credential {integration_id}: {error}")
        if error == "invalid_grant":
            await asyncio.to_thread(vault.mark_unavailable, integration_id)
            raise CredentialUnavailable()
        raise ProviderError()

    tokens = response.json()
    new_access_token = tokens.get("access_token")
    if not new_access_token:
        logger.error("❌ No access token in refresh response")
        raise ProviderError()

    await asyncio.to_thread(
        vault.refresh,
        integration_id,
        access_token=new_access_token,
        expires_at=datetime.utcnow() + timedelta(seconds=tokens.get("expires_in", 3600)),
        refresh_token=tokens.get("refresh_token"),
    )
    logger.info(f"✅ Google Calendar token refreshed for credential {integration_id}")
    return await asyncio.to_thread(vault.load, integration_id, include_secrets=True)


async def verify_connection(
    vault: CredentialVault,
    integration_id: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CredentialView:
    """
    Probe the provider with the stored credentials and record the sync time

    Google: fetch the calendar list entry. CalDAV: PROPFIND with Depth 0.
    """
    secrets = await ensure_fresh_google_credentials(vault, integration_id, transport=transport)
    if secrets.provider != "google" and not secrets.caldavUrl:
        raise ValidationError("CalDAV URL is missing")

    try:
        async with build_client(secrets, transport=transport) as client:
            if secrets.provider == "google":
                calendar_id = secrets.calendarId or "primary"
                response = await client.get(f"{GOOGLE_CALENDAR_API}/users/me/calendarList/{calendar_id}")
            else:
                response = await client.request(
                    "PROPFIND",
                    secrets.caldavUrl,
                    headers={"Depth": "0", "Content-Type": "application/xml; charset=utf-8"},
                    content=PROPFIND_BODY,
                )
    except httpx.HTTPError as e:
        logger.error(f"❌ {secrets.provider} unreachable for credential {integration_id}: {type(e).__name__}")
        raise ProviderError() from e

    if response.status_code in (401, 403):
        logger.warning(f"⚠️ {secrets.provider} rejected credential {integration_id}")
        await asyncio.to_thread(vault.mark_unavailable, integration_id)
        raise CredentialUnavailable()
    if response.status_code not in (200, 207):
        logger.error(f"❌ {secrets.provider} probe failed with status {response.status_code}")
        raise ProviderError()

    logger.info(f"✅ Verified {secrets.provider} connection for credential {integration_id}")
    return await asyncio.to_thread(vault.mark_synced, integration_id)
