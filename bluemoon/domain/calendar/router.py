"""Calendar integration router - connect, list, verify and disconnect calendars"""

import asyncio
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...services.calendar_clients import build_google_auth_url, exchange_google_code, verify_connection
from .schemas import CredentialRecord, CredentialView, GoogleCallbackRequest, ICalConnectRequest
from .vault import CredentialVault, pack_basic_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar-integrations", tags=["Calendar Integrations"])


def get_vault(db: Session = Depends(get_db)) -> CredentialVault:
    """Dependency injection for CredentialVault"""
    return CredentialVault(db)


def get_calendar_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Outbound transport for provider calls; None means a real network connection"""
    return None


@router.get("", response_model=list[CredentialView])
def list_integrations(
    current_user: User = Depends(get_current_user),
    vault: CredentialVault = Depends(get_vault),
):
    """Connected calendars for the current user. Secrets are never returned."""
    return vault.list_for_user(current_user.id)


@router.post("/ical", response_model=CredentialView, status_code=status.HTTP_201_CREATED)
def connect_ical(
    data: ICalConnectRequest,
    current_user: User = Depends(get_current_user),
    vault: CredentialVault = Depends(get_vault),
):
    """Store a CalDAV account; username and password are encrypted together"""
    view = vault.store(
        CredentialRecord(
            user_id=current_user.id,
            provider="ical",
            account_email=data.accountEmail,
            access_token=pack_basic_auth(data.username, data.password),
            calendar_name=data.calendarName,
            caldav_url=data.caldavUrl,
        )
    )
    logger.info(f"✅ CalDAV calendar connected for user {current_user.id}")
    return view


@router.get("/google/auth-url")
def google_auth_url(current_user: User = Depends(get_current_user)):
    """Consent screen URL that yields a refresh token on the callback"""
    logger.info(f"🔗 Google Calendar consent URL requested by user {current_user.id}")
    return {"authUrl": build_google_auth_url()}


@router.post("/google/callback", response_model=CredentialView)
async def google_callback(
    data: GoogleCallbackRequest,
    current_user: User = Depends(get_current_user),
    vault: CredentialVault = Depends(get_vault),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_calendar_transport),
):
    """Finish the Google OAuth flow started by the frontend"""
    tokens = await exchange_google_code(data.code, transport=transport)
    record = CredentialRecord(
        user_id=current_user.id,
        provider="google",
        account_email=tokens["account_email"],
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        expires_at=tokens["expires_at"],
        calendar_id=tokens["calendar_id"],
    )
    view = await asyncio.to_thread(vault.store, record)
    logger.info(f"✅ Google Calendar connected for user {current_user.id}")
    return view


@router.post("/{integration_id}/verify", response_model=CredentialView)
async def verify_integration(
    integration_id: int,
    current_user: User = Depends(get_current_user),
    vault: CredentialVault = Depends(get_vault),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_calendar_transport),
):
    # Ownership check before any secret is decrypted
    await asyncio.to_thread(vault.load, integration_id, user_id=current_user.id)
    return await verify_connection(vault, integration_id, transport=transport)


@router.delete("/{integration_id}")
def disconnect_integration(
    integration_id: int,
    current_user: User = Depends(get_current_user),
    vault: CredentialVault = Depends(get_vault),
):
    vault.disconnect(integration_id, current_user.id)
    return {"message": "Calendar disconnected successfully"}
