"""Calendar integration schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_email

CalendarProvider = Literal["google", "ical"]


class CredentialRecord(BaseModel):
    """Plaintext credential handed to the vault. Never persisted as-is."""

    model_config = ConfigDict(hide_input_in_errors=True)

    user_id: int
    provider: CalendarProvider
    account_email: str
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None
    caldav_url: Optional[str] = None


class CredentialView(BaseModel):
    """Integration as shown to its owner: metadata only"""

    id: int
    provider: CalendarProvider
    accountEmail: str
    isConnected: bool
    expiresAt: Optional[datetime] = None
    calendarId: Optional[str] = None
    calendarName: Optional[str] = None
    caldavUrl: Optional[str] = None
    lastSync: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class CredentialSecrets(CredentialView):
    """Decrypted credential for the per-call calendar client. Internal only."""

    accessToken: Optional[str] = Field(default=None, repr=False)
    refreshToken: Optional[str] = Field(default=None, repr=False)
    username: Optional[str] = Field(default=None, repr=False)
    password: Optional[str] = Field(default=None, repr=False)


class ICalConnectRequest(BaseModel):
    model_config = ConfigDict(hide_input_in_errors=True)

    accountEmail: str
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024, repr=False)
    caldavUrl: str = Field(max_length=1000)
    calendarName: Optional[str] = Field(default=None, max_length=255)

    @field_validator("accountEmail")
    @classmethod
    def validate_account_email(cls, v):
        if not v or not v.strip():
            raise ValueError("Account email is required")
        return validate_email(v)

    @field_validator("caldavUrl")
    @classmethod
    def validate_caldav_url(cls, v):
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("CalDAV URL must start with https:// or http://")
        return v


class GoogleCallbackRequest(BaseModel):
    code: str = Field(min_length=1, repr=False)
