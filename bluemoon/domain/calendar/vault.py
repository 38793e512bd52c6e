"""
Credential vault - encrypted storage for calendar credentials

Secrets are encrypted before every write and decrypted on every read that asks
for them. Plaintext never reaches the database, the logs or the owner-facing
views.
"""

import json
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...crypto import CredentialCipher, get_cipher
from ...exceptions import CredentialUnavailable, CryptoError, NotFoundError
from ...models_calendar import CalendarIntegration
from .schemas import CredentialRecord, CredentialSecrets, CredentialView

logger = logging.getLogger(__name__)


def pack_basic_auth(username: str, password: str) -> str:
    """CalDAV credentials travel as one secret so they are encrypted together"""
    return json.dumps({"username": username, "password": password}, separators=(",", ":"))


def unpack_basic_auth(packed: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    if not packed:
        return None, None
    try:
        data = json.loads(packed)
        return data["username"], data["password"]
    except (ValueError, KeyError, TypeError) as e:
        raise CryptoError("Stored CalDAV credential has an unexpected shape") from e


def _to_view(integration: CalendarIntegration) -> CredentialView:
    return CredentialView(
        id=integration.id,
        provider=integration.provider,
        accountEmail=integration.account_email,
        isConnected=integration.is_connected,
        expiresAt=integration.expires_at,
        calendarId=integration.calendar_id,
        calendarName=integration.calendar_name,
        caldavUrl=integration.caldav_url,
        lastSync=integration.last_sync,
        createdAt=integration.created_at,
    )


class CredentialVault:
    """Encrypting repository for calendar_integrations"""

    def __init__(self, db: Session, cipher: Optional[CredentialCipher] = None):
        self.db = db
        self.cipher = cipher or get_cipher()

    def _decrypt(self, integration: CalendarIntegration, envelope: Optional[str]) -> Optional[str]:
        try:
            return self.cipher.decrypt(envelope)
        except CryptoError as e:
            # Key rotated or row tampered with: the user has to reconnect
            logger.warning(
                f"⚠️ Stored {integration.provider} credential {integration.id} could not be decrypted"
            )
            raise CredentialUnavailable() from e

    def _get(self, integration_id: int, user_id: Optional[int] = None) -> CalendarIntegration:
        query = self.db.query(CalendarIntegration).filter(CalendarIntegration.id == integration_id)
        if user_id is not None:
            query = query.filter(CalendarIntegration.user_id == user_id)
        integration = query.first()
        if not integration:
            raise NotFoundError("Calendar integration not found")
        return integration

    def store(self, record: CredentialRecord) -> CredentialView:
        """Encrypt and upsert on (user_id, provider, account_email)"""
        values = {
            "is_connected": True,
            "access_token": self.cipher.encrypt(record.access_token),
            "refresh_token": self.cipher.encrypt(record.refresh_token),
            "expires_at": record.expires_at,
            "calendar_id": record.calendar_id,
            "calendar_name": record.calendar_name,
            "caldav_url": record.caldav_url,
        }
        key = {
            "user_id": record.user_id,
            "provider": record.provider,
            "account_email": record.account_email,
        }

        integration = self._find(**key)
        if integration is None:
            integration = CalendarIntegration(**key, **values)
            self.db.add(integration)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost an insert race for the same account; update the winner instead
                self.db.rollback()
                integration = self._find(**key)
                if integration is None:
                    raise
                self._apply(integration, values)
        else:
            self._apply(integration, values)

        self.db.refresh(integration)
        logger.info(f"🔐 Stored {record.provider} credential {integration.id} for user {record.user_id}")
        return _to_view(integration)

    def _find(self, *, user_id: int, provider: str, account_email: str) -> Optional[CalendarIntegration]:
        return (
            self.db.query(CalendarIntegration)
            .filter(
                CalendarIntegration.user_id == user_id,
                CalendarIntegration.provider == provider,
                CalendarIntegration.account_email == account_email,
            )
            .first()
        )

    def _apply(self, integration: CalendarIntegration, values: dict) -> None:
        for column, value in values.items():
            setattr(integration, column, value)
        integration.updated_at = datetime.utcnow()
        self.db.commit()

    def load(
        self,
        integration_id: int,
        include_secrets: bool = False,
        user_id: Optional[int] = None,
    ) -> Union[CredentialView, CredentialSecrets]:
        """
        Fetch one integration.

        Without ``include_secrets`` nothing is decrypted. With it, any envelope
        that fails to decrypt raises CredentialUnavailable.
        """
        integration = self._get(integration_id, user_id)
        view = _to_view(integration)
        if not include_secrets:
            return view

        access_token = self._decrypt(integration, integration.access_token)
        refresh_token = self._decrypt(integration, integration.refresh_token)

        username = password = None
        if integration.provider == "ical":
            try:
                username, password = unpack_basic_auth(access_token)
            except CryptoError as e:
                raise CredentialUnavailable() from e
            access_token = None

        return CredentialSecrets(
            **view.model_dump(),
            accessToken=access_token,
            refreshToken=refresh_token,
            username=username,
            password=password,
        )

    def refresh(
        self,
        integration_id: int,
        access_token: str,
        expires_at: Optional[datetime] = None,
        refresh_token: Optional[str] = None,
    ) -> CredentialView:
        """
        Overwrite the tokens of an integration with one UPDATE.

        Providers usually omit the refresh token on refresh, so a missing one
        keeps the stored envelope.
        """
        values = {
            CalendarIntegration.access_token: self.cipher.encrypt(access_token),
            CalendarIntegration.expires_at: expires_at,
            CalendarIntegration.is_connected: True,
            CalendarIntegration.updated_at: datetime.utcnow(),
        }
        if refresh_token:
            values[CalendarIntegration.refresh_token] = self.cipher.encrypt(refresh_token)

        updated = (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.id == integration_id)
            .update(values, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            raise NotFoundError("Calendar integration not found")
        self.db.commit()

        logger.info(f"🔄 Refreshed credential {integration_id}")
        return self.load(integration_id)

    def list_for_user(self, user_id: int) -> list[CredentialView]:
        integrations = (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.user_id == user_id)
            .order_by(CalendarIntegration.created_at.desc(), CalendarIntegration.id.desc())
            .all()
        )
        return [_to_view(i) for i in integrations]

    def mark_synced(self, integration_id: int) -> CredentialView:
        integration = self._get(integration_id)
        integration.last_sync = datetime.utcnow()
        integration.is_connected = True
        self.db.commit()
        self.db.refresh(integration)
        return _to_view(integration)

    def mark_unavailable(self, integration_id: int) -> None:
        """Flag a credential the provider no longer accepts; secrets stay until disconnect"""
        integration = self._get(integration_id)
        integration.is_connected = False
        self.db.commit()
        logger.warning(f"⚠️ Credential {integration_id} marked as needing re-authentication")

    def disconnect(self, integration_id: int, user_id: int) -> None:
        """Delete the integration and with it every stored envelope"""
        integration = self._get(integration_id, user_id)
        provider = integration.provider
        self.db.delete(integration)
        self.db.commit()
        logger.info(f"🗑️ Disconnected {provider} credential {integration_id}")
