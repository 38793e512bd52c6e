"""Unit tests for bluemoon.domain.calendar.vault.CredentialVault.

Coverage:
- store()         : encrypts before writing, upserts per account
- load()          : metadata by default, decrypted secrets on request
- refresh()       : single update, keeps the stored refresh token
- decrypt failures: surface as CredentialUnavailable
- list/disconnect : scoped to the owning user
"""

import os
from datetime import datetime, timedelta

import pytest

from bluemoon.crypto import CredentialCipher
from bluemoon.domain.calendar.schemas import CredentialRecord, CredentialSecrets, CredentialView
from bluemoon.domain.calendar.vault import CredentialVault, pack_basic_auth, unpack_basic_auth
from bluemoon.exceptions import CredentialUnavailable, CryptoError, NotFoundError
from bluemoon.models_calendar import CalendarIntegration

pytestmark = pytest.mark.unit


@pytest.fixture
def vault(db, cipher):
    return CredentialVault(db, cipher)


def _google(user, **overrides):
    data = {
        "user_id": user.id,
        "provider": "google",
        "account_email": "olivia@gmail.com",
        "access_token": "ya29.access-one",
        "refresh_token": "1//refresh-one",
        "expires_at": datetime.utcnow() + timedelta(hours=1),
        "calendar_id": "primary",
    }
    data.update(overrides)
    return CredentialRecord(**data)


def _raw(db, integration_id):
    db.expire_all()
    return db.query(CalendarIntegration).filter_by(id=integration_id).one()


class TestStore:
    def test_only_ciphertext_reaches_the_database(self, db, vault, owner):
        view = vault.store(_google(owner))
        row = _raw(db, view.id)

        assert row.access_token != "ya29.access-one"
        assert row.refresh_token != "1//refresh-one"
        assert "ya29" not in row.access_token
        assert row.access_token.count(":") == 2

    def test_view_has_no_secrets(self, vault, owner):
        view = vault.store(_google(owner))
        assert isinstance(view, CredentialView)
        assert "ya29" not in view.model_dump_json()
        assert "refresh" not in view.model_dump_json()

    def test_upsert_on_same_account(self, db, vault, owner):
        first = vault.store(_google(owner))
        second = vault.store(_google(owner, access_token="ya29.access-two"))

        assert first.id == second.id
        assert db.query(CalendarIntegration).count() == 1
        assert vault.load(first.id, include_secrets=True).accessToken == "ya29.access-two"

    def test_different_accounts_get_separate_rows(self, db, vault, owner):
        vault.store(_google(owner))
        vault.store(_google(owner, account_email="olivia.work@gmail.com"))
        assert db.query(CalendarIntegration).count() == 2

    def test_ical_pair_is_encrypted_together(self, db, vault, owner):
        view = vault.store(
            CredentialRecord(
                user_id=owner.id,
                provider="ical",
                account_email="olivia@icloud.com",
                access_token=pack_basic_auth("olivia@icloud.com", "app-specific-pass"),
                caldav_url="https://caldav.icloud.com/",
            )
        )
        row = _raw(db, view.id)
        assert "app-specific-pass" not in row.access_token
        assert row.refresh_token is None

        secrets = vault.load(view.id, include_secrets=True)
        assert secrets.username == "olivia@icloud.com"
        assert secrets.password == "app-specific-pass"
        assert secrets.accessToken is None
        assert secrets.caldavUrl == "https://caldav.icloud.com/"


class TestLoad:
    def test_default_load_does_not_decrypt(self, db, owner):
        class ExplodingCipher(CredentialCipher):
            def decrypt(self, envelope):
                raise AssertionError("decrypt should not be called")

        cipher = ExplodingCipher(os.urandom(32))
        vault = CredentialVault(db, cipher)
        view = vault.store(_google(owner))

        loaded = vault.load(view.id)
        assert not isinstance(loaded, CredentialSecrets)
        assert loaded.accountEmail == "olivia@gmail.com"

    def test_secrets_round_trip(self, vault, owner):
        view = vault.store(_google(owner))
        secrets = vault.load(view.id, include_secrets=True)
        assert secrets.accessToken == "ya29.access-one"
        assert secrets.refreshToken == "1//refresh-one"

    def test_secrets_repr_is_safe(self, vault, owner):
        secrets = vault.load(vault.store(_google(owner)).id, include_secrets=True)
        assert "ya29" not in repr(secrets)
        assert "refresh-one" not in repr(secrets)

    def test_missing_integration(self, vault):
        with pytest.raises(NotFoundError):
            vault.load(555)

    def test_other_users_integration_is_not_found(self, vault, owner, other_user):
        view = vault.store(_google(owner))
        with pytest.raises(NotFoundError):
            vault.load(view.id, user_id=other_user.id)


class TestDecryptFailures:
    def test_tampered_envelope_needs_reauth(self, db, vault, owner):
        view = vault.store(_google(owner))
        row = _raw(db, view.id)
        nonce, ciphertext, tag = row.access_token.split(":")
        row.access_token = ":".join((nonce, ciphertext, tag[::-1]))
        db.commit()

        with pytest.raises(CredentialUnavailable) as exc_info:
            vault.load(view.id, include_secrets=True)
        assert isinstance(exc_info.value.__cause__, CryptoError)

    def test_rotated_key_needs_reauth(self, db, vault, owner):
        view = vault.store(_google(owner))
        rotated = CredentialVault(db, CredentialCipher(os.urandom(32)))

        with pytest.raises(CredentialUnavailable):
            rotated.load(view.id, include_secrets=True)
        # Metadata stays readable so the UI can offer to reconnect
        assert rotated.load(view.id).accountEmail == "olivia@gmail.com"

    def test_malformed_caldav_pair_needs_reauth(self, vault, owner):
        view = vault.store(
            CredentialRecord(
                user_id=owner.id,
                provider="ical",
                account_email="olivia@icloud.com",
                access_token="not json",
                caldav_url="https://caldav.icloud.com/",
            )
        )
        with pytest.raises(CredentialUnavailable):
            vault.load(view.id, include_secrets=True)


class TestRefresh:
    def test_missing_refresh_token_keeps_stored_one(self, db, vault, owner):
        view = vault.store(_google(owner))
        stored_refresh = _raw(db, view.id).refresh_token
        new_expiry = datetime.utcnow() + timedelta(hours=2)

        vault.refresh(view.id, access_token="ya29.access-two", expires_at=new_expiry)

        row = _raw(db, view.id)
        assert row.refresh_token == stored_refresh
        secrets = vault.load(view.id, include_secrets=True)
        assert secrets.accessToken == "ya29.access-two"
        assert secrets.refreshToken == "1//refresh-one"

    def test_new_refresh_token_replaces_stored_one(self, vault, owner):
        view = vault.store(_google(owner))
        vault.refresh(view.id, access_token="ya29.access-two", refresh_token="1//refresh-two")
        assert vault.load(view.id, include_secrets=True).refreshToken == "1//refresh-two"

    def test_refresh_reconnects(self, db, vault, owner):
        view = vault.store(_google(owner))
        vault.mark_unavailable(view.id)
        assert vault.load(view.id).isConnected is False

        vault.refresh(view.id, access_token="ya29.access-two")
        assert vault.load(view.id).isConnected is True

    def test_refresh_unknown_integration(self, vault):
        with pytest.raises(NotFoundError):
            vault.refresh(404, access_token="x")


class TestListAndDisconnect:
    def test_list_is_scoped_to_user(self, vault, owner, other_user):
        vault.store(_google(owner))
        vault.store(_google(other_user, account_email="sam@gmail.com"))

        assert [v.accountEmail for v in vault.list_for_user(owner.id)] == ["olivia@gmail.com"]

    def test_mark_synced_records_time(self, vault, owner):
        view = vault.store(_google(owner))
        assert view.lastSync is None
        assert vault.mark_synced(view.id).lastSync is not None

    def test_disconnect_removes_row(self, db, vault, owner):
        view = vault.store(_google(owner))
        vault.disconnect(view.id, owner.id)
        assert db.query(CalendarIntegration).count() == 0

    def test_disconnect_other_users_integration(self, db, vault, owner, other_user):
        view = vault.store(_google(owner))
        with pytest.raises(NotFoundError):
            vault.disconnect(view.id, other_user.id)
        assert db.query(CalendarIntegration).count() == 1


def test_basic_auth_packing():
    assert unpack_basic_auth(pack_basic_auth("user:with:colons", "p@ss:word")) == (
        "user:with:colons",
        "p@ss:word",
    )
    assert unpack_basic_auth(None) == (None, None)
    with pytest.raises(CryptoError):
        unpack_basic_auth('{"username": "only"}')
