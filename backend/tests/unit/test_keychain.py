"""Tests for keyring-backed application secrets."""

from unittest.mock import MagicMock, patch

from services import keychain


def _fake_keyring(stored=None):
    fake = MagicMock()
    store = dict(stored or {})
    fake.get_password.side_effect = lambda service, key: store.get(key)
    fake.set_password.side_effect = lambda service, key, value: store.__setitem__(key, value)
    return fake, store


class TestGetSecret:

    def test_returns_stored_value(self):
        fake, _ = _fake_keyring({"ADMIN_API_KEY": "k"})
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.get_secret("ADMIN_API_KEY") == "k"
        fake.get_password.assert_called_once_with("linksync", "ADMIN_API_KEY")

    def test_unknown_key_never_hits_keyring(self):
        fake, _ = _fake_keyring()
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.get_secret("DATABASE_URL") is None
        fake.get_password.assert_not_called()

    def test_missing_backend(self):
        with patch.object(keychain, "_load_keyring", return_value=None):
            assert keychain.get_secret("ADMIN_API_KEY") is None

    def test_backend_error_returns_none(self):
        fake = MagicMock()
        fake.get_password.side_effect = RuntimeError("locked")
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.get_secret("ADMIN_API_KEY") is None


class TestSetSecret:

    def test_stores_value(self):
        fake, store = _fake_keyring()
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.set_secret("SNAPTRADE_WEBHOOK_SECRET", "whsec") is True
        assert store == {"SNAPTRADE_WEBHOOK_SECRET": "whsec"}

    def test_refuses_unknown_and_blank(self):
        fake, store = _fake_keyring()
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.set_secret("OTHER", "x") is False
            assert keychain.set_secret("ADMIN_API_KEY", "  ") is False
        assert store == {}

    def test_backend_failure(self):
        fake = MagicMock()
        fake.set_password.side_effect = RuntimeError("denied")
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.set_secret("ADMIN_API_KEY", "k") is False


class TestDeleteSecret:

    def test_delete(self):
        fake = MagicMock()
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.delete_secret("ADMIN_API_KEY") is True
        fake.delete_password.assert_called_once_with("linksync", "ADMIN_API_KEY")

    def test_delete_missing(self):
        fake = MagicMock()
        fake.delete_password.side_effect = RuntimeError("not found")
        with patch.object(keychain, "_load_keyring", return_value=fake):
            assert keychain.delete_secret("ADMIN_API_KEY") is False
