"""Keyring-backed storage for application-level secrets.

The service's own secrets (provider API keys, webhook signing secrets, the
admin key) can live in the OS keychain instead of ``.env``.  Per-user
provider credentials are *not* stored here; those live in the database and
are managed by :class:`services.credential_store.CredentialStore`.

The ``keyring`` import is lazy so the app still starts on hosts without a
keychain backend.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "linksync"

APP_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "SNAPTRADE_CLIENT_ID",
        "SNAPTRADE_CONSUMER_KEY",
        "SNAPTRADE_WEBHOOK_SECRET",
        "ADMIN_API_KEY",
    }
)


def _load_keyring():
    """Return the ``keyring`` module, or ``None`` if it is not installed."""
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_secret(key: str) -> str | None:
    """Look up an application secret in the keychain.

    Returns ``None`` when the key is unknown, missing, or the keychain
    backend is unavailable.
    """
    if key not in APP_SECRET_KEYS:
        return None
    keyring = _load_keyring()
    if keyring is None:
        return None
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keychain lookup failed for %s", key, exc_info=True)
        return None


def set_secret(key: str, value: str) -> bool:
    """Store an application secret in the keychain.

    Returns ``True`` on success.  Unknown keys and blank values are refused.
    """
    if key not in APP_SECRET_KEYS:
        logger.warning("Refusing to store unknown secret key: %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store blank value for %s", key)
        return False

    keyring = _load_keyring()
    if keyring is None:
        logger.warning("keyring is not installed; cannot store %s", key)
        return False
    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Failed to store %s in keychain", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_secret(key: str) -> bool:
    """Remove an application secret from the keychain."""
    if key not in APP_SECRET_KEYS:
        return False
    keyring = _load_keyring()
    if keyring is None:
        return False
    try:
        keyring.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Failed to delete %s from keychain", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True
