"""Keychain storage for the Plaid and Anthropic secrets.

Settings read these keys from the system keychain before falling back to
the environment, so a deployment can keep secrets out of ``.env``.
Keychain failures are logged and reported as a missing value or a
``False`` result; they never abort settings loading or a sync.
"""

import logging

import keyring

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledgersync"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "PLAID_CLIENT_ID",
        "PLAID_SECRET",
        "ANTHROPIC_API_KEY",
    }
)


def _is_credential_key(key: str, action: str) -> bool:
    if key in CREDENTIAL_KEYS:
        return True
    logger.warning("Refusing to %s %s: not a credential key", action, key)
    return False


def get_credential(key: str) -> str | None:
    """Look up ``key`` in the keychain; ``None`` if absent or unavailable."""
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain read failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store ``value`` under ``key``.

    Returns:
        ``True`` when stored. Unknown keys, blank values and keychain
        errors return ``False``.
    """
    if not _is_credential_key(key, "store"):
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store blank value for %s", key)
        return False

    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain write failed for %s", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    """Remove ``key`` from the keychain; ``False`` if it was not there."""
    if not _is_credential_key(key, "delete"):
        return False

    try:
        keyring.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain delete failed for %s", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True


def stored_keys() -> list[str]:
    """Credential keys that currently have a keychain entry, sorted."""
    return [key for key in sorted(CREDENTIAL_KEYS) if get_credential(key) is not None]
