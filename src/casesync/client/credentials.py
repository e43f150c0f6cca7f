"""Access token caching in the OS keyring.

The access token of the signed-in user is never written to the config
file. It is kept in the OS keyring under the user's id and read back by
every command that talks to the remote store.
"""

from __future__ import annotations

import contextlib
import logging

import keyring
from keyring.errors import KeyringError

KEYRING_SERVICE = "casesync"

logger = logging.getLogger(__name__)


class CredentialsError(Exception):
    """Exception raised when the keyring cannot store a token."""


def save_access_token(user_id: str, token: str) -> None:
    """Cache the access token of a user.

    Args:
        user_id: Id of the signed-in user.
        token: Access token.

    Raises:
        CredentialsError: If the keyring is unavailable.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, user_id, token)
    except KeyringError as e:
        raise CredentialsError(f"Cannot store the access token: {e}") from e


def load_access_token(user_id: str) -> str | None:
    """Get the cached access token of a user, if any."""
    try:
        return keyring.get_password(KEYRING_SERVICE, user_id)
    except KeyringError as e:
        logger.warning(f"Keyring unavailable: {e}")
        return None


def clear_access_token(user_id: str) -> None:
    """Forget the cached access token of a user (silently ignore if absent)."""
    with contextlib.suppress(KeyringError):
        keyring.delete_password(KEYRING_SERVICE, user_id)
