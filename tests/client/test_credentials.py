"""Tests for access token caching in the OS keyring."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from casesync.client.credentials import (
    KEYRING_SERVICE,
    CredentialsError,
    clear_access_token,
    load_access_token,
    save_access_token,
)


class TestSaveAccessToken:
    """Tests for save_access_token."""

    def test_stores_under_user_id(self) -> None:
        """Should store the token under the service and user id."""
        with patch("keyring.set_password") as mock_set:
            save_access_token("u1", "jwt-token")

        mock_set.assert_called_once_with(KEYRING_SERVICE, "u1", "jwt-token")

    def test_keyring_failure(self) -> None:
        """Should raise CredentialsError when the keyring is unavailable."""
        with patch("keyring.set_password", side_effect=KeyringError("no backend")):
            with pytest.raises(CredentialsError, match="Cannot store"):
                save_access_token("u1", "jwt-token")


class TestLoadAccessToken:
    """Tests for load_access_token."""

    def test_returns_token(self) -> None:
        """Should return the stored token."""
        with patch("keyring.get_password", return_value="jwt-token") as mock_get:
            assert load_access_token("u1") == "jwt-token"

        mock_get.assert_called_once_with(KEYRING_SERVICE, "u1")

    def test_missing_token(self) -> None:
        """Should return None when nothing is stored."""
        with patch("keyring.get_password", return_value=None):
            assert load_access_token("u1") is None

    def test_keyring_failure(self) -> None:
        """Should return None when the keyring is unavailable."""
        with patch("keyring.get_password", side_effect=KeyringError("locked")):
            assert load_access_token("u1") is None


class TestClearAccessToken:
    """Tests for clear_access_token."""

    def test_deletes_token(self) -> None:
        """Should delete the stored token."""
        with patch("keyring.delete_password") as mock_delete:
            clear_access_token("u1")

        mock_delete.assert_called_once_with(KEYRING_SERVICE, "u1")

    def test_missing_token_ignored(self) -> None:
        """Should ignore a token that does not exist."""
        with patch("keyring.delete_password", side_effect=PasswordDeleteError("not found")):
            clear_access_token("u1")
