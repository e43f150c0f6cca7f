"""Tests for core configuration classes."""

from __future__ import annotations

from datetime import timedelta

from casesync.core.config import RemoteConfig, SyncSettings


class TestRemoteConfig:
    """Tests for RemoteConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = RemoteConfig(url="https://project.example.co", api_key="anon-key")
        assert config.url == "https://project.example.co"
        assert config.api_key == "anon-key"
        assert config.access_token is None
        assert config.timeout == 60.0
        assert config.verify_ssl is True
        assert config.storage_bucket == "documents"

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from the service URL."""
        config = RemoteConfig(url="https://project.example.co/", api_key="k")
        assert config.url == "https://project.example.co"

    def test_rest_url(self) -> None:
        """Should build the relational REST endpoint."""
        config = RemoteConfig(url="https://project.example.co", api_key="k")
        assert config.rest_url == "https://project.example.co/rest/v1"

    def test_storage_url_uses_bucket(self) -> None:
        """Should build the object storage endpoint of the bucket."""
        config = RemoteConfig(url="https://project.example.co", api_key="k", storage_bucket="files")
        assert config.storage_url == "https://project.example.co/storage/v1/object/files"

    def test_auth_url(self) -> None:
        """Should build the authentication endpoint."""
        config = RemoteConfig(url="https://project.example.co", api_key="k")
        assert config.auth_url == "https://project.example.co/auth/v1"

    def test_is_secure(self) -> None:
        """Should detect HTTPS."""
        assert RemoteConfig(url="https://example.co", api_key="k").is_secure is True
        assert RemoteConfig(url="http://localhost:54321", api_key="k").is_secure is False


class TestSyncSettings:
    """Tests for SyncSettings defaults."""

    def test_defaults(self) -> None:
        """Should use the documented defaults."""
        settings = SyncSettings()
        assert settings.skew_buffer == timedelta(seconds=2)
        assert settings.tombstone_window == timedelta(days=30)
        assert settings.document_retention == timedelta(hours=72)
        assert settings.max_retries == 5
        assert settings.auto_sync is True

    def test_override(self) -> None:
        """Should accept custom values."""
        settings = SyncSettings(debounce=0.5, auto_sync=False)
        assert settings.debounce == 0.5
        assert settings.auto_sync is False
