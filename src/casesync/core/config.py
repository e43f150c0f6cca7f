"""Shared configuration classes for casesync.

This module defines the remote endpoint configuration and the tunables
of the synchronization engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote data service.

    Attributes:
        url: Base URL of the service (e.g., "https://project.example.co").
        api_key: Public API key sent with every request.
        access_token: Session token of the signed-in user (optional).
        timeout: Ceiling for a single remote call in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        storage_bucket: Object storage bucket holding document binaries.
    """

    url: str
    api_key: str
    access_token: str | None = None
    timeout: float = 60.0
    verify_ssl: bool = True
    storage_bucket: str = "documents"

    def __post_init__(self) -> None:
        """Normalize service URL."""
        self.url = self.url.rstrip("/")

    @property
    def rest_url(self) -> str:
        """Get the relational REST endpoint."""
        return f"{self.url}/rest/v1"

    @property
    def storage_url(self) -> str:
        """Get the object storage endpoint for the document bucket."""
        return f"{self.url}/storage/v1/object/{self.storage_bucket}"

    @property
    def auth_url(self) -> str:
        """Get the authentication endpoint."""
        return f"{self.url}/auth/v1"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if the service uses HTTPS.
        """
        return self.url.startswith("https://")


@dataclass
class SyncSettings:
    """Tunables for a synchronization session.

    Attributes:
        skew_buffer: Clock skew absorbed when comparing an edit to a tombstone.
        tombstone_window: How far back remote deletions are fetched.
        document_retention: Age after which document binaries are purged remotely.
        max_retries: Retry ceiling for transient remote failures.
        initial_backoff: First backoff delay in seconds.
        max_backoff: Backoff delay ceiling in seconds.
        backoff_multiplier: Multiplier applied after each failed attempt.
        call_timeout: Timeout for a single remote call in seconds.
        debounce: Delay between a local mutation and the automatic sync.
        auto_sync: Whether mutations schedule a sync automatically.
        health_check_interval: Seconds between connectivity probes.
    """

    skew_buffer: timedelta = timedelta(seconds=2)
    tombstone_window: timedelta = timedelta(days=30)
    document_retention: timedelta = timedelta(hours=72)
    max_retries: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_multiplier: float = 2.0
    call_timeout: float = 60.0
    debounce: float = 5.0
    auto_sync: bool = True
    health_check_interval: float = 5.0
