"""Shared configuration classes for pharmasync.

This module defines the connection settings for the remote store and
the tunables of the sync engine.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_RETRIES = 3
DEFAULT_SYNC_INTERVAL = 5 * 60.0  # seconds
DEFAULT_PROBE_TIMEOUT = 5.0  # seconds
DEFAULT_PROBE_INTERVAL = 30.0  # seconds between background connectivity checks
DEFAULT_BATCH_SIZE = 50


@dataclass
class RemoteConfig:
    """Configuration for connecting to the hosted backend.

    Used by both the REST client (RestClient) and the connectivity
    monitor's health probe so they agree on the endpoint.

    Attributes:
        remote_url: Base URL of the backend (e.g., "https://xyz.supabase.co").
        api_key: Public API key sent as both apikey and bearer token.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    remote_url: str
    api_key: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize remote URL."""
        self.remote_url = self.remote_url.rstrip("/")

    @property
    def rest_url(self) -> str:
        """Base URL of the REST interface."""
        return f"{self.remote_url}/rest/v1"

    @property
    def health_url(self) -> str:
        """URL probed to decide whether the backend is reachable.

        The REST root answers 401 without credentials, which still
        proves reachability.
        """
        return f"{self.rest_url}/"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.remote_url.startswith("https://")


@dataclass
class SyncSettings:
    """Tunables for the sync engine, backup pipeline and scheduler.

    Attributes:
        max_retries: Failed attempts before a queue item is abandoned.
        sync_interval: Seconds between periodic sync runs while online.
        probe_timeout: Timeout for each connectivity probe.
        batch_size: Records per request during a full backup.
        probe_url: Lightweight resource probed first by check_connectivity.
        probe_interval: Seconds between background connectivity checks
            while the service is initialized.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE
    probe_url: str | None = None
    probe_interval: float = DEFAULT_PROBE_INTERVAL

    def __post_init__(self) -> None:
        if self.probe_interval <= 0:
            raise ValueError("probe_interval must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
