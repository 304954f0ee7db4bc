"""
Configuration module for the helpdesk tenant pipeline.

Handles all configuration through environment variables with sane defaults.
Never stores credentials directly in code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


@dataclass(frozen=True)
class FreshdeskConfig:
    """Configuration for the Freshdesk API and snapshot extraction."""

    domain: str = field(
        default_factory=lambda: os.getenv("FRESHDESK_DOMAIN", "")
    )
    api_key: str = field(
        default_factory=lambda: os.getenv("FRESHDESK_API_KEY", "")
    )
    portal_url: str = field(
        default_factory=lambda: os.getenv(
            "FRESHDESK_PORTAL_URL",
            "https://sankhyaindaiatuba.freshdesk.com",
        ).rstrip("/")
    )

    # Request timeout in seconds
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30"))
    )

    # Pauses between calls, in seconds
    request_delay: float = field(
        default_factory=lambda: float(os.getenv("REQUEST_DELAY", "0.3"))
    )
    contact_delay: float = field(
        default_factory=lambda: float(os.getenv("CONTACT_DELAY", "0.15"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("MAX_RETRIES", "5"))
    )

    # Backfill window, newest first (yyyy-mm-dd)
    from_date: str = field(
        default_factory=lambda: os.getenv("FROM_DATE", "2025-11-13")
    )
    to_date_end: str = field(
        default_factory=lambda: os.getenv("TO_DATE_END", "2023-01-01")
    )
    max_months: int = field(
        default_factory=lambda: int(os.getenv("MAX_MONTHS", "36"))
    )

    # Incremental update
    update_days: int = field(
        default_factory=lambda: int(os.getenv("UPDATE_DAYS", "30"))
    )
    search_max_pages: int = field(
        default_factory=lambda: int(os.getenv("SEARCH_MAX_PAGES", "10"))
    )
    update_max_pages: int = field(
        default_factory=lambda: int(os.getenv("UPDATE_MAX_PAGES", "15"))
    )

    @property
    def base_url(self) -> str:
        """Root of the v2 REST API for the configured domain."""
        return f"https://{self.domain}/api/v2"


@dataclass(frozen=True)
class StorageConfig:
    """Locations of the JSON documents shared by the pipeline stages."""

    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", "./data"))
    )

    @property
    def raw_tickets_path(self) -> Path:
        return self.data_dir / "raw" / "tickets_full.json"

    @property
    def requesters_path(self) -> Path:
        return self.data_dir / "cache" / "requesters_cache.json"

    @property
    def tickets_path(self) -> Path:
        return self.data_dir / "processed" / "tickets_simplified.json"

    @property
    def companies_path(self) -> Path:
        return self.data_dir / "processed" / "companies.json"

    @property
    def groups_path(self) -> Path:
        return self.data_dir / "processed" / "company_groups.json"

    @property
    def tenants_dir(self) -> Path:
        return self.data_dir / "tenants"

    @property
    def analysis_dir(self) -> Path:
        return self.data_dir / "analysis"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "update_history.json"

    @property
    def lock_path(self) -> Path:
        return self.data_dir / "sync.lock"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration aggregating all config sections."""

    freshdesk: FreshdeskConfig = field(default_factory=FreshdeskConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Logging level
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )

    def validate(self) -> list[str]:
        """
        Validate the settings needed to talk to the vendor API.

        The local stages (normalize, unify, partition) only need storage
        paths, so callers run this check just before fetching.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if not self.freshdesk.domain:
            errors.append("FRESHDESK_DOMAIN is required")
        if not self.freshdesk.api_key:
            errors.append("FRESHDESK_API_KEY is required")
        if self.freshdesk.max_months < 1:
            errors.append("MAX_MONTHS must be at least 1")
        if self.freshdesk.to_date_end >= self.freshdesk.from_date:
            errors.append("TO_DATE_END must be earlier than FROM_DATE")

        return errors


def get_config() -> AppConfig:
    """
    Get application configuration.

    Returns:
        AppConfig instance with all settings loaded from environment.
    """
    return AppConfig()
