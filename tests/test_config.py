"""Tests for configuration module."""

import os
from pathlib import Path
from unittest.mock import patch

from helpdesk_tenants.config import (
    AppConfig,
    FreshdeskConfig,
    StorageConfig,
    get_config,
)


class TestFreshdeskConfig:
    """Tests for FreshdeskConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            config = FreshdeskConfig()
            assert config.request_timeout == 30
            assert config.max_months == 36
            assert config.update_days == 30
            assert config.search_max_pages == 10
            assert config.update_max_pages == 15

    def test_env_override(self):
        """Test environment variable override."""
        with patch.dict(os.environ, {"FRESHDESK_API_KEY": "test-key", "MAX_RETRIES": "2"}):
            config = FreshdeskConfig()
            assert config.api_key == "test-key"
            assert config.max_retries == 2

    def test_portal_url_trailing_slash_stripped(self):
        """Test portal URL is stored without trailing slashes."""
        with patch.dict(os.environ, {"FRESHDESK_PORTAL_URL": "https://acme.freshdesk.com//"}):
            config = FreshdeskConfig()
            assert config.portal_url == "https://acme.freshdesk.com"

    def test_base_url(self):
        """Test API base URL is built from the domain."""
        config = FreshdeskConfig(domain="acme.freshdesk.com")
        assert config.base_url == "https://acme.freshdesk.com/api/v2"


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_paths_under_data_dir(self):
        """Test every document lives under the data directory."""
        config = StorageConfig(data_dir=Path("/tmp/x"))
        assert config.raw_tickets_path == Path("/tmp/x/raw/tickets_full.json")
        assert config.requesters_path == Path("/tmp/x/cache/requesters_cache.json")
        assert config.tickets_path.name == "tickets_simplified.json"
        assert config.companies_path.name == "companies.json"
        assert config.groups_path.name == "company_groups.json"
        assert config.tenants_dir == Path("/tmp/x/tenants")
        assert config.lock_path == Path("/tmp/x/sync.lock")

    def test_data_dir_from_env(self):
        """Test DATA_DIR environment variable."""
        with patch.dict(os.environ, {"DATA_DIR": "/srv/data"}):
            assert StorageConfig().data_dir == Path("/srv/data")


class TestAppConfig:
    """Tests for AppConfig."""

    def test_validate_missing_credentials(self):
        """Test validation catches missing domain and API key."""
        config = AppConfig(freshdesk=FreshdeskConfig(domain="", api_key=""))
        errors = config.validate()
        assert any("FRESHDESK_DOMAIN" in e for e in errors)
        assert any("FRESHDESK_API_KEY" in e for e in errors)

    def test_validate_window_order(self):
        """Test validation catches a backfill window walking forwards."""
        config = AppConfig(
            freshdesk=FreshdeskConfig(
                domain="acme.freshdesk.com",
                api_key="k",
                from_date="2023-01-01",
                to_date_end="2024-01-01",
            )
        )
        errors = config.validate()
        assert any("TO_DATE_END" in e for e in errors)

    def test_validate_all_valid(self):
        """Test validation passes with all required fields."""
        config = AppConfig(
            freshdesk=FreshdeskConfig(
                domain="acme.freshdesk.com",
                api_key="k",
                from_date="2025-11-13",
                to_date_end="2023-01-01",
                max_months=36,
            )
        )
        assert config.validate() == []


class TestGetConfig:
    """Tests for get_config function."""

    def test_returns_app_config(self):
        """Test get_config returns AppConfig instance."""
        config = get_config()
        assert isinstance(config, AppConfig)
