"""Unit tests for config module."""

from __future__ import annotations

import os

import pytest

from bcp_migrate.config import ConfigError, DBConfig, optional_timeout
from bcp_migrate.exceptions import ConfigurationError


class TestDBConfig:
    """Test cases for DBConfig class."""

    def test_init_with_valid_env(self, mock_env_vars):
        """Test DBConfig initialization with valid environment variables."""
        config = DBConfig()
        assert config.source_host == "src.example.local"
        assert config.source_port == 1433
        assert config.source_db == "AdventureWorks"
        assert config.source_user == "migrator"
        assert config.dest_host == "dst.example.local"
        assert config.dest_port == 1533
        assert config.dest_db == "AdventureWorks_Copy"

    def test_defaults(self, mock_env_vars):
        """Test run settings fall back to their defaults."""
        config = DBConfig()
        assert config.max_concurrency == 4
        assert config.chunking_enabled is True
        assert config.chunking_threshold_mb == 500
        assert config.max_chunk_size_mb == 200
        assert config.max_chunks_per_table == 8
        assert config.truncate_destination is True
        assert config.bcp_path == "bcp"
        assert config.unit_timeout_seconds == 0
        assert config.backup_dir == "backups"
        assert config.include_tables == []

    def test_init_with_missing_source_host(self, mock_empty_env):
        """Test DBConfig initialization with missing SOURCE_HOST."""
        with pytest.raises(ConfigError, match="Missing required environment variable: SOURCE_HOST"):
            DBConfig()

    def test_missing_dest_db(self, mock_env_vars):
        del os.environ["DEST_DB"]
        with pytest.raises(ConfigError, match="Missing required environment variable: DEST_DB"):
            DBConfig()

    def test_user_without_password(self, mock_env_vars):
        del os.environ["SOURCE_PASSWORD"]
        with pytest.raises(ConfigError, match="SOURCE_PASSWORD is required"):
            DBConfig()

    def test_trusted_connection_without_user(self, mock_env_vars):
        del os.environ["SOURCE_USER"]
        del os.environ["SOURCE_PASSWORD"]
        config = DBConfig()
        assert config.source_user is None
        assert "-T" in config.source.bcp_args()

    def test_config_error_is_configuration_error(self):
        assert issubclass(ConfigError, ConfigurationError)

    def test_validate_port_invalid_too_high(self, mock_env_vars):
        """Test port validation with port number too high."""
        os.environ["SOURCE_PORT"] = "70000"
        with pytest.raises(ConfigError, match="is not a valid port number"):
            DBConfig()

    def test_validate_port_invalid_non_integer(self, mock_env_vars):
        """Test port validation with non-integer value."""
        os.environ["DEST_PORT"] = "not_a_number"
        with pytest.raises(ConfigError, match="is not a valid integer"):
            DBConfig()

    def test_max_concurrency_must_be_positive(self, mock_env_vars):
        os.environ["MAX_CONCURRENCY"] = "0"
        with pytest.raises(ConfigError, match="must be a positive integer"):
            DBConfig()

    def test_invalid_bool(self, mock_env_vars):
        os.environ["CHUNKING_ENABLED"] = "maybe"
        with pytest.raises(ConfigError, match="is not a valid boolean value"):
            DBConfig()

    def test_table_lists(self, mock_env_vars):
        os.environ["INCLUDE_TABLES"] = "Sales.Customer, Person.Person ,"
        os.environ["EXCLUDE_TABLES"] = "dbo.ErrorLog"
        config = DBConfig()
        assert config.include_tables == ["Sales.Customer", "Person.Person"]
        assert config.exclude_tables == ["dbo.ErrorLog"]

    def test_connection_descriptors(self, mock_env_vars):
        config = DBConfig()
        assert config.source.server == "src.example.local"
        assert config.destination.server == "dst.example.local,1533"
        assert config.destination.database == "AdventureWorks_Copy"

    def test_migration_config_overrides(self, mock_env_vars):
        os.environ["MAX_CONCURRENCY"] = "6"
        config = DBConfig()

        run = config.migration_config(max_concurrency=None, truncate_destination=False)

        assert run.max_concurrency == 6
        assert run.truncate_destination is False
        assert run.chunking_threshold_mb == 500


def test_optional_timeout():
    assert optional_timeout(0) is None
    assert optional_timeout(90) == 90.0
