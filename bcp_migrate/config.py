from __future__ import annotations

import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from bcp_migrate.exceptions import ConfigurationError
from bcp_migrate.models.table_metadata import ConnectionConfig, MigrationConfig

load_dotenv()


class ConfigError(ConfigurationError):
    """Configuration validation error."""

    pass


class DBConfig:
    """Source/destination connection and run configuration with validation."""

    def __init__(self):
        # Source SQL Server (read-only)
        self.source_host = self._require_env("SOURCE_HOST")
        self.source_port = self._validate_port("SOURCE_PORT", 1433)
        self.source_db = self._require_env("SOURCE_DB")
        self.source_user = os.getenv("SOURCE_USER") or None
        self.source_password = os.getenv("SOURCE_PASSWORD", "")
        if self.source_user and not self.source_password:
            raise ConfigError("SOURCE_PASSWORD is required when SOURCE_USER is set")

        # Destination SQL Server
        self.dest_host = self._require_env("DEST_HOST")
        self.dest_port = self._validate_port("DEST_PORT", 1433)
        self.dest_db = self._require_env("DEST_DB")
        self.dest_user = os.getenv("DEST_USER") or None
        self.dest_password = os.getenv("DEST_PASSWORD", "")
        if self.dest_user and not self.dest_password:
            raise ConfigError("DEST_PASSWORD is required when DEST_USER is set")

        self.odbc_driver = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")
        self.trust_server_certificate = self._validate_bool(
            "TRUST_SERVER_CERTIFICATE", True
        )

        # bcp
        self.bcp_path = os.getenv("BCP_PATH", "bcp")
        self.bcp_batch_size = self._validate_positive_int("BCP_BATCH_SIZE", 10000)
        self.unit_timeout_seconds = self._validate_non_negative_int(
            "UNIT_TIMEOUT_SECONDS", 0
        )

        # Scheduling and chunking
        self.max_concurrency = self._validate_positive_int("MAX_CONCURRENCY", 4)
        self.chunking_enabled = self._validate_bool("CHUNKING_ENABLED", True)
        self.chunking_threshold_mb = self._validate_positive_int(
            "CHUNKING_THRESHOLD_MB", 500
        )
        self.max_chunk_size_mb = self._validate_positive_int("MAX_CHUNK_SIZE_MB", 200)
        self.max_chunks_per_table = self._validate_positive_int(
            "MAX_CHUNKS_PER_TABLE", 8
        )
        self.truncate_destination = self._validate_bool("TRUNCATE_DESTINATION", True)

        # Files
        self.temp_dir = os.getenv("TEMP_DIR") or None
        self.backup_dir = os.getenv("BACKUP_DIR", "backups")
        self.log_file = os.getenv("LOG_FILE") or None

        # Table selection
        self.include_schemas = self._parse_list("INCLUDE_SCHEMAS")
        self.include_tables = self._parse_list("INCLUDE_TABLES")
        self.exclude_tables = self._parse_list("EXCLUDE_TABLES")

    @property
    def source(self) -> ConnectionConfig:
        return ConnectionConfig(
            host=self.source_host,
            port=self.source_port,
            database=self.source_db,
            user=self.source_user,
            password=self.source_password,
            driver=self.odbc_driver,
            trust_server_certificate=self.trust_server_certificate,
        )

    @property
    def destination(self) -> ConnectionConfig:
        return ConnectionConfig(
            host=self.dest_host,
            port=self.dest_port,
            database=self.dest_db,
            user=self.dest_user,
            password=self.dest_password,
            driver=self.odbc_driver,
            trust_server_certificate=self.trust_server_certificate,
        )

    def migration_config(self, **overrides) -> MigrationConfig:
        """Build the run settings, letting CLI flags override env values."""
        values = dict(
            max_concurrency=self.max_concurrency,
            chunking_enabled=self.chunking_enabled,
            chunking_threshold_mb=self.chunking_threshold_mb,
            max_chunk_size_mb=self.max_chunk_size_mb,
            max_chunks_per_table=self.max_chunks_per_table,
            truncate_destination=self.truncate_destination,
            include_schemas=self.include_schemas,
            include_tables=self.include_tables,
            exclude_tables=self.exclude_tables,
            backup_dir=self.backup_dir,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MigrationConfig(**values)

    def _require_env(self, key: str) -> str:
        """Get required environment variable or raise ConfigError."""
        value = os.getenv(key)
        if not value:
            raise ConfigError(f"Missing required environment variable: {key}")
        return value

    def _parse_int(self, value: str, min_val: int, max_val: int, error_msg: str) -> int:
        """Parse and validate an integer value within range."""
        try:
            num = int(value)
        except ValueError:
            raise ConfigError(f"{value} is not a valid integer")
        if not (min_val <= num <= max_val):
            raise ConfigError(error_msg)
        return num

    def _parse_bool(self, value: str) -> bool:
        """Parse a boolean value from string."""
        if value.lower() in ("true", "1", "yes", "y"):
            return True
        elif value.lower() in ("false", "0", "no", "n"):
            return False
        else:
            raise ConfigError(f"{value} is not a valid boolean value")

    def _parse_list(self, key: str) -> List[str]:
        value = os.getenv(key, "")
        return [item.strip() for item in value.split(",") if item.strip()]

    def _validate_port(self, key: str, default: int) -> int:
        """Validate port number is in valid range (1-65535)."""
        value = os.getenv(key, str(default))
        return self._parse_int(
            value,
            1,
            65535,
            f"{key}={value} is not a valid port number (must be 1-65535)",
        )

    def _validate_positive_int(self, key: str, default: int) -> int:
        """Validate that a value is a positive integer."""
        value = os.getenv(key, str(default))
        return self._parse_int(
            value, 1, sys.maxsize, f"{key}={value} must be a positive integer"
        )

    def _validate_non_negative_int(self, key: str, default: int) -> int:
        value = os.getenv(key, str(default))
        return self._parse_int(
            value, 0, sys.maxsize, f"{key}={value} must be zero or a positive integer"
        )

    def _validate_bool(self, key: str, default: bool) -> bool:
        """Validate that a value is a boolean."""
        value = os.getenv(key, str(default))
        return self._parse_bool(value)


def optional_timeout(seconds: int) -> Optional[float]:
    """Map the zero-means-disabled timeout setting to ``None``."""
    return float(seconds) if seconds > 0 else None
