import json
import logging

from bcp_migrate.utils.logger import SafeLogger, StructuredLogger


def test_sanitize_redacts_nested_secrets():
    data = {"user": "sa", "password": "hunter2", "conn": {"PWD": "x", "host": "db"}}

    sanitized = SafeLogger.sanitize(data)

    assert sanitized["user"] == "sa"
    assert sanitized["password"] == "***REDACTED***"
    assert sanitized["conn"] == {"PWD": "***REDACTED***", "host": "db"}


def test_sanitize_command_masks_password_flag():
    command = ["bcp", "[dbo].[T]", "in", "t.dat", "-U", "sa", "-P", "hunter2", "-u"]

    assert SafeLogger.sanitize_command(command) == [
        "bcp", "[dbo].[T]", "in", "t.dat", "-U", "sa", "-P", "***REDACTED***", "-u",
    ]


def test_structured_fields_are_appended(caplog):
    logger = StructuredLogger("bcp_migrate.test_fields")
    logger.logger.propagate = True

    with caplog.at_level(logging.INFO, logger="bcp_migrate.test_fields"):
        logger.info("Backed up foreign keys", count=3, password="secret")

    assert 'Backed up foreign keys {"count": 3, "password": "***REDACTED***"}' in caplog.text


def test_migration_event_is_json(caplog):
    logger = StructuredLogger("bcp_migrate.test_events")
    logger.logger.propagate = True

    with caplog.at_level(logging.INFO, logger="bcp_migrate.test_events"):
        logger.log_migration_event("unit_complete", "dbo.T#1", rows_migrated=10, duration=1.234)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload == {
        "event": "unit_complete",
        "unit": "dbo.T#1",
        "rows_migrated": 10,
        "duration_seconds": 1.23,
    }


def test_log_file(tmp_path):
    log_file = tmp_path / "migration.log"
    logger = StructuredLogger("bcp_migrate.test_file", log_file=str(log_file))

    logger.warning("Cleanup failed")
    for handler in logger.logger.handlers:
        handler.flush()

    assert "[WARNING] bcp_migrate.test_file: Cleanup failed" in log_file.read_text()
