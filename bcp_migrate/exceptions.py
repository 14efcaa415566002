"""Custom exceptions for migration tool."""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class ConfigurationError(MigrationError):
    """Invalid run configuration, raised before anything destructive happens."""

    pass


class DatabaseConnectionError(MigrationError):
    """Error connecting to database."""

    pass


class DependencyError(MigrationError):
    """Error analyzing or resolving table dependencies."""

    pass


class ConstraintOperationError(MigrationError):
    """A single foreign key drop or create statement failed."""

    def __init__(self, constraint: str, operation: str, message: str):
        super().__init__(f"{operation} failed for constraint {constraint}: {message}")
        self.constraint = constraint
        self.operation = operation


class TransferUnitError(MigrationError):
    """Export or import of one transfer unit failed."""

    pass


class BackupError(MigrationError):
    """Error creating or reading a constraint backup."""

    pass
