"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_env_vars():
    """Fixture to provide mock environment variables for testing."""
    env_vars = {
        "SOURCE_HOST": "src.example.local",
        "SOURCE_PORT": "1433",
        "SOURCE_DB": "AdventureWorks",
        "SOURCE_USER": "migrator",
        "SOURCE_PASSWORD": "test_password",
        "DEST_HOST": "dst.example.local",
        "DEST_PORT": "1533",
        "DEST_DB": "AdventureWorks_Copy",
        "DEST_USER": "migrator",
        "DEST_PASSWORD": "test_password",
    }
    with patch.dict(os.environ, env_vars, clear=True):
        yield env_vars


@pytest.fixture
def mock_empty_env():
    """Fixture to provide empty environment variables for testing."""
    with patch.dict(os.environ, {}, clear=True):
        yield


@pytest.fixture
def logger():
    """Stand-in for StructuredLogger that records calls."""
    return MagicMock()
