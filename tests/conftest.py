"""Shared test fixtures."""

import logging
import os
import tempfile
from pathlib import Path

import pytest

from spendflow.config import (
    Config,
    DatabaseConfig,
    PlaidConfig,
    SecurityConfig,
    SyncConfig,
)
from spendflow.db.repository import Repository


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SPENDFLOW_* variables from the developer's shell out of tests."""
    for var in list(os.environ):
        if var.startswith("SPENDFLOW_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers attached by configure_logging in entry point tests."""
    yield
    logger = logging.getLogger("spendflow")
    for handler in list(logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test.db"


@pytest.fixture
def plaid_config():
    """Create a test Plaid sandbox config."""
    return PlaidConfig(
        client_id="test-client-id",
        secret="test-secret",
        environment="sandbox",
    )


@pytest.fixture
def database_config(temp_db_path):
    """Create a test database config."""
    return DatabaseConfig(path=temp_db_path)


@pytest.fixture
def security_config():
    """Create a test security config without encryption."""
    return SecurityConfig(encryption_key=None)


@pytest.fixture
def security_config_with_encryption():
    """Create a test security config with encryption."""
    from cryptography.fernet import Fernet

    key = Fernet.generate_key().decode()
    return SecurityConfig(encryption_key=key)


@pytest.fixture
def config(plaid_config, database_config, security_config):
    """Create a test config."""
    return Config(
        plaid=plaid_config,
        database=database_config,
        security=security_config,
        sync=SyncConfig(),
    )


@pytest.fixture
async def repository(temp_db_path):
    """Create a repository with a temporary database."""
    repo = Repository(temp_db_path)
    await repo.connect()
    yield repo
    await repo.close()
