"""Shared pytest fixtures."""

from unittest.mock import MagicMock

import pytest

import config.settings as settings
from client.ocl_client import OclClient
from config.settings import OCLConfig, RDBMSConfig
from database.rdbms_connector import RDBMSConnector
from dictionary.sql_store import SQLDictionaryStore
from sync.importer import Importer
from sync.ledger import UpdateService


@pytest.fixture(autouse=True)
def reset_config():
    """Reset the config singleton before each test."""
    settings._config = None
    yield
    settings._config = None


@pytest.fixture
def rdbms():
    """In-memory SQLite ledger and dictionary with the schema created."""
    connector = RDBMSConnector(RDBMSConfig(connection_string="sqlite://"))
    connector.create_schema()
    yield connector
    connector.close()


@pytest.fixture
def update_service(rdbms):
    return UpdateService(rdbms)


@pytest.fixture
def dictionary_store(rdbms):
    return SQLDictionaryStore(rdbms)


@pytest.fixture
def importer(dictionary_store):
    return Importer(dictionary_store)


@pytest.fixture
def subscription(update_service):
    return update_service.save_subscription("https://api.openconceptlab.org/orgs/CIEL/sources/CIEL/", "secret")


@pytest.fixture
def ocl_config():
    return OCLConfig(url="https://api.example.org/orgs/CIEL/sources/CIEL/", token="secret",
                     connect_timeout=1.0, read_timeout=5.0, max_retries=2)


@pytest.fixture
def ocl_client(ocl_config):
    return OclClient(ocl_config)


@pytest.fixture
def mock_ocl_client():
    """Stand-in delta source; tests set fetch_updates.return_value or side_effect."""
    return MagicMock(spec=OclClient)
