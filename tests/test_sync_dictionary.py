"""Tests for the command line entry point"""

from unittest.mock import patch

import pytest

import sync_dictionary
from builders import make_payload, make_response, sample_concepts, sample_mappings
from client.errors import TransportFailure
from config.settings import RDBMSConfig
from database.rdbms_connector import RDBMSConnector
from sync.ledger import UpdateService


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'terminology_sync.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("DICTIONARY_BACKEND", "sql")
    monkeypatch.delenv("OCL_URL", raising=False)
    monkeypatch.setattr("database.rdbms_connector._default_connector", None)
    return url


def ledger(url):
    return UpdateService(RDBMSConnector(RDBMSConfig(connection_string=url)))


def test_without_subscription_exits_cleanly(database_url):
    with patch("sync.updater.OclClient") as client_class:
        assert sync_dictionary.main() == 0

    client_class.return_value.fetch_updates.assert_not_called()


def test_successful_update(database_url, monkeypatch):
    monkeypatch.setenv("OCL_URL", "https://api.example.org/orgs/CIEL/sources/CIEL/")
    with patch("sync.updater.OclClient") as client_class:
        client_class.return_value.fetch_updates.return_value = make_response(
            make_payload(sample_concepts(), sample_mappings())
        )
        assert sync_dictionary.main() == 0

    update = ledger(database_url).get_last_successful_update()
    assert update is not None
    assert len(ledger(database_url).get_items(update)) == 6


def test_failed_update_exits_with_error(database_url, monkeypatch):
    monkeypatch.setenv("OCL_URL", "https://api.example.org/orgs/CIEL/sources/CIEL/")
    with patch("sync.updater.OclClient") as client_class:
        client_class.return_value.fetch_updates.side_effect = TransportFailure("503 from upstream")
        assert sync_dictionary.main() == 1

    assert ledger(database_url).get_last_update().status == "failed"


def test_invalid_configuration(database_url, monkeypatch):
    monkeypatch.setenv("DICTIONARY_BACKEND", "mongo")

    assert sync_dictionary.main() == 1
