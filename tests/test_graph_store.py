"""Tests for the Neo4j dictionary backend against a mocked driver"""

from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import ServiceUnavailable

from builders import CONCEPT_UUIDS, MAPPING_UUIDS, make_concept, make_mapping
from client.records import OclConcept, OclMapping
from config.settings import Config, Neo4jConfig
from database.neo4j_connector import Neo4jConnector
from dictionary.base import DictionaryStoreError, StoredEntity
from dictionary.factory import get_dictionary_store
from dictionary.graph_store import GraphDictionaryStore


@pytest.fixture
def tx():
    return MagicMock()


@pytest.fixture
def session(tx):
    session = MagicMock()
    session.execute_write.side_effect = lambda work: work(tx)
    return session


@pytest.fixture
def store(session):
    connector = Neo4jConnector(Neo4jConfig(uri="bolt://localhost:7687", username="neo4j", password="pw"))
    connector._driver = MagicMock()
    connector._driver.session.return_value.__enter__.return_value = session
    return GraphDictionaryStore(connector)


def statements(tx):
    return [(c.args[0], c.args[1]) for c in tx.run.call_args_list]


class TestReads:

    def test_get_concept(self, store, session):
        session.run.return_value = [{"uuid": CONCEPT_UUIDS[0], "content_hash": "abc", "active": True}]

        assert store.get_concept(CONCEPT_UUIDS[0]) == StoredEntity(CONCEPT_UUIDS[0], "abc", True)
        query, params = session.run.call_args.args
        assert "MATCH (n:Concept {uuid: $uuid})" in query
        assert params == {"uuid": CONCEPT_UUIDS[0]}

    def test_get_missing_mapping(self, store, session):
        session.run.return_value = []

        assert store.get_mapping(MAPPING_UUIDS[0]) is None
        assert "MATCH (n:Mapping {uuid: $uuid})" in session.run.call_args.args[0]

    def test_find_concept_tries_both_url_forms(self, store, session):
        session.run.return_value = [{"uuid": CONCEPT_UUIDS[0]}]

        assert store.find_concept_uuid("/orgs/CIEL/sources/CIEL/concepts/1001") == CONCEPT_UUIDS[0]
        assert session.run.call_args.args[1] == {
            "urls": ["/orgs/CIEL/sources/CIEL/concepts/1001/", "/orgs/CIEL/sources/CIEL/concepts/1001"]
        }

    def test_driver_errors_are_wrapped(self, store, session):
        session.run.side_effect = ServiceUnavailable("no route to host")

        with pytest.raises(DictionaryStoreError):
            store.get_concept(CONCEPT_UUIDS[0])


class TestWrites:

    def test_upsert_concept_merges_on_uuid(self, store, tx):
        concept = OclConcept.from_json(make_concept(CONCEPT_UUIDS[0], "1001", retired=True))

        store.upsert_concept(concept, "hash", active=False)

        [(query, params)] = statements(tx)
        assert "MERGE (n:Concept {uuid: $uuid})" in query
        assert params["uuid"] == CONCEPT_UUIDS[0]
        assert params["props"]["active"] is False
        assert params["props"]["content_hash"] == "hash"
        assert params["props"]["code"] == "1001"
        assert isinstance(params["props"]["names"], str)
        assert "descriptions" in params["props"]

    def test_cleared_fields_are_sent_as_null(self, store, tx):
        concept = OclConcept.from_json(make_concept(CONCEPT_UUIDS[0], "1001", datatype=None))

        store.upsert_concept(concept, "hash", active=True)

        props = statements(tx)[0][1]["props"]
        assert "datatype" in props
        assert props["datatype"] is None

    def test_mapping_moved_to_external_code_clears_target_url(self, store, tx):
        mapping = OclMapping.from_json(make_mapping(MAPPING_UUIDS[0], "1001", None,
                                                    to_source_name="SNOMED-CT", to_concept_code="38341003"))

        store.upsert_mapping(mapping, CONCEPT_UUIDS[0], None, "hash", active=True)

        props = statements(tx)[0][1]["props"]
        assert props["to_concept_url"] is None
        assert props["to_concept_code"] == "38341003"

    def test_upsert_mapping_to_local_concept(self, store, tx):
        mapping = OclMapping.from_json(make_mapping(MAPPING_UUIDS[0], "1001", "1002"))

        store.upsert_mapping(mapping, CONCEPT_UUIDS[0], CONCEPT_UUIDS[1], "hash", active=True)

        queries = statements(tx)
        assert len(queries) == 4
        assert "MERGE (n:Mapping {uuid: $uuid})" in queries[0][0]
        assert "DELETE r" in queries[1][0]
        assert "MERGE (m)-[:FROM]->(a)" in queries[2][0]
        assert queries[2][1]["from_uuid"] == CONCEPT_UUIDS[0]
        assert "MERGE (m)-[:TO]->(b)" in queries[3][0]
        assert queries[3][1]["to_uuid"] == CONCEPT_UUIDS[1]

    def test_upsert_mapping_to_external_code(self, store, tx):
        mapping = OclMapping.from_json(make_mapping(MAPPING_UUIDS[2], "1003", None,
                                                    to_source_name="SNOMED-CT", to_concept_code="38341003"))

        store.upsert_mapping(mapping, CONCEPT_UUIDS[2], None, "hash", active=True)

        query, params = statements(tx)[-1]
        assert "MERGE (x:ExternalConcept {source: $source, code: $code})" in query
        assert params["source"] == "SNOMED-CT"
        assert params["code"] == "38341003"

    def test_unresolved_target_url_becomes_external(self, store, tx):
        mapping = OclMapping.from_json(make_mapping(MAPPING_UUIDS[0], "1001", "9999"))

        store.upsert_mapping(mapping, CONCEPT_UUIDS[0], None, "hash", active=True)

        params = statements(tx)[-1][1]
        assert params["code"] == "/orgs/CIEL/sources/CIEL/concepts/9999/"

    def test_write_errors_are_wrapped(self, store, session):
        session.execute_write.side_effect = ServiceUnavailable("leader lost")
        concept = OclConcept.from_json(make_concept(CONCEPT_UUIDS[0], "1001"))

        with pytest.raises(DictionaryStoreError):
            store.upsert_concept(concept, "hash", active=True)


class TestAdministration:

    def test_create_constraints(self, store, session):
        store.create_constraints()

        queries = [c.args[0] for c in session.run.call_args_list]
        assert any("FOR (n:Concept)" in q and "REQUIRE n.uuid IS UNIQUE" in q for q in queries)
        assert any("FOR (n:Mapping)" in q for q in queries)

    def test_counts(self, store, session):
        session.run.return_value = [{"count": 3}]

        assert store.count_concepts() == 3
        assert "MATCH (n:Concept)" in session.run.call_args.args[0]


class TestConnector:

    def test_write_runs_statements_in_one_transaction(self, store, session, tx):
        store.neo4j.run_write([("RETURN 1", None), ("RETURN $x", {"x": 2})])

        session.execute_write.assert_called_once()
        assert statements(tx) == [("RETURN 1", {}), ("RETURN $x", {"x": 2})]

    def test_close_releases_driver(self, store):
        driver = store.neo4j._driver

        store.close()

        driver.close.assert_called_once()
        assert store.neo4j._driver is None

    def test_neo4j_backend_checks_connectivity_first(self, monkeypatch):
        monkeypatch.setenv("DICTIONARY_BACKEND", "neo4j")
        connector = MagicMock(spec=Neo4jConnector)
        monkeypatch.setattr("dictionary.factory.get_neo4j_connector", lambda config: connector)

        store = get_dictionary_store(Config.load())

        assert isinstance(store, GraphDictionaryStore)
        connector.verify_connectivity.assert_called_once()
        assert connector.ensure_unique.call_count == 2

    def test_unreachable_server_closes_connector(self, monkeypatch):
        monkeypatch.setenv("DICTIONARY_BACKEND", "neo4j")
        connector = MagicMock(spec=Neo4jConnector)
        connector.verify_connectivity.side_effect = ServiceUnavailable("connection refused")
        monkeypatch.setattr("dictionary.factory.get_neo4j_connector", lambda config: connector)

        with pytest.raises(ServiceUnavailable):
            get_dictionary_store(Config.load())

        connector.close.assert_called_once()
        connector.ensure_unique.assert_not_called()
