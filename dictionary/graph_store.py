"""
Graph Dictionary Store
Keeps the dictionary in Neo4j: concepts as nodes, mappings as nodes linked
to the concepts (or external codes) they connect
"""

import logging
from typing import Any, Dict, Optional

from neo4j.exceptions import DriverError, Neo4jError

from client.records import OclConcept, OclMapping
from database.models import utcnow
from database.neo4j_connector import Neo4jConnector
from .base import DataConverter, DictionaryStore, DictionaryStoreError, StoredEntity, url_variants

logger = logging.getLogger(__name__)

CONCEPT_LABEL = "Concept"
MAPPING_LABEL = "Mapping"
EXTERNAL_LABEL = "ExternalConcept"


class GraphQueryBuilder:
    """Builds Cypher queries for dictionary operations"""

    @staticmethod
    def get_entity(label: str) -> str:
        return f"""
        MATCH (n:{label} {{uuid: $uuid}})
        RETURN n.uuid AS uuid, n.content_hash AS content_hash, n.active AS active
        """

    @staticmethod
    def find_concept_by_url() -> str:
        return f"""
        MATCH (c:{CONCEPT_LABEL})
        WHERE c.url IN $urls
        RETURN c.uuid AS uuid
        LIMIT 1
        """

    @staticmethod
    def merge_node(label: str) -> str:
        return f"""
        MERGE (n:{label} {{uuid: $uuid}})
        ON CREATE SET n.date_created = $now
        ON MATCH SET n.date_changed = $now
        SET n += $props
        """

    @staticmethod
    def clear_mapping_links() -> str:
        return f"""
        MATCH (m:{MAPPING_LABEL} {{uuid: $uuid}})-[r:FROM|TO]->()
        DELETE r
        """

    @staticmethod
    def link_from_concept() -> str:
        return f"""
        MATCH (m:{MAPPING_LABEL} {{uuid: $uuid}}), (a:{CONCEPT_LABEL} {{uuid: $from_uuid}})
        MERGE (m)-[:FROM]->(a)
        """

    @staticmethod
    def link_to_concept() -> str:
        return f"""
        MATCH (m:{MAPPING_LABEL} {{uuid: $uuid}}), (b:{CONCEPT_LABEL} {{uuid: $to_uuid}})
        MERGE (m)-[:TO]->(b)
        """

    @staticmethod
    def link_to_external() -> str:
        return f"""
        MATCH (m:{MAPPING_LABEL} {{uuid: $uuid}})
        MERGE (x:{EXTERNAL_LABEL} {{source: $source, code: $code}})
        MERGE (m)-[:TO]->(x)
        """


class GraphDictionaryStore(DictionaryStore):
    """Dictionary backed by a Neo4j graph"""

    def __init__(self, neo4j_connector: Neo4jConnector):
        """
        Initialize graph dictionary store

        Args:
            neo4j_connector: Neo4j connector instance
        """
        self.neo4j = neo4j_connector
        self.converter = DataConverter()
        self.queries = GraphQueryBuilder()

    def create_constraints(self):
        """Unique external ids for concept and mapping nodes"""
        for label in (CONCEPT_LABEL, MAPPING_LABEL):
            self.neo4j.ensure_unique(label, "uuid")
        logger.info("Dictionary constraints created in Neo4j")

    def _props(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self.converter.convert_value(v) for k, v in values.items()}

    def _get(self, label: str, uuid: str) -> Optional[StoredEntity]:
        try:
            rows = self.neo4j.run_read(self.queries.get_entity(label), {"uuid": uuid})
        except (Neo4jError, DriverError) as e:
            raise DictionaryStoreError(f"Could not read {label} {uuid}: {e}") from e
        if not rows:
            return None
        row = rows[0]
        return StoredEntity(uuid=row["uuid"], content_hash=row["content_hash"], active=bool(row["active"]))

    def get_concept(self, uuid: str) -> Optional[StoredEntity]:
        return self._get(CONCEPT_LABEL, uuid)

    def get_mapping(self, uuid: str) -> Optional[StoredEntity]:
        return self._get(MAPPING_LABEL, uuid)

    def find_concept_uuid(self, url: str) -> Optional[str]:
        try:
            rows = self.neo4j.run_read(self.queries.find_concept_by_url(), {"urls": url_variants(url)})
        except (Neo4jError, DriverError) as e:
            raise DictionaryStoreError(f"Could not look up concept at {url}: {e}") from e
        return rows[0]["uuid"] if rows else None

    def upsert_concept(self, concept: OclConcept, content_hash: str, active: bool):
        props = self._props({
            "url": concept.url,
            "version_url": concept.version_url,
            "code": concept.code,
            "concept_class": concept.concept_class,
            "datatype": concept.datatype,
            "names": concept.names,
            "descriptions": concept.descriptions,
            "extras": concept.extras,
            "active": active,
            "content_hash": content_hash
        })
        params = {"uuid": concept.external_id, "now": utcnow().isoformat(), "props": props}
        try:
            self.neo4j.run_write([(self.queries.merge_node(CONCEPT_LABEL), params)])
        except (Neo4jError, DriverError) as e:
            raise DictionaryStoreError(f"Could not save concept {concept.external_id}: {e}") from e

    def upsert_mapping(self, mapping: OclMapping, from_uuid: str, to_uuid: Optional[str],
                       content_hash: str, active: bool):
        uuid = mapping.external_id
        props = self._props({
            "url": mapping.url,
            "version_url": mapping.version_url,
            "map_type": mapping.map_type,
            "from_concept_url": mapping.from_concept_url,
            "to_concept_url": mapping.to_concept_url,
            "to_source_name": mapping.to_source_name,
            "to_concept_code": mapping.to_concept_code,
            "extras": mapping.extras,
            "active": active,
            "content_hash": content_hash
        })

        statements = [
            (self.queries.merge_node(MAPPING_LABEL), {"uuid": uuid, "now": utcnow().isoformat(), "props": props}),
            (self.queries.clear_mapping_links(), {"uuid": uuid}),
            (self.queries.link_from_concept(), {"uuid": uuid, "from_uuid": from_uuid}),
        ]
        if to_uuid:
            statements.append((self.queries.link_to_concept(), {"uuid": uuid, "to_uuid": to_uuid}))
        else:
            statements.append((self.queries.link_to_external(), {
                "uuid": uuid,
                "source": mapping.to_source_name or "",
                "code": mapping.to_concept_code or mapping.to_concept_url
            }))

        try:
            self.neo4j.run_write(statements)
        except (Neo4jError, DriverError) as e:
            raise DictionaryStoreError(f"Could not save mapping {uuid}: {e}") from e

    def count_concepts(self) -> int:
        return self.neo4j.count_nodes(CONCEPT_LABEL)

    def count_mappings(self) -> int:
        return self.neo4j.count_nodes(MAPPING_LABEL)

    def close(self):
        self.neo4j.close()
