"""
Neo4j Connector Module
Driver lifecycle and the read / write primitives the graph dictionary uses
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from neo4j import Driver, GraphDatabase, Session

from config.settings import Neo4jConfig

logger = logging.getLogger(__name__)

Statement = Tuple[str, Optional[Dict[str, Any]]]


class Neo4jConnector:
    """Owns the Neo4j driver for the configured database"""

    def __init__(self, config: Neo4jConfig):
        """
        Initialize Neo4j connector

        Args:
            config: Neo4j configuration object
        """
        self.config = config
        self._driver: Optional[Driver] = None

    @property
    def driver(self) -> Driver:
        """Driver created on first use"""
        if self._driver is None:
            self._driver = GraphDatabase.driver(
                self.config.uri,
                auth=(self.config.username, self.config.password)
            )
            logger.info(f"Neo4j driver created for {self.config.uri}")
        return self._driver

    def _session(self) -> Session:
        return self.driver.session(database=self.config.database)

    def verify_connectivity(self):
        """Fail fast if the server cannot be reached with the configured credentials"""
        self.driver.verify_connectivity()
        logger.info("✓ Neo4j reachable")

    def run_read(self, query: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run one auto-commit query

        Returns:
            Result records as dictionaries
        """
        with self._session() as session:
            return [dict(record) for record in session.run(query, parameters or {})]

    def run_write(self, statements: Sequence[Statement]):
        """
        Run statements in order inside a single write transaction

        Either every statement applies or none does.
        """
        def _work(tx):
            for query, parameters in statements:
                tx.run(query, parameters or {})

        with self._session() as session:
            session.execute_write(_work)

    def ensure_unique(self, label: str, property_name: str):
        """Uniqueness constraint on ``label.property_name``, created if missing"""
        name = f"{label.lower()}_{property_name}_unique"
        with self._session() as session:
            session.run(
                f"CREATE CONSTRAINT {name} IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.{property_name} IS UNIQUE"
            )
        logger.info(f"✓ Constraint {name}")

    def count_nodes(self, label: str) -> int:
        rows = self.run_read(f"MATCH (n:{label}) RETURN count(n) AS count")
        return rows[0]["count"] if rows else 0

    def close(self):
        if self._driver is not None:
            self._driver.close()
            self._driver = None
            logger.info("Neo4j driver closed")


_default_connector: Optional[Neo4jConnector] = None


def get_neo4j_connector(config: Optional[Neo4jConfig] = None) -> Neo4jConnector:
    """
    Get or create default Neo4j connector

    Args:
        config: Optional config, read from environment if not provided

    Returns:
        Neo4jConnector instance
    """
    global _default_connector

    if _default_connector is None:
        _default_connector = Neo4jConnector(config or Neo4jConfig.from_env())

    return _default_connector
