"""Builds the configured dictionary store"""

import logging
from typing import Optional

from config.settings import Config
from database.neo4j_connector import get_neo4j_connector
from database.rdbms_connector import RDBMSConnector
from .base import DictionaryStore
from .graph_store import GraphDictionaryStore
from .sql_store import SQLDictionaryStore

logger = logging.getLogger(__name__)


def get_dictionary_store(config: Config, rdbms_connector: Optional[RDBMSConnector] = None) -> DictionaryStore:
    """
    Create the dictionary store selected by DICTIONARY_BACKEND

    Args:
        config: Loaded configuration
        rdbms_connector: Connector for the sql backend

    Returns:
        DictionaryStore instance
    """
    backend = config.system.dictionary_backend
    if backend == "neo4j":
        connector = get_neo4j_connector(config.neo4j)
        try:
            connector.verify_connectivity()
        except Exception:
            connector.close()
            raise
        store = GraphDictionaryStore(connector)
        store.create_constraints()
        logger.info("Using Neo4j dictionary store")
        return store
    if backend == "sql":
        if rdbms_connector is None:
            raise ValueError("The sql dictionary backend needs an RDBMS connector")
        logger.info("Using SQL dictionary store")
        return SQLDictionaryStore(rdbms_connector)
    raise ValueError(f"Unknown dictionary backend: {backend}")
