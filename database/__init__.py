"""Database connectors and ORM models module"""

from .models import (
    Base,
    Concept,
    Item,
    ItemState,
    ItemType,
    Mapping,
    Subscription,
    Update,
    UpdateStatus,
    utcnow
)
from .rdbms_connector import RDBMSConnector, get_rdbms_connector
from .neo4j_connector import Neo4jConnector, get_neo4j_connector

__all__ = [
    'Base',
    'Concept',
    'Item',
    'ItemState',
    'ItemType',
    'Mapping',
    'Subscription',
    'Update',
    'UpdateStatus',
    'utcnow',
    'RDBMSConnector',
    'Neo4jConnector',
    'get_rdbms_connector',
    'get_neo4j_connector'
]
