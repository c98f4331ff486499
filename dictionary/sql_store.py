"""
SQL Dictionary Store
Keeps concepts and mappings in relational tables next to the ledger
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from client.records import OclConcept, OclMapping
from database.models import Concept, Mapping, utcnow
from database.rdbms_connector import RDBMSConnector
from .base import DictionaryStore, DictionaryStoreError, StoredEntity, url_variants

logger = logging.getLogger(__name__)


class SQLDictionaryStore(DictionaryStore):
    """Dictionary backed by the ``concept`` and ``concept_mapping`` tables"""

    def __init__(self, rdbms_connector: RDBMSConnector):
        """
        Initialize SQL dictionary store

        Args:
            rdbms_connector: RDBMS connector instance
        """
        self.rdbms = rdbms_connector

    def _get(self, model, uuid: str) -> Optional[StoredEntity]:
        try:
            with self.rdbms.session_scope() as session:
                row = session.execute(
                    select(model.uuid, model.content_hash, model.active).where(model.uuid == uuid)
                ).first()
        except SQLAlchemyError as e:
            raise DictionaryStoreError(f"Could not read {model.__tablename__} {uuid}: {e}") from e
        if row is None:
            return None
        return StoredEntity(uuid=row.uuid, content_hash=row.content_hash, active=row.active)

    def get_concept(self, uuid: str) -> Optional[StoredEntity]:
        return self._get(Concept, uuid)

    def get_mapping(self, uuid: str) -> Optional[StoredEntity]:
        return self._get(Mapping, uuid)

    def find_concept_uuid(self, url: str) -> Optional[str]:
        try:
            with self.rdbms.session_scope() as session:
                return session.execute(
                    select(Concept.uuid).where(Concept.url.in_(url_variants(url))).limit(1)
                ).scalar()
        except SQLAlchemyError as e:
            raise DictionaryStoreError(f"Could not look up concept at {url}: {e}") from e

    def upsert_concept(self, concept: OclConcept, content_hash: str, active: bool):
        try:
            with self.rdbms.session_scope() as session:
                row = session.execute(
                    select(Concept).where(Concept.uuid == concept.external_id)
                ).scalar_one_or_none()
                if row is None:
                    row = Concept(uuid=concept.external_id)
                    session.add(row)
                else:
                    row.date_changed = utcnow()
                row.url = concept.url
                row.concept_class = concept.concept_class
                row.datatype = concept.datatype
                row.names = concept.names
                row.descriptions = concept.descriptions
                row.extras = concept.extras
                row.active = active
                row.content_hash = content_hash
        except SQLAlchemyError as e:
            raise DictionaryStoreError(f"Could not save concept {concept.external_id}: {e}") from e

    def upsert_mapping(self, mapping: OclMapping, from_uuid: str, to_uuid: Optional[str],
                       content_hash: str, active: bool):
        try:
            with self.rdbms.session_scope() as session:
                row = session.execute(
                    select(Mapping).where(Mapping.uuid == mapping.external_id)
                ).scalar_one_or_none()
                if row is None:
                    row = Mapping(uuid=mapping.external_id)
                    session.add(row)
                else:
                    row.date_changed = utcnow()
                row.url = mapping.url
                row.map_type = mapping.map_type
                row.from_concept_url = mapping.from_concept_url
                row.from_concept_uuid = from_uuid
                row.to_concept_url = mapping.to_concept_url
                row.to_concept_uuid = to_uuid
                row.to_source_name = mapping.to_source_name
                row.to_concept_code = mapping.to_concept_code
                row.extras = mapping.extras
                row.active = active
                row.content_hash = content_hash
        except SQLAlchemyError as e:
            raise DictionaryStoreError(f"Could not save mapping {mapping.external_id}: {e}") from e

    def count_concepts(self) -> int:
        with self.rdbms.session_scope() as session:
            return session.execute(select(func.count()).select_from(Concept)).scalar_one()

    def count_mappings(self) -> int:
        with self.rdbms.session_scope() as session:
            return session.execute(select(func.count()).select_from(Mapping)).scalar_one()
