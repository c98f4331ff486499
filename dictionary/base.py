"""
Dictionary Store Contract
Local terminology dictionary as seen by the importer: lookup and idempotent
upsert of concepts and mappings keyed by their remote external id
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from client.records import OclConcept, OclMapping


class DictionaryStoreError(Exception):
    """Raised when the local dictionary rejects a read or write."""


@dataclass(frozen=True)
class StoredEntity:
    """The parts of a stored concept or mapping the importer compares against"""
    uuid: str
    content_hash: str
    active: bool


def url_variants(url: str) -> List[str]:
    """Remote URLs are compared with and without their trailing slash"""
    bare = url.rstrip("/")
    return [bare + "/", bare]


class DataConverter:
    """Converts record values to types a property store can hold"""

    @staticmethod
    def convert_value(value: Any) -> Any:
        """
        Convert nested values to JSON text, pass scalars through

        Args:
            value: Value to convert

        Returns:
            Converted value
        """
        if value is None:
            return None
        elif isinstance(value, (bool, int, float, str)):
            return value
        elif isinstance(value, (list, dict)):
            return json.dumps(value, sort_keys=True, default=str)
        else:
            return str(value)


class DictionaryStore(ABC):
    """Lookup and upsert of local concepts and mappings"""

    @abstractmethod
    def get_concept(self, uuid: str) -> Optional[StoredEntity]:
        """Stored concept with this external id, or None"""

    @abstractmethod
    def get_mapping(self, uuid: str) -> Optional[StoredEntity]:
        """Stored mapping with this external id, or None"""

    @abstractmethod
    def find_concept_uuid(self, url: str) -> Optional[str]:
        """External id of the stored concept published at this URL, or None"""

    @abstractmethod
    def upsert_concept(self, concept: OclConcept, content_hash: str, active: bool):
        """Create or update the concept keyed by ``concept.external_id``"""

    @abstractmethod
    def upsert_mapping(self, mapping: OclMapping, from_uuid: str, to_uuid: Optional[str],
                       content_hash: str, active: bool):
        """Create or update the mapping keyed by ``mapping.external_id``"""

    @abstractmethod
    def count_concepts(self) -> int:
        pass

    @abstractmethod
    def count_mappings(self) -> int:
        pass

    def close(self):
        pass
