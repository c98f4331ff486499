"""
Record Importer Module
Classifies each remote record against the local dictionary, applies the
change and reports it as an audit Item
"""

import hashlib
import json
import logging
from typing import Any, Dict, Optional, Union

from client.errors import MalformedRecordError
from client.records import OclConcept, OclMapping, RecordKind, RemoteRecord
from database.models import Item, ItemState, ItemType, Update
from dictionary.base import DictionaryStore, DictionaryStoreError, StoredEntity
from .errors import RecordFailure

logger = logging.getLogger(__name__)

ITEM_TYPES = {
    RecordKind.CONCEPT: ItemType.CONCEPT,
    RecordKind.MAPPING: ItemType.MAPPING,
}


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def content_hash(fields: Dict[str, Any]) -> str:
    """
    MD5 of the material fields, insensitive to key order and list order

    Args:
        fields: Material fields of a record

    Returns:
        Hex digest
    """
    canonical = {
        key: sorted(value, key=_canonical_json) if isinstance(value, list) else value
        for key, value in fields.items()
    }
    return hashlib.md5(_canonical_json(canonical).encode()).hexdigest()


def classify(existing: Optional[StoredEntity], digest: str, retired: bool) -> ItemState:
    """
    Decide the change-state of a record

    Args:
        existing: Stored entity with the same external id, if any
        digest: Content hash of the incoming record
        retired: Whether the incoming record is retired remotely

    Returns:
        ItemState other than ERROR
    """
    if existing is None:
        return ItemState.RETIRED if retired else ItemState.ADDED
    if existing.content_hash == digest and existing.active == (not retired):
        return ItemState.NO_OP
    if retired and existing.active:
        return ItemState.RETIRED
    return ItemState.UPDATED


class Importer:
    """Imports concepts and mappings into the local dictionary"""

    def __init__(self, dictionary_store: DictionaryStore):
        """
        Initialize importer

        Args:
            dictionary_store: Local dictionary to classify against and update
        """
        self.store = dictionary_store

    def import_item(self, update: Update, record: RemoteRecord) -> Item:
        """
        Import one record and describe the outcome

        Never raises for a bad record: malformed payloads, unresolved
        references and store rejections come back as ERROR items.

        Args:
            update: Run the item belongs to
            record: Decoded remote record

        Returns:
            Unsaved Item tagged with its change-state
        """
        item_type = ITEM_TYPES[record.kind]
        parsed: Union[OclConcept, OclMapping, None] = None
        try:
            if record.kind is RecordKind.CONCEPT:
                parsed = OclConcept.from_json(record.data)
                state = self._import_concept(parsed)
            else:
                parsed = OclMapping.from_json(record.data)
                state = self._import_mapping(parsed)
        except MalformedRecordError as e:
            return self._error_item(update, record, item_type, parsed, f"Malformed {record.kind.value}: {e}")
        except RecordFailure as e:
            return self._error_item(update, record, item_type, parsed, e.reason)
        except DictionaryStoreError as e:
            return self._error_item(update, record, item_type, parsed, str(e))

        logger.debug(f"  {item_type.value} {parsed.external_id}: {state.value}")
        return Item(
            update_id=update.id,
            uuid=parsed.external_id,
            type=item_type.value,
            state=state.value,
            url=parsed.url,
            version_url=parsed.version_url
        )

    def _import_concept(self, concept: OclConcept) -> ItemState:
        existing = self.store.get_concept(concept.external_id)
        digest = content_hash(concept.material_fields())
        state = classify(existing, digest, concept.retired)
        if state is not ItemState.NO_OP:
            self.store.upsert_concept(concept, digest, active=not concept.retired)
        return state

    def _import_mapping(self, mapping: OclMapping) -> ItemState:
        from_uuid = self.store.find_concept_uuid(mapping.from_concept_url)
        if from_uuid is None:
            raise RecordFailure(
                mapping.external_id,
                f"Cannot import mapping from concept {mapping.from_concept_url}, "
                f"because the concept has not been imported"
            )
        to_uuid = None
        if mapping.to_concept_url:
            to_uuid = self.store.find_concept_uuid(mapping.to_concept_url)

        existing = self.store.get_mapping(mapping.external_id)
        # Resolved endpoints count as content so a late-arriving target concept re-links the mapping
        fields = dict(mapping.material_fields(), from_uuid=from_uuid, to_uuid=to_uuid)
        digest = content_hash(fields)
        state = classify(existing, digest, mapping.retired)
        if state is not ItemState.NO_OP:
            self.store.upsert_mapping(mapping, from_uuid, to_uuid, digest, active=not mapping.retired)
        return state

    @staticmethod
    def _error_item(update: Update, record: RemoteRecord, item_type: ItemType,
                    parsed: Union[OclConcept, OclMapping, None], reason: str) -> Item:
        identifier = parsed.external_id if parsed is not None else record.identifier
        logger.warning(f"  ✗ {item_type.value} {identifier}: {reason}")
        return Item(
            update_id=update.id,
            uuid=identifier,
            type=item_type.value,
            state=ItemState.ERROR.value,
            url=parsed.url if parsed is not None else None,
            version_url=parsed.version_url if parsed is not None else None,
            error_message=reason
        )
