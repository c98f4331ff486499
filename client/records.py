"""
Remote Record Module
Tagged record variant decoded from the delta payload, and the concept /
mapping shapes it is parsed into
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import MalformedRecordError


class RecordKind(str, enum.Enum):
    """The two record kinds carried by a delta payload"""
    CONCEPT = "concept"
    MAPPING = "mapping"

    @property
    def section(self) -> str:
        """Top-level payload member holding records of this kind"""
        return f"{self.value}s"

    @classmethod
    def from_section(cls, section: str) -> 'RecordKind':
        for kind in cls:
            if kind.section == section:
                return kind
        raise ValueError(f"Unknown record section: {section}")


RECORD_SECTIONS = tuple(kind.section for kind in RecordKind)


@dataclass(frozen=True)
class RemoteRecord:
    """
    One undecoded record as it appeared on the wire.

    ``position`` is the 1-based encounter order within its kind.
    """
    kind: RecordKind
    data: Any
    position: int

    @property
    def identifier(self) -> str:
        """Best available identifier, also for records too broken to parse"""
        if isinstance(self.data, dict):
            for key in ("external_id", "url", "id"):
                value = self.data.get(key)
                if value:
                    return str(value)
        return f"{self.kind.value}#{self.position}"


def _require_dict(data: Any, kind: RecordKind) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedRecordError(f"{kind.value} record is {type(data).__name__}, expected an object")
    return data


def _require_text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedRecordError(f"missing required field '{key}'")
    return value.strip()


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int, float)):
        raise MalformedRecordError(f"field '{key}' must be a string")
    return str(value)


def _object_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise MalformedRecordError(f"field '{key}' must be a list of objects")
    return value


def _extras(data: Dict[str, Any]) -> Dict[str, Any]:
    value = data.get("extras")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedRecordError("field 'extras' must be an object")
    return value


def _retired(data: Dict[str, Any]) -> bool:
    value = data.get("retired", False)
    if not isinstance(value, bool):
        raise MalformedRecordError("field 'retired' must be a boolean")
    return value


@dataclass
class OclConcept:
    """A concept record from the remote repository"""
    external_id: str
    url: Optional[str] = None
    version_url: Optional[str] = None
    code: Optional[str] = None
    concept_class: Optional[str] = None
    datatype: Optional[str] = None
    retired: bool = False
    names: List[Dict[str, Any]] = field(default_factory=list)
    descriptions: List[Dict[str, Any]] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> 'OclConcept':
        """
        Parse a decoded concept record

        Raises:
            MalformedRecordError: if required fields are missing or mistyped
        """
        data = _require_dict(data, RecordKind.CONCEPT)
        return cls(
            external_id=_require_text(data, "external_id"),
            url=_optional_text(data, "url"),
            version_url=_optional_text(data, "version_url"),
            code=_optional_text(data, "id"),
            concept_class=_optional_text(data, "concept_class"),
            datatype=_optional_text(data, "datatype"),
            retired=_retired(data),
            names=_object_list(data, "names"),
            descriptions=_object_list(data, "descriptions"),
            extras=_extras(data)
        )

    def material_fields(self) -> Dict[str, Any]:
        """Fields whose change makes a stored concept out of date"""
        return {
            "url": self.url,
            "concept_class": self.concept_class,
            "datatype": self.datatype,
            "retired": self.retired,
            "names": [
                {k: n.get(k) for k in ("name", "locale", "locale_preferred", "name_type", "external_id")}
                for n in self.names
            ],
            "descriptions": [
                {k: d.get(k) for k in ("description", "locale", "locale_preferred",
                                       "description_type", "external_id")}
                for d in self.descriptions
            ],
            "extras": self.extras
        }


@dataclass
class OclMapping:
    """A mapping record from the remote repository"""
    external_id: str
    from_concept_url: str
    url: Optional[str] = None
    version_url: Optional[str] = None
    map_type: Optional[str] = None
    to_concept_url: Optional[str] = None
    to_source_name: Optional[str] = None
    to_concept_code: Optional[str] = None
    retired: bool = False
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> 'OclMapping':
        """
        Parse a decoded mapping record

        Raises:
            MalformedRecordError: if required fields are missing or mistyped
        """
        data = _require_dict(data, RecordKind.MAPPING)
        mapping = cls(
            external_id=_require_text(data, "external_id"),
            from_concept_url=_require_text(data, "from_concept_url"),
            url=_optional_text(data, "url"),
            version_url=_optional_text(data, "version_url"),
            map_type=_optional_text(data, "map_type"),
            to_concept_url=_optional_text(data, "to_concept_url"),
            to_source_name=_optional_text(data, "to_source_name"),
            to_concept_code=_optional_text(data, "to_concept_code"),
            retired=_retired(data),
            extras=_extras(data)
        )
        if not mapping.to_concept_url and not mapping.to_concept_code:
            raise MalformedRecordError("mapping has neither 'to_concept_url' nor 'to_concept_code'")
        return mapping

    def material_fields(self) -> Dict[str, Any]:
        """Fields whose change makes a stored mapping out of date"""
        return {
            "url": self.url,
            "map_type": self.map_type,
            "from_concept_url": self.from_concept_url,
            "to_concept_url": self.to_concept_url,
            "to_source_name": self.to_source_name,
            "to_concept_code": self.to_concept_code,
            "retired": self.retired,
            "extras": self.extras
        }
