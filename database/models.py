"""
ORM Models Module
Tables for the subscription ledger, per-record audit items and the SQL
dictionary backend
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC regardless of backend support"""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ItemState(str, enum.Enum):
    """Change-state assigned to an imported record"""
    ADDED = "ADDED"
    UPDATED = "UPDATED"
    RETIRED = "RETIRED"
    NO_OP = "NO_OP"
    ERROR = "ERROR"


class ItemType(str, enum.Enum):
    """Kind of remote record an item was produced from"""
    CONCEPT = "CONCEPT"
    MAPPING = "MAPPING"


class UpdateStatus(str, enum.Enum):
    """Outcome of a synchronization run"""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class Base(DeclarativeBase):
    pass


class Subscription(Base):
    """Remote endpoint and credential, one per installation"""

    __tablename__ = "ocl_subscription"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    date_created: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    date_changed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self):
        return f"<Subscription(id={self.id}, url='{self.url}')>"


class Update(Base):
    """
    One synchronization attempt.

    ``active_lock`` is 1 while the run is in progress and NULL otherwise; the
    unique constraint on it admits a single in-progress run per database.
    ``ocl_date_started`` holds the server-reported "updated to" timestamp and
    is the resume point for the next run once this one succeeds.
    """

    __tablename__ = "ocl_update"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    local_date_started: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    ocl_date_started: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    local_date_stopped: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UpdateStatus.IN_PROGRESS.value, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active_lock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, unique=True)

    @property
    def is_stopped(self) -> bool:
        return self.local_date_stopped is not None

    def __repr__(self):
        return f"<Update(id={self.id}, status='{self.status}', ocl_date_started={self.ocl_date_started})>"


class Item(Base):
    """Audit record for one imported remote record"""

    __tablename__ = "ocl_item"
    __table_args__ = (UniqueConstraint("uuid", "update_id", name="uq_ocl_item_uuid_update"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    update_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("ocl_update.id"), nullable=True, index=True
    )
    uuid: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    version_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_created: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Item(uuid='{self.uuid}', type='{self.type}', state='{self.state}')>"


class Concept(Base):
    """Local dictionary concept, keyed by its remote external id"""

    __tablename__ = "concept"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, index=True)
    concept_class: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    datatype: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    names: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    descriptions: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    extras: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    content_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    date_created: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    date_changed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class Mapping(Base):
    """Local dictionary mapping from a concept to a concept or external code"""

    __tablename__ = "concept_mapping"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    map_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    from_concept_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    from_concept_uuid: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    to_concept_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    to_concept_uuid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    to_source_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    to_concept_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    extras: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    content_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    date_created: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    date_changed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
