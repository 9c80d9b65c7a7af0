# tollplaza/models/detection_event.py
"""
Plate-recognition detection log (append-only).

Rows are created by ingestion with status PENDING and only ever mutated by
the processing state machine (services/detection_processor.py). Never deleted.
"""

from enum import Enum
from sqlalchemy import Column, DateTime, Enum as SAEnum, Float, Index, Integer, String, Text
from tollplaza.database import Base


class DetectionStatus(str, Enum):
    PENDING = "pending"
    PENDING_VEHICLE_TYPE = "pending_vehicle_type"
    PENDING_EXIT = "pending_exit"
    PROCESSED = "processed"
    FAILED = "failed"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    UNKNOWN = "unknown"


def _enum(enum_cls):
    return SAEnum(enum_cls, native_enum=False, length=30,
                  values_callable=lambda members: [m.value for m in members])


class DetectionEvent(Base):
    __tablename__ = "detection_events"
    __table_args__ = (
        Index("ix_detection_events_queue", "status", "detection_timestamp", "id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_detection_id = Column(String(64), unique=True, nullable=False, index=True)
    gate_id = Column(Integer, index=True)
    plate_number = Column(String(20), nullable=False, default="")   # normalized
    original_plate = Column(String(50))
    detection_timestamp = Column(DateTime, nullable=False, index=True)
    direction = Column(_enum(Direction), default=Direction.UNKNOWN, nullable=False)
    make = Column(String(50))
    model = Column(String(50))
    color = Column(String(30))
    confidence = Column(Float)
    raw_payload = Column(Text)

    status = Column(_enum(DetectionStatus), default=DetectionStatus.PENDING, nullable=False)
    processing_notes = Column(Text)
    processed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False)
    # Bumped on every write; a flush against a stale copy raises StaleDataError
    version_id = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<DetectionEvent {self.id} plate={self.plate_number} status={self.status}>"
