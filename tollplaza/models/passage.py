# tollplaza/models/passage.py
"""
Passage table — one vehicle's stay from entry to exit.

status is explicit: a passage is ACTIVE until its single exit write moves it
to COMPLETED. The partial unique index keeps at most one ACTIVE passage per
vehicle, whatever process writes it.
"""

from enum import Enum
from sqlalchemy import (Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Index, Integer,
                        Numeric, String, Text, text)
from sqlalchemy.orm import relationship
from tollplaza.database import Base


class PassageStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PassageType(str, Enum):
    TOLL = "toll"
    FREE = "free"            # bundle-backed
    EXEMPTED = "exempted"


class PaymentType(str, Enum):
    CASH = "cash"
    BUNDLE = "bundle"
    EXEMPTION = "exemption"


def _enum(enum_cls):
    return SAEnum(enum_cls, native_enum=False, length=20,
                  values_callable=lambda members: [m.value for m in members])


class Passage(Base):
    __tablename__ = "passages"
    __table_args__ = (
        Index(
            "uq_passages_one_active_per_vehicle", "vehicle_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    passage_number = Column(String(30), unique=True, nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"))
    bundle_subscription_id = Column(Integer, ForeignKey("bundle_subscriptions.id"))
    payment_type = Column(_enum(PaymentType), default=PaymentType.CASH, nullable=False)

    entry_time = Column(DateTime, nullable=False, index=True)
    entry_gate_id = Column(Integer, ForeignKey("gates.id"))
    entry_station_id = Column(Integer, ForeignKey("stations.id"))
    entry_operator_id = Column(Integer)

    exit_time = Column(DateTime)
    exit_gate_id = Column(Integer, ForeignKey("gates.id"))
    exit_station_id = Column(Integer, ForeignKey("stations.id"))
    exit_operator_id = Column(Integer)

    base_amount = Column(Numeric(10, 2), default=0, nullable=False)   # price snapshot at entry
    total_amount = Column(Numeric(10, 2), default=0, nullable=False)
    billable_units = Column(Integer)
    is_free_reentry = Column(Boolean, default=False, nullable=False)
    duration_minutes = Column(Integer)
    payment_confirmed = Column(Boolean, default=False, nullable=False)

    passage_type = Column(_enum(PassageType), default=PassageType.TOLL, nullable=False)
    status = Column(_enum(PassageStatus), default=PassageStatus.ACTIVE, nullable=False, index=True)
    notes = Column(Text)
    created_at = Column(DateTime)

    vehicle = relationship("Vehicle")

    @property
    def is_active(self) -> bool:
        return self.status == PassageStatus.ACTIVE

    def __repr__(self):
        return f"<Passage {self.passage_number} vehicle={self.vehicle_id} status={self.status}>"
