# tollplaza/models/vehicle.py
"""
Vehicles, identified by their normalized plate number.
body_type_id stays NULL until an operator classifies the vehicle.
paid_until marks the end of a pre-paid window: exits before it are free.
"""

from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from tollplaza.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate_number = Column(String(20), unique=True, nullable=False, index=True)
    body_type_id = Column(Integer, ForeignKey("vehicle_body_types.id"))
    make = Column(String(50))
    model = Column(String(50))
    year = Column(Integer)
    color = Column(String(30))
    owner_name = Column(String(100))
    is_registered = Column(Boolean, default=False, nullable=False)
    is_exempted = Column(Boolean, default=False, nullable=False)
    exemption_reason = Column(Text)
    exemption_expires_at = Column(DateTime)
    paid_until = Column(DateTime)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def is_currently_exempted(self, now: datetime | None = None) -> bool:
        """Exempted with no expiry, or an expiry still in the future."""
        if not self.is_exempted:
            return False
        if self.exemption_expires_at is None:
            return True
        return self.exemption_expires_at > (now or datetime.utcnow())

    def __repr__(self):
        return f"<Vehicle {self.plate_number} body_type={self.body_type_id}>"
