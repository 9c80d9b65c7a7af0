# tollplaza/models/pricing.py
"""
Vehicle body types and their per-station base prices.
At most one BodyTypePrice row is effective for a (body type, station, date):
the active row with the latest effective_from wins.
"""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Numeric, String
from tollplaza.database import Base


class VehicleBodyType(Base):
    __tablename__ = "vehicle_body_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<VehicleBodyType {self.id} {self.name}>"


class BodyTypePrice(Base):
    __tablename__ = "body_type_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    body_type_id = Column(Integer, ForeignKey("vehicle_body_types.id"), nullable=False, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    base_price = Column(Numeric(10, 2), nullable=False)
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date)              # NULL = open-ended
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return (f"<BodyTypePrice body_type={self.body_type_id} station={self.station_id} "
                f"price={self.base_price}>")
