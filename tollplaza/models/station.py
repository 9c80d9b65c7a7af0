# tollplaza/models/station.py
"""
Stations and their physical gates (reference data).
Owned by the reference-data service; this core only reads them.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from tollplaza.database import Base


class Station(Base):
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    code = Column(String(20), unique=True)
    is_active = Column(Boolean, default=True, nullable=False)

    gates = relationship("Gate", back_populates="station")

    def __repr__(self):
        return f"<Station {self.id} {self.name}>"


class Gate(Base):
    __tablename__ = "gates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    gate_type = Column(String(10), default="both", nullable=False)  # entry | exit | both
    is_active = Column(Boolean, default=True, nullable=False)

    station = relationship("Station", back_populates="gates")

    @property
    def supports_exit(self) -> bool:
        return self.gate_type in ("exit", "both")

    def __repr__(self):
        return f"<Gate {self.id} station={self.station_id} type={self.gate_type}>"
