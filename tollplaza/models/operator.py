# tollplaza/models/operator.py
"""
Operators (supplied by the auth collaborator) and their station assignments.

A GateAssignment row is one (operator, station) pair. current_gate_id is the
gate the operator currently holds in that station, NULL when unselected.
The (station_id, current_gate_id) unique constraint makes gate occupancy
exclusive at the storage layer; NULLs never collide.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from tollplaza.database import Base

ROLE_ADMIN = "admin"
ROLE_OPERATOR = "operator"   # restricted to the gates of assigned stations


class Operator(Base):
    __tablename__ = "operators"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False)
    role = Column(String(20), default=ROLE_OPERATOR, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def is_gate_restricted(self) -> bool:
        return self.role == ROLE_OPERATOR

    def __repr__(self):
        return f"<Operator {self.id} {self.username} role={self.role}>"


class GateAssignment(Base):
    __tablename__ = "gate_assignments"
    __table_args__ = (
        UniqueConstraint("operator_id", "station_id", name="uq_assignment_operator_station"),
        UniqueConstraint("station_id", "current_gate_id", name="uq_assignment_station_gate"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    operator_id = Column(Integer, ForeignKey("operators.id"), nullable=False, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_by = Column(Integer)
    assigned_at = Column(DateTime)
    current_gate_id = Column(Integer, ForeignKey("gates.id"))
    gate_selected_at = Column(DateTime)

    def __repr__(self):
        return (f"<GateAssignment op={self.operator_id} station={self.station_id} "
                f"gate={self.current_gate_id}>")
