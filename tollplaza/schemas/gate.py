# tollplaza/schemas/gate.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class GateOut(BaseModel):
    id: int
    station_id: int
    name: str
    gate_type: str
    is_active: bool

    class Config:
        from_attributes = True


class SelectGateRequest(BaseModel):
    station_id: int
    gate_id: int


class AssignStationRequest(BaseModel):
    station_id: int


class GateAssignmentOut(BaseModel):
    id: int
    operator_id: int
    station_id: int
    is_active: bool
    assigned_by: Optional[int]
    assigned_at: Optional[datetime]
    current_gate_id: Optional[int]
    gate_selected_at: Optional[datetime]

    class Config:
        from_attributes = True
