# tollplaza/routers/gates.py
"""Gate occupancy for the acting operator, plus station assignments."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from tollplaza.database import get_db
from tollplaza.dependencies import get_current_operator
from tollplaza.models.operator import Operator, ROLE_ADMIN
from tollplaza.schemas.gate import AssignStationRequest, GateAssignmentOut, GateOut, SelectGateRequest
from tollplaza.services import gate_allocator

router = APIRouter()


@router.get("/operators/me/gates", response_model=list[GateOut], summary="Gates I can select")
def available_gates(operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    return gate_allocator.list_available_gates(db, operator.id)


@router.get("/operators/me/gates/selected", response_model=GateOut | None, summary="My selected gate")
def selected_gate(operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    return gate_allocator.get_selected_gate(db, operator.id)


@router.post("/operators/me/gates/select", summary="Take a gate")
def select_gate(body: SelectGateRequest, operator: Operator = Depends(get_current_operator),
                db: Session = Depends(get_db)):
    selected = gate_allocator.select_gate(db, operator.id, body.station_id, body.gate_id)
    return {
        "success": selected,
        "message": "Gate selected" if selected else "Gate is unavailable",
        "gate_id": body.gate_id,
    }


@router.post("/operators/me/gates/deselect", summary="Release my gates")
def deselect_gate(operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    released = gate_allocator.deselect_gate(db, operator.id)
    return {"success": released, "message": "Gate released" if released else "No gate was selected"}


def _require_admin(operator: Operator):
    if operator.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin role required")


@router.post("/operators/{operator_id}/stations", response_model=GateAssignmentOut,
             summary="Assign an operator to a station")
def assign_station(operator_id: int, body: AssignStationRequest,
                   admin: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    _require_admin(admin)
    if db.get(Operator, operator_id) is None:
        raise HTTPException(status_code=404, detail="Operator not found")
    return gate_allocator.assign_operator_to_station(db, operator_id, body.station_id, assigned_by=admin.id)


@router.delete("/operators/{operator_id}/stations/{station_id}", summary="Remove a station assignment")
def unassign_station(operator_id: int, station_id: int,
                     admin: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    _require_admin(admin)
    if not gate_allocator.unassign_operator_from_station(db, operator_id, station_id):
        raise HTTPException(status_code=404, detail="Assignment not found")
    return {"status": "unassigned", "operator_id": operator_id, "station_id": station_id}
