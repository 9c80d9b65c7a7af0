# tollplaza/routers/passages.py
"""Manual entry/exit, exit preview and active passage views."""

from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from tollplaza.database import get_db
from tollplaza.dependencies import get_current_operator
from tollplaza.models.operator import Operator
from tollplaza.schemas.passage import EntryRequest, ExitRequest, PassageOut, SetVehicleTypeRequest
from tollplaza.services import passage_service
from tollplaza.services.results import ERROR_NOT_FOUND
from tollplaza.utils.serializers import service_response

router = APIRouter()


@router.post("/passages/entry", summary="Open a passage")
def entry(body: EntryRequest, operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    """success=false (vehicle already inside, gate unknown) is returned with HTTP 200."""
    result = passage_service.process_entry(db, body.plate_number, body.gate_id, operator.id, body.options())
    return service_response(result)


@router.post("/passages/exit", summary="Close a passage")
def exit_(body: ExitRequest, operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    result = passage_service.process_exit(db, body.plate_number, body.gate_id, operator.id, body.options())
    return service_response(result)


@router.get("/passages/active", response_model=list[PassageOut], summary="Vehicles currently inside")
def active_passages(station_id: int = None, db: Session = Depends(get_db)):
    return passage_service.list_active_passages(db, station_id)


@router.get("/passages/lookup/{plate}", summary="Quick plate lookup")
def lookup(plate: str, db: Session = Depends(get_db)):
    return service_response(passage_service.quick_plate_lookup(db, plate))


@router.get("/passages/{passage_id}/exit-preview", summary="Fare if the vehicle left now")
def exit_preview(passage_id: int, at: datetime = None, db: Session = Depends(get_db)):
    result = passage_service.preview_exit(db, passage_id, at)
    if result.error == ERROR_NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.message)
    return service_response(result)


@router.put("/passages/{passage_id}/vehicle-type", summary="Classify the vehicle of an active passage")
def set_vehicle_type(passage_id: int, body: SetVehicleTypeRequest, db: Session = Depends(get_db)):
    return service_response(passage_service.set_passage_vehicle_type(db, passage_id, body.body_type_id))
