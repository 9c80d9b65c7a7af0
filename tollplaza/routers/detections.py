# tollplaza/routers/detections.py
"""
Plate-recognition detections: ingestion triggers, push endpoint and the two
operator queues (pending vehicle type / pending exit).
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from tollplaza.database import get_db
from tollplaza.dependencies import get_current_operator
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus
from tollplaza.models.operator import Operator
from tollplaza.schemas.detection import (ConfirmExitRequest, DetectionOut, FetchRequest,
                                         IngestionResultOut, PushDetectionsRequest,
                                         ResolveVehicleTypeRequest)
from tollplaza.services import detection_ingestion, detection_processor
from tollplaza.utils.serializers import serialize, service_response

router = APIRouter()


@router.post("/detections/fetch", response_model=IngestionResultOut, summary="Fetch and store new detections")
async def fetch_detections(body: FetchRequest = None, db: Session = Depends(get_db)):
    """
    Pulls results from the detection backend. An unreachable backend is not an
    error: the body comes back with source_unavailable=true.
    """
    since = body.since if body else None
    timeout = body.timeout if body else None
    result = await detection_ingestion.fetch_and_store(db, since=since, timeout=timeout)
    return result.as_dict()


@router.post("/detections/quick-capture", response_model=IngestionResultOut,
             summary="Fetch detections from the last two minutes")
async def quick_capture(timeout: float = Query(None, gt=0), db: Session = Depends(get_db)):
    result = await detection_ingestion.quick_capture(db, timeout=timeout)
    return result.as_dict()


@router.post("/detections", response_model=IngestionResultOut, summary="Push detections")
def push_detections(body: PushDetectionsRequest, db: Session = Depends(get_db)):
    payload = [d.model_dump(exclude_none=True) for d in body.detections]
    return detection_ingestion.ingest_pushed_detections(db, payload, body.gate_id).as_dict()


@router.get("/detections", response_model=list[DetectionOut], summary="List detections")
def list_detections(status: DetectionStatus = None, plate: str = None, limit: int = 50, db: Session = Depends(get_db)):
    q = db.query(DetectionEvent)
    if status:
        q = q.filter(DetectionEvent.status == status)
    if plate:
        q = q.filter(DetectionEvent.plate_number == plate.upper())
    return q.order_by(DetectionEvent.detection_timestamp.desc(), DetectionEvent.id.desc()).limit(limit).all()


@router.get("/detections/pending-vehicle-type", summary="Queue: vehicles waiting for a body type")
def pending_vehicle_type(operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    return serialize(detection_processor.list_pending_vehicle_type(db, operator))


@router.get("/detections/pending-exit", summary="Queue: exits waiting for confirmation")
def pending_exit(operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    return serialize(detection_processor.list_pending_exit(db, operator))


@router.get("/detections/queue-status", summary="Detection counts per status")
def queue_status(db: Session = Depends(get_db)):
    return detection_processor.queue_status(db)


@router.post("/detections/{detection_id}/vehicle-type", summary="Classify and route a detection")
def resolve_vehicle_type(detection_id: int, body: ResolveVehicleTypeRequest,
                         operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    result = detection_processor.resolve_vehicle_type(db, detection_id, body.body_type_id, operator.id)
    return service_response(result)


@router.post("/detections/{detection_id}/confirm-exit", summary="Confirm a pending exit")
def confirm_exit(detection_id: int, body: ConfirmExitRequest = None,
                 operator: Operator = Depends(get_current_operator), db: Session = Depends(get_db)):
    body = body or ConfirmExitRequest()
    result = detection_processor.confirm_exit(db, detection_id, operator.id,
                                              payment_confirmed=body.payment_confirmed, notes=body.notes)
    return service_response(result)
