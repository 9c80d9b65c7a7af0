# tollplaza/services/detection_processor.py
"""
Detection processing state machine.

    pending ──► pending_vehicle_type ──► pending_exit ──► processed
       │                 │                    │
       ├──► pending_exit └──► processed       └──► failed
       ├──► processed          failed
       └──► failed

Routing a freshly stored detection:
  empty plate                         → stays pending (not queued)
  gate missing / unknown              → failed
  unknown vehicle                     → pending_vehicle_type
  outbound, or vehicle already inside → pending_exit (operator confirms)
  otherwise                           → entry is opened, processed

Both operator queues are served oldest first by (detection_timestamp, id).

Every step reloads the detection under a row lock and leaves it alone unless
it is still in the state the step expects. Writes are version-checked, so a
worker holding a stale copy gets StaleDataError instead of overwriting a
newer state.
"""

from collections import Counter
from datetime import datetime
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tollplaza.config import settings
from tollplaza.exceptions import InvalidDetectionTransition
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus, Direction
from tollplaza.models.operator import Operator
from tollplaza.models.pricing import VehicleBodyType
from tollplaza.models.station import Gate
from tollplaza.models.vehicle import Vehicle
from tollplaza.schemas.passage import EntryOptions, ExitOptions
from tollplaza.services import passage_service
from tollplaza.services.gate_allocator import get_operator_station_ids
from tollplaza.services.results import GATE_DENY, ServiceResult
from tollplaza.services.vehicle_service import find_or_create_vehicle, lookup_vehicle_by_plate, set_body_type
from tollplaza.utils.locks import KeyedLock
from tollplaza.utils.logger import get_logger

logger = get_logger(__name__)

detection_locks = KeyedLock("detection")

ALLOWED_TRANSITIONS = {
    DetectionStatus.PENDING: {
        DetectionStatus.PENDING_VEHICLE_TYPE,
        DetectionStatus.PENDING_EXIT,
        DetectionStatus.PROCESSED,
        DetectionStatus.FAILED,
    },
    DetectionStatus.PENDING_VEHICLE_TYPE: {
        DetectionStatus.PENDING_EXIT,
        DetectionStatus.PROCESSED,
        DetectionStatus.FAILED,
    },
    DetectionStatus.PENDING_EXIT: {
        DetectionStatus.PROCESSED,
        DetectionStatus.FAILED,
    },
    DetectionStatus.PROCESSED: set(),
    DetectionStatus.FAILED: set(),
}

TERMINAL_STATUSES = {DetectionStatus.PROCESSED, DetectionStatus.FAILED}


def transition(detection: DetectionEvent, target: DetectionStatus, notes: Optional[str] = None) -> DetectionEvent:
    """Move a detection to target, or raise InvalidDetectionTransition. Does not commit."""
    current = DetectionStatus(detection.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidDetectionTransition(detection.id, current.value, target.value)
    detection.status = target
    if notes is not None:
        detection.processing_notes = notes
    if target in TERMINAL_STATUSES:
        detection.processed_at = datetime.utcnow()
    logger.info(f"[DETECT] #{detection.id} {detection.plate_number or '-'}: {current.value} → {target.value}"
                + (f" ({notes})" if notes else ""))
    return detection


def _reload(db: Session, detection_id: int) -> Optional[DetectionEvent]:
    """Fresh copy of the row, locked until the next commit where the database supports it."""
    return (
        db.query(DetectionEvent)
        .filter(DetectionEvent.id == detection_id)
        .populate_existing()
        .with_for_update()
        .first()
    )


def _detection_gate(db: Session, detection: DetectionEvent) -> Optional[Gate]:
    if detection.gate_id is None:
        return None
    gate = db.get(Gate, detection.gate_id)
    if gate is None or not gate.is_active:
        return None
    return gate


def _route_known_vehicle(db: Session, detection: DetectionEvent, vehicle: Vehicle, gate: Gate,
                         operator_id: Optional[int]) -> Optional[ServiceResult]:
    """
    Rules for a detection whose vehicle exists. Returns the entry result when an
    entry was attempted, else None.
    """
    active = passage_service.get_active_passage(db, vehicle.id)

    if detection.direction == Direction.OUTBOUND or active is not None:
        if not gate.supports_exit:
            transition(detection, DetectionStatus.PROCESSED,
                       f"Exit-bound detection at entry-only gate {gate.id}; no action taken")
        else:
            transition(detection, DetectionStatus.PENDING_EXIT)
        return None

    result = passage_service.process_entry(
        db, detection.plate_number, gate.id, operator_id,
        EntryOptions(make=detection.make, model=detection.model, color=detection.color,
                     detection_id=detection.id),
        entry_time=detection.detection_timestamp,
    )
    if result.success:
        transition(detection, DetectionStatus.PROCESSED, f"Passage {result.data.id} created")
    else:
        transition(detection, DetectionStatus.FAILED, result.message)
    return result


def _fail(db: Session, detection_id: int, error: Exception) -> DetectionEvent:
    db.rollback()
    detection = _reload(db, detection_id)
    if DetectionStatus.FAILED not in ALLOWED_TRANSITIONS[DetectionStatus(detection.status)]:
        db.rollback()
        return detection
    transition(detection, DetectionStatus.FAILED, f"{type(error).__name__}: {error}")
    db.commit()
    return detection


def route_detection(db: Session, detection: DetectionEvent, operator_id: Optional[int] = None) -> DetectionStatus:
    """Apply the routing rules to one pending detection and commit the outcome."""
    operator_id = operator_id if operator_id is not None else settings.SYSTEM_OPERATOR_ID
    detection_id = detection.id

    with detection_locks.hold(detection_id):
        detection = _reload(db, detection_id)
        if detection is None:
            return DetectionStatus.FAILED
        if detection.status != DetectionStatus.PENDING:
            db.rollback()
            logger.info(f"[DETECT] #{detection_id} already routed ({DetectionStatus(detection.status).value})")
            return DetectionStatus(detection.status)

        if not (detection.plate_number or "").strip():
            db.rollback()
            logger.warning(f"[DETECT] #{detection_id} has no plate; left pending")
            return DetectionStatus.PENDING

        try:
            gate = _detection_gate(db, detection)
            if gate is None:
                transition(detection, DetectionStatus.FAILED, f"Unknown or inactive gate {detection.gate_id}")
            else:
                vehicle = lookup_vehicle_by_plate(db, detection.plate_number)
                if vehicle is None:
                    transition(detection, DetectionStatus.PENDING_VEHICLE_TYPE)
                else:
                    _route_known_vehicle(db, detection, vehicle, gate, operator_id)
            db.commit()
        except StaleDataError:
            db.rollback()
            detection = _reload(db, detection_id)
            db.rollback()
            logger.warning(f"[DETECT] #{detection_id} was routed by another worker "
                           f"({DetectionStatus(detection.status).value})")
        except Exception as e:
            logger.error(f"❌ [DETECT] Routing #{detection_id} failed: {e}", exc_info=True)
            detection = _fail(db, detection_id, e)

    return DetectionStatus(detection.status)


def process_pending_detections(db: Session, operator_id: Optional[int] = None,
                               limit: Optional[int] = None) -> dict:
    """Route every pending detection, oldest first. Returns outcome counts."""
    q = (
        db.query(DetectionEvent)
        .filter(
            DetectionEvent.status == DetectionStatus.PENDING,
            DetectionEvent.plate_number.isnot(None),
            DetectionEvent.plate_number != "",
        )
        .order_by(DetectionEvent.detection_timestamp, DetectionEvent.id)
        .with_for_update(skip_locked=True)
    )
    if limit:
        q = q.limit(limit)
    pending = q.all()

    stats = {"processed": 0, "queued": 0, "failed": 0, "skipped": 0, "total": len(pending)}
    for detection in pending:
        status = route_detection(db, detection, operator_id)
        if status == DetectionStatus.PROCESSED:
            stats["processed"] += 1
        elif status in (DetectionStatus.PENDING_VEHICLE_TYPE, DetectionStatus.PENDING_EXIT):
            stats["queued"] += 1
        elif status == DetectionStatus.FAILED:
            stats["failed"] += 1
        else:
            stats["skipped"] += 1

    if pending:
        logger.info(f"[DETECT] Processed batch: {stats}")
    return stats


# ── Operator resolution ──────────────────────────────────────────────────────

def _stale(db: Session, detection_id: int) -> ServiceResult:
    db.rollback()
    detection = _reload(db, detection_id)
    db.rollback()
    status = DetectionStatus(detection.status).value
    logger.warning(f"[DETECT] #{detection_id} was changed by another operator ({status})")
    return ServiceResult.conflict(f"Detection {detection_id} is {status}", data={"detection": detection})


def resolve_vehicle_type(db: Session, detection_id: int, body_type_id: int,
                         operator_id: Optional[int] = None) -> ServiceResult:
    """Classify the vehicle of a pending_vehicle_type detection and route it again."""
    with detection_locks.hold(detection_id):
        detection = _reload(db, detection_id)
        if detection is None:
            return ServiceResult.not_found(f"Detection {detection_id} not found")
        if detection.status != DetectionStatus.PENDING_VEHICLE_TYPE:
            db.rollback()
            return ServiceResult.conflict(f"Detection {detection_id} is {DetectionStatus(detection.status).value}")
        body_type = db.get(VehicleBodyType, body_type_id)
        if body_type is None or not body_type.is_active:
            db.rollback()
            return ServiceResult.not_found(f"Body type {body_type_id} not found or inactive")

        entry = None
        try:
            gate = _detection_gate(db, detection)
            if gate is None:
                transition(detection, DetectionStatus.FAILED, f"Unknown or inactive gate {detection.gate_id}")
                db.commit()
                return ServiceResult.not_found(f"Gate {detection.gate_id} not found or inactive",
                                               data={"detection": detection})

            vehicle = find_or_create_vehicle(db, detection.plate_number, body_type_id,
                                             make=detection.make, model=detection.model, color=detection.color)
            if vehicle.body_type_id != body_type_id:
                set_body_type(vehicle, body_type_id)
            entry = _route_known_vehicle(db, detection, vehicle, gate, operator_id)
            db.commit()
        except StaleDataError:
            return _stale(db, detection_id)
        except Exception as e:
            logger.error(f"❌ [DETECT] Resolving #{detection_id} failed: {e}", exc_info=True)
            detection = _fail(db, detection_id, e)
            return ServiceResult(False, str(e), data={"detection": detection})

    status = DetectionStatus(detection.status)
    if status == DetectionStatus.FAILED:
        return ServiceResult(False, detection.processing_notes, data={"detection": detection},
                             error=entry.error if entry else None)
    if entry is not None:
        return ServiceResult.ok(f"Vehicle {detection.plate_number} classified and entered",
                                data={"detection": detection, "passage": entry.data},
                                gate_action=entry.gate_action)
    return ServiceResult.ok(f"Vehicle {detection.plate_number} classified; detection is {status.value}",
                            data={"detection": detection}, gate_action=GATE_DENY)


def confirm_exit(db: Session, detection_id: int, operator_id: Optional[int] = None,
                 payment_confirmed: bool = True, notes: Optional[str] = None) -> ServiceResult:
    """Operator confirmation of a pending_exit detection: close the passage."""
    with detection_locks.hold(detection_id):
        detection = _reload(db, detection_id)
        if detection is None:
            return ServiceResult.not_found(f"Detection {detection_id} not found")
        if detection.status != DetectionStatus.PENDING_EXIT:
            db.rollback()
            return ServiceResult.conflict(f"Detection {detection_id} is {DetectionStatus(detection.status).value}")

        result = passage_service.process_exit(
            db, detection.plate_number, detection.gate_id, operator_id,
            ExitOptions(payment_confirmed=payment_confirmed, notes=notes, detection_id=detection.id),
            exit_time=detection.detection_timestamp,
        )
        try:
            if result.success:
                passage = result.data["passage"]
                transition(detection, DetectionStatus.PROCESSED,
                           f"Passage {passage.id} closed, amount {passage.total_amount}")
            else:
                transition(detection, DetectionStatus.FAILED, result.message)
            db.commit()
        except (StaleDataError, InvalidDetectionTransition):
            return _stale(db, detection_id)

    data = dict(result.data) if isinstance(result.data, dict) else {}
    data["detection"] = detection
    return ServiceResult(result.success, result.message, data, result.error, result.gate_action, result.extra)


# ── Queues ───────────────────────────────────────────────────────────────────

def _queue(db: Session, status: DetectionStatus, operator: Optional[Operator]) -> list[DetectionEvent]:
    q = db.query(DetectionEvent).filter(DetectionEvent.status == status)
    if operator is not None and operator.is_gate_restricted:
        station_ids = get_operator_station_ids(db, operator.id)
        if not station_ids:
            return []
        gate_ids = db.query(Gate.id).filter(Gate.station_id.in_(station_ids))
        q = q.filter(DetectionEvent.gate_id.in_(gate_ids.scalar_subquery()))
    return q.order_by(DetectionEvent.detection_timestamp, DetectionEvent.id).all()


def list_pending_vehicle_type(db: Session, operator: Optional[Operator] = None) -> list[dict]:
    items = []
    for detection in _queue(db, DetectionStatus.PENDING_VEHICLE_TYPE, operator):
        items.append({
            "detection": detection,
            "gate": db.get(Gate, detection.gate_id) if detection.gate_id else None,
            "vehicle": lookup_vehicle_by_plate(db, detection.plate_number),
        })
    return items


def list_pending_exit(db: Session, operator: Optional[Operator] = None) -> list[dict]:
    """Pending exits with the vehicle, its active passage and the fare it would pay now."""
    items = []
    for detection in _queue(db, DetectionStatus.PENDING_EXIT, operator):
        vehicle = lookup_vehicle_by_plate(db, detection.plate_number)
        passage = passage_service.get_active_passage(db, vehicle.id) if vehicle else None
        fare = None
        if passage is not None:
            preview = passage_service.preview_exit(db, passage.id, detection.detection_timestamp)
            fare = preview.data["fare"] if preview.success else None
        items.append({
            "detection": detection,
            "gate": db.get(Gate, detection.gate_id) if detection.gate_id else None,
            "vehicle": vehicle,
            "active_passage": passage,
            "fare": fare,
        })
    return items


def queue_status(db: Session) -> dict:
    rows = (
        db.query(DetectionEvent.status, func.count(DetectionEvent.id))
        .group_by(DetectionEvent.status)
        .all()
    )
    counts = Counter({DetectionStatus(status).value: n for status, n in rows})

    def oldest(status):
        return (
            db.query(func.min(DetectionEvent.detection_timestamp))
            .filter(DetectionEvent.status == status)
            .scalar()
        )

    return {
        "counts": {s.value: counts.get(s.value, 0) for s in DetectionStatus},
        "oldest_pending_vehicle_type": oldest(DetectionStatus.PENDING_VEHICLE_TYPE),
        "oldest_pending_exit": oldest(DetectionStatus.PENDING_EXIT),
    }
