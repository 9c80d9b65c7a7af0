# tollplaza/services/vehicle_service.py
"""
Vehicle lookup and creation helpers.
Used by passage_service and detection_processor. Plates are always normalized
before they reach the database.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from tollplaza.models.vehicle import Vehicle
from tollplaza.utils.plates import normalize_plate
from tollplaza.utils.logger import get_logger

logger = get_logger(__name__)


def lookup_vehicle_by_plate(db: Session, plate_number: str) -> Optional[Vehicle]:
    """Find a vehicle by plate number. Returns None if not found."""
    plate = normalize_plate(plate_number)
    if not plate:
        return None
    return db.query(Vehicle).filter(Vehicle.plate_number == plate).first()


def create_vehicle(db: Session, plate_number: str, body_type_id: Optional[int] = None,
                   **attributes) -> Vehicle:
    """Add an unregistered vehicle to the session (flushed, not committed)."""
    now = datetime.utcnow()
    vehicle = Vehicle(
        plate_number=normalize_plate(plate_number),
        body_type_id=body_type_id,
        is_registered=False,
        created_at=now,
        updated_at=now,
        **attributes,
    )
    db.add(vehicle)
    db.flush()
    logger.info(f"[VEHICLE] Created {vehicle.plate_number} (id={vehicle.id}, body_type={body_type_id})")
    return vehicle


def find_or_create_vehicle(db: Session, plate_number: str, body_type_id: Optional[int] = None,
                           **attributes) -> Vehicle:
    """
    Resolve the vehicle for a plate, creating it if needed.
    An existing vehicle without a body type is classified with body_type_id when given.
    """
    vehicle = lookup_vehicle_by_plate(db, plate_number)
    if vehicle is None:
        clean = {k: v for k, v in attributes.items() if v is not None}
        return create_vehicle(db, plate_number, body_type_id, **clean)

    if body_type_id is not None and vehicle.body_type_id is None:
        set_body_type(vehicle, body_type_id)
    return vehicle


def set_body_type(vehicle: Vehicle, body_type_id: int):
    vehicle.body_type_id = body_type_id
    vehicle.updated_at = datetime.utcnow()
    logger.info(f"[VEHICLE] {vehicle.plate_number} classified as body type {body_type_id}")
