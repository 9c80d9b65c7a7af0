# tollplaza/schemas/detection.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from tollplaza.models.detection_event import DetectionStatus, Direction


class DetectionOut(BaseModel):
    id: int
    provider_detection_id: str
    gate_id: Optional[int]
    plate_number: str
    original_plate: Optional[str]
    detection_timestamp: datetime
    direction: Direction
    make: Optional[str]
    model: Optional[str]
    color: Optional[str]
    confidence: Optional[float]
    status: DetectionStatus
    processing_notes: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PushedDetection(BaseModel):
    """One result as the backend reports it; a client may add gate_id."""
    id: str
    numberplate: Optional[str] = None
    originalplate: Optional[str] = None
    timestamp: Optional[str] = None
    direction: Optional[int] = None
    gate_id: Optional[int] = None
    make_str: Optional[str] = None
    model_str: Optional[str] = None
    color_str: Optional[str] = None
    globalconfidence: Optional[float] = None


class PushDetectionsRequest(BaseModel):
    detections: list[PushedDetection]
    gate_id: Optional[int] = None


class FetchRequest(BaseModel):
    since: Optional[datetime] = None
    timeout: Optional[float] = Field(None, gt=0, description="Seconds; defaults to DETECTION_FETCH_TIMEOUT_SECONDS")


class ResolveVehicleTypeRequest(BaseModel):
    body_type_id: int


class ConfirmExitRequest(BaseModel):
    payment_confirmed: bool = True
    notes: Optional[str] = None


class IngestionResultOut(BaseModel):
    success: bool
    message: str
    fetched: int
    stored: int
    skipped: int
    errors: int
    source_unavailable: bool
    processed: Optional[dict] = None
