# tollplaza/utils/serializers.py
"""
Turns service return values (ORM rows, FareQuote, ServiceResult) into plain
JSON-ready structures for the routers.
"""

from typing import Any
from tollplaza.models.detection_event import DetectionEvent
from tollplaza.models.passage import Passage
from tollplaza.models.station import Gate
from tollplaza.models.vehicle import Vehicle
from tollplaza.schemas.detection import DetectionOut
from tollplaza.schemas.gate import GateOut
from tollplaza.schemas.passage import FareQuoteOut, PassageOut
from tollplaza.schemas.vehicle import VehicleOut
from tollplaza.services.fare_engine import FareQuote
from tollplaza.services.results import ServiceResult

_SCHEMAS = {
    Passage: PassageOut,
    Vehicle: VehicleOut,
    DetectionEvent: DetectionOut,
    Gate: GateOut,
    FareQuote: FareQuoteOut,
}


def serialize(value: Any) -> Any:
    schema = _SCHEMAS.get(type(value))
    if schema is not None:
        return schema.model_validate(value).model_dump(mode="json")
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def service_response(result: ServiceResult) -> dict:
    """Envelope returned with HTTP 200 for every business outcome."""
    body = {
        "success": result.success,
        "message": result.message,
        "error": result.error,
        "gate_action": result.gate_action,
        "data": serialize(result.data),
    }
    body.update(serialize(result.extra))
    return body
