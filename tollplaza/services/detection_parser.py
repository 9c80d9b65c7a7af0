# tollplaza/services/detection_parser.py
"""
Maps one raw plate-recognition result (backend JSON or pushed by a client)
into a ParsedDetection. Field names follow the vparcgi "jsonlastresults" output.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from tollplaza.config import settings
from tollplaza.models.detection_event import Direction
from tollplaza.utils.json_parser import first_present, parse_timestamp
from tollplaza.utils.plates import normalize_plate

# Backend direction codes
_DIRECTIONS = {0: Direction.INBOUND, 1: Direction.OUTBOUND}


@dataclass
class ParsedDetection:
    provider_detection_id: Optional[str]
    gate_id: Optional[int]
    plate_number: str          # normalized
    original_plate: Optional[str]
    detection_timestamp: datetime
    direction: Direction
    make: Optional[str]
    model: Optional[str]
    color: Optional[str]
    confidence: Optional[float]
    raw_payload: str


def parse_direction(value) -> Direction:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("inbound", "entry", "in"):
            return Direction.INBOUND
        if text in ("outbound", "exit", "out"):
            return Direction.OUTBOUND
        try:
            value = int(text)
        except ValueError:
            return Direction.UNKNOWN
    if isinstance(value, bool):
        return Direction.UNKNOWN
    return _DIRECTIONS.get(value, Direction.UNKNOWN)


def _as_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def parse_detection(data: dict, default_gate_id: Optional[int] = None) -> ParsedDetection:
    """Payload gate (gate_id / gateId) wins; the configured gate is the fallback."""
    detection_id = data.get("id")
    gate_id = first_present(data, "gate_id", "gateId")
    if gate_id is None:
        gate_id = default_gate_id if default_gate_id is not None else settings.DETECTION_DEFAULT_GATE_ID

    return ParsedDetection(
        provider_detection_id=str(detection_id) if detection_id not in (None, "") else None,
        gate_id=int(gate_id) if gate_id is not None else None,
        plate_number=normalize_plate(data.get("numberplate")),
        original_plate=data.get("originalplate") or data.get("numberplate"),
        detection_timestamp=parse_timestamp(data.get("timestamp")) or datetime.utcnow(),
        direction=parse_direction(data.get("direction")),
        make=_as_text(first_present(data, "make_str", "make")),
        model=_as_text(first_present(data, "model_str", "model")),
        color=_as_text(first_present(data, "color_str", "color")),
        confidence=_as_float(data.get("globalconfidence")),
        raw_payload=json.dumps(data, default=str),
    )
