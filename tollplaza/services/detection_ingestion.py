# tollplaza/services/detection_ingestion.py
"""
Detection ingestion — pulls plate-recognition results from the detection backend.

Endpoint: GET http://{DETECTION_SOURCE_IP}/edge/cgi-bin/vparcgi.cgi
          ?computerid=..&oper=jsonlastresults&dd=<since>&_=<cache buster>
Response: JSON array of results; every result carries a provider "id".

Results already stored (same provider id) are skipped, so overlapping fetch
windows are harmless. New rows are stored as pending and handed to the
processing state machine. An unreachable or slow backend is reported with
source_unavailable=True instead of an error, and the poller backs off.
"""

import asyncio
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Optional
import httpx
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tollplaza.config import settings
from tollplaza.database import SessionLocal
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus
from tollplaza.services.detection_parser import parse_detection
from tollplaza.services.detection_processor import process_pending_detections
from tollplaza.utils.json_parser import safe_parse_json
from tollplaza.utils.logger import get_logger

logger = get_logger(__name__)

# The backend clock starts at 2000-01-01 when unset; ask from there when nothing is stored
DEFAULT_SINCE = datetime(2000, 1, 1)

# Poll delay while the source is down (doubles on each failure)
_MAX_BACKOFF = 60


@dataclass
class FetchResult:
    success: bool
    message: str
    detections: list = field(default_factory=list)
    source_unavailable: bool = False


@dataclass
class IngestionResult:
    success: bool
    message: str
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    errors: int = 0
    source_unavailable: bool = False
    processed: Optional[dict] = None

    def as_dict(self) -> dict:
        return asdict(self)


def format_since(since: datetime) -> str:
    """YYYY-MM-DDTHH:mm:ss.SSS, the backend's dd format."""
    return since.strftime("%Y-%m-%dT%H:%M:%S.") + f"{since.microsecond // 1000:03d}"


def build_source_params(since: datetime) -> dict:
    return {
        "computerid": settings.DETECTION_COMPUTER_ID,
        "oper": "jsonlastresults",
        "dd": format_since(since),
        "_": int(time.time() * 1000),
    }


def default_since(db: Session) -> datetime:
    """Oldest of the per-gate latest stored detections, so no gate misses results."""
    latest_per_gate = (
        db.query(func.max(DetectionEvent.detection_timestamp).label("latest"))
        .group_by(DetectionEvent.gate_id)
        .subquery()
    )
    oldest = db.query(func.min(latest_per_gate.c.latest)).scalar()
    return oldest or DEFAULT_SINCE


async def fetch_detections(since: Optional[datetime] = None, client: Optional[httpx.AsyncClient] = None,
                           timeout: Optional[float] = None) -> FetchResult:
    since = since or DEFAULT_SINCE
    timeout = timeout or settings.DETECTION_FETCH_TIMEOUT_SECONDS
    url = settings.DETECTION_SOURCE_URL
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)

    logger.info(f"📡 [INGEST] Fetching detections since {format_since(since)} from {url}")
    try:
        response = await client.get(url, params=build_source_params(since), timeout=timeout)
    except (httpx.NetworkError, httpx.TimeoutException) as e:
        logger.warning(f"⚠️  [INGEST] Detection source unreachable ({type(e).__name__}): {e}")
        return FetchResult(False, "Detection source is unreachable or timed out", source_unavailable=True)
    except httpx.HTTPError as e:
        logger.error(f"❌ [INGEST] Detection source request failed: {e}")
        return FetchResult(False, f"Detection source error: {e}")
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code != 200:
        logger.error(f"❌ [INGEST] Detection source returned HTTP {response.status_code}")
        return FetchResult(False, f"Detection source returned HTTP {response.status_code}")

    data = safe_parse_json(response.content)
    if not isinstance(data, list):
        logger.warning("[INGEST] Detection source returned no result list")
        return FetchResult(True, "No detections found")

    logger.info(f"[INGEST] Fetched {len(data)} detections")
    return FetchResult(True, f"Fetched {len(data)} detections", detections=data)


def store_detections(db: Session, detections: list, default_gate_id: Optional[int] = None) -> dict:
    """Persist new detections as pending. Returns {stored, skipped, errors}."""
    stored = skipped = errors = 0
    seen = set()

    for raw in detections:
        if not isinstance(raw, dict):
            errors += 1
            continue
        try:
            parsed = parse_detection(raw, default_gate_id)
        except (TypeError, ValueError) as e:
            logger.warning(f"[INGEST] Unreadable detection {raw.get('id')}: {e}")
            errors += 1
            continue
        if parsed.provider_detection_id is None:
            logger.warning("[INGEST] Detection without provider id ignored")
            errors += 1
            continue

        if parsed.provider_detection_id in seen or db.query(DetectionEvent.id).filter(
            DetectionEvent.provider_detection_id == parsed.provider_detection_id
        ).first():
            skipped += 1
            continue
        seen.add(parsed.provider_detection_id)

        db.add(DetectionEvent(
            provider_detection_id=parsed.provider_detection_id,
            gate_id=parsed.gate_id,
            plate_number=parsed.plate_number,
            original_plate=parsed.original_plate,
            detection_timestamp=parsed.detection_timestamp,
            direction=parsed.direction,
            make=parsed.make,
            model=parsed.model,
            color=parsed.color,
            confidence=parsed.confidence,
            raw_payload=parsed.raw_payload,
            status=DetectionStatus.PENDING,
            created_at=datetime.utcnow(),
        ))
        try:
            db.commit()
            stored += 1
        except IntegrityError:
            # Stored by a concurrent fetch between the check and the insert
            db.rollback()
            skipped += 1

    return {"stored": stored, "skipped": skipped, "errors": errors}


async def fetch_and_store(db: Session, since: Optional[datetime] = None,
                          client: Optional[httpx.AsyncClient] = None, process: bool = True,
                          timeout: Optional[float] = None) -> IngestionResult:
    since = since or default_since(db)
    fetched = await fetch_detections(since, client, timeout)
    if not fetched.success:
        return IngestionResult(False, fetched.message, source_unavailable=fetched.source_unavailable)

    counts = store_detections(db, fetched.detections)
    processed = process_pending_detections(db) if process and counts["stored"] else None
    logger.info(
        f"📥 [INGEST] fetched={len(fetched.detections)} stored={counts['stored']} "
        f"skipped={counts['skipped']} errors={counts['errors']}"
    )
    return IngestionResult(
        True, f"Stored {counts['stored']} new detections",
        fetched=len(fetched.detections), processed=processed, **counts,
    )


async def quick_capture(db: Session, client: Optional[httpx.AsyncClient] = None,
                        timeout: Optional[float] = None) -> IngestionResult:
    """fetch_and_store over the last QUICK_CAPTURE_WINDOW_SECONDS only."""
    since = datetime.utcnow() - timedelta(seconds=settings.QUICK_CAPTURE_WINDOW_SECONDS)
    return await fetch_and_store(db, since, client, timeout=timeout)


def ingest_pushed_detections(db: Session, detections: list, default_gate_id: Optional[int] = None) -> IngestionResult:
    """Detections posted by a client instead of fetched from the backend."""
    counts = store_detections(db, detections, default_gate_id)
    processed = process_pending_detections(db) if counts["stored"] else None
    logger.info(f"📥 [INGEST] pushed={len(detections)} stored={counts['stored']} skipped={counts['skipped']}")
    return IngestionResult(
        True, f"Stored {counts['stored']} new detections",
        fetched=len(detections), processed=processed, **counts,
    )


async def start_detection_polling(interval: Optional[int] = None):
    """
    Poll the detection backend forever. Called once at startup when
    DETECTION_POLLING_ENABLED is set. Backs off while the source is down.
    """
    interval = interval or settings.DETECTION_POLL_INTERVAL_SECONDS
    delay = interval
    logger.info(f"🚀 [INGEST] Detection polling every {interval}s from {settings.DETECTION_SOURCE_IP}")

    async with httpx.AsyncClient(timeout=settings.DETECTION_FETCH_TIMEOUT_SECONDS) as client:
        while True:
            db = SessionLocal()
            try:
                result = await fetch_and_store(db, client=client)
            except Exception as e:
                logger.error(f"❌ [INGEST] Polling cycle failed: {e}", exc_info=True)
                result = None
            finally:
                db.close()

            if result is None or result.source_unavailable:
                delay = min(delay * 2, _MAX_BACKOFF)
                logger.info(f"[INGEST] Next poll in {delay}s")
            else:
                delay = interval
            await asyncio.sleep(delay)
