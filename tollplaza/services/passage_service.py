# tollplaza/services/passage_service.py
"""
Passage lifecycle: entry → (preview) → exit.

process_entry   opens a passage for a plate at a gate. Refuses if the vehicle is
                already inside. Routes payment (exemption / bundle / cash) and
                snapshots the base price for the vehicle's body type.
process_exit    closes the active passage and stores the fare quoted by the
                configured fare policy.
preview_exit    same quote without writing anything.

Every entry/exit for one plate runs under the same in-process lock. The partial
unique index on passages(vehicle_id) WHERE status='active' covers other workers:
a losing insert comes back as a conflict result.
"""

import random
import string
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tollplaza.exceptions import PassageIntegrityError
from tollplaza.models.passage import Passage, PassageStatus, PassageType, PaymentType
from tollplaza.models.pricing import VehicleBodyType
from tollplaza.models.station import Gate
from tollplaza.models.vehicle import Vehicle
from tollplaza.schemas.passage import EntryOptions, ExitOptions
from tollplaza.services.fare_engine import FareQuote, ZERO, calculate_fare, get_fare_policy, money
from tollplaza.services.pricing_service import get_effective_price, get_usable_bundle
from tollplaza.services.results import GATE_ALLOW, GATE_REQUIRE_PAYMENT, ServiceResult
from tollplaza.services.vehicle_service import find_or_create_vehicle, lookup_vehicle_by_plate, set_body_type
from tollplaza.utils.locks import KeyedLock
from tollplaza.utils.logger import get_logger
from tollplaza.utils.plates import normalize_plate

logger = get_logger(__name__)

plate_locks = KeyedLock("plate")

PASSAGE_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


# ── Lookups ──────────────────────────────────────────────────────────────────

def get_active_passage(db: Session, vehicle_id: int) -> Optional[Passage]:
    """The vehicle's active passage, or None. Two active rows is an integrity failure."""
    rows = (
        db.query(Passage)
        .filter(Passage.vehicle_id == vehicle_id, Passage.status == PassageStatus.ACTIVE)
        .order_by(Passage.id)
        .all()
    )
    if len(rows) > 1:
        logger.critical(f"🚨 [PASSAGE] Vehicle {vehicle_id} has {len(rows)} active passages")
        raise PassageIntegrityError(vehicle_id, [p.id for p in rows])
    return rows[0] if rows else None


def _passage_history(db: Session, vehicle_id: int, exclude_id: Optional[int]) -> list[Passage]:
    q = db.query(Passage).filter(
        Passage.vehicle_id == vehicle_id,
        Passage.status.in_([PassageStatus.ACTIVE, PassageStatus.COMPLETED]),
    )
    if exclude_id is not None:
        q = q.filter(Passage.id != exclude_id)
    return q.order_by(Passage.entry_time).all()


def _active_gate(db: Session, gate_id: Optional[int]) -> Optional[Gate]:
    if gate_id is None:
        return None
    gate = db.get(Gate, gate_id)
    if gate is None or not gate.is_active:
        return None
    return gate


def generate_passage_number(db: Session, when: Optional[datetime] = None) -> str:
    """PASS<YYYYMMDD><6 chars>, regenerated until no stored passage uses it."""
    prefix = f"PASS{(when or datetime.utcnow()):%Y%m%d}"
    while True:
        candidate = prefix + "".join(random.choices(PASSAGE_NUMBER_ALPHABET, k=6))
        taken = db.query(Passage.id).filter(Passage.passage_number == candidate).first()
        if not taken:
            return candidate


def _price_for(db: Session, body_type_id: Optional[int], station_id: Optional[int], when: datetime) -> Decimal:
    if body_type_id is None or station_id is None:
        return ZERO
    price = get_effective_price(db, body_type_id, station_id, when.date())
    if price is None:
        logger.warning(f"⚠️  [PRICE] No effective price for body type {body_type_id} at station {station_id}")
        return ZERO
    return money(price.base_price)


def _join_notes(*parts) -> Optional[str]:
    text = "\n".join(p for p in parts if p)
    return text or None


# ── Entry ────────────────────────────────────────────────────────────────────

def process_entry(db: Session, plate: str, gate_id: int, operator_id: Optional[int],
                  options: Optional[EntryOptions] = None,
                  entry_time: Optional[datetime] = None) -> ServiceResult:
    plate_number = normalize_plate(plate)
    if not plate_number:
        return ServiceResult.invalid("Plate number is required")
    options = options or EntryOptions()

    with plate_locks.hold(plate_number):
        gate = _active_gate(db, gate_id)
        if gate is None:
            return ServiceResult.not_found(f"Gate {gate_id} not found or inactive")

        existing = lookup_vehicle_by_plate(db, plate_number)
        if existing is not None:
            active = get_active_passage(db, existing.id)
            if active is not None:
                logger.info(f"[ENTRY] {plate_number} refused: already inside ({active.passage_number})")
                return ServiceResult.conflict(
                    f"Vehicle {plate_number} already has an active passage", data=active
                )

        now = entry_time or datetime.utcnow()
        vehicle = find_or_create_vehicle(
            db, plate_number, options.body_type_id,
            make=options.make, model=options.model, year=options.year,
            color=options.color, owner_name=options.owner_name,
        )

        # Payment routing: exemption > bundle > cash
        payment_type, passage_type = PaymentType.CASH, PassageType.TOLL
        subscription = None
        if vehicle.is_currently_exempted(now):
            payment_type, passage_type = PaymentType.EXEMPTION, PassageType.EXEMPTED
        elif options.account_id is not None:
            subscription = get_usable_bundle(db, options.account_id, now)
            if subscription is not None:
                payment_type, passage_type = PaymentType.BUNDLE, PassageType.FREE
                subscription.passages_used = (subscription.passages_used or 0) + 1

        if passage_type == PassageType.EXEMPTED:
            base_amount = ZERO
        else:
            base_amount = _price_for(db, vehicle.body_type_id, gate.station_id, now)

        passage = Passage(
            passage_number=generate_passage_number(db, now),
            vehicle_id=vehicle.id,
            account_id=options.account_id,
            bundle_subscription_id=subscription.id if subscription else None,
            payment_type=payment_type,
            passage_type=passage_type,
            status=PassageStatus.ACTIVE,
            entry_time=now,
            entry_gate_id=gate.id,
            entry_station_id=gate.station_id,
            entry_operator_id=operator_id,
            base_amount=base_amount,
            total_amount=ZERO,
            notes=_join_notes(options.notes, f"detection #{options.detection_id}" if options.detection_id else None),
            created_at=datetime.utcnow(),
        )
        db.add(passage)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"[ENTRY] {plate_number} lost the race for an active passage: {e.orig}")
            return ServiceResult.conflict(f"Vehicle {plate_number} already has an active passage")
        db.refresh(passage)

    logger.info(
        f"✅ [ENTRY] {plate_number} | gate={gate.id} | {passage.passage_number} | "
        f"{passage_type.value}/{payment_type.value} | base={base_amount}"
    )
    return ServiceResult.ok(
        f"Entry recorded for {plate_number}", data=passage, gate_action=GATE_ALLOW,
        receipt={"payment_method": options.payment_method, "receipt_notes": options.receipt_notes},
    )


# ── Exit ─────────────────────────────────────────────────────────────────────

def _quote(db: Session, vehicle: Vehicle, passage: Passage, reference_time: datetime) -> tuple[Decimal, FareQuote]:
    """Base amount (backfilled if deferred) and fare for a passage, without writing."""
    policy = get_fare_policy()
    if passage.passage_type != PassageType.TOLL:
        return money(passage.base_amount), FareQuote(ZERO, False, 0, policy.name, window_start=passage.entry_time)

    base_amount = money(passage.base_amount)
    if base_amount == ZERO and vehicle.body_type_id is not None:
        base_amount = _price_for(db, vehicle.body_type_id, passage.entry_station_id, reference_time)

    snapshot = SimpleNamespace(
        id=passage.id, entry_time=passage.entry_time, exit_time=None, base_amount=base_amount,
    )
    history = _passage_history(db, vehicle.id, passage.id)
    return base_amount, calculate_fare(vehicle, snapshot, history, reference_time, policy)


def process_exit(db: Session, plate: str, gate_id: int, operator_id: Optional[int],
                 options: Optional[ExitOptions] = None,
                 exit_time: Optional[datetime] = None) -> ServiceResult:
    plate_number = normalize_plate(plate)
    if not plate_number:
        return ServiceResult.invalid("Plate number is required")
    options = options or ExitOptions()

    with plate_locks.hold(plate_number):
        gate = _active_gate(db, gate_id)
        if gate is None:
            return ServiceResult.not_found(f"Gate {gate_id} not found or inactive")

        vehicle = lookup_vehicle_by_plate(db, plate_number)
        if vehicle is None:
            return ServiceResult.not_found(f"No vehicle with plate {plate_number}")
        passage = get_active_passage(db, vehicle.id)
        if passage is None:
            return ServiceResult.not_found(f"No active passage for {plate_number}")

        now = exit_time or datetime.utcnow()
        base_amount, quote = _quote(db, vehicle, passage, now)

        passage.base_amount = base_amount
        passage.exit_time = now
        passage.exit_gate_id = gate.id
        passage.exit_station_id = gate.station_id
        passage.exit_operator_id = operator_id
        passage.total_amount = quote.amount
        passage.billable_units = quote.billable_units
        passage.is_free_reentry = quote.is_free_reentry
        passage.duration_minutes = int((now - passage.entry_time).total_seconds() // 60)
        passage.payment_confirmed = options.payment_confirmed
        passage.status = PassageStatus.COMPLETED
        passage.notes = _join_notes(passage.notes, options.notes)

        if quote.amount > ZERO and quote.covered_until is not None:
            vehicle.paid_until = quote.covered_until
            vehicle.updated_at = datetime.utcnow()

        db.commit()
        db.refresh(passage)

    if quote.amount == ZERO or options.payment_confirmed or passage.payment_type == PaymentType.BUNDLE:
        gate_action = GATE_ALLOW
    else:
        gate_action = GATE_REQUIRE_PAYMENT

    logger.info(
        f"🚗 [EXIT] {plate_number} | gate={gate.id} | {passage.passage_number} | "
        f"amount={quote.amount} units={quote.billable_units} free={quote.is_free_reentry} | {gate_action}"
    )
    return ServiceResult.ok(
        f"Exit recorded for {plate_number}",
        data={"passage": passage, "fare": quote},
        gate_action=gate_action,
        receipt={"payment_method": options.payment_method, "receipt_notes": options.receipt_notes},
    )


def preview_exit(db: Session, passage_id: int, reference_time: Optional[datetime] = None) -> ServiceResult:
    """Quote an active passage as if it exited at reference_time. Writes nothing."""
    passage = db.get(Passage, passage_id)
    if passage is None:
        return ServiceResult.not_found(f"Passage {passage_id} not found")
    if not passage.is_active:
        return ServiceResult.conflict(f"Passage {passage.passage_number} is already {passage.status.value}")

    base_amount, quote = _quote(db, passage.vehicle, passage, reference_time or datetime.utcnow())
    return ServiceResult.ok(
        f"Exit preview for {passage.passage_number}",
        data={"passage": passage, "fare": quote, "base_amount": base_amount},
        gate_action=GATE_ALLOW if quote.amount == ZERO else GATE_REQUIRE_PAYMENT,
    )


def set_passage_vehicle_type(db: Session, passage_id: int, body_type_id: int) -> ServiceResult:
    """Classify the vehicle of an active passage, backfill its base price and re-quote."""
    passage = db.get(Passage, passage_id)
    if passage is None:
        return ServiceResult.not_found(f"Passage {passage_id} not found")
    if not passage.is_active:
        return ServiceResult.conflict(f"Passage {passage.passage_number} is already {passage.status.value}")
    body_type = db.get(VehicleBodyType, body_type_id)
    if body_type is None or not body_type.is_active:
        return ServiceResult.not_found(f"Body type {body_type_id} not found or inactive")

    set_body_type(passage.vehicle, body_type_id)
    if passage.passage_type == PassageType.TOLL:
        passage.base_amount = _price_for(db, body_type_id, passage.entry_station_id, datetime.utcnow())
    db.commit()
    return preview_exit(db, passage_id)


# ── Queries ──────────────────────────────────────────────────────────────────

def quick_plate_lookup(db: Session, plate: str) -> ServiceResult:
    plate_number = normalize_plate(plate)
    if not plate_number:
        return ServiceResult.invalid("Plate number is required")

    vehicle = lookup_vehicle_by_plate(db, plate_number)
    active = get_active_passage(db, vehicle.id) if vehicle else None
    return ServiceResult.ok(
        f"Lookup for {plate_number}",
        data={
            "plate_number": plate_number,
            "vehicle": vehicle,
            "active_passage": active,
            "can_enter": active is None,
            "is_exempted": bool(vehicle and vehicle.is_currently_exempted()),
        },
    )


def list_active_passages(db: Session, station_id: Optional[int] = None) -> list[Passage]:
    q = db.query(Passage).filter(Passage.status == PassageStatus.ACTIVE)
    if station_id is not None:
        q = q.filter(Passage.entry_station_id == station_id)
    return q.order_by(Passage.entry_time, Passage.id).all()
