# tollplaza/services/gate_allocator.py
"""
Gate occupancy: which operator currently holds which gate in a station.

Per (operator, station) assignment the state is either unselected
(current_gate_id NULL) or selected(gate). select_gate() does its
check-then-set under a per-station lock in one transaction; the
(station_id, current_gate_id) unique constraint rejects a concurrent holder
from another worker, and that rejection is reported as False.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tollplaza.models.operator import GateAssignment, Operator
from tollplaza.models.station import Gate, Station
from tollplaza.utils.locks import KeyedLock
from tollplaza.utils.logger import get_logger

logger = get_logger(__name__)

station_locks = KeyedLock("station")


def _active_assignments(db: Session, operator_id: int) -> list[GateAssignment]:
    return (
        db.query(GateAssignment)
        .join(Station, Station.id == GateAssignment.station_id)
        .filter(
            GateAssignment.operator_id == operator_id,
            GateAssignment.is_active.is_(True),
            Station.is_active.is_(True),
        )
        .order_by(GateAssignment.station_id)
        .all()
    )


def _held_by_other(db: Session, station_id: int, gate_id: int, operator_id: int) -> Optional[GateAssignment]:
    """The live holder of the gate, if any. Holds left by deactivated operators are released."""
    holders = (
        db.query(GateAssignment)
        .filter(
            GateAssignment.station_id == station_id,
            GateAssignment.current_gate_id == gate_id,
            GateAssignment.operator_id != operator_id,
        )
        .all()
    )
    for holder in holders:
        operator = db.get(Operator, holder.operator_id)
        if holder.is_active and operator is not None and operator.is_active:
            return holder
        logger.info(f"[GATE] Releasing stale hold on gate {gate_id} by operator {holder.operator_id}")
        holder.current_gate_id = None
        holder.gate_selected_at = None
        db.flush()
    return None


def select_gate(db: Session, operator_id: int, station_id: int, gate_id: int) -> bool:
    with station_locks.hold(station_id):
        operator = db.get(Operator, operator_id)
        if operator is None or not operator.is_active:
            logger.info(f"[GATE] Operator {operator_id} is unknown or inactive")
            return False

        assignment = (
            db.query(GateAssignment)
            .filter(
                GateAssignment.operator_id == operator_id,
                GateAssignment.station_id == station_id,
                GateAssignment.is_active.is_(True),
            )
            .with_for_update()
            .first()
        )
        if assignment is None:
            logger.info(f"[GATE] Operator {operator_id} is not assigned to station {station_id}")
            db.rollback()
            return False

        gate = db.get(Gate, gate_id)
        if gate is None or gate.station_id != station_id or not gate.is_active:
            logger.info(f"[GATE] Gate {gate_id} is not an active gate of station {station_id}")
            db.rollback()
            return False

        holder = _held_by_other(db, station_id, gate_id, operator_id)
        if holder is not None:
            logger.info(f"[GATE] Gate {gate_id} already held by operator {holder.operator_id}")
            db.rollback()
            return False

        assignment.current_gate_id = gate_id
        assignment.gate_selected_at = datetime.utcnow()
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"[GATE] Operator {operator_id} lost gate {gate_id} to a concurrent selection")
            return False

    logger.info(f"🚧 [GATE] Operator {operator_id} selected gate {gate_id} at station {station_id}")
    return True


def deselect_gate(db: Session, operator_id: int) -> bool:
    """Release every gate the operator holds. False when nothing was held."""
    held = (
        db.query(GateAssignment)
        .filter(GateAssignment.operator_id == operator_id, GateAssignment.current_gate_id.isnot(None))
        .all()
    )
    if not held:
        return False
    for assignment in held:
        assignment.current_gate_id = None
        assignment.gate_selected_at = None
    db.commit()
    logger.info(f"[GATE] Operator {operator_id} released {len(held)} gate(s)")
    return True


def list_available_gates(db: Session, operator_id: int) -> list[Gate]:
    """Active gates of the operator's active stations, minus gates other operators hold."""
    station_ids = [a.station_id for a in _active_assignments(db, operator_id)]
    if not station_ids:
        return []

    held = (
        db.query(GateAssignment.current_gate_id)
        .join(Operator, Operator.id == GateAssignment.operator_id)
        .filter(
            GateAssignment.station_id.in_(station_ids),
            GateAssignment.current_gate_id.isnot(None),
            GateAssignment.operator_id != operator_id,
            GateAssignment.is_active.is_(True),
            Operator.is_active.is_(True),
        )
        .all()
    )
    held_ids = {row[0] for row in held}

    gates = (
        db.query(Gate)
        .filter(Gate.station_id.in_(station_ids), Gate.is_active.is_(True))
        .order_by(Gate.station_id, Gate.id)
        .all()
    )
    return [g for g in gates if g.id not in held_ids]


def get_selected_gate(db: Session, operator_id: int) -> Optional[Gate]:
    # Multi-station operators: the lowest station id with a selection wins
    for assignment in _active_assignments(db, operator_id):
        if assignment.current_gate_id is not None:
            return db.get(Gate, assignment.current_gate_id)
    return None


def get_operator_station_ids(db: Session, operator_id: int) -> list[int]:
    return [a.station_id for a in _active_assignments(db, operator_id)]


def assign_operator_to_station(db: Session, operator_id: int, station_id: int,
                               assigned_by: Optional[int] = None) -> GateAssignment:
    """Create or reactivate the operator's assignment to a station."""
    assignment = (
        db.query(GateAssignment)
        .filter(GateAssignment.operator_id == operator_id, GateAssignment.station_id == station_id)
        .first()
    )
    if assignment is None:
        assignment = GateAssignment(operator_id=operator_id, station_id=station_id)
        db.add(assignment)
    assignment.is_active = True
    assignment.assigned_by = assigned_by
    assignment.assigned_at = datetime.utcnow()
    db.commit()
    db.refresh(assignment)
    logger.info(f"[GATE] Operator {operator_id} assigned to station {station_id}")
    return assignment


def unassign_operator_from_station(db: Session, operator_id: int, station_id: int) -> bool:
    """Deactivate the assignment and release its gate. False when no assignment exists."""
    with station_locks.hold(station_id):
        assignment = (
            db.query(GateAssignment)
            .filter(GateAssignment.operator_id == operator_id, GateAssignment.station_id == station_id)
            .first()
        )
        if assignment is None:
            return False
        assignment.is_active = False
        assignment.current_gate_id = None
        assignment.gate_selected_at = None
        db.commit()
    logger.info(f"[GATE] Operator {operator_id} unassigned from station {station_id}")
    return True
