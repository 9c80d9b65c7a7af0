# tests/conftest.py
"""Shared fixtures: a throwaway SQLite database per test and a small seeded plaza."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FARE_POLICY", "daily")
os.environ.setdefault("SYSTEM_OPERATOR_ID", "1")

import pytest
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tollplaza.database import create_tables
from tollplaza.models.account import Account, BundleSubscription
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus, Direction
from tollplaza.models.operator import GateAssignment, Operator, ROLE_ADMIN, ROLE_OPERATOR
from tollplaza.models.pricing import BodyTypePrice, VehicleBodyType
from tollplaza.models.station import Gate, Station


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so several threads can open their own sessions
    engine = create_engine(
        f"sqlite:///{tmp_path / 'plaza.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_tables(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def plaza(db):
    """
    Station 1 "Main" with an entry-only, an exit-only and a two-way gate;
    station 2 "North" with one two-way gate. Car costs 5.00 and truck 15.00
    at both stations. Operators: system admin (id 1), op_a and op_b on Main,
    op_north on North, op_idle with no assignment.
    """
    main = Station(name="Main", code="MAIN")
    north = Station(name="North", code="NORTH")
    db.add_all([main, north])
    db.flush()

    entry_gate = Gate(station_id=main.id, name="Lane 1 In", gate_type="entry")
    exit_gate = Gate(station_id=main.id, name="Lane 2 Out", gate_type="exit")
    both_gate = Gate(station_id=main.id, name="Lane 3", gate_type="both")
    north_gate = Gate(station_id=north.id, name="North Lane", gate_type="both")
    db.add_all([entry_gate, exit_gate, both_gate, north_gate])

    car = VehicleBodyType(name="Car")
    truck = VehicleBodyType(name="Truck")
    db.add_all([car, truck])
    db.flush()
    for station in (main, north):
        db.add(BodyTypePrice(body_type_id=car.id, station_id=station.id,
                             base_price=Decimal("5.00"), effective_from=date(2000, 1, 1)))
        db.add(BodyTypePrice(body_type_id=truck.id, station_id=station.id,
                             base_price=Decimal("15.00"), effective_from=date(2000, 1, 1)))

    system = Operator(username="system", role=ROLE_ADMIN)
    op_a = Operator(username="op_a", role=ROLE_OPERATOR)
    op_b = Operator(username="op_b", role=ROLE_OPERATOR)
    op_north = Operator(username="op_north", role=ROLE_OPERATOR)
    op_idle = Operator(username="op_idle", role=ROLE_OPERATOR)
    db.add_all([system, op_a, op_b, op_north, op_idle])
    db.flush()

    db.add_all([
        GateAssignment(operator_id=op_a.id, station_id=main.id, is_active=True),
        GateAssignment(operator_id=op_b.id, station_id=main.id, is_active=True),
        GateAssignment(operator_id=op_north.id, station_id=north.id, is_active=True),
    ])
    db.commit()

    return SimpleNamespace(
        main=main, north=north,
        entry_gate=entry_gate, exit_gate=exit_gate, both_gate=both_gate, north_gate=north_gate,
        car=car, truck=truck,
        system=system, op_a=op_a, op_b=op_b, op_north=op_north, op_idle=op_idle,
    )


@pytest.fixture
def bundle_account(db):
    """Account with one active bundle allowing a single passage."""
    account = Account(name="Fleet Co")
    db.add(account)
    db.flush()
    db.add(BundleSubscription(
        account_id=account.id, status="active",
        start_datetime=datetime(2000, 1, 1), end_datetime=datetime(2100, 1, 1),
        passage_limit=1, passages_used=0,
    ))
    db.commit()
    return account


@pytest.fixture
def add_detection(db):
    counter = {"n": 0}

    def _add(plate, when, gate_id, direction=Direction.UNKNOWN, provider_id=None):
        counter["n"] += 1
        detection = DetectionEvent(
            provider_detection_id=provider_id or f"det-{counter['n']}",
            gate_id=gate_id,
            plate_number=plate,
            original_plate=plate,
            detection_timestamp=when,
            direction=direction,
            status=DetectionStatus.PENDING,
            created_at=datetime.utcnow(),
        )
        db.add(detection)
        db.commit()
        return detection

    return _add
