# tests/test_detection_processor.py
"""Tests for detection routing, the operator queues and their resolution."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import threading
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.orm.exc import StaleDataError
from tollplaza.exceptions import InvalidDetectionTransition
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus, Direction
from tollplaza.models.passage import Passage, PassageStatus
from tollplaza.models.vehicle import Vehicle
from tollplaza.services import detection_processor, passage_service
from tollplaza.services.results import ERROR_CONFLICT, ERROR_NOT_FOUND

T = datetime(2024, 3, 1, 10, 0, 0)


def known_vehicle(db, plaza, plate="KNOWN1"):
    vehicle = Vehicle(plate_number=plate, body_type_id=plaza.car.id)
    db.add(vehicle)
    db.commit()
    return vehicle


def status_of(db, detection):
    db.refresh(detection)
    return detection.status


class TestRouting:
    def test_unknown_vehicle_waits_for_body_type(self, db, plaza, add_detection):
        detection = add_detection("NEW1", T, plaza.both_gate.id, Direction.INBOUND)
        stats = detection_processor.process_pending_detections(db)
        assert stats == {"processed": 0, "queued": 1, "failed": 0, "skipped": 0, "total": 1}
        assert status_of(db, detection) == DetectionStatus.PENDING_VEHICLE_TYPE

    def test_known_vehicle_inbound_opens_passage(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.entry_gate.id, Direction.INBOUND)
        detection_processor.process_pending_detections(db)

        passage = db.query(Passage).one()
        assert status_of(db, detection) == DetectionStatus.PROCESSED
        assert str(passage.id) in detection.processing_notes
        assert detection.processed_at is not None
        assert passage.entry_time == T
        assert passage.entry_operator_id == plaza.system.id
        assert passage.base_amount == Decimal("5.00")

    def test_known_vehicle_unknown_direction_without_passage_enters(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.both_gate.id)
        detection_processor.process_pending_detections(db)
        assert status_of(db, detection) == DetectionStatus.PROCESSED

    def test_vehicle_inside_goes_to_pending_exit(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        passage_service.process_entry(db, "KNOWN1", plaza.both_gate.id, plaza.op_a.id, entry_time=T)
        unknown_dir = add_detection("KNOWN1", T + timedelta(hours=1), plaza.both_gate.id)
        inbound = add_detection("KNOWN1", T + timedelta(hours=2), plaza.both_gate.id, Direction.INBOUND)
        detection_processor.process_pending_detections(db)
        assert status_of(db, unknown_dir) == DetectionStatus.PENDING_EXIT
        assert status_of(db, inbound) == DetectionStatus.PENDING_EXIT
        assert db.query(Passage).count() == 1

    def test_outbound_without_passage_goes_to_pending_exit(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)
        assert status_of(db, detection) == DetectionStatus.PENDING_EXIT

    def test_exit_bound_at_entry_only_gate_is_closed_with_note(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.entry_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)
        assert status_of(db, detection) == DetectionStatus.PROCESSED
        assert "entry-only" in detection.processing_notes

    def test_empty_plate_stays_pending(self, db, plaza, add_detection):
        detection = add_detection("", T, plaza.both_gate.id)
        stats = detection_processor.process_pending_detections(db)
        assert stats["total"] == 0
        assert detection_processor.route_detection(db, detection) == DetectionStatus.PENDING
        assert status_of(db, detection) == DetectionStatus.PENDING
        assert detection_processor.list_pending_vehicle_type(db) == []
        assert detection_processor.list_pending_exit(db) == []

    def test_unknown_gate_fails(self, db, plaza, add_detection):
        detection = add_detection("NEW1", T, 999)
        detection_processor.process_pending_detections(db)
        assert status_of(db, detection) == DetectionStatus.FAILED
        assert "999" in detection.processing_notes

    def test_routing_error_marks_failed_without_retry(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.both_gate.id, Direction.INBOUND)
        with patch.object(passage_service, "process_entry", side_effect=RuntimeError("printer on fire")):
            stats = detection_processor.process_pending_detections(db)
        assert stats["failed"] == 1
        assert status_of(db, detection) == DetectionStatus.FAILED
        assert "printer on fire" in detection.processing_notes

        assert detection_processor.process_pending_detections(db)["total"] == 0

    def test_same_plate_detections_are_routed_in_order(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        later = add_detection("KNOWN1", T + timedelta(minutes=5), plaza.both_gate.id)
        earlier = add_detection("KNOWN1", T, plaza.both_gate.id)
        detection_processor.process_pending_detections(db)
        # the earlier one opens the passage, the later one becomes an exit
        assert status_of(db, earlier) == DetectionStatus.PROCESSED
        assert status_of(db, later) == DetectionStatus.PENDING_EXIT


class TestTransitions:
    def test_terminal_states_are_final(self, db, plaza, add_detection):
        detection = add_detection("NEW1", T, plaza.both_gate.id)
        detection_processor.transition(detection, DetectionStatus.PROCESSED)
        with pytest.raises(InvalidDetectionTransition):
            detection_processor.transition(detection, DetectionStatus.PENDING_EXIT)

    def test_pending_exit_cannot_go_back(self, db, plaza, add_detection):
        detection = add_detection("NEW1", T, plaza.both_gate.id)
        detection_processor.transition(detection, DetectionStatus.PENDING_EXIT)
        with pytest.raises(InvalidDetectionTransition):
            detection_processor.transition(detection, DetectionStatus.PENDING_VEHICLE_TYPE)


class TestConcurrentWorkers:
    def test_stale_copy_does_not_reroute_processed_detection(self, db, session_factory, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.entry_gate.id, Direction.INBOUND)

        other = session_factory()
        try:
            [stale] = other.query(DetectionEvent).filter(DetectionEvent.status == DetectionStatus.PENDING).all()
            assert detection_processor.process_pending_detections(db)["processed"] == 1
            assert detection_processor.route_detection(other, stale) == DetectionStatus.PROCESSED
        finally:
            other.close()

        assert status_of(db, detection) == DetectionStatus.PROCESSED
        assert "created" in detection.processing_notes
        assert db.query(Passage).filter(Passage.status == PassageStatus.ACTIVE).count() == 1
        assert detection_processor.list_pending_exit(db) == []

    def test_write_from_stale_copy_is_rejected(self, db, session_factory, plaza, add_detection):
        detection = add_detection("NEW1", T, plaza.both_gate.id)

        other = session_factory()
        try:
            stale = other.get(DetectionEvent, detection.id)
            assert stale.status == DetectionStatus.PENDING
            detection_processor.process_pending_detections(db)

            detection_processor.transition(stale, DetectionStatus.FAILED, "late worker")
            with pytest.raises(StaleDataError):
                other.commit()
            other.rollback()
        finally:
            other.close()

        assert status_of(db, detection) == DetectionStatus.PENDING_VEHICLE_TYPE

    def test_second_confirmation_from_stale_copy_is_conflict(self, db, session_factory, plaza, add_detection):
        known_vehicle(db, plaza)
        passage_service.process_entry(db, "KNOWN1", plaza.both_gate.id, plaza.op_a.id, entry_time=T)
        detection = add_detection("KNOWN1", T + timedelta(hours=1), plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)

        other = session_factory()
        try:
            assert other.get(DetectionEvent, detection.id).status == DetectionStatus.PENDING_EXIT
            assert detection_processor.confirm_exit(db, detection.id, plaza.op_a.id).success
            late = detection_processor.confirm_exit(other, detection.id, plaza.op_b.id)
        finally:
            other.close()

        assert late.error == ERROR_CONFLICT
        assert status_of(db, detection) == DetectionStatus.PROCESSED
        assert "closed" in detection.processing_notes

    def test_concurrent_confirmations_settle_once(self, db, session_factory, plaza, add_detection):
        known_vehicle(db, plaza)
        passage_service.process_entry(db, "KNOWN1", plaza.both_gate.id, plaza.op_a.id, entry_time=T)
        detection = add_detection("KNOWN1", T + timedelta(hours=1), plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)
        detection_id = detection.id
        results = []

        def confirm(operator_id):
            session = session_factory()
            try:
                results.append(detection_processor.confirm_exit(session, detection_id, operator_id).error)
            finally:
                session.close()

        threads = [threading.Thread(target=confirm, args=(op_id,)) for op_id in (plaza.op_a.id, plaza.op_b.id)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(None) == 1
        assert results.count(ERROR_CONFLICT) == 1
        assert status_of(db, detection) == DetectionStatus.PROCESSED
        assert len(detection_processor.detection_locks) == 0

class TestQueues:
    def test_fifo_regardless_of_insertion_order(self, db, plaza, add_detection):
        d2 = add_detection("NEW2", datetime(2024, 3, 1, 10, 5), plaza.both_gate.id)
        d1 = add_detection("NEW1", datetime(2024, 3, 1, 10, 0), plaza.both_gate.id)
        detection_processor.process_pending_detections(db)
        queue = detection_processor.list_pending_vehicle_type(db)
        assert [item["detection"].id for item in queue] == [d1.id, d2.id]

    def test_equal_timestamps_ordered_by_id(self, db, plaza, add_detection):
        first = add_detection("NEW1", T, plaza.both_gate.id)
        second = add_detection("NEW2", T, plaza.both_gate.id)
        third = add_detection("NEW3", T - timedelta(seconds=1), plaza.both_gate.id)
        detection_processor.process_pending_detections(db)
        queue = detection_processor.list_pending_vehicle_type(db)
        assert [item["detection"].id for item in queue] == [third.id, first.id, second.id]

    def test_restricted_operator_sees_own_stations_only(self, db, plaza, add_detection):
        main = add_detection("NEW1", T, plaza.both_gate.id)
        north = add_detection("NEW2", T, plaza.north_gate.id)
        detection_processor.process_pending_detections(db)

        def ids(operator):
            return [i["detection"].id for i in detection_processor.list_pending_vehicle_type(db, operator)]

        assert ids(plaza.op_a) == [main.id]
        assert ids(plaza.op_north) == [north.id]
        assert ids(plaza.op_idle) == []
        assert ids(plaza.system) == [main.id, north.id]

    def test_pending_exit_items_carry_context(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        passage_service.process_entry(db, "KNOWN1", plaza.both_gate.id, plaza.op_a.id, entry_time=T)
        add_detection("KNOWN1", T + timedelta(hours=3), plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)

        [item] = detection_processor.list_pending_exit(db, plaza.op_a)
        assert item["vehicle"].plate_number == "KNOWN1"
        assert item["active_passage"].status == PassageStatus.ACTIVE
        assert item["fare"].amount == Decimal("5.00")
        assert item["gate"].id == plaza.exit_gate.id

    def test_queue_status(self, db, plaza, add_detection):
        add_detection("NEW1", T, plaza.both_gate.id)
        add_detection("NEW2", T + timedelta(minutes=1), plaza.both_gate.id)
        add_detection("", T, plaza.both_gate.id)
        detection_processor.process_pending_detections(db)

        status = detection_processor.queue_status(db)
        assert status["counts"]["pending_vehicle_type"] == 2
        assert status["counts"]["pending"] == 1
        assert status["counts"]["pending_exit"] == 0
        assert status["oldest_pending_vehicle_type"] == T
        assert status["oldest_pending_exit"] is None


class TestResolution:
    def test_classify_then_bill(self, db, plaza, add_detection):
        arrival = add_detection("ABC123", T, plaza.both_gate.id, Direction.INBOUND)
        detection_processor.process_pending_detections(db)
        assert status_of(db, arrival) == DetectionStatus.PENDING_VEHICLE_TYPE

        resolved = detection_processor.resolve_vehicle_type(db, arrival.id, plaza.truck.id, plaza.op_a.id)
        assert resolved.success
        passage = resolved.data["passage"]
        assert passage.base_amount == Decimal("15.00")
        assert passage.entry_time == T
        assert status_of(db, arrival) == DetectionStatus.PROCESSED

        departure = add_detection("ABC123", T + timedelta(hours=26), plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)
        assert status_of(db, departure) == DetectionStatus.PENDING_EXIT

        confirmed = detection_processor.confirm_exit(db, departure.id, plaza.op_a.id)
        assert confirmed.success
        closed = confirmed.data["passage"]
        assert closed.status == PassageStatus.COMPLETED
        assert closed.billable_units == 2
        assert closed.total_amount == Decimal("30.00")
        assert closed.payment_confirmed is True
        assert status_of(db, departure) == DetectionStatus.PROCESSED

    def test_resolve_outbound_goes_to_pending_exit(self, db, plaza, add_detection):
        detection = add_detection("NEW9", T, plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)
        result = detection_processor.resolve_vehicle_type(db, detection.id, plaza.car.id)
        assert result.success
        assert status_of(db, detection) == DetectionStatus.PENDING_EXIT
        assert db.query(Vehicle).filter(Vehicle.plate_number == "NEW9").one().body_type_id == plaza.car.id

    def test_resolve_rejects_wrong_state_and_unknowns(self, db, plaza, add_detection):
        detection = add_detection("NEW1", T, plaza.both_gate.id)
        assert detection_processor.resolve_vehicle_type(db, detection.id, plaza.car.id).error == ERROR_CONFLICT
        assert detection_processor.resolve_vehicle_type(db, 999, plaza.car.id).error == ERROR_NOT_FOUND

        detection_processor.process_pending_detections(db)
        assert detection_processor.resolve_vehicle_type(db, detection.id, 999).error == ERROR_NOT_FOUND
        assert status_of(db, detection) == DetectionStatus.PENDING_VEHICLE_TYPE

    def test_confirm_exit_without_active_passage_fails(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        detection = add_detection("KNOWN1", T, plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)

        result = detection_processor.confirm_exit(db, detection.id, plaza.op_a.id)
        assert not result.success
        assert result.error == ERROR_NOT_FOUND
        assert status_of(db, detection) == DetectionStatus.FAILED

    def test_confirm_exit_twice_is_conflict(self, db, plaza, add_detection):
        known_vehicle(db, plaza)
        passage_service.process_entry(db, "KNOWN1", plaza.both_gate.id, plaza.op_a.id, entry_time=T)
        detection = add_detection("KNOWN1", T + timedelta(hours=1), plaza.exit_gate.id, Direction.OUTBOUND)
        detection_processor.process_pending_detections(db)

        assert detection_processor.confirm_exit(db, detection.id, plaza.op_a.id).success
        assert detection_processor.confirm_exit(db, detection.id, plaza.op_a.id).error == ERROR_CONFLICT
        assert db.query(DetectionEvent).filter(DetectionEvent.status == DetectionStatus.PROCESSED).count() == 1
