# tests/test_detection_ingestion.py
"""Tests for fetching and storing detections from the plate-recognition backend."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
import pytest
from datetime import datetime
from tollplaza.config import settings
from tollplaza.models.detection_event import DetectionEvent, DetectionStatus, Direction
from tollplaza.services import detection_ingestion
from tollplaza.services.detection_parser import parse_detection, parse_direction


def result(detection_id, plate="ABC123", timestamp="2024-03-01T10:00:00.000", gate_id=None, direction=0):
    data = {"id": detection_id, "numberplate": plate, "timestamp": timestamp, "direction": direction,
            "make_str": "Toyota", "model_str": "Corolla", "color_str": "white", "globalconfidence": "97.5"}
    if gate_id is not None:
        data["gate_id"] = gate_id
    return data


def client_returning(payload=None, status_code=200, seen=None):
    def handler(request: httpx.Request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def client_raising(exc_type):
    def handler(request: httpx.Request):
        raise exc_type("backend down", request=request)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFetchAndStore:
    @pytest.mark.asyncio
    async def test_overlapping_fetches_never_duplicate(self, db, plaza):
        batch = [result("1001", gate_id=plaza.both_gate.id), result("1002", plate="XYZ9", gate_id=plaza.both_gate.id)]
        async with client_returning(batch) as client:
            first = await detection_ingestion.fetch_and_store(db, client=client)
        assert (first.fetched, first.stored, first.skipped) == (2, 2, 0)

        overlap = batch + [result("1003", plate="NEW3", gate_id=plaza.both_gate.id)]
        async with client_returning(overlap) as client:
            second = await detection_ingestion.fetch_and_store(db, client=client)
        assert (second.fetched, second.stored, second.skipped) == (3, 1, 2)

        assert db.query(DetectionEvent).count() == 3

    @pytest.mark.asyncio
    async def test_new_rows_are_routed(self, db, plaza):
        async with client_returning([result("2001", gate_id=plaza.both_gate.id)]) as client:
            outcome = await detection_ingestion.fetch_and_store(db, client=client)
        assert outcome.processed["queued"] == 1
        assert db.query(DetectionEvent).one().status == DetectionStatus.PENDING_VEHICLE_TYPE

    @pytest.mark.asyncio
    async def test_duplicates_inside_one_batch(self, db, plaza):
        batch = [result("3001"), result("3001"), {"numberplate": "NOID1"}, "garbage"]
        async with client_returning(batch) as client:
            outcome = await detection_ingestion.fetch_and_store(db, client=client, process=False)
        assert (outcome.stored, outcome.skipped, outcome.errors) == (1, 1, 2)
        assert outcome.processed is None

    @pytest.mark.asyncio
    async def test_request_carries_backend_parameters(self, db, plaza):
        seen = []
        async with client_returning([], seen=seen) as client:
            await detection_ingestion.fetch_and_store(db, since=datetime(2024, 3, 1, 10, 0, 0, 250000), client=client)
        params = seen[0].url.params
        assert seen[0].url.path == "/edge/cgi-bin/vparcgi.cgi"
        assert params["oper"] == "jsonlastresults"
        assert params["computerid"] == "1"
        assert params["dd"] == "2024-03-01T10:00:00.250"
        assert params["_"].isdigit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc_type", [httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout])
    async def test_unreachable_source_is_soft_failure(self, db, plaza, exc_type):
        async with client_raising(exc_type) as client:
            outcome = await detection_ingestion.fetch_and_store(db, client=client)
        assert outcome.success is False
        assert outcome.source_unavailable is True
        assert outcome.stored == 0

    @pytest.mark.asyncio
    async def test_http_error_is_not_source_unavailable(self, db, plaza):
        async with client_returning({"error": "boom"}, status_code=500) as client:
            outcome = await detection_ingestion.fetch_and_store(db, client=client)
        assert outcome.success is False
        assert outcome.source_unavailable is False

    @pytest.mark.asyncio
    async def test_non_list_answer_means_nothing_new(self, db, plaza):
        async with client_returning({"status": "idle"}) as client:
            outcome = await detection_ingestion.fetch_and_store(db, client=client)
        assert outcome.success is True
        assert outcome.fetched == 0

    @pytest.mark.asyncio
    async def test_caller_timeout_reaches_request(self, db, plaza):
        seen = []
        async with client_returning([], seen=seen) as client:
            await detection_ingestion.fetch_and_store(db, client=client, timeout=2.5)
            await detection_ingestion.quick_capture(db, client=client, timeout=4)
            await detection_ingestion.fetch_and_store(db, client=client)
        assert seen[0].extensions["timeout"]["read"] == 2.5
        assert seen[1].extensions["timeout"]["connect"] == 4
        assert seen[2].extensions["timeout"]["read"] == settings.DETECTION_FETCH_TIMEOUT_SECONDS

    @pytest.mark.asyncio
    async def test_quick_capture_asks_for_recent_window(self, db, plaza):
        seen = []
        async with client_returning([], seen=seen) as client:
            await detection_ingestion.quick_capture(db, client=client)
        asked = datetime.strptime(seen[0].url.params["dd"], "%Y-%m-%dT%H:%M:%S.%f")
        age = (datetime.utcnow() - asked).total_seconds()
        assert 115 <= age <= 180


class TestDefaultSince:
    def test_nothing_stored(self, db):
        assert detection_ingestion.default_since(db) == datetime(2000, 1, 1)

    def test_oldest_latest_per_gate(self, db, plaza, add_detection):
        add_detection("A1", datetime(2024, 3, 1, 10, 0), plaza.both_gate.id)
        add_detection("A2", datetime(2024, 3, 1, 11, 0), plaza.both_gate.id)
        add_detection("B1", datetime(2024, 3, 1, 9, 0), plaza.north_gate.id)
        assert detection_ingestion.default_since(db) == datetime(2024, 3, 1, 9, 0)


class TestPushAndParsing:
    def test_pushed_detections_use_default_gate(self, db, plaza):
        outcome = detection_ingestion.ingest_pushed_detections(db, [result("4001")], default_gate_id=plaza.north_gate.id)
        assert outcome.stored == 1
        assert db.query(DetectionEvent).one().gate_id == plaza.north_gate.id

    def test_parse_detection_fields(self):
        parsed = parse_detection(result("5001", plate="ab-12 cd", timestamp="2024-03-01T10:00:00Z", direction=1),
                                 default_gate_id=7)
        assert parsed.provider_detection_id == "5001"
        assert parsed.plate_number == "AB12CD"
        assert parsed.original_plate == "ab-12 cd"
        assert parsed.detection_timestamp == datetime(2024, 3, 1, 10, 0)
        assert parsed.direction == Direction.OUTBOUND
        assert parsed.gate_id == 7
        assert parsed.make == "Toyota"
        assert parsed.confidence == 97.5

    def test_payload_gate_wins(self):
        data = result("5002")
        data["gateId"] = 3
        assert parse_detection(data, default_gate_id=7).gate_id == 3

    @pytest.mark.parametrize("raw, expected", [
        (0, Direction.INBOUND),
        (1, Direction.OUTBOUND),
        ("1", Direction.OUTBOUND),
        (None, Direction.UNKNOWN),
        (2, Direction.UNKNOWN),
        ("sideways", Direction.UNKNOWN),
    ])
    def test_direction_codes(self, raw, expected):
        assert parse_direction(raw) == expected
