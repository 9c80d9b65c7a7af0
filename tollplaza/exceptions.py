# tollplaza/exceptions.py
"""
Hard failures of the plaza core.

Expected business outcomes (vehicle already inside, gate held, passage not
found) are never raised: they come back as ServiceResult values. Only the
conditions below propagate as exceptions.
"""


class PlazaError(Exception):
    """Base class for plaza core failures."""


class PassageIntegrityError(PlazaError):
    """More than one active passage exists for a vehicle. Needs manual reconciliation."""

    def __init__(self, vehicle_id: int, passage_ids: list[int]):
        self.vehicle_id = vehicle_id
        self.passage_ids = passage_ids
        super().__init__(
            f"Vehicle {vehicle_id} has {len(passage_ids)} active passages: {passage_ids}"
        )


class InvalidDetectionTransition(PlazaError):
    """A detection was asked to move between two states the state machine does not connect."""

    def __init__(self, detection_id: int, current: str, target: str):
        self.detection_id = detection_id
        self.current = current
        self.target = target
        super().__init__(f"Detection {detection_id}: illegal transition {current} -> {target}")
