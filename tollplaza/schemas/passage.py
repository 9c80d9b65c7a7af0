# tollplaza/schemas/passage.py
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from tollplaza.models.passage import PassageStatus, PassageType, PaymentType


class EntryOptions(BaseModel):
    """Recognized optional attributes of an entry. Unknown keys are rejected."""
    body_type_id: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    owner_name: Optional[str] = None
    account_id: Optional[int] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    receipt_notes: Optional[str] = None
    detection_id: Optional[int] = None

    class Config:
        extra = "forbid"


class ExitOptions(BaseModel):
    notes: Optional[str] = None
    payment_confirmed: bool = False
    payment_method: Optional[str] = None
    receipt_notes: Optional[str] = None
    detection_id: Optional[int] = None

    class Config:
        extra = "forbid"


class EntryRequest(EntryOptions):
    plate_number: str
    gate_id: int

    def options(self) -> EntryOptions:
        return EntryOptions(**self.model_dump(exclude={"plate_number", "gate_id"}))


class ExitRequest(ExitOptions):
    plate_number: str
    gate_id: int

    def options(self) -> ExitOptions:
        return ExitOptions(**self.model_dump(exclude={"plate_number", "gate_id"}))


class SetVehicleTypeRequest(BaseModel):
    body_type_id: int


class PassageOut(BaseModel):
    id: int
    passage_number: str
    vehicle_id: int
    account_id: Optional[int]
    payment_type: PaymentType
    passage_type: PassageType
    status: PassageStatus
    entry_time: datetime
    entry_gate_id: Optional[int]
    entry_station_id: Optional[int]
    entry_operator_id: Optional[int]
    exit_time: Optional[datetime]
    exit_gate_id: Optional[int]
    exit_operator_id: Optional[int]
    base_amount: Decimal
    total_amount: Decimal
    billable_units: Optional[int]
    is_free_reentry: bool
    duration_minutes: Optional[int]
    payment_confirmed: bool
    notes: Optional[str]

    class Config:
        from_attributes = True


class FareQuoteOut(BaseModel):
    amount: Decimal
    is_free_reentry: bool
    billable_units: int
    policy: str
    window_start: Optional[datetime] = None
    covered_until: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceResponse(BaseModel):
    """Envelope for entry/exit/queue actions. success=False is a business outcome, not a transport error."""
    success: bool
    message: str
    error: Optional[str] = None
    gate_action: str
    data: Optional[dict] = None
