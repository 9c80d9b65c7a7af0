# tollplaza/schemas/vehicle.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class VehicleOut(BaseModel):
    id: int
    plate_number: str
    body_type_id: Optional[int]
    make: Optional[str]
    model: Optional[str]
    color: Optional[str]
    owner_name: Optional[str]
    is_registered: bool
    is_exempted: bool
    exemption_expires_at: Optional[datetime]
    paid_until: Optional[datetime]

    class Config:
        from_attributes = True
