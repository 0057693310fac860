"""Read models for catalogue, slot, client and appointment data."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceEntry(BaseModel):
    """A service offered by the business."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class StaffMember(BaseModel):
    """A staff member slots may be tagged with."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ClientRecord(BaseModel):
    """Client identity as consumed by the booking flow."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_key: str
    name: str


class AvailableSlot(BaseModel):
    """Snapshot of a time slot as read from the store."""

    id: int
    start: datetime
    weekday_label: str
    staff_id: Optional[int] = None
    staff_name: Optional[str] = None
    available: bool = True


class AppointmentSummary(BaseModel):
    """An active appointment as listed to its client."""

    id: int
    slot_id: int
    start: datetime
    staff_id: Optional[int] = None
    staff_name: Optional[str] = None
    services: list[str] = Field(default_factory=list)
