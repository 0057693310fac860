"""Per-conversation session state and the payloads each step relies on."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from reservai.conversation.state_machine import ConfirmationStep
from reservai.errors import IncompleteSessionError
from reservai.schemas.booking_schema import AppointmentSummary, AvailableSlot

RESTART_MESSAGE = (
    "Não encontrei um agendamento em andamento. Por favor, comece novamente "
    "escolhendo um serviço."
)


class FlowKind(str, Enum):
    """Which of the three flows a session belongs to."""
    BOOKING = "booking"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"


@dataclass
class ServiceChoice:
    id: int
    name: str


@dataclass
class ClientInfo:
    id: int
    name: str
    contact_key: str


@dataclass
class SlotChoice:
    """A concrete slot the customer picked or was offered."""
    slot_id: int
    start: datetime
    staff_id: Optional[int] = None
    staff_name: Optional[str] = None

    @classmethod
    def from_slot(cls, slot: AvailableSlot) -> "SlotChoice":
        return cls(
            slot_id=slot.id,
            start=slot.start,
            staff_id=slot.staff_id,
            staff_name=slot.staff_name,
        )


@dataclass
class ConversationSession:
    """
    Mutable context for one conversation, keyed by conversation id.

    Fields are only meaningful in the steps that set them; handlers read
    them through the ``require_*`` accessors, which raise
    IncompleteSessionError instead of returning a half-filled record.
    """
    conversation_id: str
    step: ConfirmationStep = ConfirmationStep.NONE
    flow: FlowKind = FlowKind.BOOKING
    services: list[ServiceChoice] = field(default_factory=list)
    staff_id: Optional[int] = None
    staff_name: Optional[str] = None
    client: Optional[ClientInfo] = None
    offered_slot_ids: list[int] = field(default_factory=list)
    chosen_slot: Optional[SlotChoice] = None
    nearest_suggestion: Optional[SlotChoice] = None
    appointments: list[AppointmentSummary] = field(default_factory=list)
    target_appointment: Optional[AppointmentSummary] = None
    updated_at: Optional[datetime] = None

    @property
    def service_names(self) -> list[str]:
        return [s.name for s in self.services]

    @property
    def service_ids(self) -> list[int]:
        return [s.id for s in self.services]

    def add_service(self, service_id: int, name: str) -> bool:
        """Append a service unless already selected. Returns True if added."""
        if any(s.id == service_id for s in self.services):
            return False
        self.services.append(ServiceChoice(id=service_id, name=name))
        return True

    def set_staff(self, staff_id: Optional[int], staff_name: Optional[str]) -> None:
        self.staff_id = staff_id
        self.staff_name = staff_name

    def clear_slot_selection(self) -> None:
        self.chosen_slot = None
        self.nearest_suggestion = None

    def require_services(self) -> list[ServiceChoice]:
        if not self.services:
            raise IncompleteSessionError(RESTART_MESSAGE)
        return self.services

    def require_client(self) -> ClientInfo:
        if self.client is None:
            raise IncompleteSessionError(RESTART_MESSAGE)
        return self.client

    def require_chosen_slot(self) -> SlotChoice:
        if self.chosen_slot is None:
            raise IncompleteSessionError(RESTART_MESSAGE)
        return self.chosen_slot

    def require_suggestion(self) -> SlotChoice:
        if self.nearest_suggestion is None:
            raise IncompleteSessionError(RESTART_MESSAGE)
        return self.nearest_suggestion

    def require_target_appointment(self) -> AppointmentSummary:
        if self.target_appointment is None:
            raise IncompleteSessionError(RESTART_MESSAGE)
        return self.target_appointment
