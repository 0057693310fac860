"""
Booking Transaction Manager: reserve, cancel and reschedule.

Each operation runs in a single database transaction and is all-or-nothing.
Business outcomes (slot taken, appointment gone) are reported through
``BookingResult.status`` and never raised; any unexpected exception rolls
the transaction back and is reported as ``FAILURE``.

Invariant: a slot with ``available = False`` is referenced by exactly one
active appointment. Availability is re-read under ``FOR UPDATE`` inside the
transaction before it is changed, so two callers racing for one slot get
exactly one SUCCESS and one CONFLICT.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from reservai.errors import TransientError
from reservai.logging_context import get_conversation_logger
from reservai.schemas.booking_schema import AppointmentSummary
from reservai.tools.database import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    Appointment,
    Database,
    Service,
    Slot,
)
from reservai.tools.services import STORE_UNAVAILABLE

logger = get_conversation_logger(__name__)


class BookingStatus(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


@dataclass(frozen=True)
class BookingResult:
    """Outcome of reserve, cancel or reschedule."""
    status: BookingStatus
    message: str = ""
    appointment_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == BookingStatus.SUCCESS


class BookingTransactionManager:
    """Atomic operations over slot availability and the appointment ledger."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def reserve(
        self,
        client_id: int,
        service_ids: list[int],
        slot_id: int,
        staff_id: Optional[int] = None,
    ) -> BookingResult:
        """Occupy a slot and record one appointment covering all services."""
        if not service_ids:
            raise ValueError("reserve() needs at least one service id")

        session = self._db.session_factory()
        try:
            slot = session.scalar(select(Slot).where(Slot.id == slot_id).with_for_update())
            if slot is None or not slot.available:
                session.rollback()
                logger.warning("Reserve conflict: slot %s is no longer available", slot_id)
                return BookingResult(BookingStatus.CONFLICT, f"Slot {slot_id} is not available.")

            wanted = set(service_ids)
            services = session.scalars(select(Service).where(Service.id.in_(wanted))).all()
            if len(services) != len(wanted):
                session.rollback()
                return BookingResult(
                    BookingStatus.NOT_FOUND, f"Unknown service ids in {sorted(wanted)}."
                )

            slot.available = False
            appointment = Appointment(
                client_id=client_id,
                slot_id=slot.id,
                staff_id=staff_id if staff_id is not None else slot.staff_id,
                status=STATUS_ACTIVE,
                services=list(services),
            )
            session.add(appointment)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Reserve failed for slot %s, rolled back", slot_id)
            return BookingResult(BookingStatus.FAILURE, "Booking could not be saved.")
        finally:
            session.close()

        logger.info(
            "Appointment %s reserved: client %s, slot %s, services %s",
            appointment.id, client_id, slot_id, sorted(wanted),
        )
        return BookingResult(BookingStatus.SUCCESS, "Booked.", appointment.id)

    def cancel(self, appointment_id: int) -> BookingResult:
        """Cancel an active appointment and release its slot."""
        session = self._db.session_factory()
        try:
            appointment = session.scalar(
                select(Appointment).where(Appointment.id == appointment_id).with_for_update()
            )
            if appointment is None or appointment.status != STATUS_ACTIVE:
                session.rollback()
                return BookingResult(
                    BookingStatus.NOT_FOUND,
                    f"Appointment {appointment_id} not found or already cancelled.",
                )

            appointment.status = STATUS_CANCELLED
            slot = session.get(Slot, appointment.slot_id, with_for_update=True)
            if slot is not None:
                slot.available = True
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Cancel failed for appointment %s, rolled back", appointment_id)
            return BookingResult(BookingStatus.FAILURE, "Cancellation could not be saved.")
        finally:
            session.close()

        logger.info("Appointment %s cancelled", appointment_id)
        return BookingResult(BookingStatus.SUCCESS, "Cancelled.", appointment_id)

    def reschedule(self, appointment_id: int, new_slot_id: int) -> BookingResult:
        """Move an active appointment to another available slot."""
        session = self._db.session_factory()
        try:
            appointment = session.scalar(
                select(Appointment).where(Appointment.id == appointment_id).with_for_update()
            )
            if appointment is None or appointment.status != STATUS_ACTIVE:
                session.rollback()
                return BookingResult(
                    BookingStatus.NOT_FOUND,
                    f"Appointment {appointment_id} not found or already cancelled.",
                )

            new_slot = session.get(Slot, new_slot_id, with_for_update=True)
            if new_slot is None or not new_slot.available:
                session.rollback()
                logger.warning("Reschedule conflict: slot %s is no longer available", new_slot_id)
                return BookingResult(
                    BookingStatus.CONFLICT, f"Slot {new_slot_id} is not available."
                )

            old_slot = session.get(Slot, appointment.slot_id, with_for_update=True)
            if old_slot is not None:
                old_slot.available = True
            new_slot.available = False
            appointment.slot_id = new_slot.id
            appointment.staff_id = new_slot.staff_id
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "Reschedule failed for appointment %s, rolled back", appointment_id
            )
            return BookingResult(BookingStatus.FAILURE, "Reschedule could not be saved.")
        finally:
            session.close()

        logger.info("Appointment %s moved to slot %s", appointment_id, new_slot_id)
        return BookingResult(BookingStatus.SUCCESS, "Rescheduled.", appointment_id)

    def list_active_appointments(
        self, client_id: int, now: Optional[datetime] = None
    ) -> list[AppointmentSummary]:
        """Active appointments of a client, soonest first; past ones excluded when ``now`` is given."""
        stmt = (
            select(Appointment)
            .join(Appointment.slot)
            .options(
                joinedload(Appointment.slot),
                joinedload(Appointment.staff),
                selectinload(Appointment.services),
            )
            .where(Appointment.client_id == client_id, Appointment.status == STATUS_ACTIVE)
            .order_by(Slot.start_timestamp, Appointment.id)
        )
        if now is not None:
            stmt = stmt.where(Slot.start_timestamp > now)
        try:
            with self._db.session_factory() as session:
                return [
                    AppointmentSummary(
                        id=row.id,
                        slot_id=row.slot_id,
                        start=row.slot.start_timestamp,
                        staff_id=row.staff_id,
                        staff_name=row.staff.name if row.staff is not None else None,
                        services=[service.name for service in row.services],
                    )
                    for row in session.scalars(stmt).unique()
                ]
        except SQLAlchemyError as exc:
            logger.error("Appointment listing failed for client %s: %s", client_id, exc)
            raise TransientError(STORE_UNAVAILABLE) from exc
