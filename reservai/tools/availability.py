"""
Slot availability queries.

Reads only: every change to ``Slot.available`` happens inside the
transaction manager in ``reservai.tools.booking``.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from reservai.errors import TransientError
from reservai.schemas.booking_schema import AvailableSlot
from reservai.tools.database import Database, Slot
from reservai.tools.services import STORE_UNAVAILABLE

logger = logging.getLogger(__name__)


def to_available_slot(slot: Slot) -> AvailableSlot:
    return AvailableSlot(
        id=slot.id,
        start=slot.start_timestamp,
        weekday_label=slot.weekday_label,
        staff_id=slot.staff_id,
        staff_name=slot.staff.name if slot.staff is not None else None,
        available=bool(slot.available),
    )


class SlotRepository:
    """Read access to the slots table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def list_available(
        self,
        now: datetime,
        staff_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[AvailableSlot]:
        """Future available slots ordered by start time (then id)."""
        stmt = (
            select(Slot)
            .options(joinedload(Slot.staff))
            .where(Slot.available.is_(True), Slot.start_timestamp > now)
            .order_by(Slot.start_timestamp, Slot.id)
        )
        if staff_id is not None:
            stmt = stmt.where(Slot.staff_id == staff_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._fetch(stmt)

    def find_exact(
        self,
        weekday_label: str,
        hour: int,
        minute: int,
        now: datetime,
        staff_id: Optional[int] = None,
    ) -> Optional[AvailableSlot]:
        """Earliest future available slot on this weekday at exactly hour:minute."""
        stmt = (
            select(Slot)
            .options(joinedload(Slot.staff))
            .where(
                Slot.weekday_label == weekday_label,
                Slot.available.is_(True),
                Slot.start_timestamp > now,
            )
            .order_by(Slot.start_timestamp, Slot.id)
        )
        if staff_id is not None:
            stmt = stmt.where(Slot.staff_id == staff_id)
        for slot in self._fetch(stmt):
            if slot.start.hour == hour and slot.start.minute == minute:
                return slot
        return None

    def get_slots(self, slot_ids: list[int]) -> list[AvailableSlot]:
        """Slots by id in the order given; ids that no longer exist are skipped."""
        if not slot_ids:
            return []
        stmt = select(Slot).options(joinedload(Slot.staff)).where(Slot.id.in_(slot_ids))
        by_id = {slot.id: slot for slot in self._fetch(stmt)}
        return [by_id[slot_id] for slot_id in slot_ids if slot_id in by_id]

    def _fetch(self, stmt) -> list[AvailableSlot]:
        try:
            with self._db.session_factory() as session:
                return [to_available_slot(row) for row in session.scalars(stmt).unique()]
        except SQLAlchemyError as exc:
            logger.error("Slot query failed: %s", exc)
            raise TransientError(STORE_UNAVAILABLE) from exc
