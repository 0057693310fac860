"""
Error taxonomy for the booking engine.

Every error carries the text that should be sent back to the customer.
The dispatcher decides what happens to the session for each class:

- InvalidInputError : re-prompt, session unchanged
- NotFoundError     : apologise, session cleared
- SlotConflictError : slot taken meanwhile, back to date/time selection
- TransientError    : store or classifier failure, "try again later"
"""

from datetime import datetime
from typing import Optional


class ReservaiError(Exception):
    """Base class for errors surfaced to the customer as a reply."""

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class InvalidInputError(ReservaiError):
    """Malformed inbound fields, unparseable date/time, unknown service or staff name."""


class NotFoundError(ReservaiError):
    """Referenced appointment, slot or service is gone or not actionable."""


class IncompleteSessionError(NotFoundError):
    """The session lacks a field that its current step requires."""


class SlotConflictError(ReservaiError):
    """The chosen slot was claimed by another party between read and commit."""

    def __init__(
        self,
        user_message: str,
        slot_id: Optional[int] = None,
        start: Optional[datetime] = None,
        staff_name: Optional[str] = None,
    ) -> None:
        super().__init__(user_message)
        self.slot_id = slot_id
        self.start = start
        self.staff_name = staff_name


class TransientError(ReservaiError):
    """Backing store or classifier failure unrelated to business state.

    ``terminal`` marks failures raised while committing a terminal step;
    the session is cleared for those so the flow cannot get stuck.
    """

    def __init__(self, user_message: str, terminal: bool = False) -> None:
        super().__init__(user_message)
        self.terminal = terminal
