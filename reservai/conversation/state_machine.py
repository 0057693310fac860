"""
Finite state machine for the booking, rescheduling and cancellation flows.

Defines the confirmation steps a conversation session can be in and the
explicit transitions between them. The dispatcher never assigns a step
directly: it fires a trigger, and a trigger with no matching edge from the
current step is rejected, so a session can never land in an undefined step.

Usage:
    sm = ConversationStateMachine()
    sm.transition(TransitionTrigger.SERVICE_SELECTED)
    assert sm.current_state == ConfirmationStep.AWAITING_DATE_TIME
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ConfirmationStep(str, Enum):
    """Position of a conversation session in its flow."""
    NONE = "none"

    # Booking
    AWAITING_DATE_TIME = "awaiting_date_time"
    CONFIRM_NEAREST_SLOT = "confirm_nearest_slot"
    AWAITING_NAME_CONFIRMATION = "awaiting_name_confirmation"
    AWAITING_FINAL_CONFIRMATION = "awaiting_final_confirmation"

    # Rescheduling
    CONFIRM_RESCHEDULE_START = "confirm_reschedule_start"
    AWAITING_NEW_DATE_TIME = "awaiting_new_date_time"
    AWAITING_RESCHEDULE_CONFIRMATION = "awaiting_reschedule_confirmation"

    # Cancellation
    SELECT_APPOINTMENT = "select_appointment"
    CONFIRM_CANCEL = "confirm_cancel"

    # Terminal
    BOOKED = "booked"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


TERMINAL_STEPS: frozenset[ConfirmationStep] = frozenset({
    ConfirmationStep.BOOKED,
    ConfirmationStep.RESCHEDULED,
    ConfirmationStep.CANCELLED,
    ConfirmationStep.ABANDONED,
})

ACTIVE_STEPS: frozenset[ConfirmationStep] = frozenset(
    step for step in ConfirmationStep
    if step not in TERMINAL_STEPS and step != ConfirmationStep.NONE
)

DATE_TIME_STEPS: frozenset[ConfirmationStep] = frozenset({
    ConfirmationStep.AWAITING_DATE_TIME,
    ConfirmationStep.AWAITING_NEW_DATE_TIME,
})

YES_NO_STEPS: frozenset[ConfirmationStep] = frozenset({
    ConfirmationStep.CONFIRM_NEAREST_SLOT,
    ConfirmationStep.AWAITING_NAME_CONFIRMATION,
    ConfirmationStep.AWAITING_FINAL_CONFIRMATION,
    ConfirmationStep.CONFIRM_RESCHEDULE_START,
    ConfirmationStep.AWAITING_RESCHEDULE_CONFIRMATION,
    ConfirmationStep.SELECT_APPOINTMENT,
    ConfirmationStep.CONFIRM_CANCEL,
})


class TransitionTrigger(str, Enum):
    """Events that cause step transitions."""
    SERVICE_SELECTED = "service_selected"
    SLOT_MATCHED = "slot_matched"
    NEAREST_SLOT_OFFERED = "nearest_slot_offered"
    NEAREST_SLOT_ACCEPTED = "nearest_slot_accepted"
    NEAREST_SLOT_REJECTED = "nearest_slot_rejected"
    NAME_CONFIRMED = "name_confirmed"
    BOOKING_COMMITTED = "booking_committed"
    SLOT_CONFLICT = "slot_conflict"

    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULE_APPOINTMENT_CHOSEN = "reschedule_appointment_chosen"
    NEW_SLOT_MATCHED = "new_slot_matched"
    NEW_NEAREST_SLOT_ACCEPTED = "new_nearest_slot_accepted"
    NEW_NEAREST_SLOT_REJECTED = "new_nearest_slot_rejected"
    RESCHEDULE_COMMITTED = "reschedule_committed"

    CANCEL_REQUESTED = "cancel_requested"
    CANCEL_APPOINTMENT_CHOSEN = "cancel_appointment_chosen"
    CANCEL_COMMITTED = "cancel_committed"

    ABANDONED = "abandoned"


@dataclass
class Transition:
    """A single valid step transition."""
    from_state: ConfirmationStep
    to_state: ConfirmationStep
    trigger: TransitionTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a step visit."""
    state: ConfirmationStep
    entered_at: datetime
    trigger: Optional[TransitionTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current step."""


_S = ConfirmationStep
_T = TransitionTrigger


class ConversationStateMachine:
    """
    Deterministic step machine for a single conversation session.

    The machine is rebuilt from the session's stored step on every turn,
    so it carries only the history of that turn.
    """

    TRANSITIONS: list[Transition] = [
        # --- Booking: service selection is additive from any booking step ---
        Transition(_S.NONE, _S.AWAITING_DATE_TIME, _T.SERVICE_SELECTED),
        Transition(_S.AWAITING_DATE_TIME, _S.AWAITING_DATE_TIME, _T.SERVICE_SELECTED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_DATE_TIME, _T.SERVICE_SELECTED),
        Transition(_S.AWAITING_NAME_CONFIRMATION, _S.AWAITING_DATE_TIME, _T.SERVICE_SELECTED),
        Transition(_S.AWAITING_FINAL_CONFIRMATION, _S.AWAITING_DATE_TIME, _T.SERVICE_SELECTED),

        # --- Booking: date/time resolution ---
        Transition(_S.AWAITING_DATE_TIME, _S.AWAITING_NAME_CONFIRMATION, _T.SLOT_MATCHED),
        Transition(_S.AWAITING_DATE_TIME, _S.CONFIRM_NEAREST_SLOT, _T.NEAREST_SLOT_OFFERED),

        # --- Nearest-slot sub-state (both flows) ---
        Transition(_S.AWAITING_NEW_DATE_TIME, _S.CONFIRM_NEAREST_SLOT, _T.NEAREST_SLOT_OFFERED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.CONFIRM_NEAREST_SLOT, _T.NEAREST_SLOT_OFFERED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_NAME_CONFIRMATION, _T.SLOT_MATCHED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_NAME_CONFIRMATION,
                   _T.NEAREST_SLOT_ACCEPTED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_DATE_TIME, _T.NEAREST_SLOT_REJECTED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_RESCHEDULE_CONFIRMATION,
                   _T.NEW_SLOT_MATCHED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_RESCHEDULE_CONFIRMATION,
                   _T.NEW_NEAREST_SLOT_ACCEPTED),
        Transition(_S.CONFIRM_NEAREST_SLOT, _S.AWAITING_NEW_DATE_TIME,
                   _T.NEW_NEAREST_SLOT_REJECTED),

        # --- Booking: confirmation gates ---
        Transition(_S.AWAITING_NAME_CONFIRMATION, _S.AWAITING_FINAL_CONFIRMATION,
                   _T.NAME_CONFIRMED),
        Transition(_S.AWAITING_FINAL_CONFIRMATION, _S.BOOKED, _T.BOOKING_COMMITTED),
        Transition(_S.AWAITING_FINAL_CONFIRMATION, _S.AWAITING_DATE_TIME, _T.SLOT_CONFLICT),

        # --- Rescheduling ---
        Transition(_S.NONE, _S.CONFIRM_RESCHEDULE_START, _T.RESCHEDULE_REQUESTED),
        Transition(_S.CONFIRM_RESCHEDULE_START, _S.AWAITING_NEW_DATE_TIME,
                   _T.RESCHEDULE_APPOINTMENT_CHOSEN),
        Transition(_S.AWAITING_NEW_DATE_TIME, _S.AWAITING_RESCHEDULE_CONFIRMATION,
                   _T.NEW_SLOT_MATCHED),
        Transition(_S.AWAITING_RESCHEDULE_CONFIRMATION, _S.RESCHEDULED,
                   _T.RESCHEDULE_COMMITTED),
        Transition(_S.AWAITING_RESCHEDULE_CONFIRMATION, _S.AWAITING_NEW_DATE_TIME,
                   _T.SLOT_CONFLICT),

        # --- Cancellation ---
        Transition(_S.NONE, _S.SELECT_APPOINTMENT, _T.CANCEL_REQUESTED),
        Transition(_S.SELECT_APPOINTMENT, _S.CONFIRM_CANCEL, _T.CANCEL_APPOINTMENT_CHOSEN),
        Transition(_S.CONFIRM_CANCEL, _S.CANCELLED, _T.CANCEL_COMMITTED),

        # --- Abandonment from any active step ---
        *[
            Transition(step, _S.ABANDONED, _T.ABANDONED)
            for step in ConfirmationStep
            if step in ACTIVE_STEPS
        ],
    ]

    def __init__(self, initial: ConfirmationStep = ConfirmationStep.NONE) -> None:
        self._current_state = initial
        self._history: list[StateEntry] = [
            StateEntry(state=initial, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_state(self) -> ConfirmationStep:
        return self._current_state

    def transition(self, trigger: TransitionTrigger) -> ConfirmationStep:
        """
        Execute a step transition.

        Args:
            trigger: The event triggering the transition.

        Returns:
            The new confirmation step.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                old_state = self._current_state
                self._current_state = t.to_state

                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))

                logger.debug(
                    "Step transition: %s -> %s (trigger: %s)",
                    old_state.value, self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def can_transition(self, trigger: TransitionTrigger) -> bool:
        return trigger in self.get_valid_triggers()

    def get_valid_triggers(self) -> list[TransitionTrigger]:
        """Return all triggers valid from the current step."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_history(self) -> list[StateEntry]:
        """Return the step history of this machine."""
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of step names visited."""
        return [entry.state.value for entry in self._history]

    def is_terminal(self) -> bool:
        """Check if the session has reached a terminal outcome."""
        return self._current_state in TERMINAL_STEPS
