from reservai.conversation.slot_resolver import ResolutionKind, SlotResolution, SlotResolver
from reservai.conversation.state_machine import (
    ConfirmationStep,
    ConversationStateMachine,
    InvalidTransitionError,
    TransitionTrigger,
)

__all__ = [
    "ConversationStateMachine",
    "ConfirmationStep",
    "TransitionTrigger",
    "InvalidTransitionError",
    "SlotResolver",
    "SlotResolution",
    "ResolutionKind",
]
