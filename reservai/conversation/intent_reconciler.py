"""
Intent Reconciler: classifier labels to the intent the current step implies.

The classifier is trusted for what it names confidently (a service, a
cancel or reschedule request, a greeting). Mid-flow it often answers with
its generic fallback, or with a confirmation label for both "sim" and
"não". When the session has an active step the reconciler rewrites those
answers:

- steps awaiting a date/time read anything generic as a date/time answer;
- yes/no steps read affirmative tokens as CONFIRM and negative tokens as
  REJECT; anything else stays UNCLASSIFIED so the step re-prompts;
- appointment-selection steps read a bare number as SELECT_APPOINTMENT.

Token matching is case-insensitive substring matching.
"""

import logging
import re
from enum import Enum
from typing import Optional

from reservai.conversation.slot_resolver import extract_time, extract_weekday
from reservai.conversation.state_machine import (
    DATE_TIME_STEPS,
    YES_NO_STEPS,
    ConfirmationStep,
)
from reservai.schemas.session_schema import ConversationSession

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Concrete intents the dispatcher handles."""
    WELCOME = "welcome"
    SELECT_SERVICE = "select_service"
    SELECT_DATE_TIME = "select_date_time"
    CONFIRM = "confirm"
    REJECT = "reject"
    SELECT_APPOINTMENT = "select_appointment"
    CANCEL_REQUEST = "cancel_request"
    RESCHEDULE_REQUEST = "reschedule_request"
    UNCLASSIFIED = "unclassified"


INTENT_LABELS: dict[str, Intent] = {
    "welcome_intent": Intent.WELCOME,
    "escolha_servico": Intent.SELECT_SERVICE,
    "escolha_datahora": Intent.SELECT_DATE_TIME,
    "confirmar_agendamento": Intent.CONFIRM,
    "cancelar_agendamento": Intent.CANCEL_REQUEST,
    "reagendar_agendamento": Intent.RESCHEDULE_REQUEST,
}

AFFIRMATIVE_TOKENS = ("sim", "confirmar", "confirmo", "claro")
NEGATIVE_TOKENS = ("não", "nao", "cancelar", "negativo")

# In the cancellation flow "cancelar" answers the question instead of refusing it.
CANCEL_FLOW_AFFIRMATIVE = AFFIRMATIVE_TOKENS + ("cancelar", "cancela")
CANCEL_FLOW_NEGATIVE = ("não", "nao", "negativo", "desisto")

CANCEL_FLOW_STEPS = frozenset({
    ConfirmationStep.SELECT_APPOINTMENT,
    ConfirmationStep.CONFIRM_CANCEL,
})
RESCHEDULE_FLOW_STEPS = frozenset({
    ConfirmationStep.CONFIRM_RESCHEDULE_START,
    ConfirmationStep.AWAITING_RESCHEDULE_CONFIRMATION,
})
APPOINTMENT_CHOICE_STEPS = frozenset({
    ConfirmationStep.SELECT_APPOINTMENT,
    ConfirmationStep.CONFIRM_RESCHEDULE_START,
})

_NUMBER = re.compile(r"^\s*\d{1,3}\s*[.)]?\s*$")


def label_to_intent(label: Optional[str]) -> Intent:
    """Map a raw classifier label to an Intent; unknown labels are UNCLASSIFIED."""
    if not label:
        return Intent.UNCLASSIFIED
    return INTENT_LABELS.get(label.strip(), Intent.UNCLASSIFIED)


def read_yes_no(text: str, step: ConfirmationStep) -> Optional[Intent]:
    """CONFIRM, REJECT or None for a yes/no answer given at ``step``."""
    lower = text.lower()
    if step in CANCEL_FLOW_STEPS:
        affirmative, negative = CANCEL_FLOW_AFFIRMATIVE, CANCEL_FLOW_NEGATIVE
    else:
        affirmative, negative = AFFIRMATIVE_TOKENS, NEGATIVE_TOKENS
    if any(token in lower for token in affirmative):
        return Intent.CONFIRM
    if any(token in lower for token in negative):
        return Intent.REJECT
    return None


def reconcile(
    classifier_label: Optional[str],
    raw_text: str,
    session: Optional[ConversationSession],
) -> Intent:
    """Return the intent the dispatcher should act on for this turn."""
    intent = label_to_intent(classifier_label)
    if session is None or session.step == ConfirmationStep.NONE:
        return intent

    effective = _reconcile_for_step(intent, raw_text, session.step)
    if effective != intent:
        logger.debug(
            "Reconciled intent %s -> %s at step %s",
            intent.value, effective.value, session.step.value,
        )
    return effective


def _reconcile_for_step(intent: Intent, text: str, step: ConfirmationStep) -> Intent:
    if intent in (Intent.WELCOME, Intent.SELECT_SERVICE):
        return intent

    if step in DATE_TIME_STEPS:
        if intent == Intent.CANCEL_REQUEST:
            return Intent.REJECT
        if intent == Intent.RESCHEDULE_REQUEST and step == ConfirmationStep.AWAITING_DATE_TIME:
            return intent
        return Intent.SELECT_DATE_TIME

    if step not in YES_NO_STEPS:
        return intent

    if step in APPOINTMENT_CHOICE_STEPS and _NUMBER.match(text):
        return Intent.SELECT_APPOINTMENT

    if intent == Intent.CANCEL_REQUEST:
        default = Intent.CONFIRM if step in CANCEL_FLOW_STEPS else Intent.REJECT
        return read_yes_no(text, step) or default

    if intent == Intent.RESCHEDULE_REQUEST:
        if step in RESCHEDULE_FLOW_STEPS:
            return read_yes_no(text, step) or Intent.CONFIRM
        return intent

    if intent in (Intent.UNCLASSIFIED, Intent.CONFIRM, Intent.SELECT_DATE_TIME):
        answer = read_yes_no(text, step)
        if answer is not None:
            return answer
        if step == ConfirmationStep.CONFIRM_NEAREST_SLOT and (
            intent == Intent.SELECT_DATE_TIME
            or extract_time(text) is not None
            or extract_weekday(text) is not None
        ):
            return Intent.SELECT_DATE_TIME
        return Intent.UNCLASSIFIED

    return intent
