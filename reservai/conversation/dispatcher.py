"""
Conversation dispatcher: one inbound message in, one reply out.

Pipeline per turn:
    InboundMessage -> classifier -> reconcile(intent, text, session)
        -> intent handler -> {SlotResolver, BookingTransactionManager}
        -> new session step + reply

Each turn runs under the session store's per-conversation lock on a private
copy of the session. The copy is persisted only when the handler returns
normally; steps change only through ConversationStateMachine triggers.
Sessions are deleted once their flow reaches a terminal step or falls back
to NONE.

Error policy (see reservai.errors):
    InvalidInputError  -> reply, session unchanged
    NotFoundError      -> apology, session deleted
    SlotConflictError  -> refreshed slot list, back to date/time selection
    TransientError     -> "try again later"; session deleted only if terminal
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from reservai.config import settings
from reservai.conversation.intent_reconciler import Intent, reconcile
from reservai.conversation.session_store import InMemorySessionStore
from reservai.conversation.slot_resolver import ResolutionKind, SlotResolution, SlotResolver
from reservai.conversation.state_machine import (
    ACTIVE_STEPS,
    TERMINAL_STEPS,
    ConfirmationStep,
    ConversationStateMachine,
    InvalidTransitionError,
    TransitionTrigger,
)
from reservai.errors import (
    InvalidInputError,
    NotFoundError,
    ReservaiError,
    SlotConflictError,
    TransientError,
)
from reservai.logging_context import get_conversation_logger, set_conversation_id
from reservai.prompts import reply_templates as replies
from reservai.schemas.booking_schema import AppointmentSummary
from reservai.schemas.message_schema import ClassificationResult, InboundMessage, Reply
from reservai.schemas.session_schema import (
    RESTART_MESSAGE,
    ClientInfo,
    ConversationSession,
    FlowKind,
    SlotChoice,
)
from reservai.tools.availability import SlotRepository
from reservai.tools.booking import BookingResult, BookingStatus, BookingTransactionManager
from reservai.tools.customer import ClientDirectory
from reservai.tools.database import Database
from reservai.tools.intent_classifier import CLASSIFIER_UNAVAILABLE, IntentClassifier
from reservai.tools.services import ServiceCatalog
from reservai.utils import local_now, normalize_contact

logger = get_conversation_logger(__name__)

INVALID_MESSAGE = "Mensagem inválida. Envie um texto com o que você deseja."

_S = ConfirmationStep
_T = TransitionTrigger

BOOKING_STEPS = frozenset({
    _S.NONE,
    _S.AWAITING_DATE_TIME,
    _S.CONFIRM_NEAREST_SLOT,
    _S.AWAITING_NAME_CONFIRMATION,
    _S.AWAITING_FINAL_CONFIRMATION,
})
DATE_ANSWER_STEPS = frozenset({
    _S.NONE,
    _S.AWAITING_DATE_TIME,
    _S.AWAITING_NEW_DATE_TIME,
    _S.CONFIRM_NEAREST_SLOT,
})


@dataclass
class _Turn:
    """Everything a handler needs for the current message."""
    text: str
    classification: ClassificationResult
    display_name: Optional[str]
    session: ConversationSession
    machine: ConversationStateMachine
    now: datetime

    def fire(self, trigger: TransitionTrigger) -> None:
        self.session.step = self.machine.transition(trigger)


class ConversationEngine:
    """Applies one reconciled intent to a conversation session."""

    def __init__(
        self,
        database: Database,
        store: Optional[InMemorySessionStore] = None,
        clock: Callable[[], datetime] = local_now,
        max_slots_listed: Optional[int] = None,
    ) -> None:
        self._clock = clock
        self._store = store or InMemorySessionStore(clock=clock)
        self._catalog = ServiceCatalog(database)
        self._clients = ClientDirectory(database)
        self._slots = SlotRepository(database)
        self._resolver = SlotResolver(self._slots, clock=clock)
        self._booking = BookingTransactionManager(database)
        self._max_slots = max_slots_listed or settings.scheduling.max_slots_listed
        self._handlers: dict[Intent, Callable[[_Turn], str]] = {
            Intent.WELCOME: self._on_welcome,
            Intent.SELECT_SERVICE: self._on_select_service,
            Intent.SELECT_DATE_TIME: self._on_select_date_time,
            Intent.CONFIRM: self._on_confirm,
            Intent.REJECT: self._on_reject,
            Intent.SELECT_APPOINTMENT: self._on_select_appointment,
            Intent.CANCEL_REQUEST: self._on_cancel_request,
            Intent.RESCHEDULE_REQUEST: self._on_reschedule_request,
            Intent.UNCLASSIFIED: self._on_unclassified,
        }

    @property
    def store(self) -> InMemorySessionStore:
        return self._store

    def handle_turn(
        self,
        conversation_id: str,
        text: str,
        classification: ClassificationResult,
        display_name: Optional[str] = None,
    ) -> Reply:
        """Process one classified message and return the reply."""
        with self._store.lock(conversation_id):
            stored = self._store.get(conversation_id)
            intent = reconcile(classification.intent_label, text, stored)
            session = stored or ConversationSession(conversation_id=conversation_id)
            turn = _Turn(
                text=text,
                classification=classification,
                display_name=display_name,
                session=session,
                machine=ConversationStateMachine(session.step),
                now=self._clock(),
            )
            logger.info(
                "Turn: label='%s' intent=%s step=%s",
                classification.intent_label, intent.value, session.step.value,
            )
            try:
                try:
                    text_out = self._handlers[intent](turn)
                except SlotConflictError as exc:
                    text_out = self._recover_from_conflict(turn, exc)
            except InvalidInputError as exc:
                logger.info("Invalid input at step %s: %s", session.step.value, exc.user_message)
                return Reply(text=exc.user_message)
            except NotFoundError as exc:
                logger.warning("Session reset at step %s: %s", session.step.value, exc)
                self._store.delete(conversation_id)
                return Reply(text=exc.user_message)
            except TransientError as exc:
                if exc.terminal:
                    self._store.delete(conversation_id)
                return Reply(text=exc.user_message)
            except InvalidTransitionError:
                logger.exception("Undefined step change, session reset")
                self._store.delete(conversation_id)
                return Reply(text=RESTART_MESSAGE)
            except Exception:
                logger.exception("Unexpected failure handling turn")
                return Reply(text=replies.TRY_AGAIN_LATER)

            self._persist(turn.session)
            logger.debug("Step trace: %s", " -> ".join(turn.machine.get_state_trace()))
            return Reply(text=text_out)

    def _persist(self, session: ConversationSession) -> None:
        if session.step in TERMINAL_STEPS or session.step == _S.NONE:
            self._store.delete(session.conversation_id)
        else:
            self._store.set(session)

    # ------------------------------------------------------------------ #
    # Intent handlers
    # ------------------------------------------------------------------ #

    def _on_welcome(self, turn: _Turn) -> str:
        return turn.classification.fulfillment_text or (
            f"Olá! Bem-vindo à {settings.business.name}. Qual serviço você deseja?"
        )

    def _on_unclassified(self, turn: _Turn) -> str:
        step = turn.session.step
        if step == _S.AWAITING_NAME_CONFIRMATION:
            return replies.build_name_reprompt()
        if step == _S.AWAITING_FINAL_CONFIRMATION:
            return replies.build_final_reprompt()
        if step in ACTIVE_STEPS:
            return replies.build_yes_no_reprompt()
        return turn.classification.fulfillment_text or replies.NOT_UNDERSTOOD

    def _on_select_service(self, turn: _Turn) -> str:
        session = turn.session
        if session.flow != FlowKind.BOOKING or session.step not in BOOKING_STEPS:
            session = turn.session = self._fresh_session(turn, FlowKind.BOOKING)

        requested = turn.classification.get_string("servico")
        service = self._catalog.match_service(requested or turn.text)
        if service is None:
            raise InvalidInputError(replies.build_unknown_service(requested))
        self._apply_staff_preference(turn)

        if not session.add_service(service.id, service.name):
            logger.debug("Service %s already selected", service.name)
        session.clear_slot_selection()
        slots = self._slots.list_available(turn.now, session.staff_id, limit=self._max_slots)
        session.offered_slot_ids = [slot.id for slot in slots]
        turn.fire(_T.SERVICE_SELECTED)

        staff = None if session.staff_name else self._catalog.list_staff()
        return replies.build_slot_list(session.service_names, slots, session.staff_name, staff)

    def _on_select_date_time(self, turn: _Turn) -> str:
        session = turn.session
        if session.step not in DATE_ANSWER_STEPS:
            return self._on_unclassified(turn)
        if session.flow == FlowKind.RESCHEDULE:
            return self._resolve_new_date_time(turn)
        if session.flow != FlowKind.BOOKING or not session.services:
            raise InvalidInputError(replies.CHOOSE_SERVICE_FIRST)

        self._apply_staff_preference(turn)
        result = self._resolve(turn)
        if result.kind == ResolutionKind.EXACT:
            session.chosen_slot = SlotChoice.from_slot(result.slot)
            session.nearest_suggestion = None
            client = self._identify_client(turn)
            turn.fire(_T.SLOT_MATCHED)
            return replies.build_name_confirmation(
                result.slot.start, result.slot.staff_name, session.service_names,
                client.name, client.contact_key,
            )

        session.nearest_suggestion = SlotChoice.from_slot(result.slot)
        turn.fire(_T.NEAREST_SLOT_OFFERED)
        return replies.build_nearest_proposal(
            result.requested, result.slot, session.service_names, session.staff_name
        )

    def _on_confirm(self, turn: _Turn) -> str:
        step = turn.session.step
        if step == _S.CONFIRM_NEAREST_SLOT:
            return self._accept_nearest(turn)
        if step == _S.AWAITING_NAME_CONFIRMATION:
            return self._confirm_name(turn)
        if step == _S.AWAITING_FINAL_CONFIRMATION:
            return self._commit_booking(turn)
        if step in (_S.SELECT_APPOINTMENT, _S.CONFIRM_RESCHEDULE_START):
            appointments = turn.session.appointments
            if len(appointments) != 1:
                raise InvalidInputError(replies.build_invalid_appointment_choice(len(appointments)))
            return self._choose_appointment(turn, appointments[0], commit_cancel=True)
        if step == _S.CONFIRM_CANCEL:
            return self._commit_cancel(turn)
        if step == _S.AWAITING_RESCHEDULE_CONFIRMATION:
            return self._commit_reschedule(turn)
        if step in ACTIVE_STEPS:
            return self._on_unclassified(turn)
        raise NotFoundError("Nenhum agendamento pendente encontrado. Por favor, comece novamente.")

    def _on_reject(self, turn: _Turn) -> str:
        session = turn.session
        step = session.step
        if step == _S.CONFIRM_NEAREST_SLOT:
            session.nearest_suggestion = None
            if session.flow == FlowKind.RESCHEDULE:
                turn.fire(_T.NEW_NEAREST_SLOT_REJECTED)
            else:
                turn.fire(_T.NEAREST_SLOT_REJECTED)
            return f"Tudo bem. Informe outro dia e horário (ex: {replies.DATE_TIME_EXAMPLE})."
        if step not in ACTIVE_STEPS:
            return self._on_unclassified(turn)

        turn.fire(_T.ABANDONED)
        if session.flow == FlowKind.BOOKING:
            logger.info("Booking abandoned by the customer")
            return replies.FLOW_ABANDONED
        return replies.build_cancel_kept()

    def _on_select_appointment(self, turn: _Turn) -> str:
        session = turn.session
        if session.step not in (_S.SELECT_APPOINTMENT, _S.CONFIRM_RESCHEDULE_START):
            return self._on_unclassified(turn)
        count = len(session.appointments)
        try:
            position = int(turn.text.strip().rstrip(".)"))
        except ValueError:
            raise InvalidInputError(replies.build_invalid_appointment_choice(count))
        if not 1 <= position <= count:
            raise InvalidInputError(replies.build_invalid_appointment_choice(count))
        return self._choose_appointment(turn, session.appointments[position - 1])

    def _on_cancel_request(self, turn: _Turn) -> str:
        return self._start_appointment_flow(turn, FlowKind.CANCEL)

    def _on_reschedule_request(self, turn: _Turn) -> str:
        return self._start_appointment_flow(turn, FlowKind.RESCHEDULE)

    # ------------------------------------------------------------------ #
    # Booking flow
    # ------------------------------------------------------------------ #

    def _resolve(self, turn: _Turn) -> SlotResolution:
        session = turn.session
        candidates = self._slots.get_slots(session.offered_slot_ids)
        staff_id = session.staff_id if session.flow == FlowKind.BOOKING else None
        result = self._resolver.resolve(
            turn.text, candidates, turn.classification.parameters, staff_id
        )
        if result.kind == ResolutionKind.NOT_FOUND:
            if result.requested is None:
                raise InvalidInputError(replies.build_invalid_date_time())
            raise InvalidInputError(
                replies.build_no_nearby_slot(result.requested, session.staff_name)
            )
        return result

    def _accept_nearest(self, turn: _Turn) -> str:
        session = turn.session
        suggestion = session.require_suggestion()
        session.chosen_slot = suggestion
        session.nearest_suggestion = None

        if session.flow == FlowKind.RESCHEDULE:
            target = session.require_target_appointment()
            turn.fire(_T.NEW_NEAREST_SLOT_ACCEPTED)
            return replies.build_confirm_reschedule(target, suggestion.start, suggestion.staff_name)

        client = self._identify_client(turn)
        turn.fire(_T.NEAREST_SLOT_ACCEPTED)
        return replies.build_name_confirmation(
            suggestion.start, suggestion.staff_name, session.service_names,
            client.name, client.contact_key,
        )

    def _confirm_name(self, turn: _Turn) -> str:
        session = turn.session
        client = session.require_client()
        slot = session.require_chosen_slot()
        services = session.require_services()
        turn.fire(_T.NAME_CONFIRMED)
        return replies.build_final_confirmation(
            slot.start, slot.staff_name, [s.name for s in services],
            client.name, client.contact_key,
        )

    def _commit_booking(self, turn: _Turn) -> str:
        session = turn.session
        client = session.require_client()
        slot = session.require_chosen_slot()
        service_ids = [s.id for s in session.require_services()]

        result = self._booking.reserve(client.id, service_ids, slot.slot_id, slot.staff_id)
        _raise_for_result(result, slot, replies.BOOKING_FAILED)
        turn.fire(_T.BOOKING_COMMITTED)
        return replies.build_booked(
            slot.start, slot.staff_name, session.service_names, client.name, client.contact_key
        )

    def _recover_from_conflict(self, turn: _Turn, exc: SlotConflictError) -> str:
        """Slot taken meanwhile: back to the date/time step with a fresh list."""
        session = turn.session
        logger.warning("Slot %s taken before commit, offering a refreshed list", exc.slot_id)
        turn.fire(_T.SLOT_CONFLICT)
        session.clear_slot_selection()
        staff_id = session.staff_id if session.flow == FlowKind.BOOKING else None
        slots = self._slots.list_available(turn.now, staff_id, limit=self._max_slots)
        session.offered_slot_ids = [slot.id for slot in slots]
        return replies.build_slot_conflict(slots, exc.start, exc.staff_name)

    # ------------------------------------------------------------------ #
    # Cancellation and rescheduling
    # ------------------------------------------------------------------ #

    def _start_appointment_flow(self, turn: _Turn, flow: FlowKind) -> str:
        session = turn.session = self._fresh_session(turn, flow)
        client = self._identify_client(turn)
        appointments = self._booking.list_active_appointments(client.id, turn.now)
        if not appointments:
            return replies.NO_ACTIVE_APPOINTMENTS

        session.appointments = appointments
        if flow == FlowKind.CANCEL:
            turn.fire(_T.CANCEL_REQUESTED)
            return replies.build_appointment_list(appointments, "cancelar")
        turn.fire(_T.RESCHEDULE_REQUESTED)
        return replies.build_appointment_list(appointments, "reagendar")

    def _choose_appointment(
        self, turn: _Turn, appointment: AppointmentSummary, commit_cancel: bool = False
    ) -> str:
        session = turn.session
        session.target_appointment = appointment
        if session.flow == FlowKind.CANCEL:
            turn.fire(_T.CANCEL_APPOINTMENT_CHOSEN)
            if commit_cancel:
                return self._commit_cancel(turn)
            return replies.build_confirm_cancel(appointment)

        turn.fire(_T.RESCHEDULE_APPOINTMENT_CHOSEN)
        slots = self._slots.list_available(turn.now, limit=self._max_slots)
        session.offered_slot_ids = [slot.id for slot in slots]
        return replies.build_reschedule_slot_list(appointment, slots)

    def _commit_cancel(self, turn: _Turn) -> str:
        target = turn.session.require_target_appointment()
        result = self._booking.cancel(target.id)
        _raise_for_result(result, None, replies.TRY_AGAIN_LATER)
        turn.fire(_T.CANCEL_COMMITTED)
        return replies.build_cancelled(target)

    def _resolve_new_date_time(self, turn: _Turn) -> str:
        session = turn.session
        target = session.require_target_appointment()
        result = self._resolve(turn)
        if result.kind == ResolutionKind.EXACT:
            session.chosen_slot = SlotChoice.from_slot(result.slot)
            session.nearest_suggestion = None
            turn.fire(_T.NEW_SLOT_MATCHED)
            return replies.build_confirm_reschedule(
                target, result.slot.start, result.slot.staff_name
            )

        session.nearest_suggestion = SlotChoice.from_slot(result.slot)
        turn.fire(_T.NEAREST_SLOT_OFFERED)
        return replies.build_nearest_proposal(result.requested, result.slot, target.services)

    def _commit_reschedule(self, turn: _Turn) -> str:
        session = turn.session
        target = session.require_target_appointment()
        slot = session.require_chosen_slot()
        result = self._booking.reschedule(target.id, slot.slot_id)
        _raise_for_result(result, slot, replies.TRY_AGAIN_LATER)
        turn.fire(_T.RESCHEDULE_COMMITTED)
        return replies.build_rescheduled(target, slot.start, slot.staff_name)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _fresh_session(self, turn: _Turn, flow: FlowKind) -> ConversationSession:
        if turn.session.step != _S.NONE:
            logger.info("Discarding %s flow at step %s", turn.session.flow.value,
                        turn.session.step.value)
        session = ConversationSession(conversation_id=turn.session.conversation_id, flow=flow)
        turn.machine = ConversationStateMachine(session.step)
        return session

    def _apply_staff_preference(self, turn: _Turn) -> None:
        name = turn.classification.get_string("barbeiro")
        if not name:
            return
        member = self._catalog.find_staff_by_name(name)
        if member is None:
            raise InvalidInputError(replies.build_unknown_staff(name))
        turn.session.set_staff(member.id, member.name)

    def _identify_client(self, turn: _Turn) -> ClientInfo:
        record = self._clients.find_or_create(turn.session.conversation_id, turn.display_name)
        client = ClientInfo(id=record.id, name=record.name, contact_key=record.contact_key)
        turn.session.client = client
        return client


def _raise_for_result(
    result: BookingResult, slot: Optional[SlotChoice], failure_message: str
) -> None:
    """Map a non-successful transaction outcome onto the error taxonomy."""
    if result.status == BookingStatus.SUCCESS:
        return
    if result.status == BookingStatus.CONFLICT:
        if slot is None:
            raise SlotConflictError(result.message)
        raise SlotConflictError(
            result.message, slot_id=slot.slot_id, start=slot.start, staff_name=slot.staff_name
        )
    if result.status == BookingStatus.NOT_FOUND:
        raise NotFoundError(replies.APPOINTMENT_GONE)
    raise TransientError(failure_message, terminal=True)


def parse_inbound(payload: Union[InboundMessage, dict[str, Any]]) -> InboundMessage:
    """Validate a raw inbound payload."""
    if isinstance(payload, InboundMessage):
        return payload
    try:
        return InboundMessage.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        logger.warning("Rejected inbound message, invalid fields: %s", fields)
        raise InvalidInputError(INVALID_MESSAGE) from exc


class MessageHandler:
    """Entry point for the transport layer: validate, classify, dispatch."""

    def __init__(
        self,
        engine: ConversationEngine,
        classifier: IntentClassifier,
        locale: Optional[str] = None,
    ) -> None:
        self._engine = engine
        self._classifier = classifier
        self._locale = locale or settings.business.locale

    @property
    def engine(self) -> ConversationEngine:
        return self._engine

    def handle(self, payload: Union[InboundMessage, dict[str, Any]]) -> Reply:
        try:
            message = parse_inbound(payload)
        except InvalidInputError as exc:
            return Reply(text=exc.user_message)

        set_conversation_id(message.conversation_id)
        session_id = normalize_contact(message.conversation_id) or message.conversation_id
        try:
            classification = self._classifier.classify(message.text, self._locale, session_id)
        except ReservaiError as exc:
            return Reply(text=exc.user_message)
        except Exception:
            logger.exception("Classifier call failed")
            return Reply(text=CLASSIFIER_UNAVAILABLE)

        return self._engine.handle_turn(
            message.conversation_id, message.text, classification, message.display_name
        )
