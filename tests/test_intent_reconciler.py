"""Tests for classifier label reconciliation against the session step."""

import pytest

from reservai.conversation.intent_reconciler import (
    Intent,
    label_to_intent,
    read_yes_no,
    reconcile,
)
from reservai.conversation.state_machine import ConfirmationStep
from reservai.schemas.session_schema import ConversationSession, FlowKind

FALLBACK = "Default Fallback Intent"


def session_at(step: ConfirmationStep, flow: FlowKind = FlowKind.BOOKING) -> ConversationSession:
    return ConversationSession(conversation_id="c1", step=step, flow=flow)


class TestLabelMapping:
    @pytest.mark.parametrize("label,intent", [
        ("welcome_intent", Intent.WELCOME),
        ("escolha_servico", Intent.SELECT_SERVICE),
        ("escolha_datahora", Intent.SELECT_DATE_TIME),
        ("confirmar_agendamento", Intent.CONFIRM),
        ("cancelar_agendamento", Intent.CANCEL_REQUEST),
        ("reagendar_agendamento", Intent.RESCHEDULE_REQUEST),
    ])
    def test_known_labels(self, label, intent):
        assert label_to_intent(label) == intent

    def test_unknown_and_empty_labels_are_unclassified(self):
        assert label_to_intent(FALLBACK) == Intent.UNCLASSIFIED
        assert label_to_intent("") == Intent.UNCLASSIFIED
        assert label_to_intent(None) == Intent.UNCLASSIFIED


class TestWithoutSession:
    def test_label_used_verbatim(self):
        assert reconcile("escolha_datahora", "sim", None) == Intent.SELECT_DATE_TIME

    def test_fallback_stays_unclassified(self):
        assert reconcile(FALLBACK, "sim", None) == Intent.UNCLASSIFIED


class TestDateTimeSteps:
    @pytest.mark.parametrize("step", [
        ConfirmationStep.AWAITING_DATE_TIME,
        ConfirmationStep.AWAITING_NEW_DATE_TIME,
    ])
    def test_fallback_becomes_date_time(self, step):
        assert reconcile(FALLBACK, "sexta de manhã", session_at(step)) == Intent.SELECT_DATE_TIME

    def test_list_number_becomes_date_time(self):
        session = session_at(ConfirmationStep.AWAITING_DATE_TIME)
        assert reconcile(FALLBACK, "3", session) == Intent.SELECT_DATE_TIME

    def test_confirm_label_becomes_date_time(self):
        session = session_at(ConfirmationStep.AWAITING_NEW_DATE_TIME, FlowKind.RESCHEDULE)
        assert reconcile("confirmar_agendamento", "10:00", session) == Intent.SELECT_DATE_TIME

    def test_service_selection_is_trusted(self):
        session = session_at(ConfirmationStep.AWAITING_DATE_TIME)
        assert reconcile("escolha_servico", "barba também", session) == Intent.SELECT_SERVICE

    def test_cancel_request_abandons_booking(self):
        session = session_at(ConfirmationStep.AWAITING_DATE_TIME)
        assert reconcile("cancelar_agendamento", "quero cancelar", session) == Intent.REJECT


class TestYesNoSteps:
    @pytest.mark.parametrize("text", ["Sim", "sim, pode", "Confirmo", "CONFIRMAR", "claro"])
    def test_affirmative_tokens(self, text):
        session = session_at(ConfirmationStep.AWAITING_FINAL_CONFIRMATION)
        assert reconcile(FALLBACK, text, session) == Intent.CONFIRM

    @pytest.mark.parametrize("text", ["Não", "nao", "negativo", "pode cancelar"])
    def test_negative_tokens(self, text):
        session = session_at(ConfirmationStep.AWAITING_NAME_CONFIRMATION)
        assert reconcile(FALLBACK, text, session) == Intent.REJECT

    def test_confirm_label_with_negative_text_is_reject(self):
        session = session_at(ConfirmationStep.AWAITING_FINAL_CONFIRMATION)
        assert reconcile("confirmar_agendamento", "não", session) == Intent.REJECT

    def test_unrelated_text_stays_unclassified(self):
        session = session_at(ConfirmationStep.AWAITING_FINAL_CONFIRMATION)
        assert reconcile(FALLBACK, "qual o preço?", session) == Intent.UNCLASSIFIED

    def test_new_time_while_confirming_nearest(self):
        session = session_at(ConfirmationStep.CONFIRM_NEAREST_SLOT)
        assert reconcile(FALLBACK, "prefiro 15:00", session) == Intent.SELECT_DATE_TIME
        assert reconcile("escolha_datahora", "sábado 9h", session) == Intent.SELECT_DATE_TIME

    def test_cancel_request_mid_booking_is_reject(self):
        session = session_at(ConfirmationStep.AWAITING_FINAL_CONFIRMATION)
        assert reconcile("cancelar_agendamento", "quero cancelar", session) == Intent.REJECT


class TestAppointmentSteps:
    def test_number_selects_appointment(self):
        session = session_at(ConfirmationStep.SELECT_APPOINTMENT, FlowKind.CANCEL)
        assert reconcile(FALLBACK, "2", session) == Intent.SELECT_APPOINTMENT

    def test_number_selects_appointment_to_reschedule(self):
        session = session_at(ConfirmationStep.CONFIRM_RESCHEDULE_START, FlowKind.RESCHEDULE)
        assert reconcile(FALLBACK, " 1. ", session) == Intent.SELECT_APPOINTMENT

    def test_cancel_word_confirms_cancellation(self):
        session = session_at(ConfirmationStep.CONFIRM_CANCEL, FlowKind.CANCEL)
        assert reconcile(FALLBACK, "pode cancelar", session) == Intent.CONFIRM
        assert reconcile("cancelar_agendamento", "cancelar", session) == Intent.CONFIRM

    def test_no_keeps_appointment(self):
        session = session_at(ConfirmationStep.CONFIRM_CANCEL, FlowKind.CANCEL)
        assert reconcile(FALLBACK, "não", session) == Intent.REJECT

    def test_reschedule_label_confirms_reschedule_start(self):
        session = session_at(ConfirmationStep.CONFIRM_RESCHEDULE_START, FlowKind.RESCHEDULE)
        assert reconcile("reagendar_agendamento", "quero reagendar", session) == Intent.CONFIRM


class TestReadYesNo:
    def test_affirmative_wins_over_negative(self):
        assert read_yes_no("sim, não tenho dúvidas", ConfirmationStep.CONFIRM_NEAREST_SLOT) == (
            Intent.CONFIRM
        )

    def test_neither(self):
        assert read_yes_no("talvez", ConfirmationStep.CONFIRM_NEAREST_SLOT) is None
