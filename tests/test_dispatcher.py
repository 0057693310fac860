"""End-to-end conversation tests: message handler, dispatcher and real store."""

from datetime import datetime

import pytest

from reservai.conversation.dispatcher import INVALID_MESSAGE, MessageHandler
from reservai.conversation.state_machine import ConfirmationStep
from reservai.errors import TransientError
from reservai.prompts import reply_templates as replies
from reservai.schemas.message_schema import ClassificationResult
from reservai.tools.availability import SlotRepository
from reservai.tools.booking import BookingResult, BookingStatus, BookingTransactionManager
from reservai.tools.customer import ClientDirectory
from reservai.tools.database import STATUS_CANCELLED, Appointment
from reservai.tools.intent_classifier import CLASSIFIER_UNAVAILABLE

from tests.conftest import CONTACT, add_slot, current_step, get_slot_row, say


def book_until_final(handler, contact=CONTACT):
    say(handler, "Corte", contact)
    say(handler, "Sexta 10:00", contact)
    say(handler, "Sim", contact)


def existing_appointment(database, catalog, slot_id, contact=CONTACT):
    client = ClientDirectory(database).find_or_create(contact, "Ana")
    result = BookingTransactionManager(database).reserve(client.id, [catalog["Corte"]], slot_id)
    assert result.success
    return result.appointment_id


class TestServiceSelection:
    def test_first_service_lists_slots(self, handler, slot_grid):
        reply = say(handler, "Corte")

        assert current_step(handler) == ConfirmationStep.AWAITING_DATE_TIME
        assert "Para *Corte*" in reply
        assert "1. 📅 Terça-feira (20/10/2026 às 10:00) com João" in reply
        assert "Barbeiros disponíveis: João, Pedro." in reply

    def test_list_is_capped(self, handler, database, catalog):
        for hour in range(8, 20):
            add_slot(database, datetime(2026, 10, 20, hour, 0), catalog["João"])

        reply = say(handler, "Corte")

        session = handler.engine.store.get(CONTACT)
        assert len(session.offered_slot_ids) == 10
        assert "10. " in reply
        assert "11. " not in reply

    def test_services_accumulate_without_duplicates(self, handler, slot_grid):
        say(handler, "Corte")
        say(handler, "Barba")
        reply = say(handler, "quero corte")

        session = handler.engine.store.get(CONTACT)
        assert session.service_names == ["Corte", "Barba"]
        assert "Para *Corte e Barba*" in reply

    def test_staff_preference_filters_slots(self, handler, catalog, slot_grid):
        reply = say(handler, "Corte com o Pedro")

        session = handler.engine.store.get(CONTACT)
        assert session.staff_id == catalog["Pedro"]
        assert "com João" not in reply
        assert "Barbeiros disponíveis" not in reply

    def test_unknown_staff_is_rejected(self, engine, slot_grid):
        classification = ClassificationResult(
            intent_label="escolha_servico",
            parameters={"servico": "Corte", "barbeiro": "Carlos"},
        )
        reply = engine.handle_turn(CONTACT, "corte com o Carlos", classification)

        assert 'não encontrei o barbeiro "Carlos"' in reply.text
        assert engine.store.get(CONTACT) is None

    def test_unknown_service_is_rejected(self, engine, slot_grid):
        classification = ClassificationResult(
            intent_label="escolha_servico", parameters={"servico": "Massagem"}
        )
        reply = engine.handle_turn(CONTACT, "massagem", classification)
        assert 'o serviço "Massagem" não é oferecido' in reply.text

    def test_no_slots_left(self, handler, catalog):
        reply = say(handler, "Corte")
        assert reply == replies.NO_SLOTS


class TestDateTimeSelection:
    def test_exact_match_asks_for_name_confirmation(self, handler, slot_grid):
        say(handler, "Corte")
        reply = say(handler, "Sexta 10:00")

        assert current_step(handler) == ConfirmationStep.AWAITING_NAME_CONFIRMATION
        assert "Sexta-feira (23/10/2026 às 10:00) com João" in reply
        assert "*Ana*" in reply
        session = handler.engine.store.get(CONTACT)
        assert session.chosen_slot.slot_id == slot_grid["fri_10"]
        assert session.client.contact_key == "+5511999990000"

    def test_list_number_picks_slot(self, handler, slot_grid):
        say(handler, "Corte")
        say(handler, "2")
        session = handler.engine.store.get(CONTACT)
        assert session.chosen_slot.slot_id == slot_grid["wed_14"]

    def test_nearest_slot_is_proposed_then_accepted(self, handler, database, catalog):
        near = add_slot(database, datetime(2026, 10, 23, 10, 30), catalog["João"])
        add_slot(database, datetime(2026, 10, 24, 15, 0), catalog["João"])
        say(handler, "Corte")

        reply = say(handler, "Sexta 10:00")
        assert current_step(handler) == ConfirmationStep.CONFIRM_NEAREST_SLOT
        assert "O horário mais próximo é *📅 Sexta-feira (23/10/2026 às 10:30) com João*" in reply

        say(handler, "Sim")
        session = handler.engine.store.get(CONTACT)
        assert session.step == ConfirmationStep.AWAITING_NAME_CONFIRMATION
        assert session.chosen_slot.slot_id == near
        assert session.nearest_suggestion is None

    def test_nearest_rejected_returns_to_date_time(self, handler, database, catalog):
        add_slot(database, datetime(2026, 10, 23, 10, 30), catalog["João"])
        say(handler, "Corte")
        say(handler, "Sexta 10:00")

        say(handler, "Não")

        session = handler.engine.store.get(CONTACT)
        assert session.step == ConfirmationStep.AWAITING_DATE_TIME
        assert session.nearest_suggestion is None

    def test_classifier_date_time_parameter(self, engine, slot_grid):
        engine.handle_turn(
            CONTACT, "corte",
            ClassificationResult(intent_label="escolha_servico", parameters={"servico": "Corte"}),
        )
        classification = ClassificationResult(
            intent_label="escolha_datahora",
            parameters={"horario_escolhido": {"date_time": "2026-10-23T10:00:00-03:00"}},
        )
        engine.handle_turn(CONTACT, "pode ser nesse horário", classification)

        session = engine.store.get(CONTACT)
        assert session.chosen_slot.slot_id == slot_grid["fri_10"]

    def test_unparseable_date_keeps_step(self, handler, slot_grid):
        say(handler, "Corte")
        reply = say(handler, "amanhã de tarde")
        assert reply == replies.build_invalid_date_time()
        assert current_step(handler) == ConfirmationStep.AWAITING_DATE_TIME

    def test_date_before_service_is_rejected(self, handler, slot_grid):
        reply = say(handler, "Sexta 10:00")
        assert reply == replies.CHOOSE_SERVICE_FIRST
        assert current_step(handler) is None


class TestBookingCommit:
    def test_full_booking(self, handler, database, slot_grid):
        book_until_final(handler)
        assert current_step(handler) == ConfirmationStep.AWAITING_FINAL_CONFIRMATION

        reply = say(handler, "Sim")

        assert reply.startswith("✅ Agendado!")
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is False

    def test_abandon_deletes_session(self, handler, database, slot_grid):
        say(handler, "Corte")
        say(handler, "Sexta 10:00")

        reply = say(handler, "Não")

        assert reply == replies.FLOW_ABANDONED
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is True

    def test_unclear_answer_reprompts(self, handler, slot_grid):
        book_until_final(handler)
        reply = say(handler, "talvez")
        assert reply == replies.build_final_reprompt()
        assert current_step(handler) == ConfirmationStep.AWAITING_FINAL_CONFIRMATION

    def test_slot_taken_by_other_conversation(self, handler, database, slot_grid):
        other = "whatsapp:+5511988880000"
        book_until_final(handler)
        book_until_final(handler, other)
        say(handler, "Sim", other)

        reply = say(handler, "Sim")

        assert "o horário 📅 Sexta-feira (23/10/2026 às 10:00) com João não está mais" in reply
        session = handler.engine.store.get(CONTACT)
        assert session.step == ConfirmationStep.AWAITING_DATE_TIME
        assert slot_grid["fri_10"] not in session.offered_slot_ids
        assert session.chosen_slot is None

    def test_commit_failure_clears_session(self, handler, slot_grid, monkeypatch):
        book_until_final(handler)
        monkeypatch.setattr(
            BookingTransactionManager, "reserve",
            lambda self, *args, **kwargs: BookingResult(BookingStatus.FAILURE),
        )

        reply = say(handler, "Sim")

        assert reply == replies.BOOKING_FAILED
        assert current_step(handler) is None

    def test_store_outage_preserves_session(self, handler, slot_grid, monkeypatch):
        say(handler, "Corte")

        def unavailable(self, *args, **kwargs):
            raise TransientError(replies.TRY_AGAIN_LATER)

        monkeypatch.setattr(SlotRepository, "find_exact", unavailable)
        reply = say(handler, "Sexta 10:00")

        assert reply == replies.TRY_AGAIN_LATER
        assert current_step(handler) == ConfirmationStep.AWAITING_DATE_TIME


class TestCancellation:
    def test_single_appointment_cancelled_with_sim(self, handler, database, catalog, slot_grid):
        appointment_id = existing_appointment(database, catalog, slot_grid["fri_10"])

        listing = say(handler, "Quero cancelar meu agendamento")
        assert current_step(handler) == ConfirmationStep.SELECT_APPOINTMENT
        assert "Deseja cancelar esse agendamento?" in listing

        reply = say(handler, "Sim")

        assert reply.startswith("Agendamento cancelado")
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is True
        with database.session_factory() as session:
            assert session.get(Appointment, appointment_id).status == STATUS_CANCELLED

    def test_choose_by_number_then_confirm(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["tue_10"])
        existing_appointment(database, catalog, slot_grid["sat_15"])

        listing = say(handler, "quero cancelar")
        assert "1. *Corte* em 📅 Terça-feira" in listing
        assert "2. *Corte* em 📅 Sábado" in listing

        say(handler, "2")
        assert current_step(handler) == ConfirmationStep.CONFIRM_CANCEL
        say(handler, "Sim")

        assert get_slot_row(database, slot_grid["sat_15"]).available is True
        assert get_slot_row(database, slot_grid["tue_10"]).available is False

    def test_invalid_number_reprompts(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["tue_10"])
        existing_appointment(database, catalog, slot_grid["sat_15"])
        say(handler, "quero cancelar")

        reply = say(handler, "5")

        assert reply == replies.build_invalid_appointment_choice(2)
        assert current_step(handler) == ConfirmationStep.SELECT_APPOINTMENT

    def test_keep_appointment(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["fri_10"])
        say(handler, "quero cancelar")

        reply = say(handler, "Não")

        assert reply == replies.build_cancel_kept()
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is False

    def test_nothing_to_cancel(self, handler, slot_grid):
        reply = say(handler, "quero cancelar")
        assert reply == replies.NO_ACTIVE_APPOINTMENTS
        assert current_step(handler) is None

    def test_appointment_cancelled_elsewhere(self, handler, database, catalog, slot_grid):
        appointment_id = existing_appointment(database, catalog, slot_grid["fri_10"])
        existing_appointment(database, catalog, slot_grid["sat_15"])
        say(handler, "quero cancelar")
        say(handler, "1")
        BookingTransactionManager(database).cancel(appointment_id)

        reply = say(handler, "Sim")

        assert reply == replies.APPOINTMENT_GONE
        assert current_step(handler) is None


class TestReschedule:
    def test_full_reschedule(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["fri_10"])

        say(handler, "Quero remarcar")
        assert current_step(handler) == ConfirmationStep.CONFIRM_RESCHEDULE_START
        listing = say(handler, "Sim")
        assert current_step(handler) == ConfirmationStep.AWAITING_NEW_DATE_TIME
        assert "Vamos reagendar" in listing

        say(handler, "Sábado 15:00")
        assert current_step(handler) == ConfirmationStep.AWAITING_RESCHEDULE_CONFIRMATION
        reply = say(handler, "Sim")

        assert reply.startswith("✅ Reagendado!")
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is True
        assert get_slot_row(database, slot_grid["sat_15"]).available is False

    def test_reschedule_to_nearest(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["fri_10"])
        say(handler, "Quero remarcar")
        say(handler, "1")

        say(handler, "Sábado 14:00")
        assert current_step(handler) == ConfirmationStep.CONFIRM_NEAREST_SLOT
        say(handler, "Sim")
        assert current_step(handler) == ConfirmationStep.AWAITING_RESCHEDULE_CONFIRMATION
        say(handler, "Sim")

        assert get_slot_row(database, slot_grid["sat_15"]).available is False

    def test_target_taken_before_confirmation(self, handler, database, catalog, slot_grid):
        existing_appointment(database, catalog, slot_grid["fri_10"])
        say(handler, "Quero remarcar")
        say(handler, "Sim")
        say(handler, "Sábado 15:00")
        existing_appointment(database, catalog, slot_grid["sat_15"], "whatsapp:+5511977770000")

        reply = say(handler, "Sim")

        assert "o horário 📅 Sábado (24/10/2026 às 15:00) com João não está mais" in reply
        session = handler.engine.store.get(CONTACT)
        assert session.step == ConfirmationStep.AWAITING_NEW_DATE_TIME
        assert session.chosen_slot is None
        assert slot_grid["sat_15"] not in session.offered_slot_ids
        assert get_slot_row(database, slot_grid["fri_10"]).available is False

        say(handler, "Sexta 11:00")
        say(handler, "Sim")
        assert current_step(handler) is None
        assert get_slot_row(database, slot_grid["fri_10"]).available is True
        assert get_slot_row(database, slot_grid["fri_11"]).available is False


class TestMessageHandler:
    def test_welcome_uses_fulfillment_text(self, handler):
        reply = say(handler, "Oi")
        assert reply.startswith("Olá!")
        assert current_step(handler) is None

    def test_unrecognised_text_without_session(self, handler):
        assert say(handler, "blablabla") == "Não entendi. Pode repetir?"
        assert len(handler.engine.store) == 0

    @pytest.mark.parametrize("payload", [
        {"text": "oi"},
        {"conversation_id": "c1"},
        {"conversation_id": "c1", "text": "   "},
        {"conversation_id": "", "text": "oi"},
    ])
    def test_invalid_payload(self, handler, payload):
        assert handler.handle(payload).text == INVALID_MESSAGE

    def test_classifier_outage(self, engine):
        class DownClassifier:
            def classify(self, text, locale, session_id):
                raise TransientError(CLASSIFIER_UNAVAILABLE)

        reply = MessageHandler(engine, DownClassifier()).handle(
            {"conversation_id": CONTACT, "text": "Corte"}
        )
        assert reply.text == CLASSIFIER_UNAVAILABLE

    def test_classifier_crash(self, engine):
        class BrokenClassifier:
            def classify(self, text, locale, session_id):
                raise RuntimeError("boom")

        reply = MessageHandler(engine, BrokenClassifier()).handle(
            {"conversation_id": CONTACT, "text": "Corte"}
        )
        assert reply.text == CLASSIFIER_UNAVAILABLE

    def test_session_id_passed_to_classifier(self, engine):
        seen = {}

        class RecordingClassifier:
            def classify(self, text, locale, session_id):
                seen.update(locale=locale, session_id=session_id)
                return ClassificationResult(intent_label="welcome_intent", fulfillment_text="Oi!")

        MessageHandler(engine, RecordingClassifier(), locale="pt-BR").handle(
            {"conversation_id": CONTACT, "text": "oi"}
        )
        assert seen == {"locale": "pt-BR", "session_id": "+5511999990000"}

    def test_display_name_renames_default_client(self, handler, database, slot_grid):
        ClientDirectory(database).find_or_create(CONTACT)
        say(handler, "Corte", display_name="Bruno")
        reply = say(handler, "Sexta 10:00", display_name="Bruno")
        assert "*Bruno*" in reply

    def test_finished_conversations_leave_no_locks(self, handler, slot_grid):
        for i in range(20):
            say(handler, "Oi", f"whatsapp:+55119000000{i:02d}")
        book_until_final(handler)
        say(handler, "Sim")

        store = handler.engine.store
        assert len(store) == 0
        assert len(store._locks) == 0
