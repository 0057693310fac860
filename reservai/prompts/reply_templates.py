"""pt-BR reply text for every step of the booking, reschedule and cancel flows."""

from datetime import datetime
from typing import Optional

from reservai.schemas.booking_schema import AppointmentSummary, AvailableSlot, StaffMember
from reservai.utils import WEEKDAY_LABELS

DATE_TIME_EXAMPLE = "Quarta 14:00"
YES_NO_HINT = 'Responda "Sim" para confirmar ou "Não" para cancelar.'

FLOW_ABANDONED = "Agendamento cancelado. Se precisar, comece novamente."
TRY_AGAIN_LATER = "Tivemos um erro ao processar seu pedido. Tente novamente mais tarde."
BOOKING_FAILED = "Erro ao confirmar o agendamento. Tente novamente."
NOT_UNDERSTOOD = "Não entendi. Pode repetir?"
CHOOSE_SERVICE_FIRST = "Primeiro escolha um serviço: Corte, Barba ou Sobrancelha."
NO_SLOTS = (
    "Desculpe, não há horários disponíveis no momento para o(s) serviço(s) "
    "e barbeiro selecionado."
)
NO_ACTIVE_APPOINTMENTS = "Você não tem agendamentos ativos."
APPOINTMENT_GONE = "Agendamento não encontrado ou já cancelado. Por favor, comece novamente."


def format_slot(start: datetime, staff_name: Optional[str] = None) -> str:
    """'📅 Sexta-feira (23/10/2026 às 10:00) com João'."""
    weekday = WEEKDAY_LABELS[start.weekday()].capitalize()
    text = f"📅 {weekday} ({start:%d/%m/%Y} às {start:%H:%M})"
    if staff_name:
        text += f" com {staff_name}"
    return text


def join_services(names: list[str]) -> str:
    return " e ".join(names)


def _with_staff(staff_name: Optional[str]) -> str:
    return f" com {staff_name}" if staff_name else ""


def build_unknown_service(query: Optional[str]) -> str:
    if not query:
        return "Não entendi qual serviço você deseja. Pode repetir?"
    return (
        f'Desculpe, o serviço "{query}" não é oferecido. '
        "Por favor, escolha entre Corte, Barba ou Sobrancelha."
    )


def build_unknown_staff(name: str) -> str:
    return (
        f'Desculpe, não encontrei o barbeiro "{name}". '
        "Por favor, escolha um barbeiro válido ou não especifique um."
    )


def build_slot_list(
    services: list[str],
    slots: list[AvailableSlot],
    staff_name: Optional[str] = None,
    staff: Optional[list[StaffMember]] = None,
) -> str:
    """Numbered list of open slots, with the staff hint when nobody was chosen."""
    if not slots:
        return NO_SLOTS
    lines = [
        f"Para *{join_services(services)}*{_with_staff(staff_name)}, "
        "temos os seguintes horários disponíveis:",
        "",
    ]
    for position, slot in enumerate(slots, start=1):
        lines.append(f"{position}. {format_slot(slot.start, slot.staff_name)}")
    lines.append("")
    lines.append(
        f"Informe o número da opção ou o dia e hora desejados (ex: {DATE_TIME_EXAMPLE})."
    )
    if not staff_name and staff:
        names = ", ".join(member.name for member in staff)
        lines.append("")
        lines.append(
            "Você também pode especificar um barbeiro "
            f'(ex: "{DATE_TIME_EXAMPLE} com o {staff[0].name}"). '
            f"Barbeiros disponíveis: {names}."
        )
    return "\n".join(lines)


def build_invalid_date_time() -> str:
    return f"Não consegui entender o horário. Por favor, use o formato: {DATE_TIME_EXAMPLE}."


def build_no_nearby_slot(requested: datetime, staff_name: Optional[str] = None) -> str:
    return (
        f"Não há horários disponíveis próximos a {format_slot(requested)}"
        f"{_with_staff(staff_name)}. Tente outro dia ou horário."
    )


def build_nearest_proposal(
    requested: datetime,
    nearest: AvailableSlot,
    services: list[str],
    staff_name: Optional[str] = None,
) -> str:
    return (
        f"Desculpe, o horário {format_slot(requested)}{_with_staff(staff_name)} "
        f"não está disponível. O horário mais próximo é "
        f"*{format_slot(nearest.start, nearest.staff_name)}*. Gostaria de agendar "
        f"seu *{join_services(services)}* para esse horário? "
        'Responda "Sim" para confirmar ou escolha outro horário.'
    )


def build_name_confirmation(
    start: datetime,
    staff_name: Optional[str],
    services: list[str],
    client_name: str,
    contact: str,
) -> str:
    return (
        f"Certo, você escolheu *{format_slot(start, staff_name)}* para "
        f"*{join_services(services)}*. Antes de confirmar, posso agendar no nome de "
        f'*{client_name}* ({contact})? Responda "Sim" para confirmar ou "Não" para cancelar.'
    )


def build_name_reprompt() -> str:
    return "Por favor, responda 'Sim' para confirmar o nome ou 'Não' para cancelar o agendamento."


def build_final_confirmation(
    start: datetime,
    staff_name: Optional[str],
    services: list[str],
    client_name: str,
    contact: str,
) -> str:
    return (
        f"Certo! Posso agendar seu *{join_services(services)}* para "
        f"*{format_slot(start, staff_name)}* no nome de *{client_name}* ({contact})? "
        f"{YES_NO_HINT}"
    )


def build_final_reprompt() -> str:
    return "Por favor, responda 'Sim' para confirmar o agendamento ou 'Não' para cancelar."


def build_booked(
    start: datetime,
    staff_name: Optional[str],
    services: list[str],
    client_name: str,
    contact: str,
) -> str:
    return (
        f"✅ Agendado! Seu *{join_services(services)}* foi marcado para "
        f"*{format_slot(start, staff_name)}* em nome de *{client_name}* ({contact})."
    )


def build_slot_conflict(
    slots: list[AvailableSlot],
    lost_start: Optional[datetime] = None,
    lost_staff_name: Optional[str] = None,
) -> str:
    """The chosen slot was taken meanwhile; name it and offer the refreshed list."""
    lost = "esse horário"
    if lost_start:
        lost = f"o horário {format_slot(lost_start, lost_staff_name)}"
    lines = [f"Desculpe, {lost} não está mais disponível. Por favor, escolha outro."]
    if not slots:
        lines.append("")
        lines.append(NO_SLOTS)
        return "\n".join(lines)
    lines.append("")
    for position, slot in enumerate(slots, start=1):
        lines.append(f"{position}. {format_slot(slot.start, slot.staff_name)}")
    return "\n".join(lines)


def format_appointment(appointment: AppointmentSummary) -> str:
    services = join_services(appointment.services) or "Serviço"
    return f"*{services}* em {format_slot(appointment.start, appointment.staff_name)}"


def build_appointment_list(appointments: list[AppointmentSummary], action: str) -> str:
    """Numbered list of active appointments; ``action`` is 'cancelar' or 'reagendar'."""
    if len(appointments) == 1:
        return (
            f"Você tem um agendamento ativo: {format_appointment(appointments[0])}. "
            f'Deseja {action} esse agendamento? Responda "Sim" ou "Não".'
        )
    lines = ["Seus agendamentos ativos:", ""]
    for position, appointment in enumerate(appointments, start=1):
        lines.append(f"{position}. {format_appointment(appointment)}")
    lines.append("")
    lines.append(f"Informe o número do agendamento que deseja {action}.")
    return "\n".join(lines)


def build_invalid_appointment_choice(count: int) -> str:
    return f"Opção inválida. Informe um número entre 1 e {count}."


def build_confirm_cancel(appointment: AppointmentSummary) -> str:
    return (
        f"Confirma o cancelamento de {format_appointment(appointment)}? "
        'Responda "Sim" para cancelar ou "Não" para manter.'
    )


def build_cancelled(appointment: AppointmentSummary) -> str:
    return f"Agendamento cancelado: {format_appointment(appointment)}. Até a próxima!"


def build_cancel_kept() -> str:
    return "Tudo certo, seu agendamento foi mantido."


def build_reschedule_slot_list(
    appointment: AppointmentSummary, slots: list[AvailableSlot]
) -> str:
    if not slots:
        return NO_SLOTS
    lines = [f"Vamos reagendar {format_appointment(appointment)}.", "Horários disponíveis:", ""]
    for position, slot in enumerate(slots, start=1):
        lines.append(f"{position}. {format_slot(slot.start, slot.staff_name)}")
    lines.append("")
    lines.append(
        f"Informe o número da opção ou o novo dia e hora (ex: {DATE_TIME_EXAMPLE})."
    )
    return "\n".join(lines)


def build_confirm_reschedule(appointment: AppointmentSummary, start: datetime,
                             staff_name: Optional[str]) -> str:
    return (
        f"Posso mover {format_appointment(appointment)} para "
        f"*{format_slot(start, staff_name)}*? {YES_NO_HINT}"
    )


def build_rescheduled(appointment: AppointmentSummary, start: datetime,
                      staff_name: Optional[str]) -> str:
    services = join_services(appointment.services) or "agendamento"
    return f"✅ Reagendado! Seu *{services}* agora é *{format_slot(start, staff_name)}*."


def build_yes_no_reprompt() -> str:
    return f"Não entendi. {YES_NO_HINT}"
