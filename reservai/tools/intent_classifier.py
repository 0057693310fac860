"""
Boundary to the external intent classifier.

The booking engine treats the classifier as an oracle: one call per inbound
message, returning an intent label, a parameter map and optional fallback
text. Two implementations are provided:

- KeywordIntentClassifier: offline keyword matcher for the console demo
  and tests. Deliberately shallow; it labels anything it does not
  recognise with the generic fallback intent, the same way a hosted agent
  does mid-flow.
- DialogflowIntentClassifier: adapter over Google Dialogflow ES
  (``pip install reservai[dialogflow]``).
"""

import logging
import re
from typing import Any, Optional, Protocol

from reservai.config import settings
from reservai.errors import TransientError
from reservai.schemas.message_schema import ClassificationResult
from reservai.tools.services import SERVICE_ALIASES
from reservai.utils import normalize_text

logger = logging.getLogger(__name__)

FALLBACK_INTENT = "Default Fallback Intent"
CLASSIFIER_UNAVAILABLE = "Erro interno. Tente novamente mais tarde."


class IntentClassifier(Protocol):
    def classify(self, text: str, locale: str, session_id: str) -> ClassificationResult:
        ...


class KeywordIntentClassifier:
    """Offline classifier for demos and tests. No network, no API keys."""

    GREETINGS = ("oi", "ola", "bom dia", "boa tarde", "boa noite", "e ai")
    CANCEL_SIGNALS = ("cancelar meu", "cancelar o agendamento", "cancelar agendamento",
                      "desmarcar", "quero cancelar")
    RESCHEDULE_SIGNALS = ("reagendar", "remarcar", "mudar o horario", "trocar o horario")
    WEEKDAY_PATTERN = re.compile(
        r"\b(segunda|terca|quarta|quinta|sexta|sabado|domingo)\b"
    )
    TIME_PATTERN = re.compile(r"\b\d{1,2}(?::\d{2}|h\d{0,2})\b")

    def __init__(self, staff_names: Optional[list[str]] = None) -> None:
        self._staff_names = staff_names or []

    def classify(self, text: str, locale: str, session_id: str) -> ClassificationResult:
        lower = normalize_text(text)
        staff = self._find_staff(lower)
        params: dict[str, Any] = {}
        if staff:
            params["barbeiro"] = staff

        if any(signal in lower for signal in self.RESCHEDULE_SIGNALS):
            return ClassificationResult(intent_label="reagendar_agendamento", parameters=params)
        if any(signal in lower for signal in self.CANCEL_SIGNALS):
            return ClassificationResult(intent_label="cancelar_agendamento", parameters=params)

        if self.WEEKDAY_PATTERN.search(lower) and self.TIME_PATTERN.search(lower):
            return ClassificationResult(intent_label="escolha_datahora", parameters=params)

        service = self._find_service(lower)
        if service:
            params["servico"] = service
            return ClassificationResult(intent_label="escolha_servico", parameters=params)

        if lower.strip("!.? ") in self.GREETINGS:
            return ClassificationResult(
                intent_label="welcome_intent",
                fulfillment_text=(
                    f"Olá! Bem-vindo à {settings.business.name}. "
                    "Qual serviço você deseja? Corte, Barba ou Sobrancelha?"
                ),
            )

        return ClassificationResult(
            intent_label=FALLBACK_INTENT,
            parameters=params,
            fulfillment_text="Não entendi. Pode repetir?",
        )

    def _find_service(self, lower: str) -> Optional[str]:
        for alias in sorted(SERVICE_ALIASES, key=len, reverse=True):
            if re.search(rf"\b{re.escape(alias)}\b", lower):
                return SERVICE_ALIASES[alias]
        return None

    def _find_staff(self, lower: str) -> Optional[str]:
        for name in self._staff_names:
            first = normalize_text(name).split(" ")[0]
            if re.search(rf"\b{re.escape(first)}\b", lower):
                return name
        return None


class DialogflowIntentClassifier:
    """Detect-intent calls against a Dialogflow ES agent."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        credentials_file: Optional[str] = None,
    ) -> None:
        from google.cloud import dialogflow

        self._dialogflow = dialogflow
        self._project_id = project_id or settings.classifier.dialogflow_project_id
        credentials_file = credentials_file or settings.classifier.dialogflow_credentials_file
        if credentials_file:
            self._client = dialogflow.SessionsClient.from_service_account_file(credentials_file)
        else:
            self._client = dialogflow.SessionsClient()

    def classify(self, text: str, locale: str, session_id: str) -> ClassificationResult:
        dialogflow = self._dialogflow
        session_path = self._client.session_path(self._project_id, session_id)
        query_input = dialogflow.QueryInput(
            text=dialogflow.TextInput(text=text, language_code=locale)
        )
        try:
            response = self._client.detect_intent(
                request={"session": session_path, "query_input": query_input}
            )
        except Exception as exc:
            logger.error("Dialogflow detect_intent failed: %s", exc)
            raise TransientError(CLASSIFIER_UNAVAILABLE) from exc

        result = dialogflow.QueryResult.to_dict(response.query_result)
        label = (result.get("intent") or {}).get("display_name", "")
        logger.debug("Dialogflow intent '%s' for session %s", label, session_id)
        return ClassificationResult(
            intent_label=label,
            parameters=result.get("parameters") or {},
            fulfillment_text=result.get("fulfillment_text") or None,
        )


def build_classifier(staff_names: Optional[list[str]] = None) -> IntentClassifier:
    """Create the classifier selected by CLASSIFIER_BACKEND."""
    if settings.classifier.backend == "dialogflow":
        return DialogflowIntentClassifier()
    return KeywordIntentClassifier(staff_names=staff_names)
