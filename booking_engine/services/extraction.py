"""
Appointment Extractor

Turns a confirmed dialogue into BookingDetails. Two strategies sit behind the
Extractor interface:

- LLMSummaryExtractor: structured extraction anchored on a clean, labeled
  booking summary. The model answers with JSON or the DADOS_INCOMPLETOS
  sentinel.
- HeuristicExtractor: pattern search over the assistant's summary-bearing
  message and the user's recent messages. Used when no clean summary exists
  or the language model is unavailable.

AppointmentExtractor.extract is the single entry point. It never raises for
incomplete data; it returns None and the dialogue simply continues.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from pydantic import ValidationError

from .. import config
from ..exceptions import ExtractionIncomplete, LanguageModelUnavailable
from ..interfaces import ClientRegistry, LanguageModelService
from ..models import BookingDetails, Message, Professional, Service
from ..utils.phone import mask_phone, normalize_phone
from ..utils.time_utils import normalize_hhmm
from .confirmation import dialogue_in_progress, has_summary_marker, is_structured_summary
from .dates import format_br, next_weekdays, parse_br_date, resolve_day_word, weekday_name

logger = logging.getLogger(__name__)

INCOMPLETE_SENTINEL = "DADOS_INCOMPLETOS"

SUMMARY_LOOKBACK = 5
RECENT_USER_MESSAGES = 3

REQUIRED_FIELDS = (
    "clientName",
    "clientPhone",
    "professionalId",
    "serviceId",
    "appointmentDate",
    "appointmentTime",
)


@dataclass
class ExtractionContext:
    """Everything the strategies may look at for one conversation"""
    company_id: int
    conversation_id: int
    phone_number: str
    messages: List[Message]
    professionals: List[Professional]
    services: List[Service]
    today: date

    assistant_messages: List[Message] = field(init=False)
    user_messages: List[Message] = field(init=False)

    def __post_init__(self):
        self.assistant_messages = [m for m in self.messages if m.is_assistant]
        self.user_messages = [m for m in self.messages if m.is_user]

    @property
    def active_professionals(self) -> List[Professional]:
        return [p for p in self.professionals if p.active]

    @property
    def active_services(self) -> List[Service]:
        return [s for s in self.services if s.is_active]

    def recent_user_text(self, count: int = RECENT_USER_MESSAGES) -> str:
        return " ".join(m.content for m in self.user_messages[-count:])

    def all_user_text(self) -> str:
        return " ".join(m.content for m in self.user_messages)


class Extractor(ABC):
    """One way of reading BookingDetails out of a dialogue"""

    name = "base"

    @abstractmethod
    async def extract(self, context: ExtractionContext, summary: Message) -> BookingDetails:
        """Raises ExtractionIncomplete when the dialogue does not hold every field"""
        pass


# ============================================================================
# LLM strategy
# ============================================================================

class LLMSummaryExtractor(Extractor):
    name = "llm"

    def __init__(
        self,
        llm: LanguageModelService,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None
    ):
        self.llm = llm
        self.model = model or config.OPENAI_MODEL
        self.max_tokens = max_tokens or config.OPENAI_EXTRACTION_MAX_TOKENS

    def build_prompt(self, context: ExtractionContext, summary: Message) -> str:
        today = context.today
        weekdays = "\n".join(
            f"- {name.capitalize()}: {day.isoformat()}"
            for name, day in next_weekdays(today).items()
        )
        professionals = "\n".join(f"- {p.name} (ID: {p.id})" for p in context.active_professionals)
        services = "\n".join(f"- {s.name} (ID: {s.id})" for s in context.active_services)
        conversation = "\n".join(f"{m.role}: {m.content}" for m in context.messages)

        return f"""Analise esta conversa de WhatsApp e extraia os dados do agendamento APENAS SE HOUVER CONFIRMAÇÃO EXPLÍCITA COMPLETA.

HOJE É: {format_br(today)} ({weekday_name(today)})

PRÓXIMOS DIAS DA SEMANA (use EXATAMENTE estas datas para dias da semana):
{weekdays}

PROFISSIONAIS DISPONÍVEIS:
{professionals}

SERVIÇOS DISPONÍVEIS:
{services}

TELEFONE DO CLIENTE: {context.phone_number}

RESUMO APRESENTADO AO CLIENTE:
{summary.content}

CONVERSA:
{conversation}

REGRAS:
1. Só extraia se o cliente confirmou o resumo com "sim", "ok" ou equivalente
2. Todos os dados devem constar no resumo: nome, profissional, serviço, data, horário e telefone
3. Para dias da semana, "hoje" e "amanhã", use as datas listadas acima; nunca calcule datas por conta própria
4. Use apenas IDs presentes nas listas acima
5. Se faltar qualquer dado ou a confirmação, responda apenas "{INCOMPLETE_SENTINEL}"

Responda APENAS em formato JSON válido ou "{INCOMPLETE_SENTINEL}":
{{
  "clientName": "Nome do cliente",
  "clientPhone": "Telefone do cliente",
  "professionalId": ID_da_lista,
  "serviceId": ID_da_lista,
  "appointmentDate": "YYYY-MM-DD",
  "appointmentTime": "HH:MM"
}}"""

    @staticmethod
    def parse_response(raw: Optional[str]) -> Dict:
        text = (raw or "").strip()
        if not text or INCOMPLETE_SENTINEL in text:
            raise ExtractionIncomplete("model reported incomplete data")

        # Models sometimes wrap the object in a markdown fence
        text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ExtractionIncomplete("no JSON object in model answer")

        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            raise ExtractionIncomplete("model answer is not valid JSON")

        missing = [key for key in REQUIRED_FIELDS if data.get(key) in (None, "")]
        # Phone is known from the conversation itself
        if missing and missing != ["clientPhone"]:
            raise ExtractionIncomplete(f"missing fields: {', '.join(missing)}")
        return data

    async def extract(self, context: ExtractionContext, summary: Message) -> BookingDetails:
        prompt = self.build_prompt(context, summary)
        raw = await self.llm.chat(
            [{"role": "user", "content": prompt}],
            model=self.model,
            temperature=0.0,
            max_tokens=self.max_tokens,
        )
        data = self.parse_response(raw)

        try:
            return BookingDetails(
                client_name=str(data["clientName"]),
                client_phone=normalize_phone(str(data.get("clientPhone") or "")) or context.phone_number,
                professional_id=int(data["professionalId"]),
                service_id=int(data["serviceId"]),
                appointment_date=str(data["appointmentDate"]),
                appointment_time=str(data["appointmentTime"]),
                source=self.name,
            )
        except (ValidationError, ValueError, TypeError) as e:
            raise ExtractionIncomplete(f"malformed model answer: {e}")


# ============================================================================
# Heuristic strategy
# ============================================================================

_UPPER = "A-ZÀÁÂÃÉÊÍÓÔÕÚÇ"
_LOWER = "a-zàáâãéêíóôõúç"
_WORD = f"[{_UPPER}][{_LOWER}]+"

_GREETING_NAME = re.compile(rf"(?:Ótimo|Perfeito|Excelente),\s+({_WORD})[,!.]")
_LABELED_NAME = re.compile(rf"Nome:[ \t]*({_WORD}(?:[ \t]+{_WORD})*)")
_SELF_INTRODUCTION = re.compile(
    rf"(?:me chamo|meu nome é|nome é|sou o|sou a|eu sou)\s+([{_UPPER}{_LOWER}]+(?:\s+[{_UPPER}][{_LOWER}]+)*)",
    re.IGNORECASE,
)
_CAPITALIZED = re.compile(rf"\b({_WORD}(?:\s+{_WORD})?)\b")

_NAME_STOP_WORDS = {
    "whatsapp", "confirmo", "profissional", "serviço", "servico", "agendar",
    "agendamento", "sim", "ok", "oi", "olá", "ola", "bom", "boa", "dia", "tarde",
    "noite", "quero", "gostaria", "obrigado", "obrigada", "por", "favor", "pode",
    "hoje", "amanhã", "amanha", "horário", "horario", "data", "nome", "perfeito",
    "segunda", "terça", "terca", "quarta", "quinta", "sexta", "sábado", "sabado",
    "domingo", "feira", "isso", "certo", "correto", "tudo", "eu", "meu",
}

_TIME_PATTERNS = (
    re.compile(r"Horário:\s*(\d{1,2}:\d{2})", re.IGNORECASE),
    re.compile(r"\b(?:às|as)\s+(\d{1,2}:\d{2})", re.IGNORECASE),
    re.compile(r"\b(\d{1,2}:\d{2})\b"),
    re.compile(r"\b(?:às|as)\s+(\d{1,2})\b(?!/)", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})\s?h\b", re.IGNORECASE),
)
_BARE_HOUR = re.compile(r"^\s*(\d{1,2})\s*$")

_WEEKDAY = re.compile(
    r"\b(segunda|terça|terca|quarta|quinta|sexta|sábado|sabado|domingo)(?:-feira)?\b",
    re.IGNORECASE,
)
_TODAY = re.compile(r"\bhoje\b", re.IGNORECASE)
_TOMORROW = re.compile(r"\bamanh[ãa]\b", re.IGNORECASE)

_LABELED_PROFESSIONAL = re.compile(r"Profissional:[ \t]*([^\n]+)")
_LABELED_SERVICE = re.compile(r"Serviço:[ \t]*([^\n]+)")


def _to_hhmm(candidate: str) -> Optional[str]:
    if ":" in candidate:
        return normalize_hhmm(candidate)
    hour = int(candidate)
    if 0 <= hour <= 23:
        return f"{hour:02d}:00"
    return None


def find_time(texts: List[str]) -> Optional[str]:
    """First valid time, trying the texts in order and the patterns from most to least specific"""
    for text in texts:
        for pattern in _TIME_PATTERNS:
            for match in pattern.finditer(text or ""):
                value = _to_hhmm(match.group(1))
                if value:
                    return value
    return None


def _contains_word(text: str, word: str) -> bool:
    return bool(re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text, re.IGNORECASE))


class HeuristicExtractor(Extractor):
    name = "heuristic"

    def __init__(self, clients: Optional[ClientRegistry] = None):
        self.clients = clients

    async def extract(self, context: ExtractionContext, summary: Message) -> BookingDetails:
        assistant_text = summary.content
        recent_user_text = context.recent_user_text()

        professional = self.find_professional(context, assistant_text)
        service = self.find_service(context, assistant_text)
        name = self.find_name(context, assistant_text)
        if not name:
            name = await self._registered_name(context)
        appointment_time = find_time([assistant_text, recent_user_text]) or self._bare_hour(context)
        appointment_date = self.find_date(context, assistant_text)

        logger.info(
            f"🔎 Heuristic extraction: name={bool(name)}, professional={professional.name if professional else None}, "
            f"service={service.name if service else None}, date={appointment_date}, time={appointment_time}"
        )

        missing = [
            label for label, value in (
                ("name", name),
                ("professional", professional),
                ("service", service),
                ("date", appointment_date),
                ("time", appointment_time),
            ) if not value
        ]
        if missing:
            raise ExtractionIncomplete(f"heuristics could not find: {', '.join(missing)}")

        try:
            return BookingDetails(
                client_name=name,
                client_phone=context.phone_number,
                professional_id=professional.id,
                service_id=service.id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                source=self.name,
            )
        except ValidationError as e:
            raise ExtractionIncomplete(f"heuristic fields invalid: {e}")

    def _excluded_words(self, context: ExtractionContext) -> set:
        excluded = set(_NAME_STOP_WORDS)
        for professional in context.professionals:
            excluded.update(part.lower() for part in professional.name.split())
        for service in context.services:
            excluded.update(part.lower() for part in service.name.split())
        return excluded

    def _acceptable_name(self, candidate: str, excluded: set) -> bool:
        candidate = candidate.strip()
        if not (2 < len(candidate) < 50):
            return False
        return not any(part.lower() in excluded for part in candidate.split())

    def find_name(self, context: ExtractionContext, assistant_text: str) -> Optional[str]:
        excluded = self._excluded_words(context)

        for pattern in (_GREETING_NAME, _LABELED_NAME):
            match = pattern.search(assistant_text)
            if match and self._acceptable_name(match.group(1), excluded):
                return match.group(1).strip()

        # Most recent user message first
        for message in reversed(context.user_messages):
            match = _SELF_INTRODUCTION.search(message.content)
            if match:
                candidate = " ".join(part.capitalize() for part in match.group(1).split())
                if self._acceptable_name(candidate, excluded):
                    return candidate

        for message in reversed(context.user_messages):
            for match in _CAPITALIZED.finditer(message.content):
                if self._acceptable_name(match.group(1), excluded):
                    return match.group(1).strip()

        return None

    async def _registered_name(self, context: ExtractionContext) -> Optional[str]:
        if not self.clients:
            return None
        client = await self.clients.find_by_phone(context.company_id, context.phone_number)
        if client and client.name and not client.name.startswith("Cliente "):
            logger.info(f"📇 Using registered client name for {mask_phone(context.phone_number)}")
            return client.name
        return None

    def _bare_hour(self, context: ExtractionContext) -> Optional[str]:
        for message in reversed(context.user_messages[-RECENT_USER_MESSAGES:]):
            match = _BARE_HOUR.match(message.content)
            if match:
                value = _to_hhmm(match.group(1))
                if value:
                    return value
        return None

    def find_date(self, context: ExtractionContext, assistant_text: str) -> Optional[date]:
        # The date stated in the summary wins over loose day words in user text
        explicit = parse_br_date(assistant_text)
        if explicit:
            return explicit

        found = self._day_word(assistant_text, context.today)
        if found:
            return found

        for message in reversed(context.user_messages[-RECENT_USER_MESSAGES:]):
            found = self._day_word(message.content, context.today)
            if found:
                return found

        match = _WEEKDAY.search(context.all_user_text())
        if match:
            return resolve_day_word(match.group(1), context.today)
        return None

    @staticmethod
    def _day_word(text: str, reference: date) -> Optional[date]:
        """Weekday name first ("hoje não dá, pode ser sábado"), then amanhã, then hoje"""
        match = _WEEKDAY.search(text)
        if match:
            return resolve_day_word(match.group(1), reference)
        if _TOMORROW.search(text):
            return resolve_day_word("amanhã", reference)
        if _TODAY.search(text):
            return reference
        return None

    def find_professional(self, context: ExtractionContext, assistant_text: str) -> Optional[Professional]:
        professionals = context.active_professionals
        by_name = {p.name.strip().lower(): p for p in professionals}

        labeled = _LABELED_PROFESSIONAL.search(assistant_text)
        if labeled:
            match = by_name.get(labeled.group(1).strip().lower())
            if match:
                return match

        for message in reversed(context.user_messages):
            match = by_name.get(message.content.strip().lower())
            if match:
                return match

        for text in (assistant_text, context.all_user_text()):
            for professional in professionals:
                if _contains_word(text, professional.name):
                    return professional

        return None

    def find_service(self, context: ExtractionContext, assistant_text: str) -> Optional[Service]:
        services = context.active_services
        if not services:
            return None

        labeled = _LABELED_SERVICE.search(assistant_text)
        if labeled:
            value = labeled.group(1).strip().lower()
            for service in services:
                name = service.name.lower()
                if name in value or (value and value in name):
                    return service

        for text in (assistant_text, context.recent_user_text(), context.all_user_text()):
            lowered = text.lower()
            for service in services:
                if service.name.lower() in lowered:
                    return service

        return services[0]


# ============================================================================
# Entry point
# ============================================================================

class AppointmentExtractor:
    """
    Single entry point for turning a confirmed dialogue into BookingDetails.

    Strategy selection:
    - no summary marker in the last assistant messages: nothing to extract
    - a clean labeled summary: LLM strategy, heuristics if the model is down
    - only a loose summary marker: heuristics
    """

    def __init__(self, primary: Extractor, fallback: Extractor):
        self.primary = primary
        self.fallback = fallback

    @staticmethod
    def find_summaries(context: ExtractionContext):
        """(clean summary, any summary-bearing message) among the last assistant messages"""
        recent = list(reversed(context.assistant_messages[-SUMMARY_LOOKBACK:]))
        labeled = next(
            (m for m in recent if all(label in m.content for label in ("Nome:", "Profissional:", "Data:", "Horário:"))),
            None,
        )
        clean = labeled or next((m for m in recent if is_structured_summary(m.content)), None)
        loose = next((m for m in recent if has_summary_marker(m.content)), None)
        return clean, loose

    async def extract(self, context: ExtractionContext) -> Optional[BookingDetails]:
        if not context.assistant_messages:
            return None

        latest = context.assistant_messages[-1]
        if dialogue_in_progress(latest.content):
            logger.info(f"⏳ Conversation {context.conversation_id}: assistant is still asking, not extracting")
            return None

        clean, loose = self.find_summaries(context)
        if not loose and not clean:
            logger.info(f"⚠️ Conversation {context.conversation_id}: no booking summary found, not extracting")
            return None

        try:
            if clean:
                details = await self._extract_with_fallback(context, clean)
            else:
                details = await self.fallback.extract(context, loose)
        except ExtractionIncomplete as e:
            logger.info(f"ℹ️ Conversation {context.conversation_id}: extraction abandoned ({e.reason})")
            return None

        problem = self.validate(details, context)
        if problem:
            logger.warning(f"⚠️ Conversation {context.conversation_id}: extracted booking rejected ({problem})")
            return None

        logger.info(
            f"✅ Conversation {context.conversation_id}: extracted booking via {details.source} "
            f"for {details.appointment_date} {details.appointment_time}"
        )
        return details

    async def _extract_with_fallback(self, context: ExtractionContext, summary: Message) -> BookingDetails:
        try:
            return await self.primary.extract(context, summary)
        except LanguageModelUnavailable as e:
            logger.warning(f"Language model unavailable for extraction, using heuristics: {e.message}")
            return await self.fallback.extract(context, summary)

    @staticmethod
    def validate(details: BookingDetails, context: ExtractionContext) -> Optional[str]:
        """Reason the details cannot be committed, or None"""
        if details.appointment_date < context.today:
            return f"date {details.appointment_date} is in the past"
        if not any(p.id == details.professional_id for p in context.active_professionals):
            return f"unknown professional {details.professional_id}"
        if not any(s.id == details.service_id for s in context.active_services):
            return f"unknown service {details.service_id}"
        if not normalize_phone(details.client_phone):
            return "missing phone"
        return None
