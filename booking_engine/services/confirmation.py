"""
Confirmation Detector

Classifies the user's reply to a booking summary and owns the phrase
heuristics used to recognise summaries, completions and pending questions in
assistant messages.
"""

import re
from typing import Optional

CONFIRMATION_PHRASES = frozenset({
    "sim",
    "ok",
    "confirmo",
    "sim, confirmo",
    "sim confirmo",
    "sim, está correto",
    "sim, esta correto",
    "sim, pode agendar",
    "sim pode agendar",
    "ok, confirmo",
    "ok confirmo",
    "ok, está correto",
    "ok, pode agendar",
    "confirmo sim",
    "está correto sim",
    "esta correto sim",
    "pode agendar sim",
    "sim, tudo certo",
    "sim, correto",
})

_BARE_CONFIRMATION = re.compile(r"^(sim|ok|confirmo)$", re.IGNORECASE)
_TRAILING_PUNCTUATION = re.compile(r"[\s.!?,;:]+$")
_BR_DATE = re.compile(r"\d{2}/\d{2}/\d{4}")
_HHMM = re.compile(r"\d{2}:\d{2}")

# Substrings that on their own mark a booking summary
_SUMMARY_PHRASES = (
    "Está tudo correto?",
    "Responda SIM para confirmar",
    "confirmar seu agendamento",
    "Vou confirmar",
    "Agendamento realizado com sucesso",
    "agendamento confirmado",
)

# Pairs of substrings that together mark a booking summary
_SUMMARY_PAIRS = (
    ("Perfeito!", "agendamento"),
    ("👤", "📅"),
    ("Nome:", "Profissional:"),
    ("Data:", "Horário:"),
    ("Nos vemos", "às"),
)

_STRUCTURED_LABELS = ("Nome:", "Profissional:", "Serviço:", "Data:", "Horário:")

_CONFIRMED_PHRASES = ("agendamento realizado com sucesso", "agendamento confirmado")

_COMPLETION_PHRASES = ("agendamento realizado", "agendamento confirmado", "nos vemos")

_QUESTION_WORDS = re.compile(r"\b(qual|informe|escolha|prefere|gostaria)\b", re.IGNORECASE)


def _normalize(text: Optional[str]) -> str:
    text = (text or "").strip().lower()
    text = _TRAILING_PUNCTUATION.sub("", text)
    return re.sub(r"\s+", " ", text)


def is_confirmation(text: Optional[str]) -> bool:
    """Affirmative reply to a presented summary ('sim', 'ok, confirmo', 'Sim!')"""
    return _normalize(text) in CONFIRMATION_PHRASES


def is_bare_confirmation(text: Optional[str]) -> bool:
    """Whole-message 'sim', 'ok' or 'confirmo'"""
    return bool(_BARE_CONFIRMATION.match((text or "").strip()))


def has_summary_marker(text: Optional[str]) -> bool:
    """Whether an assistant message presents or confirms a booking"""
    if not text:
        return False
    if any(phrase in text for phrase in _SUMMARY_PHRASES):
        return True
    if any(first in text and second in text for first, second in _SUMMARY_PAIRS):
        return True
    return "com " in text and bool(_BR_DATE.search(text)) and bool(_HHMM.search(text))


def is_structured_summary(text: Optional[str]) -> bool:
    """Labeled name/professional/service/date/time fields, or an explicit confirmation"""
    if not text:
        return False
    if all(label in text for label in _STRUCTURED_LABELS):
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in _CONFIRMED_PHRASES)


def is_completion_message(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in _COMPLETION_PHRASES)


def poses_question(text: Optional[str]) -> bool:
    if not text:
        return False
    return "?" in text or bool(_QUESTION_WORDS.search(text))


def dialogue_in_progress(last_assistant_text: Optional[str]) -> bool:
    """
    The assistant is still collecting data: its latest message asks something
    and is not itself a completion message.
    """
    if not last_assistant_text:
        return False
    if is_completion_message(last_assistant_text):
        return False
    return poses_question(last_assistant_text)
