"""
Dialogue Orchestrator

Builds the booking-agent prompt (persona, calendar grounding, professionals,
services, real availability), asks the language model for the next reply and
post-processes it. When the model is unavailable a static fallback listing the
professionals and business hours is produced instead.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .. import config
from ..exceptions import LanguageModelUnavailable
from ..interfaces import LanguageModelService
from ..models import Appointment, Company, Message, Professional, Service
from .availability import render_availability
from .dates import format_br, next_weekdays, today as current_date, weekday_name

logger = logging.getLogger(__name__)

EMPTY_REPLY_TEXT = "Desculpe, não consegui processar sua mensagem."

AUDIO_FALLBACK_TEXT = (
    "Desculpe, não consegui entender o áudio que você enviou. "
    "Pode escrever sua mensagem por texto, por favor? 📝"
)

BUSINESS_HOURS_TEXT = "Segunda a Sábado: 09:00 às 18:00"

SUMMARY_TEMPLATE = (
    "Perfeito! Vou confirmar seu agendamento:\\n\\n"
    "👤 Nome: [nome]\\n"
    "🏢 Profissional: [profissional]\\n"
    "💇 Serviço: [serviço]\\n"
    "📅 Data: [dia da semana], [data]\\n"
    "🕐 Horário: [horário]\\n"
    "📱 Telefone: [telefone]\\n\\n"
    "Está tudo correto? Responda SIM para confirmar ou me informe se algo precisa ser alterado."
)

INSTRUCTIONS = f"""INSTRUÇÕES OBRIGATÓRIAS:
- SEMPRE que o cliente mencionar "agendar", "horário", "agendamento" ou similar, ofereça IMEDIATAMENTE a lista completa de profissionais
- Use o formato: "Temos os seguintes profissionais disponíveis:\\n[lista dos profissionais]\\n\\nCom qual profissional você gostaria de agendar?"
- Após a escolha do profissional, ofereça IMEDIATAMENTE a lista completa de serviços disponíveis
- Use o formato: "Aqui estão os serviços disponíveis:\\n[lista dos serviços]\\n\\nQual serviço você gostaria de agendar?"
- Após a escolha do serviço, peça o primeiro nome do cliente
- Após o nome, peça a data e o horário em etapas separadas:
  1. ETAPA 1 - DATA: Pergunte "Em qual dia você gostaria de agendar?" e aguarde a resposta
  2. ETAPA 2 - HORÁRIO: Apenas APÓS receber a data, pergunte "Qual horário você prefere?"
- NUNCA peça data e horário na mesma mensagem
- Quando o cliente mencionar dias da semana, use EXATAMENTE as datas da seção "PRÓXIMOS DIAS DA SEMANA"
- ANTES de confirmar qualquer horário, consulte a seção "DISPONIBILIDADE REAL DOS PROFISSIONAIS POR DATA":
  * Horários listados como "OCUPADO" NÃO podem ser confirmados
  * "LIVRE" significa que o horário está disponível dentro do expediente
  * Se o horário estiver ocupado, sugira alternativas no mesmo dia
- Verifique se o profissional trabalha no dia solicitado e se o horário está dentro do expediente
- REGRA OBRIGATÓRIA DE RESUMO E CONFIRMAÇÃO:
  * Quando tiver TODOS os dados, NÃO confirme imediatamente
  * PRIMEIRO envie um RESUMO COMPLETO: "{SUMMARY_TEMPLATE}"
  * AGUARDE o cliente responder "SIM", "OK" ou confirmação similar
  * APENAS APÓS a confirmação, responda "Agendamento realizado com sucesso!" com os dados finais
  * Se o cliente não confirmar, continue coletando correções
- NÃO invente serviços ou profissionais - use APENAS os listados acima
- Mantenha respostas concisas e adequadas para mensagens de texto (no máximo 200 palavras)
- Seja profissional mas amigável
- Use o histórico da conversa para dar respostas contextualizadas"""

# Filler that reads as a question after a completed booking
_FILLER_PATTERNS = [
    re.compile(r"Qualquer dúvida[^.!]*[.!?]*", re.IGNORECASE),
    re.compile(r"estou por aqui[^.!]*[.!?]*", re.IGNORECASE),
    re.compile(r"Se precisar[^.!]*[.!?]*", re.IGNORECASE),
]


@dataclass
class DialogueContext:
    """Tenant data a single turn is generated from"""
    company: Company
    professionals: List[Professional]
    services: List[Service]
    appointments: List[Appointment] = field(default_factory=list)
    today: Optional[date] = None


@dataclass
class DialogueReply:
    text: str
    is_fallback: bool = False
    quota_exceeded: bool = False


def sanitize_reply(text: str) -> str:
    """Strip trailing filler from a reply that announces a completed booking"""
    if "agendamento realizado com sucesso" not in text.lower():
        return text
    for pattern in _FILLER_PATTERNS:
        text = pattern.sub("", text)
    return text.replace("😊✂️", "").strip()


def fallback_message(professionals: List[Professional]) -> str:
    """Static reply used when the language model is unavailable"""
    names = "\n".join(f"• {p.name}" for p in professionals if p.active)
    return (
        "Olá! 👋\n\n"
        "Para agendar seus horários, temos as seguintes opções:\n\n"
        "📞 *Telefone:* Entre em contato diretamente\n"
        "🏢 *Presencial:* Visite nosso estabelecimento\n\n"
        "*Profissionais disponíveis:*\n"
        f"{names or '• Consulte nossa equipe'}\n\n"
        "*Horário de funcionamento:*\n"
        f"{BUSINESS_HOURS_TEXT}\n\n"
        "Obrigado pela preferência! 🙏"
    )


def build_system_prompt(context: DialogueContext) -> str:
    today = context.today or current_date()
    company = context.company

    weekdays = "\n".join(
        f"- {name.capitalize()}: {format_br(day)}"
        for name, day in next_weekdays(today).items()
    )
    professionals = "\n".join(
        f"- {p.name}" for p in context.professionals if p.active
    ) or "Nenhum profissional cadastrado no momento"
    services = "\n".join(
        f"- {s.name}" + (f" (R$ {s.price:.2f})" if s.price else "")
        for s in context.services if s.is_active
    ) or "Nenhum serviço cadastrado no momento"
    availability = render_availability(
        [p for p in context.professionals if p.active],
        context.appointments,
        today,
    )

    return f"""{company.ai_agent_prompt or ''}

Importante: Você está representando a empresa "{company.display_name}" via WhatsApp.

HOJE É: {format_br(today)} ({weekday_name(today)})

PRÓXIMOS DIAS DA SEMANA:
{weekdays}

PROFISSIONAIS DISPONÍVEIS PARA AGENDAMENTO:
{professionals}

SERVIÇOS DISPONÍVEIS:
{services}

{availability}

{INSTRUCTIONS}"""


class DialogueOrchestrator:
    """Produces the assistant's next WhatsApp reply"""

    def __init__(self, llm: LanguageModelService, history_window: Optional[int] = None):
        self.llm = llm
        self.history_window = history_window or config.HISTORY_WINDOW

    def build_messages(
        self,
        context: DialogueContext,
        history: List[Message],
        user_text: str
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": build_system_prompt(context)}]
        for message in history[-self.history_window:]:
            messages.append({"role": message.role, "content": message.content})
        messages.append({"role": "user", "content": user_text})
        return messages

    @staticmethod
    def completion_settings(company: Company) -> Dict:
        max_tokens = company.openai_max_tokens or config.OPENAI_MAX_TOKENS
        temperature = company.openai_temperature
        return {
            "model": company.openai_model or config.OPENAI_MODEL,
            "temperature": config.OPENAI_TEMPERATURE if temperature is None else temperature,
            "max_tokens": min(max_tokens, config.MAX_REPLY_TOKENS),
        }

    async def generate_reply(
        self,
        context: DialogueContext,
        history: List[Message],
        user_text: str
    ) -> DialogueReply:
        messages = self.build_messages(context, history, user_text)
        logger.info(f"🤖 Generating reply with {len(messages) - 2} history messages")

        try:
            text = await self.llm.chat(messages, **self.completion_settings(context.company))
        except LanguageModelUnavailable as e:
            if e.quota_exceeded:
                logger.error("🚨 OpenAI API quota exceeded - billing credits required")
            else:
                logger.error(f"Language model unavailable, sending fallback: {e.message}")
            return DialogueReply(
                text=fallback_message(context.professionals),
                is_fallback=True,
                quota_exceeded=e.quota_exceeded,
            )

        text = (text or "").strip()
        if not text:
            return DialogueReply(text=EMPTY_REPLY_TEXT)

        return DialogueReply(text=sanitize_reply(text))
