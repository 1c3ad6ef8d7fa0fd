"""
Booking pipeline

Single entry point per inbound WhatsApp message:

    (audio) transcription -> conversation resolution -> user message persisted
    -> reply generated -> reply sent -> assistant message persisted
    -> on a confirmation reply: extraction -> commit -> notification

Processing of one conversation is serialized with a keyed lock on
(company, phone). Duplicate webhook deliveries are dropped by external
message id before any work happens; the claim is released if processing fails.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from . import config
from .exceptions import ConfigurationError, MessagingGatewayError, TranscriptionError
from .interfaces import (
    ClientRegistry,
    ConversationStore,
    DirectoryService,
    EventBus,
    LanguageModelService,
    MessagingGateway,
)
from .models import ChannelInstance, Company, InboundMessage, MessageRole
from .services.booking_commit import BookingCommitEngine, CommitResult
from .services.confirmation import is_confirmation
from .services.conversation_resolver import ConversationResolver
from .services.dates import today as current_date
from .services.deduplication import LocalMessageDeduplicator, MessageDeduplicator
from .services.dialogue import AUDIO_FALLBACK_TEXT, DialogueContext, DialogueOrchestrator
from .services.extraction import (
    AppointmentExtractor,
    ExtractionContext,
    HeuristicExtractor,
    LLMSummaryExtractor,
)
from .services.llm_service import decode_audio, sniff_audio_extension
from .services.locks import KeyedLock, LocalKeyedLock
from .utils.phone import mask_phone

logger = logging.getLogger(__name__)

# Enough history to hold the last 5 assistant and last 3 user messages
EXTRACTION_HISTORY = 20


@dataclass
class PipelineResult:
    """What happened to one inbound message"""
    conversation_id: Optional[int] = None
    reply: Optional[str] = None
    delivered: bool = False
    fallback: bool = False
    commit: Optional[CommitResult] = None
    skipped: Optional[str] = None


class BookingPipeline:
    """Wires resolver, orchestrator, extractor and commit engine together"""

    def __init__(
        self,
        directory: DirectoryService,
        clients: ClientRegistry,
        conversations: ConversationStore,
        llm: LanguageModelService,
        gateway: MessagingGateway,
        event_bus: Optional[EventBus] = None,
        commit_lock: Optional[KeyedLock] = None,
        conversation_lock: Optional[KeyedLock] = None,
        deduplicator: Optional[MessageDeduplicator] = None,
        allow_conflicts: Optional[bool] = None,
        today_provider: Optional[Callable[[], date]] = None
    ):
        self.directory = directory
        self.clients = clients
        self.conversations = conversations
        self.llm = llm
        self.gateway = gateway
        self.conversation_lock = conversation_lock or LocalKeyedLock()
        self.deduplicator = deduplicator or LocalMessageDeduplicator()
        self.today_provider = today_provider or current_date

        self.resolver = ConversationResolver(conversations)
        self.orchestrator = DialogueOrchestrator(llm)
        self.extractor = AppointmentExtractor(
            primary=LLMSummaryExtractor(llm),
            fallback=HeuristicExtractor(clients),
        )
        self.commit_engine = BookingCommitEngine(
            directory,
            clients,
            event_bus=event_bus,
            lock=commit_lock,
            allow_conflicts=allow_conflicts,
        )

    async def preflight(self, instance_name: str, llm_configured: bool = True, gateway_configured: bool = True):
        """
        Resolve the instance and company for a message webhook.

        Raises:
            ConfigurationError: 404 for an unknown instance or a company without
                an agent prompt, 400 for missing LLM or gateway credentials
        """
        instance = await self.directory.get_instance_by_name(instance_name)
        if not instance:
            raise ConfigurationError(f"WhatsApp instance {instance_name} not found", status_code=404)

        company = await self.directory.get_company(instance.company_id)
        if not company or not company.has_agent_prompt:
            raise ConfigurationError("Company or AI prompt not configured", status_code=404)

        if not llm_configured:
            raise ConfigurationError("OpenAI not configured", status_code=400)
        if not gateway_configured:
            raise ConfigurationError("Evolution API not configured", status_code=400)

        return instance, company

    async def handle_message(
        self,
        instance: ChannelInstance,
        company: Company,
        message: InboundMessage
    ) -> PipelineResult:
        if message.external_id and not self.deduplicator.claim(message.external_id):
            logger.info(f"⏭️ Duplicate delivery of message {message.external_id}, skipping")
            return PipelineResult(skipped="duplicate delivery")

        phone = message.phone_number
        try:
            # Keyed per company: the resolver moves a phone's conversation across instances
            async with self.conversation_lock.acquire(f"{company.id}:{phone}"):
                return await self._handle_locked(instance, company, message, phone)
        except Exception:
            if message.external_id:
                # Let the gateway's redelivery of this message be processed again
                self.deduplicator.release(message.external_id)
            raise

    async def _handle_locked(
        self,
        instance: ChannelInstance,
        company: Company,
        message: InboundMessage,
        phone: str
    ) -> PipelineResult:
        text = message.text
        if message.audio_base64:
            text = await self._transcribe(message)
            if not text:
                delivered = await self._send(instance, phone, AUDIO_FALLBACK_TEXT)
                return PipelineResult(reply=AUDIO_FALLBACK_TEXT, delivered=delivered, fallback=True)

        text = (text or "").strip()
        if not text:
            return PipelineResult(skipped="empty message")

        today = self.today_provider()
        professionals = await self.directory.list_active_professionals(company.id)
        services = await self.directory.list_active_services(company.id)
        appointments = await self.directory.list_appointments(
            company.id,
            start_date=today,
            end_date=today + timedelta(days=config.AVAILABILITY_DAYS - 1),
        )

        conversation = await self.resolver.resolve(
            company_id=company.id,
            instance_id=instance.id,
            phone_number=phone,
            text=text,
            push_name=message.push_name,
        )

        # History is loaded before the new message is stored; it is appended separately
        history = await self.conversations.recent_messages(conversation.id, config.HISTORY_WINDOW)
        await self.conversations.add_message(
            conversation.id,
            role=MessageRole.USER.value,
            content=text,
            message_id=message.external_id or f"msg_{int(time.time() * 1000)}",
            message_type=message.message_type,
        )

        context = DialogueContext(
            company=company,
            professionals=professionals,
            services=services,
            appointments=appointments,
            today=today,
        )
        reply = await self.orchestrator.generate_reply(context, history, text)

        delivered = await self._send(instance, phone, reply.text)
        await self.conversations.add_message(
            conversation.id,
            role=MessageRole.ASSISTANT.value,
            content=reply.text,
            message_type="text",
            delivered=delivered,
        )

        result = PipelineResult(
            conversation_id=conversation.id,
            reply=reply.text,
            delivered=delivered,
            fallback=reply.is_fallback,
        )

        # No booking is ever derived from a fallback turn
        if reply.is_fallback or not is_confirmation(text):
            return result

        logger.info(f"🎯 Confirmation received in conversation {conversation.id}, looking for booking data")
        messages = await self.conversations.recent_messages(conversation.id, EXTRACTION_HISTORY)
        extraction_context = ExtractionContext(
            company_id=company.id,
            conversation_id=conversation.id,
            phone_number=phone,
            messages=messages,
            professionals=professionals,
            services=services,
            today=today,
        )
        details = await self.extractor.extract(extraction_context)
        if details:
            result.commit = await self.commit_engine.commit(company.id, conversation.id, details)
            logger.info(f"📅 Commit outcome for conversation {conversation.id}: {result.commit.outcome.value}")

        return result

    async def _transcribe(self, message: InboundMessage) -> Optional[str]:
        try:
            audio = decode_audio(message.audio_base64)
            filename = f"audio.{sniff_audio_extension(audio)}"
            logger.info(f"🔊 Transcribing {len(audio)} bytes of audio ({filename})")
            text = await self.llm.transcribe(audio, filename)
        except TranscriptionError as e:
            logger.error(f"❌ Audio transcription failed: {e}")
            return None
        if text:
            logger.info("✅ Audio transcribed")
        return text

    async def _send(self, instance: ChannelInstance, phone: str, text: str) -> bool:
        try:
            await self.gateway.send_text(instance.instance_name, phone, text)
            return True
        except MessagingGatewayError as e:
            logger.error(f"❌ Failed to deliver message to {mask_phone(phone)}: {e}")
            return False
