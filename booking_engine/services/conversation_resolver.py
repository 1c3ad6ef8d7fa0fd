"""
Conversation Resolver

Maps an inbound (instance, phone) pair to a conversation. Gateways may rotate
the instance mid-dialogue, so a phone's latest conversation is re-attached to
the current instance instead of starting a new one.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..interfaces import ConversationStore
from ..models import Conversation
from ..utils.phone import mask_phone
from .confirmation import has_summary_marker, is_bare_confirmation

logger = logging.getLogger(__name__)


def _awaits_confirmation(text: Optional[str]) -> bool:
    if not text:
        return False
    return has_summary_marker(text) or "confirmado" in text.lower()


class ConversationResolver:
    """Find, re-bind or create the conversation for an inbound message"""

    def __init__(self, store: ConversationStore):
        self.store = store

    async def resolve(
        self,
        company_id: int,
        instance_id: int,
        phone_number: str,
        text: Optional[str] = None,
        push_name: Optional[str] = None
    ) -> Conversation:
        now = datetime.now(timezone.utc)

        conversation = await self.store.find_conversation(instance_id, phone_number)
        if conversation:
            logger.debug(f"♻️ Existing conversation {conversation.id} for {mask_phone(phone_number)}")
            return await self._refresh(conversation, instance_id, push_name, now)

        candidates = await self.store.list_conversations_by_phone(company_id, phone_number)
        conversation = await self._pick_candidate(candidates, text)

        if conversation:
            logger.info(
                f"🔁 Re-attaching conversation {conversation.id} "
                f"(instance {conversation.whatsapp_instance_id} -> {instance_id})"
            )
            return await self._refresh(conversation, instance_id, push_name, now)

        conversation = await self.store.create_conversation(
            company_id=company_id,
            instance_id=instance_id,
            phone_number=phone_number,
            contact_name=push_name,
        )
        logger.info(f"🆕 Created conversation {conversation.id} for {mask_phone(phone_number)}")
        return conversation

    async def _pick_candidate(
        self,
        candidates: List[Conversation],
        text: Optional[str]
    ) -> Optional[Conversation]:
        """Prefer the conversation awaiting confirmation when the user just says 'sim'"""
        if not candidates:
            return None

        if is_bare_confirmation(text):
            for candidate in candidates:
                last_reply = await self.store.last_assistant_message(candidate.id)
                if last_reply and _awaits_confirmation(last_reply.content):
                    logger.info(f"✅ Conversation {candidate.id} has a pending booking summary")
                    return candidate

        return candidates[0]

    async def _refresh(
        self,
        conversation: Conversation,
        instance_id: int,
        push_name: Optional[str],
        now: datetime
    ) -> Conversation:
        return await self.store.update_conversation(
            conversation.id,
            instance_id=instance_id,
            contact_name=push_name or conversation.contact_name,
            last_message_at=now,
        )
