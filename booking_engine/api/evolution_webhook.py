"""
Evolution API Webhook Handler

Evolution API posts every instance event to /webhook/{instance_name}
(gateways configured with the legacy URL use /api/webhook/whatsapp/{instance_name}).

Connection and QR-code events are applied inline. Message events are
checked for configuration, then processed in a background task so the
gateway gets its answer immediately.
"""

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Path, Request

from .. import config
from ..exceptions import ConfigurationError
from ..models import ChannelInstance, Company, ConnectionUpdate, IgnoredEvent, InboundMessage, QrCodeUpdate
from ..pipeline import BookingPipeline
from ..webhooks.normalizer import normalize_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def process_message_safely(
    pipeline: BookingPipeline,
    instance: ChannelInstance,
    company: Company,
    message: InboundMessage
) -> None:
    """Background task: failures stay scoped to this one message"""
    try:
        await pipeline.handle_message(instance, company, message)
    except Exception as e:
        logger.error(f"❌ Error processing message {message.external_id}: {e}", exc_info=True)


def _track(request: Request, task: asyncio.Task) -> None:
    tasks = request.app.state.background_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


@router.get("/webhook/{instance_name}")
@router.get("/api/webhook/whatsapp/{instance_name}")
async def verify_webhook(instance_name: str = Path(..., description="Evolution instance name")):
    """Gateway verification probe"""
    return {"status": "ok", "instance": instance_name}


@router.post("/webhook/{instance_name}")
@router.post("/api/webhook/whatsapp/{instance_name}")
async def evolution_webhook(
    request: Request,
    instance_name: str = Path(..., description="Evolution instance name"),
    body: Dict[str, Any] = Body(..., description="Webhook payload from Evolution API")
):
    pipeline: BookingPipeline = request.app.state.pipeline
    event = normalize_webhook(body)
    logger.info(f"📨 Webhook for {instance_name}: {body.get('event') or 'message'} -> {event.kind}")

    if isinstance(event, ConnectionUpdate):
        new_status = event.instance_status.value
        instance = await pipeline.directory.get_instance_by_name(instance_name)
        if instance:
            await pipeline.directory.update_instance(instance.id, status=new_status)
            logger.info(f"✅ Updated instance {instance_name} status to: {new_status}")
        else:
            logger.warning(f"⚠️ Instance {instance_name} not found for connection update")
        return {
            "received": True,
            "processed": True,
            "instanceName": instance_name,
            "newStatus": new_status,
            "event": "connection.update",
        }

    if isinstance(event, QrCodeUpdate):
        processed = False
        if event.qr_code:
            instance = await pipeline.directory.get_instance_by_name(instance_name)
            if instance:
                await pipeline.directory.update_instance(
                    instance.id, status="connecting", qr_code=event.qr_code
                )
                processed = True
                logger.info(f"✅ QR code saved for instance {instance_name}")
            else:
                logger.warning(f"⚠️ Instance {instance_name} not found for QR code update")
        else:
            logger.warning(f"⚠️ No usable QR code in webhook for {instance_name}")
        return {"received": True, "processed": processed, "type": "qrcode"}

    if isinstance(event, IgnoredEvent):
        return {"received": True, "processed": False, "reason": event.reason}

    try:
        instance, company = await pipeline.preflight(
            instance_name,
            llm_configured=config.openai_configured(),
            gateway_configured=config.evolution_configured(),
        )
    except ConfigurationError as e:
        logger.error(f"❌ Webhook for {instance_name} rejected: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    task = asyncio.create_task(process_message_safely(pipeline, instance, company, event.message))
    _track(request, task)

    return {"received": True, "processed": True, "queued": True}
