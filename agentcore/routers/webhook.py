from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from agentcore.errors import SignatureError, ValidationError
from agentcore.logging_config import get_logger
from agentcore.runtime import AgentRuntime, get_runtime
from agentcore.schemas.webhook import WebhookAck
from agentcore.services.event_handlers import WEBHOOK_JOB
from agentcore.services.webhook_service import is_supported, parse_payload, verify_signature

logger = get_logger("webhook")

router = APIRouter()


@router.post("/webhooks/provider", response_model=WebhookAck)
async def provider_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None),
    runtime: AgentRuntime = Depends(get_runtime),
):
    """Accept a chat provider event and queue it for processing."""
    raw_body = await request.body()
    settings = runtime.settings

    try:
        verify_signature(raw_body, x_webhook_signature, settings.webhook_secret, settings.webhook_allow_unsigned)
    except SignatureError as exc:
        logger.warning(f"Webhook rejected: {exc.message}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)

    try:
        payload = parse_payload(raw_body)
    except ValidationError as exc:
        logger.warning(f"Webhook payload rejected: {exc.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    if not is_supported(payload):
        logger.info(f"Unsupported webhook action acknowledged: {payload.action}")
        return WebhookAck(received=True, processed=False, detail=f"Unsupported action: {payload.action}")

    job_id = runtime.queue.enqueue(
        WEBHOOK_JOB,
        payload.model_dump(mode="json"),
        priority=settings.webhook_job_priority,
        max_attempts=settings.webhook_job_max_attempts,
    )
    logger.info(
        "Webhook queued",
        extra={
            "context": {
                "action": payload.normalized_action,
                "ticket_id": payload.ticket.id if payload.ticket else None,
                "job_id": job_id,
            }
        },
    )
    return WebhookAck(received=True, processed=True, job_id=job_id)
