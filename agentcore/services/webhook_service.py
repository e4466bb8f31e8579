"""Inbound webhook boundary: signature check and payload validation."""

import hashlib
import hmac
import json
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from agentcore.errors import SignatureError, ValidationError
from agentcore.logging_config import get_logger
from agentcore.schemas.webhook import KNOWN_ACTIONS, WebhookPayload

logger = get_logger("webhook_service")

SIGNATURE_PREFIX = "sha256="

# Actions that cannot be handled without a ticket id
TICKET_ACTIONS = {
    "ticket.created",
    "ticket.message",
    "message.received",
    "ticket.updated",
    "ticket.resolved",
    "ticket.escalated",
}


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    allow_unsigned: bool = False,
) -> None:
    """Raise SignatureError unless the body is signed with the shared secret.

    With no secret configured, requests are accepted only when
    ``allow_unsigned`` is set.
    """
    if not secret:
        if allow_unsigned:
            logger.warning("Webhook secret not configured, accepting unsigned request")
            return
        raise SignatureError("Webhook secret not configured")

    if not signature:
        raise SignatureError("Missing webhook signature")

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(provided.lower(), expected):
        raise SignatureError("Invalid webhook signature")


def parse_payload(raw_body: bytes) -> WebhookPayload:
    """Decode and validate a webhook body. Raises ValidationError on bad input."""
    try:
        data = json.loads(raw_body or b"")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        payload = WebhookPayload.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid webhook payload: {exc.error_count()} error(s)") from exc

    action = payload.normalized_action
    if action in TICKET_ACTIONS and not (payload.ticket and payload.ticket.id):
        raise ValidationError(f"Action {action} requires ticket.id")
    if action in {"order.created", "order.updated"} and not (payload.order and payload.order.id):
        raise ValidationError(f"Action {action} requires order.id")
    return payload


def is_supported(payload: WebhookPayload) -> bool:
    return payload.normalized_action in KNOWN_ACTIONS
