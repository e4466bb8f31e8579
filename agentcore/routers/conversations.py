from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from agentcore.database import get_db
from agentcore.errors import GatewayError, NotFoundError
from agentcore.logging_config import get_logger
from agentcore.runtime import AgentRuntime, get_runtime
from agentcore.schemas.conversation import (
    CloseRequest,
    ConversationControlResponse,
    ConversationOut,
    TakeoverRequest,
)
from agentcore.services.conversation_service import require_conversation
from agentcore.services.escalation_service import escalate_conversation, release_conversation, resolve_conversation
from agentcore.services.state_machine import InvalidTransitionError

logger = get_logger("conversations")

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _sync_provider(call, *args) -> bool:
    """Mirror a local state change at the chat provider. Best effort."""
    if call is None:
        return False
    try:
        call(*args)
    except GatewayError as exc:
        logger.warning(f"Provider sync failed: {exc.message}")
        return False
    return True


def _control_response(conversation, synced: bool, message: Optional[str] = None) -> ConversationControlResponse:
    return ConversationControlResponse(
        success=True,
        conversation=ConversationOut.model_validate(conversation),
        provider_synced=synced,
        message=message,
    )


@router.get("/{ticket_id}", response_model=ConversationOut)
def get_conversation(ticket_id: str, db: Session = Depends(get_db)):
    try:
        return require_conversation(db, ticket_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)


@router.post("/{ticket_id}/takeover", response_model=ConversationControlResponse)
def takeover(
    ticket_id: str,
    request: TakeoverRequest,
    db: Session = Depends(get_db),
    runtime: AgentRuntime = Depends(get_runtime),
):
    """A human agent takes the conversation from the bot."""
    with runtime.orchestrator.locks.hold(ticket_id):
        try:
            conversation = require_conversation(db, ticket_id)
            escalate_conversation(
                db,
                conversation,
                request.reason or "Manual takeover",
                escalation_type="manual",
                assigned_to=request.agent_name or request.agent_id,
            )
            db.commit()
        except NotFoundError as exc:
            db.rollback()
            raise HTTPException(status_code=404, detail=exc.message)
        except InvalidTransitionError as exc:
            db.rollback()
            raise HTTPException(status_code=409, detail=str(exc))

    chat = runtime.chat
    synced = _sync_provider(chat.take_control if chat else None, ticket_id, request.agent_id)
    return _control_response(conversation, synced, "Conversation taken over")


@router.post("/{ticket_id}/release", response_model=ConversationControlResponse)
def release(ticket_id: str, db: Session = Depends(get_db), runtime: AgentRuntime = Depends(get_runtime)):
    """Hand the conversation back to the bot."""
    with runtime.orchestrator.locks.hold(ticket_id):
        try:
            conversation = require_conversation(db, ticket_id)
            release_conversation(db, conversation)
            db.commit()
        except NotFoundError as exc:
            db.rollback()
            raise HTTPException(status_code=404, detail=exc.message)

    chat = runtime.chat
    synced = _sync_provider(chat.release_control if chat else None, ticket_id)
    return _control_response(conversation, synced, "Conversation released to bot")


@router.post("/{ticket_id}/close", response_model=ConversationControlResponse)
def close(
    ticket_id: str,
    request: CloseRequest,
    db: Session = Depends(get_db),
    runtime: AgentRuntime = Depends(get_runtime),
):
    with runtime.orchestrator.locks.hold(ticket_id):
        try:
            conversation = require_conversation(db, ticket_id)
            resolve_conversation(db, conversation)
            db.commit()
        except NotFoundError as exc:
            db.rollback()
            raise HTTPException(status_code=404, detail=exc.message)
        except InvalidTransitionError as exc:
            db.rollback()
            raise HTTPException(status_code=409, detail=str(exc))

    chat = runtime.chat
    synced = _sync_provider(chat.close_conversation if chat else None, ticket_id, request.reason)
    return _control_response(conversation, synced, "Conversation closed")
