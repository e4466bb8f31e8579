from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class TakeoverRequest(BaseModel):
    agent_id: str
    agent_name: Optional[str] = None
    reason: Optional[str] = None


class CloseRequest(BaseModel):
    reason: Optional[str] = None


class ConversationOut(BaseModel):
    id: UUID
    ticket_id: str
    customer_id: UUID
    status: str
    priority: str
    human_took_over: bool
    human_took_over_at: Optional[datetime] = None
    message_count: int
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConversationControlResponse(BaseModel):
    success: bool
    conversation: ConversationOut
    provider_synced: bool
    message: Optional[str] = None
