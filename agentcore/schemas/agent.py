from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CustomerHints(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None


class ProcessMessageRequest(BaseModel):
    ticket_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    customer: CustomerHints = Field(default_factory=CustomerHints)
    channel_id: Optional[str] = None
    channel_type: Optional[str] = None


class ProcessMessageResponse(BaseModel):
    outcome: str
    stages: list[str]
    ticket_id: Optional[str] = None
    customer_id: Optional[str] = None
    conversation_id: Optional[str] = None
    match_method: Optional[str] = None
    intent: Optional[str] = None
    reply: Optional[str] = None
    source: Optional[str] = None
    rule_name: Optional[str] = None
    action: Optional[str] = None
    confidence: Optional[float] = None
    sentiment: Optional[float] = None
    escalated: bool = False
    delivery_status: Optional[str] = None


class CustomerOut(BaseModel):
    id: UUID
    external_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    order_count: int = 0
    lifetime_spend: float = 0.0
    segment: str = "new"

    model_config = {"from_attributes": True}


class SuggestionOut(BaseModel):
    customer: CustomerOut
    confidence: float


class ResolveIdentityResponse(BaseModel):
    customer: CustomerOut
    confidence: float
    match_method: str
    suggestions: list[SuggestionOut] = Field(default_factory=list)


class DuplicateGroupOut(BaseModel):
    match_type: str
    value: str
    confidence: float
    customers: list[CustomerOut]


class MergeCustomersRequest(BaseModel):
    primary_id: UUID
    secondary_id: UUID


class DailyMetricsOut(BaseModel):
    date: str
    conversations_handled: int
    confidence_avg: float
    escalations_triggered: int


class QueueStatsResponse(BaseModel):
    queue: dict[str, Any]
    journal: dict[str, int] = Field(default_factory=dict)
