from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class RuleIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: str
    trigger: dict[str, Any] = Field(default_factory=dict)
    conditions: dict[str, Any] = Field(default_factory=dict)
    actions: Any
    priority: int = 0


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    trigger: Optional[dict[str, Any]] = None
    conditions: Optional[dict[str, Any]] = None
    actions: Optional[Any] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class RuleOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: str
    trigger: dict[str, Any]
    conditions: dict[str, Any]
    actions: Any
    priority: int
    is_active: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RuleTestRequest(BaseModel):
    message: str = Field(min_length=1)
    intent: Optional[str] = None
    segment: str = "new"
    total_orders: int = 0
    total_spent: float = 0.0
    days_since_last_order: Optional[int] = None
    message_count: int = 1


class RuleTestResponse(BaseModel):
    intent: str
    matched: bool
    rule_id: Optional[int] = None
    rule_name: Optional[str] = None
    action: Optional[str] = None
    message: Optional[str] = None


class SeedResponse(BaseModel):
    created: int
    updated: int
    total: int
