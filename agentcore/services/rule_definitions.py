"""Typed views over the JSON documents stored on ``BusinessRule`` rows.

Rules are persisted as generic documents (camelCase keys, as the admin UI
writes them). They are decoded once per evaluation into a closed set of
trigger, condition and action variants.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from agentcore.models import BusinessRule


class RuleDecodeError(ValueError):
    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        super().__init__(f"Rule '{rule_name}' cannot be decoded: {reason}")


@dataclass
class RuleFacts:
    """Everything a trigger or condition may look at for one inbound message."""

    intent: str
    text: str
    segment: str = "new"
    total_orders: int = 0
    total_spent: float = 0.0
    days_since_last_order: Optional[int] = None
    message_count: int = 0
    is_first_message: bool = False

    @classmethod
    def build(cls, intent: str, text: str, customer, conversation, now: datetime) -> "RuleFacts":
        days = None
        last_order_at = getattr(customer, "last_order_at", None)
        if last_order_at is not None:
            if last_order_at.tzinfo is None:
                last_order_at = last_order_at.replace(tzinfo=now.tzinfo)
            days = (now - last_order_at).days
        message_count = getattr(conversation, "message_count", 0) or 0
        return cls(
            intent=intent,
            text=text,
            segment=getattr(customer, "segment", None) or "new",
            total_orders=getattr(customer, "order_count", 0) or 0,
            total_spent=float(getattr(customer, "lifetime_spend", 0) or 0),
            days_since_last_order=days,
            message_count=message_count,
            is_first_message=message_count <= 1,
        )


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Trigger(_Document):
    intents: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    first_message: bool = Field(default=False, alias="isFirstMessage")

    def keyword_patterns(self) -> list[re.Pattern]:
        return [re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.IGNORECASE) for keyword in self.keywords]

    def matched_keyword(self, text: str) -> Optional[str]:
        for keyword, pattern in zip(self.keywords, self.keyword_patterns()):
            if pattern.search(text):
                return keyword
        return None

    def matches(self, facts: RuleFacts) -> bool:
        if self.intents and facts.intent not in self.intents:
            return False
        if self.keywords and self.matched_keyword(facts.text) is None:
            return False
        if self.first_message and not facts.is_first_message:
            return False
        return True


# Conditions


@dataclass(frozen=True)
class SegmentEquals:
    segment: str

    def holds(self, facts: RuleFacts) -> bool:
        return facts.segment == self.segment


@dataclass(frozen=True)
class NumericRange:
    field_name: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def holds(self, facts: RuleFacts) -> bool:
        value = getattr(facts, self.field_name)
        if value is None:
            return False
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


Condition = Union[SegmentEquals, NumericRange]

NUMERIC_CONDITION_FIELDS = {
    "totalOrders": "total_orders",
    "totalSpent": "total_spent",
    "daysSinceLastOrder": "days_since_last_order",
    "messageCount": "message_count",
}


def decode_conditions(document: Optional[dict], rule_name: str = "") -> list[Condition]:
    conditions: list[Condition] = []
    for key, value in (document or {}).items():
        if key == "customerSegment":
            conditions.append(SegmentEquals(str(value)))
        elif key in NUMERIC_CONDITION_FIELDS:
            if not isinstance(value, dict):
                raise RuleDecodeError(rule_name, f"condition '{key}' must be a {{min, max}} object")
            conditions.append(NumericRange(NUMERIC_CONDITION_FIELDS[key], value.get("min"), value.get("max")))
        else:
            raise RuleDecodeError(rule_name, f"unknown condition '{key}'")
    return conditions


# Actions


class DirectResponse(_Document):
    type: Literal["direct_response"] = "direct_response"
    message: str
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")


class Escalate(_Document):
    type: Literal["escalate"] = "escalate"
    reason: str = "Automatic escalation rule"
    message: str = "A human agent will contact you shortly."


class DiscountSpec(_Document):
    type: str = "percentage"
    percentage: float = Field(gt=0, le=100)


class ApplyDiscount(_Document):
    type: Literal["apply_discount"] = "apply_discount"
    discount: DiscountSpec
    message: Optional[str] = None

    def render_message(self) -> str:
        percent = f"{self.discount.percentage:g}%"
        if self.message:
            return self.message.replace("{discount}", percent)
        return f"I have a special {percent} discount for you!"


RuleAction = Annotated[Union[DirectResponse, Escalate, ApplyDiscount], Field(discriminator="type")]

_actions_adapter = TypeAdapter(list[RuleAction])


def decode_actions(document: Any, rule_name: str = "") -> list:
    items = document if isinstance(document, list) else [document]
    items = [item for item in items if item]
    if not items:
        raise RuleDecodeError(rule_name, "no actions")
    try:
        return _actions_adapter.validate_python(items)
    except PydanticValidationError as exc:
        raise RuleDecodeError(rule_name, str(exc)) from exc


@dataclass
class RuleDefinition:
    id: int
    name: str
    category: str
    priority: int
    version: int
    trigger: Trigger
    conditions: list[Condition] = field(default_factory=list)
    actions: list = field(default_factory=list)

    def applies_to(self, facts: RuleFacts) -> bool:
        if not self.trigger.matches(facts):
            return False
        return all(condition.holds(facts) for condition in self.conditions)

    @property
    def primary_action(self):
        return self.actions[0]


def decode_rule(rule: BusinessRule) -> RuleDefinition:
    try:
        trigger = Trigger.model_validate(rule.trigger or {})
    except PydanticValidationError as exc:
        raise RuleDecodeError(rule.name, str(exc)) from exc
    return RuleDefinition(
        id=rule.id,
        name=rule.name,
        category=rule.category,
        priority=rule.priority,
        version=rule.version or 1,
        trigger=trigger,
        conditions=decode_conditions(rule.conditions, rule.name),
        actions=decode_actions(rule.actions, rule.name),
    )


def validate_rule_document(name: str, trigger: dict, conditions: dict, actions: Any) -> None:
    """Raise RuleDecodeError if the documents would not decode at evaluation time."""
    try:
        Trigger.model_validate(trigger or {})
    except PydanticValidationError as exc:
        raise RuleDecodeError(name, str(exc)) from exc
    decode_conditions(conditions, name)
    decode_actions(actions, name)
