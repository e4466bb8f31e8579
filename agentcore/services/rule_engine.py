import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.logging_config import get_logger
from agentcore.models import BusinessRule, Conversation, Customer, RuleExecution
from agentcore.services.discount_service import DiscountIssuer
from agentcore.services.escalation_service import escalate_conversation
from agentcore.services.rule_definitions import (
    ApplyDiscount,
    DirectResponse,
    Escalate,
    RuleDecodeError,
    RuleDefinition,
    RuleFacts,
    decode_rule,
)

logger = get_logger("rule_engine")

INTENT_CATEGORIES = {
    "greeting": ["response", "discount"],
    "product_inquiry": ["response", "inventory", "discount"],
    "price_request": ["discount", "response"],
    "purchase_intent": ["discount", "inventory"],
    "support_request": ["escalation"],
    "complaint": ["escalation"],
    "goodbye": ["response"],
}
DEFAULT_CATEGORIES = ["response"]
# Keyword escalation rules apply whatever the intent turned out to be
ALWAYS_EVALUATED = ["escalation"]


def categories_for_intent(intent: str) -> list[str]:
    categories = list(INTENT_CATEGORIES.get(intent, DEFAULT_CATEGORIES))
    for category in ALWAYS_EVALUATED:
        if category not in categories:
            categories.append(category)
    return categories


@dataclass
class RuleOutcome:
    rule_id: int
    rule_name: str
    action: str  # direct_response, escalate, apply_discount
    message: str
    succeeded: bool = True
    needs_human: bool = False
    confidence: float = 1.0
    next_steps: list[str] = field(default_factory=list)
    action_data: dict = field(default_factory=dict)
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "action": self.action,
            "message": self.message,
            "succeeded": self.succeeded,
            "needs_human": self.needs_human,
            "confidence": self.confidence,
            "next_steps": self.next_steps,
            "action_data": self.action_data,
            "error": self.error,
        }


class RuleEngine:
    """Picks the single highest-priority active rule that applies to a message."""

    def __init__(self, db: Session, discounts: Optional[DiscountIssuer] = None, discount_valid_hours: float = 24):
        self.db = db
        self.discounts = discounts or DiscountIssuer()
        self.discount_valid_hours = discount_valid_hours

    def load_rules(self, categories: list[str]) -> list[RuleDefinition]:
        rows = (
            self.db.query(BusinessRule)
            .filter(BusinessRule.is_active.is_(True), BusinessRule.category.in_(categories))
            .order_by(BusinessRule.priority.desc(), BusinessRule.id.asc())
            .all()
        )
        rules = []
        for row in rows:
            try:
                rules.append(decode_rule(row))
            except RuleDecodeError as exc:
                logger.warning(str(exc), extra={"context": {"rule_id": row.id}})
        return rules

    def match(self, facts: RuleFacts) -> Optional[RuleDefinition]:
        """Dry run: the rule that would fire, without executing anything."""
        for rule in self.load_rules(categories_for_intent(facts.intent)):
            if rule.applies_to(facts):
                return rule
        return None

    def evaluate(
        self,
        facts: RuleFacts,
        conversation: Conversation,
        customer: Optional[Customer] = None,
    ) -> Optional[RuleOutcome]:
        """Execute the first applicable rule and audit it. None means no rule applies."""
        rule = self.match(facts)
        if rule is None:
            logger.debug("No rule matched", extra={"context": {"intent": facts.intent}})
            return None

        started = time.monotonic()
        outcome = self._execute(rule, conversation, customer)
        elapsed_ms = int(round((time.monotonic() - started) * 1000))

        self.db.add(
            RuleExecution(
                rule_id=rule.id,
                conversation_id=conversation.id,
                trigger={"intent": facts.intent, "message": facts.text},
                success=outcome.succeeded,
                action=outcome.action,
                result=outcome.as_dict(),
                error=outcome.error,
                execution_ms=elapsed_ms,
                executed_at=utcnow(),
            )
        )
        self.db.flush()

        logger.info(
            f"Rule fired: {rule.name}",
            extra={
                "context": {
                    "rule_id": rule.id,
                    "action": outcome.action,
                    "succeeded": outcome.succeeded,
                    "execution_ms": elapsed_ms,
                }
            },
        )
        return outcome

    def _execute(self, rule: RuleDefinition, conversation: Conversation, customer: Optional[Customer]) -> RuleOutcome:
        action = rule.primary_action
        try:
            if isinstance(action, DirectResponse):
                return RuleOutcome(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    action="direct_response",
                    message=action.message,
                    next_steps=list(action.next_steps),
                )

            if isinstance(action, Escalate):
                escalation = escalate_conversation(self.db, conversation, action.reason, escalation_type="automatic")
                return RuleOutcome(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    action="escalate",
                    message=action.message,
                    needs_human=True,
                    action_data={
                        "reason": action.reason,
                        "escalation_id": str(escalation.id) if escalation else None,
                    },
                )

            if isinstance(action, ApplyDiscount):
                issued = self.discounts.issue(
                    action.discount.percentage,
                    self.discount_valid_hours,
                    discount_type=action.discount.type,
                    email=getattr(customer, "email", None),
                )
                return RuleOutcome(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    action="apply_discount",
                    message=action.render_message(),
                    action_data=issued.as_dict(),
                )
        except Exception as exc:
            logger.error(
                f"Rule action failed: {rule.name}",
                extra={"context": {"rule_id": rule.id, "error": str(exc)}},
            )
            return RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.name,
                action=getattr(action, "type", "unknown"),
                message="",
                succeeded=False,
                error=str(exc),
            )

        raise TypeError(f"Unsupported rule action: {action!r}")
