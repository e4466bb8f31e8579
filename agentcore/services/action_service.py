"""Side effects requested by the LLM reply.

Each action runs in its own savepoint and reports a ``Result``; a failure is
logged and never interrupts delivery of the conversational reply.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.errors import ActionExecutionError
from agentcore.logging_config import get_logger
from agentcore.models import Conversation, Customer
from agentcore.services.discount_service import DiscountIssuer
from agentcore.services.escalation_service import escalate_conversation
from agentcore.services.identity_service import record_order
from agentcore.services.result import Result

logger = get_logger("action_service")

FOLLOW_UP_JOB = "follow_up"
FOLLOW_UP_PRIORITY = 3
COUPON_VALID_HOURS = 7 * 24
ORDER_FAILED_NOTICE = "Hubo un problema creando tu pedido. Un agente se comunicará contigo para ayudarte."

SUPPORTED_ACTIONS = {"create_order", "apply_discount", "recommend_products", "escalate", "schedule_followup"}


@dataclass
class ActionContext:
    db: Session
    conversation: Conversation
    customer: Customer
    now: Optional[datetime] = None


@dataclass
class ActionEffect:
    action: str
    # Text appended to the reply sent to the customer
    reply_addendum: Optional[str] = None
    escalated: bool = False
    data: Optional[dict] = None


class ActionExecutor:
    def __init__(
        self,
        commerce=None,
        discounts: Optional[DiscountIssuer] = None,
        queue=None,
        followup_delay_hours: float = 24.0,
        followup_message: str = "¿Hay algo más en lo que pueda ayudarte?",
    ):
        self.commerce = commerce
        self.discounts = discounts or DiscountIssuer(commerce)
        self.queue = queue
        self.followup_delay_hours = followup_delay_hours
        self.followup_message = followup_message

    def execute(self, action: str, action_data: Optional[dict], context: ActionContext) -> Result[ActionEffect]:
        action_data = action_data or {}
        handler = getattr(self, f"_{action}", None) if action in SUPPORTED_ACTIONS else None
        if handler is None:
            logger.warning(f"Unsupported action requested: {action}")
            return Result.failure(f"Unsupported action: {action}", code="unsupported_action")

        savepoint = context.db.begin_nested()
        try:
            effect = handler(action_data, context)
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            error = exc if isinstance(exc, ActionExecutionError) else ActionExecutionError(action, str(exc))
            logger.error(
                f"Action failed: {error.message}",
                extra={"context": {"action": action, "ticket_id": context.conversation.ticket_id}},
            )
            result = Result.failure(error.message, code="action_failed")
            if action == "create_order":
                result.details["reply_addendum"] = ORDER_FAILED_NOTICE
            return result

        logger.info("Action executed", extra={"context": {"action": action, "ticket_id": context.conversation.ticket_id}})
        return Result.success(effect)

    def _create_order(self, data: dict, context: ActionContext) -> ActionEffect:
        sku = data.get("productSku") or data.get("sku")
        quantity = int(data.get("quantity") or 1)
        if not sku:
            raise ActionExecutionError("create_order", "missing product SKU")
        if self.commerce is None:
            raise ActionExecutionError("create_order", "no commerce provider configured")

        product = self.commerce.get_product_by_sku(sku)
        if product is None:
            raise ActionExecutionError("create_order", f"product {sku} not found")

        customer = context.customer
        order = self.commerce.create_order(
            {
                "status": "pending",
                "billing": {
                    "first_name": customer.name or "",
                    "email": customer.email or "",
                    "phone": customer.phone or "",
                },
                "line_items": [{"product_id": product.get("id"), "quantity": quantity}],
                "meta_data": [{"key": "ticket_id", "value": context.conversation.ticket_id}],
            }
        )
        order_id = order.get("id")
        if order_id is None:
            raise ActionExecutionError("create_order", "store did not return an order id")

        total = order.get("total") or 0
        record_order(
            context.db,
            customer,
            str(order_id),
            total,
            status=order.get("status"),
            currency=order.get("currency") or "MXN",
            items=[{"sku": sku, "name": product.get("name"), "quantity": quantity, "unit_price": product.get("price")}],
            source="agent",
        )

        lines = [f"He creado tu pedido #{order_id}.", f"Total: ${total} MXN"]
        payment_url = order.get("payment_url")
        if payment_url:
            lines.append(f"Completa tu pago aquí: {payment_url}")
        return ActionEffect(
            action="create_order",
            reply_addendum="\n".join(lines),
            data={"order_id": order_id, "total": str(total)},
        )

    def _apply_discount(self, data: dict, context: ActionContext) -> ActionEffect:
        percentage = data.get("percentage") or data.get("discount")
        if not percentage:
            raise ActionExecutionError("apply_discount", "missing percentage")
        issued = self.discounts.issue(
            float(percentage),
            COUPON_VALID_HOURS,
            discount_type=data.get("discountType") or "percentage",
            email=context.customer.email,
            now=context.now,
        )
        return ActionEffect(
            action="apply_discount",
            reply_addendum=f"Código de descuento: {issued.code} (válido por 7 días)",
            data=issued.as_dict(),
        )

    def _recommend_products(self, data: dict, context: ActionContext) -> ActionEffect:
        skus = data.get("products") or data.get("skus") or []
        if not skus or self.commerce is None:
            return ActionEffect(action="recommend_products")

        lines = []
        for sku in skus[:5]:
            product = self.commerce.get_product_by_sku(str(sku))
            if product:
                lines.append(f"- {product.get('name')}: ${product.get('price')} MXN (SKU: {product.get('sku') or sku})")
        if not lines:
            return ActionEffect(action="recommend_products")
        return ActionEffect(
            action="recommend_products",
            reply_addendum="Estos productos podrían interesarte:\n" + "\n".join(lines),
            data={"skus": skus},
        )

    def _escalate(self, data: dict, context: ActionContext) -> ActionEffect:
        reason = data.get("reason") or "Escalated by the assistant"
        escalation = escalate_conversation(context.db, context.conversation, reason, escalation_type="automatic")
        return ActionEffect(
            action="escalate",
            escalated=True,
            data={"escalation_id": str(escalation.id) if escalation else None},
        )

    def _schedule_followup(self, data: dict, context: ActionContext) -> ActionEffect:
        if self.queue is None:
            raise ActionExecutionError("schedule_followup", "no work queue available")
        delay_hours = float(data.get("delayHours") or self.followup_delay_hours)
        due = (context.now or utcnow()) + timedelta(hours=delay_hours)
        job_id = self.queue.enqueue(
            FOLLOW_UP_JOB,
            {
                "ticket_id": context.conversation.ticket_id,
                "message": data.get("message") or self.followup_message,
            },
            priority=FOLLOW_UP_PRIORITY,
            not_before=due,
        )
        return ActionEffect(action="schedule_followup", data={"job_id": job_id, "due": due.isoformat()})
