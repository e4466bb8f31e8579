"""Business rule administration: default rule set, CRUD and execution stats."""

from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from agentcore.database import utcnow
from agentcore.errors import NotFoundError, ValidationError
from agentcore.logging_config import get_logger
from agentcore.models import BusinessRule, RuleExecution
from agentcore.services.rule_definitions import RuleDecodeError, validate_rule_document

logger = get_logger("rule_service")

RULE_CATEGORIES = {"response", "escalation", "discount", "inventory"}

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "name": "Automatic welcome",
        "description": "Greeting reply for new customers on their first message",
        "trigger": {"intents": ["greeting"], "isFirstMessage": True},
        "conditions": {"customerSegment": "new"},
        "actions": {
            "type": "direct_response",
            "message": "¡Hola! Bienvenido. Soy tu asistente virtual y estoy aquí para ayudarte a encontrar "
            "exactamente lo que necesitas. ¿En qué puedo asistirte hoy?",
            "nextSteps": ["Preguntar sobre necesidades específicas", "Mostrar catálogo de productos"],
        },
        "priority": 10,
        "category": "response",
    },
    {
        "name": "Urgent keyword escalation",
        "description": "Escalate conversations that mention urgency",
        "trigger": {"keywords": ["urgente", "emergencia", "crítico", "inmediato", "grave", "hospital", "cirugía"]},
        "conditions": {},
        "actions": {
            "type": "escalate",
            "reason": "Urgent request detected",
            "message": "Entiendo que tu consulta es urgente. Un especialista se comunicará contigo de inmediato.",
        },
        "priority": 100,
        "category": "escalation",
    },
    {
        "name": "Medical question escalation",
        "description": "Escalate questions that need a professional",
        "trigger": {
            "keywords": ["diagnóstico", "síntomas", "enfermedad", "tratamiento", "medicina", "doctor", "médico"]
        },
        "conditions": {},
        "actions": {
            "type": "escalate",
            "reason": "Question requires professional attention",
            "message": "Tu consulta requiere la atención de nuestro equipo especializado. Un profesional te contactará pronto.",
        },
        "priority": 95,
        "category": "escalation",
    },
    {
        "name": "Dissatisfaction escalation",
        "description": "Escalate when the customer expresses dissatisfaction",
        "trigger": {"keywords": ["molesto", "enojado", "furioso", "terrible", "pésimo", "malo", "disgusto", "queja"]},
        "conditions": {},
        "actions": {
            "type": "escalate",
            "reason": "Dissatisfied customer",
            "message": "Lamento que tengas esta experiencia. Un supervisor se contactará contigo para resolverlo personalmente.",
        },
        "priority": 90,
        "category": "escalation",
    },
    {
        "name": "VIP discount",
        "description": "Automatic discount for VIP customers asking about prices or buying",
        "trigger": {"intents": ["price_request", "purchase_intent"]},
        "conditions": {"customerSegment": "vip"},
        "actions": {
            "type": "apply_discount",
            "discount": {"type": "percentage", "percentage": 15},
            "message": "Como cliente VIP tienes un descuento especial del {discount} en todos nuestros productos.",
        },
        "priority": 70,
        "category": "discount",
    },
    {
        "name": "Reactivation discount",
        "description": "Discount for returning customers inactive for 90+ days",
        "trigger": {"intents": ["greeting", "product_inquiry"]},
        "conditions": {"daysSinceLastOrder": {"min": 90}, "totalOrders": {"min": 1}},
        "actions": {
            "type": "apply_discount",
            "discount": {"type": "percentage", "percentage": 12},
            "message": "¡Qué gusto verte de nuevo! Te ofrezco un descuento especial del {discount} en tu próxima compra.",
        },
        "priority": 65,
        "category": "discount",
    },
    {
        "name": "Volume discount",
        "description": "Discount when the customer mentions buying in bulk",
        "trigger": {"keywords": ["cantidad", "varios", "muchos", "lote", "mayoreo", "volumen", "bulk"]},
        "conditions": {},
        "actions": {
            "type": "apply_discount",
            "discount": {"type": "percentage", "percentage": 10},
            "message": "Para compras en volumen te puedo ofrecer un {discount} de descuento. ¿Qué cantidad necesitas?",
        },
        "priority": 60,
        "category": "discount",
    },
    {
        "name": "Catalog reply",
        "description": "Reply when the customer asks for the catalog",
        "trigger": {"keywords": ["catálogo", "catalogo", "productos", "lista", "qué tienen", "que venden"]},
        "conditions": {},
        "actions": {
            "type": "direct_response",
            "message": "¡Por supuesto! Tenemos dispositivos, suministros, equipo y productos de primeros auxilios. "
            "¿Hay alguna categoría que te interese?",
            "nextSteps": ["Especificar categoría de interés", "Mostrar productos destacados"],
        },
        "priority": 50,
        "category": "response",
    },
    {
        "name": "Contact information reply",
        "description": "Share contact details when asked",
        "trigger": {"keywords": ["contacto", "teléfono", "dirección", "ubicación", "horarios", "donde están"]},
        "conditions": {},
        "actions": {
            "type": "direct_response",
            "message": "Puedes escribirnos por este mismo chat. Horario de atención: lunes a viernes de 9:00 a 18:00. "
            "Hacemos entregas a todo México.",
            "nextSteps": ["Consultar productos", "Realizar pedido"],
        },
        "priority": 45,
        "category": "response",
    },
    {
        "name": "Goodbye reply",
        "description": "Friendly goodbye",
        "trigger": {"intents": ["goodbye"], "keywords": ["adiós", "adios", "gracias", "bye", "hasta luego", "nos vemos"]},
        "conditions": {},
        "actions": {
            "type": "direct_response",
            "message": "¡Gracias por contactarnos! Ha sido un placer ayudarte. ¡Que tengas un excelente día!",
            "nextSteps": ["Finalizar conversación"],
        },
        "priority": 30,
        "category": "response",
    },
]


def _validate(name: str, category: str, trigger: dict, conditions: dict, actions: Any) -> None:
    if category not in RULE_CATEGORIES:
        raise ValidationError(f"Unknown rule category: {category}")
    try:
        validate_rule_document(name, trigger, conditions, actions)
    except RuleDecodeError as exc:
        raise ValidationError(str(exc)) from exc


def seed_default_rules(db: Session) -> dict[str, int]:
    """Create or refresh the built-in rule set by name."""
    created = updated = 0
    for definition in DEFAULT_RULES:
        rule = db.query(BusinessRule).filter(BusinessRule.name == definition["name"]).first()
        if rule is None:
            db.add(BusinessRule(is_active=True, version=1, **definition))
            created += 1
        else:
            for key, value in definition.items():
                setattr(rule, key, value)
            rule.is_active = True
            updated += 1
    db.flush()
    logger.info("Default rules seeded", extra={"context": {"created": created, "updated": updated}})
    return {"created": created, "updated": updated, "total": len(DEFAULT_RULES)}


def list_rules(db: Session, active_only: bool = False, category: Optional[str] = None) -> list[BusinessRule]:
    query = db.query(BusinessRule)
    if active_only:
        query = query.filter(BusinessRule.is_active.is_(True))
    if category:
        query = query.filter(BusinessRule.category == category)
    return query.order_by(BusinessRule.priority.desc(), BusinessRule.id.asc()).all()


def get_rule(db: Session, rule_id: int) -> BusinessRule:
    rule = db.get(BusinessRule, rule_id)
    if rule is None:
        raise NotFoundError(f"Rule {rule_id} not found")
    return rule


def create_rule(
    db: Session,
    *,
    name: str,
    category: str,
    trigger: dict,
    conditions: Optional[dict] = None,
    actions: Any,
    priority: int = 0,
    description: Optional[str] = None,
) -> BusinessRule:
    conditions = conditions or {}
    _validate(name, category, trigger, conditions, actions)
    if db.query(BusinessRule).filter(BusinessRule.name == name).first():
        raise ValidationError(f"Rule '{name}' already exists")
    rule = BusinessRule(
        name=name,
        description=description,
        category=category,
        trigger=trigger,
        conditions=conditions,
        actions=actions,
        priority=priority,
        is_active=True,
        version=1,
    )
    db.add(rule)
    db.flush()
    return rule


def update_rule(db: Session, rule_id: int, updates: dict[str, Any]) -> BusinessRule:
    """Apply partial updates; every change bumps the rule version."""
    rule = get_rule(db, rule_id)
    allowed = {"name", "description", "category", "trigger", "conditions", "actions", "priority", "is_active"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

    candidate = {
        "name": rule.name,
        "category": rule.category,
        "trigger": rule.trigger,
        "conditions": rule.conditions,
        "actions": rule.actions,
        **updates,
    }
    _validate(candidate["name"], candidate["category"], candidate["trigger"], candidate["conditions"] or {}, candidate["actions"])

    for key, value in updates.items():
        setattr(rule, key, value)
    rule.version = (rule.version or 1) + 1
    db.flush()
    return rule


def deactivate_rule(db: Session, rule_id: int) -> BusinessRule:
    rule = get_rule(db, rule_id)
    rule.is_active = False
    db.flush()
    return rule


def get_execution_stats(db: Session, days: int = 30) -> list[dict[str, Any]]:
    since = utcnow() - timedelta(days=days)
    rows = (
        db.query(
            RuleExecution.rule_id,
            BusinessRule.name,
            BusinessRule.category,
            RuleExecution.success,
            func.count(RuleExecution.id),
            func.avg(RuleExecution.execution_ms),
        )
        .join(BusinessRule, BusinessRule.id == RuleExecution.rule_id)
        .filter(RuleExecution.executed_at >= since)
        .group_by(RuleExecution.rule_id, BusinessRule.name, BusinessRule.category, RuleExecution.success)
        .all()
    )
    return [
        {
            "rule_id": rule_id,
            "rule_name": name,
            "category": category,
            "success": success,
            "count": count,
            "avg_execution_ms": float(avg_ms or 0),
        }
        for rule_id, name, category, success, count, avg_ms in rows
    ]


def cleanup_old_executions(db: Session, days: int = 90) -> int:
    cutoff = utcnow() - timedelta(days=days)
    deleted = db.query(RuleExecution).filter(RuleExecution.executed_at < cutoff).delete(synchronize_session=False)
    db.flush()
    logger.info("Old rule executions removed", extra={"context": {"deleted": deleted, "days": days}})
    return deleted
