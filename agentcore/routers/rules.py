from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from agentcore.database import get_db
from agentcore.errors import NotFoundError, ValidationError
from agentcore.logging_config import get_logger
from agentcore.runtime import AgentRuntime, get_runtime
from agentcore.schemas.rules import RuleIn, RuleOut, RuleTestRequest, RuleTestResponse, RuleUpdate, SeedResponse
from agentcore.services import rule_service
from agentcore.services.rule_definitions import ApplyDiscount, RuleFacts
from agentcore.services.rule_engine import RuleEngine

logger = get_logger("rules")

router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=list[RuleOut])
def list_rules(
    active_only: bool = False,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return rule_service.list_rules(db, active_only=active_only, category=category)


@router.post("", response_model=RuleOut, status_code=201)
def create_rule(request: RuleIn, db: Session = Depends(get_db)):
    try:
        rule = rule_service.create_rule(db, **request.model_dump())
        db.commit()
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=exc.message)
    logger.info(f"Rule created: {rule.name}", extra={"context": {"rule_id": rule.id}})
    return rule


@router.patch("/{rule_id}", response_model=RuleOut)
def update_rule(rule_id: int, request: RuleUpdate, db: Session = Depends(get_db)):
    try:
        rule = rule_service.update_rule(db, rule_id, request.model_dump(exclude_unset=True))
        db.commit()
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=exc.message)
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=exc.message)
    return rule


@router.delete("/{rule_id}", response_model=RuleOut)
def deactivate_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        rule = rule_service.deactivate_rule(db, rule_id)
        db.commit()
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return rule


@router.post("/seed", response_model=SeedResponse)
def seed_rules(db: Session = Depends(get_db)):
    counts = rule_service.seed_default_rules(db)
    db.commit()
    return SeedResponse(**counts)


@router.post("/test", response_model=RuleTestResponse)
def test_rules(
    request: RuleTestRequest,
    db: Session = Depends(get_db),
    runtime: AgentRuntime = Depends(get_runtime),
):
    """Dry run: which rule would answer this message. Nothing is executed or audited."""
    intent = request.intent or runtime.classifier.classify(request.message).value
    facts = RuleFacts(
        intent=intent,
        text=request.message,
        segment=request.segment,
        total_orders=request.total_orders,
        total_spent=request.total_spent,
        days_since_last_order=request.days_since_last_order,
        message_count=request.message_count,
        is_first_message=request.message_count <= 1,
    )
    rule = RuleEngine(db).match(facts)
    if rule is None:
        return RuleTestResponse(intent=intent, matched=False)

    action = rule.primary_action
    message = action.render_message() if isinstance(action, ApplyDiscount) else action.message
    return RuleTestResponse(
        intent=intent,
        matched=True,
        rule_id=rule.id,
        rule_name=rule.name,
        action=action.type,
        message=message,
    )


@router.get("/stats")
def rule_stats(days: int = Query(default=30, ge=1, le=365), db: Session = Depends(get_db)):
    return {"days": days, "rules": rule_service.get_execution_stats(db, days)}


@router.post("/cleanup")
def cleanup_executions(days: int = Query(default=90, ge=1), db: Session = Depends(get_db)):
    deleted = rule_service.cleanup_old_executions(db, days)
    db.commit()
    return {"deleted": deleted, "days": days}
