from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from agentcore.database import get_db
from agentcore.errors import NotFoundError
from agentcore.logging_config import get_logger
from agentcore.models import Customer
from agentcore.runtime import AgentRuntime, get_runtime
from agentcore.schemas.agent import (
    CustomerHints,
    CustomerOut,
    DailyMetricsOut,
    DuplicateGroupOut,
    MergeCustomersRequest,
    ProcessMessageRequest,
    ProcessMessageResponse,
    QueueStatsResponse,
    ResolveIdentityResponse,
    SuggestionOut,
)
from agentcore.services.identity_service import IdentityHints, IdentityResolver
from agentcore.services.job_store import count_jobs_by_status
from agentcore.services.metrics_service import get_daily_metrics
from agentcore.services.orchestrator import InboundEvent

logger = get_logger("agent")

router = APIRouter(prefix="/agent", tags=["agent"])


def _hints(customer: CustomerHints) -> IdentityHints:
    return IdentityHints(external_id=customer.id, email=customer.email, phone=customer.phone, name=customer.name)


@router.post("/process-message", response_model=ProcessMessageResponse)
def process_message(request: ProcessMessageRequest, runtime: AgentRuntime = Depends(get_runtime)):
    """Run one message through the pipeline synchronously."""
    event = InboundEvent(
        ticket_id=request.ticket_id,
        text=request.text,
        hints=_hints(request.customer),
        channel_id=request.channel_id,
        channel_type=request.channel_type,
    )
    try:
        result = runtime.orchestrator.process_event(event)
    except Exception as exc:
        logger.error(f"Process message failed: {exc}", exc_info=True)
        raise HTTPException(status_code=500, detail="Message processing failed")
    return ProcessMessageResponse(**result.as_dict())


@router.post("/identity/resolve", response_model=ResolveIdentityResponse)
def resolve_identity(
    hints: CustomerHints,
    db: Session = Depends(get_db),
    runtime: AgentRuntime = Depends(get_runtime),
):
    request_hints = _hints(hints)
    if request_hints.is_empty():
        raise HTTPException(status_code=400, detail="At least one identity hint is required")
    try:
        resolution = IdentityResolver(db, runtime.settings.default_country_code).resolve(request_hints)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ResolveIdentityResponse(
        customer=CustomerOut.model_validate(resolution.customer),
        confidence=resolution.confidence,
        match_method=resolution.match_method,
        suggestions=[
            SuggestionOut(customer=CustomerOut.model_validate(customer), confidence=score)
            for customer, score in resolution.suggestions
        ],
    )


@router.get("/identity/duplicates", response_model=list[DuplicateGroupOut])
def list_duplicates(db: Session = Depends(get_db)):
    return [
        DuplicateGroupOut(
            match_type=group.match_type,
            value=group.value,
            confidence=group.confidence,
            customers=[CustomerOut.model_validate(customer) for customer in group.customers],
        )
        for group in IdentityResolver(db).find_duplicates()
    ]


@router.post("/identity/merge", response_model=CustomerOut)
def merge_customers(request: MergeCustomersRequest, db: Session = Depends(get_db)):
    try:
        customer = IdentityResolver(db).merge_customers(request.primary_id, request.secondary_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return CustomerOut.model_validate(customer)


@router.get("/customers/{customer_id}", response_model=CustomerOut)
def get_customer(customer_id: UUID, db: Session = Depends(get_db)):
    customer = db.get(Customer, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return CustomerOut.model_validate(customer)


@router.get("/metrics", response_model=list[DailyMetricsOut])
def daily_metrics(days: int = Query(default=7, ge=1, le=90), db: Session = Depends(get_db)):
    return [DailyMetricsOut(**row) for row in get_daily_metrics(db, days)]


@router.get("/queue", response_model=QueueStatsResponse)
def queue_stats(db: Session = Depends(get_db), runtime: AgentRuntime = Depends(get_runtime)):
    return QueueStatsResponse(queue=runtime.queue.stats(), journal=count_jobs_by_status(db))
