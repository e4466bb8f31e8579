"""Customer identity resolution, deduplication and commerce aggregates."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agentcore.errors import NotFoundError
from agentcore.logging_config import get_logger
from agentcore.models import Customer, CustomerAttribute, SalesRecord
from agentcore.database import ensure_aware, utcnow
from agentcore.services.normalization import (
    DEFAULT_COUNTRY_CODE,
    name_similarity,
    normalize_email,
    normalize_phone,
)

logger = get_logger("identity_service")

FUZZY_NAME_THRESHOLD = 0.70
MAX_SUGGESTIONS = 3

SEGMENT_RANK = {"vip": 4, "loyal": 3, "regular": 2, "new": 1}


@dataclass
class IdentityHints:
    external_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.external_id or self.email or self.phone or self.name)


@dataclass
class ResolutionResult:
    customer: Customer
    confidence: float
    match_method: str  # external_id, exact_email, exact_phone, fuzzy_name, new_customer
    suggestions: list[tuple[Customer, float]] = field(default_factory=list)


@dataclass
class DuplicateGroup:
    match_type: str  # email, phone
    value: str
    confidence: float
    customers: list[Customer]


def derive_segment(order_count: int, lifetime_spend) -> str:
    spend = Decimal(str(lifetime_spend or 0))
    if spend > 50000:
        return "vip"
    if spend > 10000 and order_count > 2:
        return "loyal"
    if order_count > 1:
        return "regular"
    return "new"


def best_segment(a: Optional[str], b: Optional[str]) -> str:
    return max((a or "new", b or "new"), key=lambda segment: SEGMENT_RANK.get(segment, 0))


class IdentityResolver:
    def __init__(self, db: Session, country_code: str = DEFAULT_COUNTRY_CODE):
        self.db = db
        self.country_code = country_code

    def resolve(self, hints: IdentityHints) -> ResolutionResult:
        """Map contact hints to one canonical customer, creating it when nothing matches."""
        email = normalize_email(hints.email)
        phone = normalize_phone(hints.phone, self.country_code)
        external_id = (hints.external_id or "").strip() or None
        name = (hints.name or "").strip() or None

        if external_id:
            customer = self.db.query(Customer).filter(Customer.external_id == external_id).first()
            if customer:
                return ResolutionResult(customer, 1.0, "external_id")

        if email:
            customer = (
                self.db.query(Customer).filter(Customer.email == email).order_by(Customer.created_at).first()
            )
            if customer:
                if external_id and not customer.external_id:
                    customer.external_id = external_id
                    self.db.flush()
                return ResolutionResult(customer, 0.95, "exact_email")

        if phone:
            customer = (
                self.db.query(Customer).filter(Customer.phone == phone).order_by(Customer.created_at).first()
            )
            if customer:
                self._backfill(customer, external_id=external_id, email=email, name=name)
                return ResolutionResult(customer, 0.90, "exact_phone")

        if name:
            matches = self.fuzzy_name_matches(name)
            if matches:
                best, score = matches[0]
                return ResolutionResult(best, score, "fuzzy_name", suggestions=matches[1 : 1 + MAX_SUGGESTIONS])

        return self._create(external_id=external_id, email=email, phone=phone, name=name, hints=hints)

    def fuzzy_name_matches(self, name: str) -> list[tuple[Customer, float]]:
        candidates = self.db.query(Customer).filter(Customer.name.isnot(None)).all()
        scored = [(customer, name_similarity(name, customer.name)) for customer in candidates]
        matches = [(customer, score) for customer, score in scored if score > FUZZY_NAME_THRESHOLD]
        matches.sort(key=lambda item: item[1], reverse=True)
        return matches

    def _backfill(self, customer: Customer, **values) -> None:
        changed = False
        for attr, value in values.items():
            if value and getattr(customer, attr) is None:
                setattr(customer, attr, value)
                changed = True
        if changed:
            self.db.flush()

    def _create(self, *, external_id, email, phone, name, hints: IdentityHints) -> ResolutionResult:
        customer = Customer(
            external_id=external_id,
            email=email,
            phone=phone,
            name=name,
            order_count=0,
            lifetime_spend=Decimal("0"),
            segment="new",
        )
        savepoint = self.db.begin_nested()
        try:
            self.db.add(customer)
            self.db.flush()
        except IntegrityError:
            # Another unit of work created the same external id first
            savepoint.rollback()
            logger.info(
                "Customer created concurrently, resolving again",
                extra={"context": {"external_id": external_id}},
            )
            existing = self.db.query(Customer).filter(Customer.external_id == external_id).first()
            if existing is None:
                raise
            return ResolutionResult(existing, 1.0, "external_id")
        savepoint.commit()

        logger.info(
            "New customer created",
            extra={"context": {"customer_id": str(customer.id), "has_phone": bool(phone), "has_email": bool(email)}},
        )
        return ResolutionResult(customer, 1.0, "new_customer")

    def find_duplicates(self) -> list[DuplicateGroup]:
        groups: list[DuplicateGroup] = []
        for column, match_type, confidence in (
            (Customer.email, "email", 1.0),
            (Customer.phone, "phone", 0.95),
        ):
            values = (
                self.db.query(column)
                .filter(column.isnot(None))
                .group_by(column)
                .having(func.count(Customer.id) > 1)
                .all()
            )
            for (value,) in values:
                customers = self.db.query(Customer).filter(column == value).order_by(Customer.created_at).all()
                groups.append(DuplicateGroup(match_type, value, confidence, customers))
        return groups

    def merge_customers(self, primary_id: UUID, secondary_id: UUID) -> Customer:
        """Fold ``secondary`` into ``primary`` and delete it. All-or-nothing."""
        if primary_id == secondary_id:
            raise ValueError("Cannot merge a customer into itself")

        primary = self.db.get(Customer, primary_id)
        secondary = self.db.get(Customer, secondary_id)
        if primary is None or secondary is None:
            raise NotFoundError("One or both customers not found")

        try:
            merged = {
                "external_id": primary.external_id or secondary.external_id,
                "email": primary.email or secondary.email,
                "phone": primary.phone or secondary.phone,
                "name": primary.name or secondary.name,
                "order_count": (primary.order_count or 0) + (secondary.order_count or 0),
                "lifetime_spend": Decimal(str(primary.lifetime_spend or 0)) + Decimal(str(secondary.lifetime_spend or 0)),
                "last_order_at": _latest(primary.last_order_at, secondary.last_order_at),
            }
            merged["segment"] = best_segment(
                best_segment(primary.segment, secondary.segment),
                derive_segment(merged["order_count"], merged["lifetime_spend"]),
            )

            for conversation in list(secondary.conversations):
                conversation.customer = primary
            for sale in list(secondary.sales):
                sale.customer = primary
            existing_keys = {attribute.key for attribute in primary.attributes}
            for attribute in list(secondary.attributes):
                if attribute.key not in existing_keys:
                    attribute.customer = primary

            self.db.delete(secondary)
            # Free the unique external id before copying it onto the primary
            self.db.flush()

            for attr, value in merged.items():
                setattr(primary, attr, value)
            self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Customers merged",
            extra={"context": {"primary_id": str(primary_id), "secondary_id": str(secondary_id)}},
        )
        return primary


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    values = [ensure_aware(value) for value in (a, b) if value is not None]
    return max(values) if values else None


def record_order(
    db: Session,
    customer: Customer,
    external_order_id: str,
    total_amount,
    *,
    status: Optional[str] = None,
    currency: str = "MXN",
    items: Optional[list] = None,
    ordered_at: Optional[datetime] = None,
    source: str = "webhook",
) -> SalesRecord:
    """Upsert a sales record and keep the customer's aggregates and segment in step."""
    amount = Decimal(str(total_amount or 0))
    ordered_at = ensure_aware(ordered_at) or utcnow()
    record = db.query(SalesRecord).filter(SalesRecord.external_order_id == external_order_id).first()

    if record is None:
        record = SalesRecord(
            external_order_id=external_order_id,
            customer_id=customer.id,
            total_amount=amount,
            currency=currency,
            status=status,
            source=source,
            items=items or [],
            ordered_at=ordered_at,
        )
        db.add(record)
        customer.order_count = (customer.order_count or 0) + 1
        customer.lifetime_spend = Decimal(str(customer.lifetime_spend or 0)) + amount
    else:
        delta = amount - Decimal(str(record.total_amount or 0))
        record.total_amount = amount
        record.status = status or record.status
        if items:
            record.items = items
        customer.lifetime_spend = Decimal(str(customer.lifetime_spend or 0)) + delta

    customer.last_order_at = _latest(customer.last_order_at, ordered_at)
    customer.segment = best_segment(customer.segment, derive_segment(customer.order_count, customer.lifetime_spend))
    db.flush()
    return record


def apply_attributes(db: Session, customer: Customer, attributes: dict) -> int:
    """Upsert provider-side custom attributes. Returns how many keys were written."""
    if not attributes:
        return 0
    existing = {attribute.key: attribute for attribute in customer.attributes}
    written = 0
    for key, value in attributes.items():
        text_value = None if value is None else str(value)
        attribute = existing.get(key)
        if attribute is None:
            attribute = CustomerAttribute(key=key, value=text_value)
            customer.attributes.append(attribute)
        elif attribute.value == text_value:
            continue
        else:
            attribute.value = text_value
        written += 1
    db.flush()
    return written
