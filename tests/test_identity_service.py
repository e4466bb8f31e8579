from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from agentcore.errors import NotFoundError
from agentcore.models import Conversation, Customer, SalesRecord
from agentcore.services.identity_service import (
    IdentityHints,
    IdentityResolver,
    apply_attributes,
    best_segment,
    derive_segment,
    record_order,
)


def add_customer(db, **fields):
    customer = Customer(order_count=0, lifetime_spend=Decimal("0"), segment="new", **fields)
    db.add(customer)
    db.flush()
    return customer


class TestResolveCascade:
    def test_new_customer_when_nothing_matches(self, db):
        result = IdentityResolver(db).resolve(IdentityHints(phone="55 1234 5678", name="Ana López"))

        assert result.match_method == "new_customer"
        assert result.confidence == 1.0
        assert result.customer.phone == "+525512345678"
        assert result.customer.segment == "new"

    def test_external_id_wins(self, db):
        customer = add_customer(db, external_id="alice-1", email="ana@example.com")
        result = IdentityResolver(db).resolve(IdentityHints(external_id="alice-1", email="other@example.com"))

        assert result.customer.id == customer.id
        assert result.match_method == "external_id"
        assert result.confidence == 1.0

    def test_exact_email_is_case_insensitive_and_backfills_external_id(self, db):
        customer = add_customer(db, email="ana@example.com")
        result = IdentityResolver(db).resolve(IdentityHints(external_id="alice-9", email="  ANA@Example.com"))

        assert result.customer.id == customer.id
        assert result.match_method == "exact_email"
        assert result.confidence == 0.95
        assert customer.external_id == "alice-9"

    def test_same_phone_in_any_format_is_one_customer(self, db):
        resolver = IdentityResolver(db)
        first = resolver.resolve(IdentityHints(phone="5512345678")).customer
        second = resolver.resolve(IdentityHints(phone="+52 (55) 1234-5678"))

        assert second.customer.id == first.id
        assert second.match_method == "exact_phone"
        assert second.confidence == 0.90
        assert db.query(Customer).count() == 1

    def test_phone_match_backfills_missing_fields_only(self, db):
        customer = add_customer(db, phone="+525512345678", name="Ana")
        IdentityResolver(db).resolve(IdentityHints(phone="5512345678", email="ana@example.com", name="Otra"))

        assert customer.email == "ana@example.com"
        assert customer.name == "Ana"

    def test_fuzzy_name_returns_best_and_suggestions(self, db):
        best = add_customer(db, name="María González")
        add_customer(db, name="Mario González")
        add_customer(db, name="Pedro Ramírez")

        result = IdentityResolver(db).resolve(IdentityHints(name="maria gonzalez"))

        assert result.match_method == "fuzzy_name"
        assert result.customer.id == best.id
        assert result.confidence == 1.0
        assert [customer.name for customer, _ in result.suggestions] == ["Mario González"]

    def test_weak_name_creates_customer(self, db):
        add_customer(db, name="Pedro Ramírez")
        result = IdentityResolver(db).resolve(IdentityHints(name="Lucía Torres"))
        assert result.match_method == "new_customer"


class TestDuplicatesAndMerge:
    def test_find_duplicates(self, db):
        add_customer(db, email="dup@example.com")
        add_customer(db, email="dup@example.com")
        add_customer(db, phone="+525500000000")
        add_customer(db, phone="+525500000000")

        groups = IdentityResolver(db).find_duplicates()
        by_type = {group.match_type: group for group in groups}

        assert by_type["email"].confidence == 1.0
        assert by_type["phone"].confidence == 0.95
        assert len(by_type["email"].customers) == 2

    def test_merge_folds_secondary_into_primary(self, db):
        now = datetime.now(timezone.utc)
        primary = add_customer(db, email="ana@example.com", name="Ana")
        secondary = add_customer(db, external_id="alice-2", phone="+525512345678")
        record_order(db, primary, "A-1", 3000, ordered_at=now - timedelta(days=10))
        record_order(db, secondary, "B-1", 8000, ordered_at=now)
        db.add(Conversation(ticket_id="T-9", customer_id=secondary.id))
        apply_attributes(db, primary, {"city": "CDMX"})
        apply_attributes(db, secondary, {"city": "Monterrey", "vip_note": "llamar"})
        db.commit()
        secondary_id = secondary.id

        merged = IdentityResolver(db).merge_customers(primary.id, secondary_id)

        assert db.get(Customer, secondary_id) is None
        assert merged.external_id == "alice-2"
        assert merged.phone == "+525512345678"
        assert merged.order_count == 2
        assert Decimal(str(merged.lifetime_spend)) == Decimal("11000")
        assert merged.segment == "regular"
        assert db.query(Conversation).filter_by(ticket_id="T-9").one().customer_id == merged.id
        assert db.query(SalesRecord).filter_by(customer_id=merged.id).count() == 2
        attributes = {attribute.key: attribute.value for attribute in merged.attributes}
        assert attributes == {"city": "CDMX", "vip_note": "llamar"}

    def test_merge_unknown_customer(self, db):
        customer = add_customer(db, name="Ana")
        db.commit()
        other = add_customer(db, name="Otra")
        other_id = other.id
        db.delete(other)
        db.commit()

        with pytest.raises(NotFoundError):
            IdentityResolver(db).merge_customers(customer.id, other_id)

    def test_merge_into_itself_rejected(self, db):
        customer = add_customer(db, name="Ana")
        with pytest.raises(ValueError):
            IdentityResolver(db).merge_customers(customer.id, customer.id)


class TestOrdersAndSegments:
    def test_derive_segment(self):
        assert derive_segment(0, 0) == "new"
        assert derive_segment(2, 500) == "regular"
        assert derive_segment(3, 12000) == "loyal"
        assert derive_segment(1, 60000) == "vip"

    def test_best_segment(self):
        assert best_segment("vip", "regular") == "vip"
        assert best_segment(None, "loyal") == "loyal"

    def test_record_order_updates_aggregates(self, db):
        customer = add_customer(db, name="Ana")
        record_order(db, customer, "W-1", "1500.50")
        record_order(db, customer, "W-2", 700)

        assert customer.order_count == 2
        assert Decimal(str(customer.lifetime_spend)) == Decimal("2200.50")
        assert customer.segment == "regular"
        assert customer.last_order_at is not None

    def test_record_order_update_adjusts_spend_without_counting_twice(self, db):
        customer = add_customer(db, name="Ana")
        record_order(db, customer, "W-1", 1000, status="pending")
        record = record_order(db, customer, "W-1", 1200, status="completed")

        assert customer.order_count == 1
        assert Decimal(str(customer.lifetime_spend)) == Decimal("1200")
        assert record.status == "completed"

    def test_segment_never_downgrades(self, db):
        customer = add_customer(db, name="Ana")
        customer.segment = "vip"
        record_order(db, customer, "W-1", 100)
        assert customer.segment == "vip"

    def test_apply_attributes_counts_changes(self, db):
        customer = add_customer(db, name="Ana")
        assert apply_attributes(db, customer, {"city": "CDMX", "plan": "pro"}) == 2
        assert apply_attributes(db, customer, {"city": "CDMX", "plan": "basic"}) == 1
        assert apply_attributes(db, customer, {}) == 0
