import asyncio
from concurrent.futures import ThreadPoolExecutor, wait
from decimal import Decimal
from types import SimpleNamespace

from agentcore.models import Conversation, Customer, CustomerAttribute, Escalation, SalesRecord
from agentcore.schemas.webhook import WebhookPayload
from agentcore.services.event_handlers import WEBHOOK_JOB, WebhookEventHandler, register_handlers
from agentcore.services.work_queue import DelayedWorkQueue
from fakes import make_orchestrator


def handler_for(session_factory, chat=None):
    return WebhookEventHandler(session_factory, make_orchestrator(session_factory, chat=chat))


def payload(action, **fields):
    return WebhookPayload.model_validate({"action": action, **fields})


CUSTOMER = {"id": "alice-77", "name": "Ana López", "whatsapp_number": "5512345678"}


class TestTicketEvents:
    def test_message_event_runs_pipeline(self, session_factory, fake_chat):
        result = handler_for(session_factory, fake_chat).handle(
            payload("ticket_message", ticket={"id": 501}, customer=CUSTOMER, message={"content": "hola", "id": "m-1"})
        )

        assert result["status"] == "handled"
        assert result["result"]["outcome"] == "delivered"
        assert fake_chat.sent[0][1] == "+525512345678"

    def test_message_without_text_ignored(self, session_factory, fake_chat):
        result = handler_for(session_factory, fake_chat).handle(
            payload("message.received", ticket={"id": "501"}, customer=CUSTOMER, message={"type": "image"})
        )
        assert result["result"]["processed"] is False
        assert fake_chat.sent == []

    def test_ticket_created_without_text_opens_conversation(self, session_factory):
        result = handler_for(session_factory).handle(
            payload("ticket.created", ticket={"id": "T-9", "subject": "Pedido", "priority": "high"}, customer=CUSTOMER)
        )

        assert result["result"]["created"] is True
        with session_factory() as db:
            conversation = db.query(Conversation).filter_by(ticket_id="T-9").one()
            assert conversation.priority == "high"
            assert conversation.customer.external_id == "alice-77"

    def test_ticket_created_with_text_replies(self, session_factory, fake_chat):
        handler_for(session_factory, fake_chat).handle(
            payload("ticket.created", ticket={"id": "T-9", "conversation_text": "busco tiras"}, customer=CUSTOMER)
        )
        assert len(fake_chat.sent) == 1

    def test_resolved_and_escalated(self, session_factory, fake_chat):
        handler = handler_for(session_factory, fake_chat)
        handler.handle(payload("ticket.message", ticket={"id": "T-3"}, customer=CUSTOMER, message={"content": "hola"}))

        escalated = handler.handle(
            payload("ticket.escalated", ticket={"id": "T-3"}, customer=CUSTOMER, agent={"id": 8, "name": "Luis"})
        )
        assert escalated["result"]["status"] == "escalated"
        assert escalated["result"]["assigned_to"] == "Luis"

        resolved = handler.handle(payload("ticket.resolved", ticket={"id": "T-3"}))
        assert resolved["result"]["changed"] is True
        again = handler.handle(payload("ticket.resolved", ticket={"id": "T-3"}))
        assert again["result"]["changed"] is False

        with session_factory() as db:
            escalation = db.query(Escalation).one()
            assert escalation.type == "manual"
            assert escalation.status == "resolved"
            assert db.query(Conversation).filter_by(ticket_id="T-3").one().human_took_over is False

    def test_unknown_ticket_resolution_skipped(self, session_factory):
        result = handler_for(session_factory).handle(payload("ticket.resolved", ticket={"id": "missing"}))
        assert result["status"] == "skipped"

    def test_ticket_updated_closes_conversation(self, session_factory):
        handler = handler_for(session_factory)
        handler.handle(payload("ticket.created", ticket={"id": "T-4"}, customer=CUSTOMER))

        result = handler.handle(payload("ticket.updated", ticket={"id": "T-4", "status": "closed", "priority": "low"}))

        assert result["result"]["status"] == "resolved"
        assert result["result"]["priority"] == "low"

    def test_unhandled_action(self, session_factory):
        assert handler_for(session_factory).handle(payload("survey.completed"))["status"] == "ignored"


class TestTicketSerialization:
    def _blocked_until_released(self, handler, ticket_id, event_payload):
        with ThreadPoolExecutor(max_workers=1) as pool:
            with handler.orchestrator.locks.hold(ticket_id):
                future = pool.submit(handler.handle, event_payload)
                _, pending = wait([future], timeout=0.3)
                assert future in pending
            return future.result(timeout=5)

    def test_ticket_updated_waits_for_ticket_lock(self, session_factory):
        handler = handler_for(session_factory)
        handler.handle(payload("ticket.created", ticket={"id": "T-4"}, customer=CUSTOMER))

        result = self._blocked_until_released(
            handler, "T-4", payload("ticket.updated", ticket={"id": "T-4", "status": "closed"})
        )

        assert result["result"]["status"] == "resolved"

    def test_ticket_created_waits_for_ticket_lock(self, session_factory):
        handler = handler_for(session_factory)

        result = self._blocked_until_released(
            handler, "T-8", payload("ticket.created", ticket={"id": "T-8"}, customer=CUSTOMER)
        )

        assert result["result"]["created"] is True

    def test_customer_event_with_ticket_waits_for_ticket_lock(self, session_factory):
        handler = handler_for(session_factory)

        result = self._blocked_until_released(
            handler, "T-6", payload("customer.updated", ticket={"id": "T-6"}, customer=CUSTOMER)
        )

        assert result["status"] == "handled"

    def test_other_tickets_are_not_blocked(self, session_factory):
        handler = handler_for(session_factory)
        handler.handle(payload("ticket.created", ticket={"id": "T-4"}, customer=CUSTOMER))

        with handler.orchestrator.locks.hold("T-other"):
            result = handler.handle(payload("ticket.updated", ticket={"id": "T-4", "priority": "high"}))

        assert result["result"]["priority"] == "high"


class TestCustomerAndOrderEvents:
    def test_customer_updated_upserts_identity_and_attributes(self, session_factory):
        handler = handler_for(session_factory)
        handler.handle(payload("customer.created", customer=CUSTOMER))
        result = handler.handle(
            payload(
                "customer_updated",
                customer={**CUSTOMER, "email": "Ana@Example.com", "attributes": {"city": "CDMX"}},
                attributes={"plan": "pro"},
            )
        )

        assert result["result"]["match_method"] == "external_id"
        assert result["result"]["attributes_written"] == 2
        with session_factory() as db:
            customer = db.query(Customer).one()
            assert customer.email == "ana@example.com"
            assert customer.phone == "+525512345678"
            assert {a.key: a.value for a in db.query(CustomerAttribute)} == {"city": "CDMX", "plan": "pro"}

    def test_attributes_updated(self, session_factory):
        result = handler_for(session_factory).handle(
            payload("attributes.updated", customer=CUSTOMER, attributes={"tier": "gold"})
        )
        assert result["result"]["attributes_written"] == 1

    def test_order_created_and_updated(self, session_factory):
        handler = handler_for(session_factory)
        order = {"id": 9001, "total": "1200.00", "currency": "MXN", "status": "processing",
                 "line_items": [{"sku": "GLU-100", "quantity": 2}], "date_created": "2026-03-01T10:00:00"}
        handler.handle(payload("order.created", customer=CUSTOMER, order=order))
        result = handler.handle(payload("order.updated", customer=CUSTOMER, order={**order, "status": "completed"}))

        assert result["result"]["order_id"] == "9001"
        with session_factory() as db:
            record = db.query(SalesRecord).one()
            assert record.status == "completed"
            assert record.items == [{"sku": "GLU-100", "quantity": 2}]
            customer = db.query(Customer).one()
            assert customer.order_count == 1
            assert Decimal(str(customer.lifetime_spend)) == Decimal("1200.00")

    def test_order_without_customer_skipped(self, session_factory):
        result = handler_for(session_factory).handle(payload("order.created", order={"id": 1, "total": 5}))
        assert result["status"] == "skipped"


class TestQueueIntegration:
    def test_registered_handlers_process_jobs(self, session_factory, fake_chat):
        queue = DelayedWorkQueue()
        events = handler_for(session_factory, fake_chat)
        register_handlers(queue, events)
        body = payload("ticket.message", ticket={"id": "T-7"}, customer=CUSTOMER, message={"content": "hola"})
        queue.enqueue(WEBHOOK_JOB, body.model_dump(mode="json"))

        asyncio.run(queue.run_pending())

        assert queue.stats()["succeeded"] == 1
        assert len(fake_chat.sent) == 1

    def test_follow_up_job(self, session_factory, fake_chat):
        queue = DelayedWorkQueue()
        events = handler_for(session_factory, fake_chat)
        register_handlers(queue, events)
        events.handle(payload("ticket.message", ticket={"id": "T-8"}, customer=CUSTOMER, message={"content": "hola"}))

        queue.enqueue("follow_up", {"ticket_id": "T-8", "message": "¿Te ayudo con algo más?"})
        asyncio.run(queue.run_pending())

        assert fake_chat.sent[-1][2] == "¿Te ayudo con algo más?"

    def test_callable_accepts_job(self, session_factory):
        events = handler_for(session_factory)
        job = SimpleNamespace(payload={"action": "survey.completed"})
        assert events(job)["status"] == "ignored"
