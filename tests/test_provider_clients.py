import json

import httpx
import pytest

from agentcore.errors import GatewayError
from agentcore.services.chat_provider import ChatProviderClient
from agentcore.services.commerce_client import CommerceClient
from agentcore.services.gateway import GatewayClient


def recording_gateway(responder):
    requests = []

    def handler(request):
        requests.append(request)
        return responder(request)

    gateway = GatewayClient(
        "https://provider.test",
        transport=httpx.MockTransport(handler),
        sleep=lambda seconds: None,
    )
    return gateway, requests


class TestChatProviderClient:
    def test_send_text_normalizes_recipient(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(200, json={"id": "m-1"}))
        client = ChatProviderClient(gateway)

        assert client.send_text("ch-1", "55 1234 5678", "hola") == {"id": "m-1"}

        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/messages/text"
        assert body == {"channel_id": "ch-1", "to": "+525512345678", "message": "hola"}

    def test_send_to_empty_recipient_fails_before_network(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(200))
        with pytest.raises(ValueError):
            ChatProviderClient(gateway).send_text("ch-1", "  ", "hola")
        assert requests == []

    def test_template_includes_attachment(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(200, json={}))
        ChatProviderClient(gateway).send_template(
            "ch-1", "+525512345678", "order_ready", {"name": "Ana"}, attachment_url="https://cdn.test/a.pdf"
        )

        body = json.loads(requests[0].content)
        assert body["template_name"] == "order_ready"
        assert body["variables"] == {"name": "Ana"}
        assert body["attachment_url"] == "https://cdn.test/a.pdf"

    def test_conversation_control_calls(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(200, json={}))
        client = ChatProviderClient(gateway)

        client.take_control("T-1", "a-1")
        client.release_control("T-1")
        client.close_conversation("T-1", "done")

        assert [json.loads(request.content)["action"] for request in requests] == [
            "take_control",
            "release_control",
            "close",
        ]
        assert requests[2].url.path == "/conversations/T-1/status"

    def test_templates_and_message_metrics(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(200, json=[]))
        client = ChatProviderClient(gateway)

        client.list_templates("ch-1")
        client.get_message_metrics("2026-10-01", "2026-10-07")
        client.get_message_metrics()

        assert requests[0].url.path == "/templates"
        assert requests[0].url.params["channel_id"] == "ch-1"
        assert requests[1].url.path == "/analytics/messages"
        assert dict(requests[1].url.params) == {"start_date": "2026-10-01", "end_date": "2026-10-07"}
        assert dict(requests[2].url.params) == {}

    def test_validate_connection_reports_failure(self):
        gateway, _ = recording_gateway(lambda request: httpx.Response(500))
        assert ChatProviderClient(gateway).validate_connection() is False


class TestCommerceClient:
    def test_product_by_sku(self):
        gateway, requests = recording_gateway(
            lambda request: httpx.Response(200, json=[{"id": 11, "sku": "GLU-100"}])
        )
        assert CommerceClient(gateway).get_product_by_sku("GLU-100")["id"] == 11
        assert requests[0].url.params["sku"] == "GLU-100"

    def test_unknown_sku_is_none(self):
        gateway, _ = recording_gateway(lambda request: httpx.Response(200, json=[]))
        assert CommerceClient(gateway).get_product_by_sku("NOPE") is None

    def test_rejected_order_is_not_retried(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(400, json={"code": "invalid"}))
        with pytest.raises(GatewayError):
            CommerceClient(gateway).create_order({"line_items": []})
        assert len(requests) == 1

    def test_coupon_payload(self):
        gateway, requests = recording_gateway(lambda request: httpx.Response(201, json={"id": 5}))
        CommerceClient(gateway).create_coupon("VIP15", 15.0, expires_at="2026-01-01T00:00:00", email="a@b.mx")

        body = json.loads(requests[0].content)
        assert body["amount"] == "15"
        assert body["email_restrictions"] == ["a@b.mx"]
        assert requests[0].url.path == "/wp-json/wc/v3/coupons"
