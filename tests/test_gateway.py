import httpx
import pytest

from agentcore.errors import GatewayError, TransportError
from agentcore.services.gateway import GatewayClient, RequestSpec


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_gateway(handler, clock=None, **kwargs):
    clock = clock or FakeClock()
    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        clock.sleep(seconds)

    gateway = GatewayClient(
        "https://provider.test",
        name="test",
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        clock=clock,
        **kwargs,
    )
    return gateway, sleeps


class TestGatewayRetries:
    def test_success_returns_parsed_json(self):
        gateway, sleeps = make_gateway(lambda request: httpx.Response(200, json={"ok": True}))
        assert gateway.call(RequestSpec("GET", "/ping")) == {"ok": True}
        assert sleeps == []

    def test_retries_with_exponential_backoff_then_gives_up(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        records = []
        gateway, sleeps = make_gateway(handler, on_attempt=records.append)
        with pytest.raises(GatewayError) as exc_info:
            gateway.call(RequestSpec("POST", "/messages/text", operation="send_text", json={"x": 1}))

        assert len(calls) == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert exc_info.value.attempts == 4
        assert exc_info.value.operation == "send_text"
        assert isinstance(exc_info.value.last_cause, TransportError)
        assert exc_info.value.last_cause.status_code == 503
        assert [record.attempt for record in records] == [1, 2, 3, 4]
        assert not any(record.ok for record in records)

    def test_recovers_after_transient_failures(self):
        responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(200, json={"id": 7})])
        gateway, sleeps = make_gateway(lambda request: next(responses))

        assert gateway.call(RequestSpec("GET", "/orders/7")) == {"id": 7}
        assert sleeps == [1.0, 2.0]

    def test_network_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={})

        gateway, sleeps = make_gateway(handler)
        assert gateway.call(RequestSpec("GET", "/")) == {}
        assert len(attempts) == 2

    def test_client_error_not_retried_when_disabled(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"code": "invalid_product"})

        gateway, sleeps = make_gateway(handler)
        with pytest.raises(GatewayError) as exc_info:
            gateway.call(RequestSpec("POST", "/orders", retry_client_errors=False))

        assert len(calls) == 1
        assert sleeps == []
        assert exc_info.value.last_cause.is_client_error

    def test_deadline_stops_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        gateway, sleeps = make_gateway(handler)
        with pytest.raises(GatewayError) as exc_info:
            gateway.call(RequestSpec("POST", "/chat/completions", deadline_seconds=2.5))

        # 1s + 2s of backoff would overrun the 2.5s budget
        assert len(calls) == 2
        assert sleeps == [1.0]
        assert exc_info.value.attempts == 2


class TestGatewayBodies:
    def test_empty_body_is_empty_dict(self):
        gateway, _ = make_gateway(lambda request: httpx.Response(204))
        assert gateway.call(RequestSpec("DELETE", "/x")) == {}

    def test_non_json_body_returned_as_text(self):
        gateway, _ = make_gateway(lambda request: httpx.Response(200, text="pong"))
        assert gateway.call(RequestSpec("GET", "/ping")) == "pong"

    def test_backoff_delay(self):
        gateway, _ = make_gateway(lambda request: httpx.Response(200), base_delay=0.5)
        assert [gateway.backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            GatewayClient("https://provider.test", max_attempts=0)
