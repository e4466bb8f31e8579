import json

import pytest

from agentcore.errors import SignatureError, ValidationError
from agentcore.services.webhook_service import compute_signature, is_supported, parse_payload, verify_signature

SECRET = "shared-secret"
BODY = b'{"action": "ticket.message"}'


class TestVerifySignature:
    def test_valid_signature_with_prefix(self):
        verify_signature(BODY, "sha256=" + compute_signature(BODY, SECRET), SECRET)

    def test_valid_signature_without_prefix(self):
        verify_signature(BODY, compute_signature(BODY, SECRET), SECRET)

    def test_uppercase_hex_accepted(self):
        verify_signature(BODY, compute_signature(BODY, SECRET).upper(), SECRET)

    def test_tampered_body_rejected(self):
        signature = compute_signature(BODY, SECRET)
        with pytest.raises(SignatureError):
            verify_signature(BODY + b" ", signature, SECRET)

    def test_missing_signature_rejected(self):
        with pytest.raises(SignatureError):
            verify_signature(BODY, None, SECRET)

    def test_no_secret_rejects_by_default(self):
        with pytest.raises(SignatureError):
            verify_signature(BODY, None, None)

    def test_no_secret_accepts_when_unsigned_allowed(self):
        verify_signature(BODY, None, "", allow_unsigned=True)


class TestParsePayload:
    def test_aliases_and_normalized_action(self):
        payload = parse_payload(
            json.dumps(
                {
                    "action": "Message_Received",
                    "ticket": {"id": 42},
                    "customer": {"id": 7, "whatsapp_number": "5512345678"},
                    "message": {"text": "hola"},
                    "channel": {"platform": "whatsapp"},
                }
            ).encode()
        )

        assert payload.normalized_action == "message.received"
        assert payload.ticket.id == "42"
        assert payload.customer.id == "7"
        assert payload.customer.phone == "5512345678"
        assert payload.text == "hola"
        assert payload.channel.type == "whatsapp"

    def test_text_falls_back_to_conversation_text(self):
        payload = parse_payload(
            json.dumps({"action": "ticket.created", "ticket": {"id": "T-1", "conversation_text": "necesito ayuda"}}).encode()
        )
        assert payload.text == "necesito ayuda"

    def test_unknown_fields_are_kept(self):
        payload = parse_payload(json.dumps({"action": "ticket.created", "ticket": {"id": "T-1", "tags": ["vip"]}}).encode())
        assert payload.ticket.model_extra["tags"] == ["vip"]

    @pytest.mark.parametrize("body", [b"", b"{oops", b"[1, 2]", b'{"ticket": {"id": "T-1"}}'])
    def test_malformed_bodies(self, body):
        with pytest.raises(ValidationError):
            parse_payload(body)

    def test_ticket_action_requires_ticket_id(self):
        with pytest.raises(ValidationError):
            parse_payload(json.dumps({"action": "ticket.resolved", "ticket": {}}).encode())

    def test_order_action_requires_order_id(self):
        with pytest.raises(ValidationError):
            parse_payload(json.dumps({"action": "order.created", "order": {"total": "10"}}).encode())

    def test_supported_actions(self):
        assert is_supported(parse_payload(b'{"action": "customer_updated"}'))
        assert not is_supported(parse_payload(b'{"action": "survey.completed"}'))
