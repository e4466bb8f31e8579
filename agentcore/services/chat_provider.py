from typing import Any, Optional

from agentcore.logging_config import get_logger
from agentcore.services.gateway import GatewayClient, RequestSpec
from agentcore.services.normalization import DEFAULT_COUNTRY_CODE, normalize_phone

logger = get_logger("chat_provider")


class ChatProviderClient:
    """Messaging/ticketing provider API. All calls share the gateway retry policy."""

    def __init__(self, gateway: GatewayClient, country_code: str = DEFAULT_COUNTRY_CODE):
        self.gateway = gateway
        self.country_code = country_code

    def _recipient(self, to: str) -> str:
        normalized = normalize_phone(to, self.country_code)
        if normalized is None:
            raise ValueError(f"Cannot send to empty recipient: {to!r}")
        return normalized

    def send_text(self, channel_id: Optional[str], to: str, message: str) -> Any:
        payload = {"channel_id": channel_id, "to": self._recipient(to), "message": message}
        return self.gateway.call(
            RequestSpec("POST", "/messages/text", operation="send_text", json=payload)
        )

    def send_template(
        self,
        channel_id: Optional[str],
        to: str,
        template_name: str,
        variables: Optional[dict] = None,
        attachment_url: Optional[str] = None,
    ) -> Any:
        payload = {
            "channel_id": channel_id,
            "to": self._recipient(to),
            "template_name": template_name,
            "variables": variables or {},
        }
        if attachment_url:
            payload["attachment_url"] = attachment_url
        return self.gateway.call(
            RequestSpec("POST", "/messages/template", operation=f"send_template:{template_name}", json=payload)
        )

    def take_control(self, conversation_id: str, agent_id: str) -> Any:
        return self.gateway.call(
            RequestSpec(
                "POST",
                f"/conversations/{conversation_id}/control",
                operation="take_control",
                json={"agent_id": agent_id, "action": "take_control"},
            )
        )

    def release_control(self, conversation_id: str) -> Any:
        return self.gateway.call(
            RequestSpec(
                "POST",
                f"/conversations/{conversation_id}/control",
                operation="release_control",
                json={"action": "release_control"},
            )
        )

    def close_conversation(self, conversation_id: str, reason: Optional[str] = None) -> Any:
        payload = {"action": "close"}
        if reason:
            payload["reason"] = reason
        return self.gateway.call(
            RequestSpec("POST", f"/conversations/{conversation_id}/status", operation="close_conversation", json=payload)
        )

    def list_channels(self) -> Any:
        return self.gateway.call(RequestSpec("GET", "/channels", operation="list_channels"))

    def list_templates(self, channel_id: Optional[str] = None) -> Any:
        params = {"channel_id": channel_id} if channel_id else None
        return self.gateway.call(RequestSpec("GET", "/templates", operation="list_templates", params=params))

    def get_message_metrics(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> Any:
        params = {}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        return self.gateway.call(
            RequestSpec("GET", "/analytics/messages", operation="message_metrics", params=params or None)
        )

    def validate_connection(self) -> bool:
        try:
            self.list_channels()
        except Exception as exc:
            logger.warning(f"Chat provider connection check failed: {exc}")
            return False
        return True
