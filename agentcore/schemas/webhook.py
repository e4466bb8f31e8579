from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

KNOWN_ACTIONS = {
    "ticket.created",
    "ticket.message",
    "message.received",
    "ticket.updated",
    "ticket.resolved",
    "ticket.escalated",
    "customer.created",
    "customer.updated",
    "attributes.updated",
    "order.created",
    "order.updated",
}


def _id_to_str(value):
    if value is None or isinstance(value, str):
        return value
    return str(value)


class _ProviderObject(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return _id_to_str(value)


class WebhookCustomer(_ProviderObject):
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone", "whatsapp_number", "phoneNumber"))
    name: Optional[str] = None
    attributes: Optional[dict[str, Any]] = None


class WebhookTicket(_ProviderObject):
    conversation_text: Optional[str] = None
    subject: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    channel: Optional[str] = None
    channel_id: Optional[str] = None

    @field_validator("channel_id", mode="before")
    @classmethod
    def _coerce_channel_id(cls, value):
        return _id_to_str(value)


class WebhookMessage(_ProviderObject):
    content: Optional[str] = Field(default=None, validation_alias=AliasChoices("content", "text", "body"))
    type: Optional[str] = "text"


class WebhookChannel(_ProviderObject):
    type: Optional[str] = Field(default=None, validation_alias=AliasChoices("type", "platform"))


class WebhookAgent(_ProviderObject):
    name: Optional[str] = None
    email: Optional[str] = None


class WebhookOrder(_ProviderObject):
    number: Optional[str] = None
    total: Union[float, str, None] = 0
    currency: Optional[str] = "MXN"
    status: Optional[str] = None
    items: list[dict[str, Any]] = Field(default_factory=list, validation_alias=AliasChoices("items", "line_items"))
    created_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_at", "date_created"))

    @field_validator("number", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        return _id_to_str(value)


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1)
    ticket: Optional[WebhookTicket] = None
    customer: Optional[WebhookCustomer] = None
    message: Optional[WebhookMessage] = None
    channel: Optional[WebhookChannel] = None
    agent: Optional[WebhookAgent] = None
    order: Optional[WebhookOrder] = None
    attributes: Optional[dict[str, Any]] = None

    @property
    def normalized_action(self) -> str:
        return self.action.strip().lower().replace("_", ".")

    @property
    def text(self) -> Optional[str]:
        if self.message and self.message.content:
            return self.message.content
        if self.ticket and self.ticket.conversation_text:
            return self.ticket.conversation_text
        return None


class WebhookAck(BaseModel):
    received: bool
    processed: bool
    job_id: Optional[str] = None
    detail: Optional[str] = None
