"""Error taxonomy shared by the gateway, orchestrator and HTTP boundary."""

from typing import Optional


class AgentCoreError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(AgentCoreError):
    """One failed attempt against an external service (network or non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class GatewayError(AgentCoreError):
    """All attempts of a gateway call failed."""

    def __init__(self, operation: str, attempts: int, last_cause: Optional[BaseException]):
        self.operation = operation
        self.attempts = attempts
        self.last_cause = last_cause
        super().__init__(f"{operation} failed after {attempts} attempts: {last_cause}")


class ValidationError(AgentCoreError):
    """Malformed inbound payload. Rejected at the boundary, never retried."""


class NotFoundError(AgentCoreError):
    """A referenced conversation, customer or rule does not exist."""


class ModelError(AgentCoreError):
    """Language model call failed or returned something unusable."""


class ActionExecutionError(AgentCoreError):
    """A side effect (order, coupon, follow-up) could not be carried out."""

    def __init__(self, action: str, message: str):
        self.action = action
        super().__init__(f"{action}: {message}")


class SignatureError(AgentCoreError):
    """Inbound webhook signature is missing or does not match."""
