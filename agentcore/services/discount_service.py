import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from agentcore.database import utcnow
from agentcore.logging_config import get_logger

logger = get_logger("discount_service")


@dataclass
class IssuedDiscount:
    code: str
    percentage: float
    discount_type: str
    valid_until: datetime
    registered: bool  # accepted by the store

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "type": self.discount_type,
            "value": self.percentage,
            "valid_until": self.valid_until.isoformat(),
            "registered": self.registered,
        }


class DiscountIssuer:
    """Mints time-boxed discount codes, registering them with the store when one is configured."""

    def __init__(self, commerce=None, prefix: str = "AUTO"):
        self.commerce = commerce
        self.prefix = prefix

    def new_code(self) -> str:
        return f"{self.prefix}{secrets.token_hex(4).upper()}"

    def issue(
        self,
        percentage: float,
        valid_hours: float,
        *,
        discount_type: str = "percentage",
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssuedDiscount:
        """Raises on store failure; callers decide whether that is fatal."""
        valid_until = (now or utcnow()) + timedelta(hours=valid_hours)
        code = self.new_code()
        registered = False
        if self.commerce is not None:
            self.commerce.create_coupon(code, percentage, expires_at=valid_until.isoformat(), email=email)
            registered = True
        logger.info(
            "Discount issued",
            extra={"context": {"code": code, "percentage": percentage, "registered": registered}},
        )
        return IssuedDiscount(code, percentage, discount_type, valid_until, registered)
