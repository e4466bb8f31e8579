from typing import Any, Optional

from agentcore.services.gateway import GatewayClient, RequestSpec

API_PREFIX = "/wp-json/wc/v3"


class CommerceClient:
    """Store REST API (WooCommerce v3 shape): products, orders and coupons."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    def search_products(self, query: str, per_page: int = 5) -> list[dict]:
        result = self.gateway.call(
            RequestSpec(
                "GET",
                f"{API_PREFIX}/products",
                operation="search_products",
                params={"search": query, "per_page": per_page, "status": "publish"},
            )
        )
        return result if isinstance(result, list) else []

    def get_product_by_sku(self, sku: str) -> Optional[dict]:
        result = self.gateway.call(
            RequestSpec("GET", f"{API_PREFIX}/products", operation="product_by_sku", params={"sku": sku})
        )
        if isinstance(result, list) and result:
            return result[0]
        return None

    def create_order(self, order: dict) -> dict:
        # 4xx here means the store rejected the order; retrying will not help
        return self.gateway.call(
            RequestSpec("POST", f"{API_PREFIX}/orders", operation="create_order", json=order, retry_client_errors=False)
        )

    def create_coupon(
        self,
        code: str,
        percent: float,
        expires_at: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Any:
        payload = {
            "code": code,
            "discount_type": "percent",
            "amount": f"{percent:g}",
            "usage_limit": 1,
            "individual_use": True,
        }
        if expires_at:
            payload["date_expires"] = expires_at
        if email:
            payload["email_restrictions"] = [email]
        return self.gateway.call(
            RequestSpec("POST", f"{API_PREFIX}/coupons", operation="create_coupon", json=payload, retry_client_errors=False)
        )
