"""
PayPal REST lookups used to confirm an order id before it is accepted as payment proof.
"""
from typing import Optional

import httpx

from core.config import PayPalConfig, logger

ACCEPTED_ORDER_STATUSES = ("COMPLETED", "APPROVED")


class PayPalClient:
    def __init__(self, config: PayPalConfig, timeout: float = 15.0):
        self.config = config
        self.timeout = timeout

    def _access_token(self, client: httpx.Client) -> str:
        resp = client.post(
            f"{self.config.api_base}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.config.client_id, self.config.client_secret),
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        return resp.json().get("access_token") or ""

    def get_order_status(self, order_id: str) -> Optional[str]:
        """Return the order's status string, or None when it cannot be looked up."""
        if not self.config.configured or not order_id:
            return None
        try:
            with httpx.Client(timeout=self.timeout) as client:
                token = self._access_token(client)
                resp = client.get(
                    f"{self.config.api_base}/v2/checkout/orders/{order_id}",
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                )
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return (resp.json().get("status") or "").upper() or None
        except httpx.HTTPError as ex:
            logger.warning(f"[paypal.order] lookup failed order={order_id}: {ex}")
            return None

    def order_is_paid(self, order_id: str) -> bool:
        return self.get_order_status(order_id) in ACCEPTED_ORDER_STATUSES
