"""
Razorpay adapter: order creation and checkout signature verification.
"""
import hashlib
import hmac
import time
from typing import Any, Dict, Optional

import razorpay

from core.config import RazorpayConfig, logger

# Minor units per major unit; anything not listed uses 100
CURRENCY_SUBUNITS = {"USD": 100, "INR": 100, "JPY": 1}


def to_subunits(amount: float, currency: str = "USD") -> int:
    factor = CURRENCY_SUBUNITS.get((currency or "USD").upper(), 100)
    return int(round(float(amount) * factor))


class RazorpayGateway:
    def __init__(self, config: RazorpayConfig):
        self.config = config
        self._client = None

    @property
    def client(self) -> "razorpay.Client":
        if self._client is None:
            self._client = razorpay.Client(auth=(self.config.key_id, self.config.key_secret))
        return self._client

    def create_order(self, amount: float, currency: str = "USD", notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        order_data = {
            "amount": to_subunits(amount, currency),
            "currency": currency,
            "receipt": f"booking_{int(time.time() * 1000)}",
            "notes": notes or {},
        }
        if self.config.checkout_config_id:
            order_data["checkout_config_id"] = self.config.checkout_config_id

        order = self.client.order.create(data=order_data)
        logger.info(f"[razorpay.create_order] order={order['id']} amount={order['amount']} {order['currency']}")
        return {
            "orderId": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "key": self.config.key_id,
        }

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        payload = f"{order_id}|{payment_id}"
        return hmac.new(
            self.config.key_secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (self.config.key_secret and order_id and payment_id and signature):
            return False
        valid = hmac.compare_digest(self.expected_signature(order_id, payment_id), signature)
        if not valid:
            logger.warning(f"[razorpay.verify] signature mismatch order={order_id} payment={payment_id}")
        return valid
