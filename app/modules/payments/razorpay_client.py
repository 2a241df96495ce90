import logging
from typing import Any, Dict, Optional

import razorpay
from razorpay.errors import SignatureVerificationError

logger = logging.getLogger(__name__)


class RazorpayError(Exception):
    pass


def to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


class RazorpayClient:
    """Orders API and checkout signature checks through the Razorpay SDK"""

    def __init__(self, key_id: str, key_secret: str, sdk: Optional[razorpay.Client] = None):
        self.key_id = key_id
        self.sdk = sdk or razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: float, receipt: str, notes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.sdk.order.create(data={
                "amount": to_paise(amount),
                "currency": "INR",
                "receipt": receipt,
                "notes": notes
            })
        except Exception as e:
            logger.error(f"Razorpay rejected order {receipt}: {e}")
            raise RazorpayError(str(e))

    def fetch_order(self, razorpay_order_id: str) -> Dict[str, Any]:
        try:
            return self.sdk.order.fetch(razorpay_order_id)
        except Exception as e:
            logger.error(f"Razorpay order {razorpay_order_id} lookup failed: {e}")
            raise RazorpayError(str(e))

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """HMAC-SHA256 of order_id|payment_id with the key secret"""
        try:
            self.sdk.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature or ""
            })
        except SignatureVerificationError:
            return False
        return True
