"""
Paytm gateway client.

Requests are signed with a salted HMAC-SHA256 over the JSON body using the
merchant key and sent as X-CHECKSUM. Callbacks carry the same kind of
checksum in CHECKSUMHASH.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from typing import Any, Dict, Optional

import httpx

from app.core.http import http_client

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://securegw.paytm.in"
STAGING_URL = "https://securegw-stage.paytm.in"
SALT_LENGTH = 8


class PaytmError(Exception):
    def __init__(self, message: str, body: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.body = body


def canonical_payload(params: Dict[str, Any]) -> str:
    return json.dumps(params, sort_keys=True, separators=(",", ":"))


def generate_checksum(params: Dict[str, Any], merchant_key: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(SALT_LENGTH // 2)
    digest = hmac.new(
        merchant_key.encode(),
        (salt + canonical_payload(params)).encode(),
        hashlib.sha256
    ).hexdigest()
    return base64.b64encode((salt + digest).encode()).decode()


def verify_checksum(params: Dict[str, Any], checksum: Optional[str], merchant_key: str) -> bool:
    if not checksum:
        return False
    try:
        decoded = base64.b64decode(checksum, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        return False
    if len(decoded) <= SALT_LENGTH:
        return False
    expected = generate_checksum(params, merchant_key, salt=decoded[:SALT_LENGTH])
    return hmac.compare_digest(expected, checksum)


def transaction_status(paytm_status: Optional[str]) -> str:
    if paytm_status == "TXN_SUCCESS":
        return "success"
    if paytm_status == "TXN_FAILURE":
        return "failed"
    return "pending"


class PaytmClient:
    def __init__(self, config: Dict[str, Any], http_client: Optional[httpx.Client] = None):
        self.merchant_id = config.get("merchantId")
        self.merchant_key = config.get("merchantKey")
        self.website_name = config.get("websiteName")
        self.environment = config.get("environment") or "staging"
        self.base_url = PRODUCTION_URL if self.environment == "production" else STAGING_URL
        self._http = http_client

    @property
    def is_complete(self) -> bool:
        return bool(self.merchant_id and self.merchant_key and self.website_name)

    def get_payment_url(self) -> str:
        return f"{self.base_url}/theia/api/v1/showPaymentPage"

    def _post(self, path: str, body: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-MID": self.merchant_id,
            "X-CHECKSUM": generate_checksum(body, self.merchant_key),
        }
        try:
            with http_client(self._http) as client:
                response = client.post(f"{self.base_url}{path}", params=params, json=body, headers=headers)
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Paytm request to {path} failed: {e}")
            raise PaytmError(f"Paytm request failed: {e}")

    def initiate_transaction(
        self,
        order_id: str,
        amount: str,
        customer_id: str,
        customer_phone: str,
        callback_url: str,
        customer_email: Optional[str] = None
    ) -> Dict[str, Any]:
        """Returns the transaction token. Raises PaytmError when Paytm does not answer with status S."""
        body = {
            "requestType": "Payment",
            "mid": self.merchant_id,
            "websiteName": self.website_name,
            "orderId": order_id,
            "callbackUrl": callback_url,
            "txnAmount": {"value": amount, "currency": "INR"},
            "userInfo": {"custId": customer_id, "email": customer_email or "", "mobile": customer_phone},
        }
        data = self._post(
            "/theia/api/v1/initiateTransaction", body,
            params={"mid": self.merchant_id, "orderId": order_id}
        )
        result = (data.get("body") or {}).get("resultInfo") or {}
        if result.get("resultStatus") != "S":
            message = result.get("resultMsg") or "Transaction initiation failed"
            logger.error(f"Paytm initiation for {order_id} failed: {message}")
            raise PaytmError(message, body=data)

        logger.info(f"Paytm transaction {order_id} initiated")
        return {"txn_token": data["body"].get("txnToken"), "order_id": order_id,
                "mid": self.merchant_id, "body": data["body"]}

    def get_transaction_status(self, order_id: str) -> Dict[str, Any]:
        data = self._post("/v3/order/status", {"mid": self.merchant_id, "orderId": order_id})
        logger.info(f"Paytm status for {order_id}: {(data.get('body') or {}).get('txnStatus')}")
        return data

    def refund(self, order_id: str, ref_id: str, txn_id: str, refund_amount: str) -> Dict[str, Any]:
        data = self._post("/refund/apply", {
            "mid": self.merchant_id,
            "orderId": order_id,
            "refId": ref_id,
            "txnId": txn_id,
            "txnType": "REFUND",
            "refundAmount": refund_amount,
        })
        logger.info(f"Paytm refund {ref_id} requested for {order_id}")
        return data

    def verify_callback(self, form: Dict[str, Any]) -> bool:
        params = {k: v for k, v in form.items() if k != "CHECKSUMHASH"}
        valid = verify_checksum(params, form.get("CHECKSUMHASH"), self.merchant_key or "")
        if not valid:
            logger.warning(f"Paytm callback checksum mismatch for {form.get('ORDERID')}")
        return valid
