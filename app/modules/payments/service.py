import logging
import time
from urllib.parse import quote
from supabase import Client
from fastapi import HTTPException, status
from typing import Any, Dict, Optional

from app.config import settings
from app.core.timeutils import utc_now_iso
from app.modules.payments.paytm import PaytmClient, PaytmError, transaction_status
from app.modules.payments.razorpay_client import RazorpayClient, RazorpayError, to_paise
from app.modules.settings.service import SettingsService

logger = logging.getLogger(__name__)

PAID_ORDER_STATUS = "Payment Confirmed"


def _razorpay_order_matches(razorpay_order: Dict[str, Any], order: Dict[str, Any]) -> bool:
    order_id = str(order["id"])
    notes = razorpay_order.get("notes") or {}
    if razorpay_order.get("receipt") != f"receipt_{order_id}" and str(notes.get("orderId")) != order_id:
        return False
    return razorpay_order.get("amount") == to_paise(order.get("total") or 0)


class PaymentService:
    """Paytm and Razorpay flows over payment_transactions and orders."""

    def __init__(self, supabase: Client, paytm_factory=PaytmClient, razorpay_factory=RazorpayClient):
        self.supabase = supabase
        self.settings = SettingsService(supabase)
        self.paytm_factory = paytm_factory
        self.razorpay_factory = razorpay_factory

    def _gateway(self, method_id: str, label: str, require_enabled: bool = True) -> Dict[str, Any]:
        gateway = self.settings.get_gateway_config(method_id)
        if gateway is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                detail=f"{label} payment method not configured")
        if require_enabled and not gateway.get("enabled"):
            raise HTTPException(status_code=400, detail=f"{label} payment method is disabled")
        return gateway.get("config") or {}

    def paytm_client(self, require_enabled: bool = False) -> PaytmClient:
        client = self.paytm_factory(self._gateway("paytm", "Paytm", require_enabled))
        if not client.is_complete:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                detail="Paytm configuration incomplete")
        return client

    def _get_order(self, order_id: str) -> Dict[str, Any]:
        result = self.supabase.table("orders")\
            .select("*")\
            .eq("id", order_id)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return result.data[0]

    def _mark_order_paid(self, order_id: str, method: str) -> None:
        try:
            self.supabase.table("orders")\
                .update({
                    "payment_status": "paid",
                    "payment_method": method,
                    "status": PAID_ORDER_STATUS,
                    "updated_at": utc_now_iso()
                })\
                .eq("id", order_id)\
                .execute()
        except Exception as e:
            logger.error(f"Marking order {order_id} paid failed: {e}")

    def _update_transaction(self, transaction_id: str, changes: Dict[str, Any]) -> None:
        try:
            self.supabase.table("payment_transactions")\
                .update({**changes, "updated_at": utc_now_iso()})\
                .eq("transaction_id", transaction_id)\
                .execute()
        except Exception as e:
            logger.error(f"Updating transaction {transaction_id} failed: {e}")

    def _transaction_order_id(self, transaction_id: str) -> Optional[str]:
        result = self.supabase.table("payment_transactions")\
            .select("order_id")\
            .eq("transaction_id", transaction_id)\
            .limit(1)\
            .execute()
        return result.data[0]["order_id"] if result.data else None

    # Paytm

    def initiate_paytm(self, order_id: str, amount: Any, customer_phone: str) -> Dict[str, Any]:
        client = self.paytm_client(require_enabled=True)
        order = self._get_order(order_id)
        txn_id = f"PAYTM_{order_id}_{int(time.time() * 1000)}"

        try:
            result = client.initiate_transaction(
                order_id=txn_id,
                amount=str(amount),
                customer_id=order.get("customer_id") or f"GUEST_{int(time.time() * 1000)}",
                customer_phone=customer_phone,
                customer_email=order.get("customer_email"),
                callback_url=f"{settings.site_url}/api/v1/payment/paytm/callback"
            )
        except PaytmError as e:
            logger.error(f"Paytm initiation failed for order {order_id}: {e}")
            raise HTTPException(status_code=500, detail="Payment initialization failed")

        try:
            self.supabase.table("payment_transactions").insert({
                "order_id": order_id,
                "transaction_id": txn_id,
                "payment_method": "paytm",
                "amount": float(amount),
                "status": "initiated",
                "gateway_response": result["body"],
                "created_at": utc_now_iso()
            }).execute()
        except Exception as e:
            logger.error(f"Storing Paytm transaction {txn_id} failed: {e}")

        logger.info(f"Paytm payment {txn_id} initiated for order {order_id}")
        return {
            "success": True,
            "txnToken": result["txn_token"],
            "orderId": txn_id,
            "mid": result["mid"],
            "amount": amount,
            "paymentUrl": client.get_payment_url(),
            "environment": client.environment,
        }

    def handle_paytm_callback(self, form: Dict[str, str]) -> str:
        """Apply a Paytm callback and return the storefront URL to redirect to.

        Raises 400 on checksum mismatch.
        """
        client = self.paytm_client()
        if not client.verify_callback(form):
            raise HTTPException(status_code=400, detail="Invalid checksum")

        txn_id = form.get("ORDERID")
        paytm_status = form.get("STATUS")
        self._update_transaction(txn_id, {
            "status": transaction_status(paytm_status),
            "gateway_transaction_id": form.get("TXNID"),
            "gateway_response": {k: v for k, v in form.items() if k != "CHECKSUMHASH"},
            "response_code": form.get("RESPCODE"),
        })

        order_id = self._transaction_order_id(txn_id)
        if order_id is None:
            logger.error(f"Paytm callback for unknown transaction {txn_id}")
            return f"{settings.site_url}/payment/failed"

        if paytm_status == "TXN_SUCCESS":
            self._mark_order_paid(order_id, "paytm")
            logger.info(f"Paytm payment {txn_id} succeeded")
            return f"{settings.site_url}/payment/success?orderId={order_id}&txnId={quote(form.get('TXNID') or '')}"

        logger.warning(f"Paytm payment {txn_id} failed: {form.get('RESPCODE')} {form.get('RESPMSG')}")
        return f"{settings.site_url}/payment/failed?orderId={order_id}&reason={quote(form.get('RESPMSG') or '')}"

    def paytm_status(self, transaction_id: str) -> Dict[str, Any]:
        client = self.paytm_client()
        try:
            response = client.get_transaction_status(transaction_id)
        except PaytmError:
            raise HTTPException(status_code=500, detail="Status check failed")

        body = response.get("body") or {}
        info = body.get("resultInfo")
        if not info:
            raise HTTPException(status_code=500, detail="Failed to fetch transaction status")

        txn_status = body.get("txnStatus")
        self._update_transaction(transaction_id, {
            "status": transaction_status(txn_status),
            "gateway_response": body,
            "response_code": info.get("resultCode"),
        })
        if txn_status == "TXN_SUCCESS":
            order_id = self._transaction_order_id(transaction_id)
            if order_id:
                self._mark_order_paid(order_id, "paytm")

        return {
            "success": txn_status == "TXN_SUCCESS",
            "status": txn_status,
            "code": info.get("resultCode"),
            "message": info.get("resultMsg"),
            "amount": body.get("txnAmount"),
            "orderId": transaction_id,
        }

    def refund_paytm(self, transaction_id: str, txn_id: str, amount: Any, ref_id: Optional[str] = None) -> Dict[str, Any]:
        client = self.paytm_client()
        ref_id = ref_id or f"REFUND_{transaction_id}_{int(time.time() * 1000)}"
        try:
            response = client.refund(transaction_id, ref_id, txn_id, str(amount))
        except PaytmError:
            raise HTTPException(status_code=500, detail="Refund request failed")

        info = (response.get("body") or {}).get("resultInfo") or {}
        accepted = info.get("resultStatus") in ("TXN_SUCCESS", "PENDING")
        if accepted:
            self._update_transaction(transaction_id, {"status": "refunded"})
        return {"success": accepted, "refId": ref_id, "message": info.get("resultMsg"), "response": response}

    # Razorpay

    def initiate_razorpay(self, order_id: str, amount: float, customer_phone: Optional[str] = None,
                          customer_email: Optional[str] = None, customer_name: Optional[str] = None) -> Dict[str, Any]:
        config = self._gateway("razorpay", "Razorpay")
        key_id, key_secret = config.get("keyId"), config.get("keySecret")
        if not key_id or not key_secret:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                detail="Razorpay configuration incomplete")

        order = self._get_order(order_id)
        if to_paise(amount) != to_paise(order.get("total") or 0):
            raise HTTPException(status_code=400, detail="Amount does not match order total")

        client = self.razorpay_factory(key_id, key_secret)
        try:
            razorpay_order = client.create_order(
                amount,
                receipt=f"receipt_{order_id}",
                notes={"orderId": order_id, "customerEmail": customer_email, "customerPhone": customer_phone}
            )
        except RazorpayError:
            raise HTTPException(status_code=500, detail="Payment initialization failed")

        logger.info(f"Razorpay order {razorpay_order.get('id')} created for {order_id}")
        return {
            "success": True,
            "razorpayOrderId": razorpay_order.get("id"),
            "amount": razorpay_order.get("amount"),
            "currency": razorpay_order.get("currency"),
            "keyId": key_id,
            "orderId": order_id,
            "customerName": customer_name,
            "customerEmail": customer_email,
            "customerPhone": customer_phone,
            "notes": razorpay_order.get("notes"),
        }

    def verify_razorpay(self, order_id: str, razorpay_order_id: str, payment_id: str, signature: str) -> Dict[str, Any]:
        """Confirm a checkout: valid signature, and a Razorpay order created for this store order and its total."""
        config = self._gateway("razorpay", "Razorpay", require_enabled=False)
        if not config.get("keySecret"):
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                detail="Razorpay configuration incomplete")
        client = self.razorpay_factory(config.get("keyId") or "", config["keySecret"])
        if not client.verify_payment_signature(razorpay_order_id, payment_id, signature):
            logger.warning(f"Razorpay signature mismatch for order {order_id}")
            raise HTTPException(status_code=400, detail="Invalid payment signature")

        order = self._get_order(order_id)
        try:
            razorpay_order = client.fetch_order(razorpay_order_id)
        except RazorpayError:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not confirm payment with Razorpay")
        if not _razorpay_order_matches(razorpay_order, order):
            logger.warning(f"Razorpay order {razorpay_order_id} does not belong to order {order_id}")
            raise HTTPException(status_code=400, detail="Payment does not match this order")

        try:
            self.supabase.table("payment_transactions").insert({
                "order_id": order_id,
                "transaction_id": razorpay_order_id,
                "payment_method": "razorpay",
                "amount": order.get("total"),
                "status": "success",
                "gateway_transaction_id": payment_id,
                "created_at": utc_now_iso()
            }).execute()
        except Exception as e:
            logger.error(f"Storing Razorpay transaction {payment_id} failed: {e}")
        self._mark_order_paid(order_id, "razorpay")
        logger.info(f"Razorpay payment {payment_id} verified for order {order_id}")
        return {"success": True, "orderId": order_id, "paymentId": payment_id}
