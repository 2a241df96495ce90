import hashlib
import hmac
import json

import httpx
import pytest
import razorpay

from app.main import app
from app.modules.payments.paytm import (
    PaytmClient, PaytmError, generate_checksum, transaction_status, verify_checksum
)
from app.modules.payments.razorpay_client import RazorpayClient, to_paise
from app.modules.payments.routes import get_payment_service
from app.modules.payments.service import PaymentService

MERCHANT_KEY = "KEY123"
PAYTM_CONFIG = {"merchantId": "MID1", "merchantKey": MERCHANT_KEY, "websiteName": "WEBSTAGING", "environment": "staging"}


class FakeGateway:
    """Routes httpx requests to canned JSON replies by path."""

    def __init__(self, replies):
        self.replies = replies
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.replies[request.url.path]
        return httpx.Response(status, json=body)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class FakeRazorpayOrders:
    """Replaces the SDK's order resource; signature checks stay real."""

    def __init__(self, error=None):
        self.error = error
        self.created = []
        self.orders = {}

    def create(self, data=None, **kwargs):
        if self.error:
            raise razorpay.errors.BadRequestError(self.error)
        self.created.append(data)
        order = {"id": f"order_RZP{len(self.created)}", **data}
        self.orders[order["id"]] = order
        return order

    def fetch(self, order_id, data=None, **kwargs):
        if order_id not in self.orders:
            raise razorpay.errors.BadRequestError("The id provided does not exist")
        return self.orders[order_id]

    def factory(self, key_id, key_secret):
        sdk = razorpay.Client(auth=(key_id, key_secret))
        sdk.order = self
        return RazorpayClient(key_id, key_secret, sdk=sdk)


def razorpay_signature(order_id, payment_id, secret):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def test_checksum_roundtrip_and_tamper():
    params = {"ORDERID": "PAYTM_1", "STATUS": "TXN_SUCCESS", "TXNAMOUNT": "10.00"}
    checksum = generate_checksum(params, MERCHANT_KEY)
    assert verify_checksum(params, checksum, MERCHANT_KEY)
    assert not verify_checksum({**params, "TXNAMOUNT": "1.00"}, checksum, MERCHANT_KEY)
    assert not verify_checksum(params, checksum, "other-key")
    assert not verify_checksum(params, "%%%not-base64", MERCHANT_KEY)
    assert not verify_checksum(params, None, MERCHANT_KEY)


def test_checksum_ignores_key_order():
    checksum = generate_checksum({"a": 1, "b": 2}, MERCHANT_KEY, salt="abcd1234")
    assert verify_checksum({"b": 2, "a": 1}, checksum, MERCHANT_KEY)


def test_transaction_status_mapping():
    assert transaction_status("TXN_SUCCESS") == "success"
    assert transaction_status("TXN_FAILURE") == "failed"
    assert transaction_status("PENDING") == "pending"


def test_razorpay_signature_and_paise():
    client = RazorpayClient("rzp_test", "secret")
    signature = razorpay_signature("order_1", "pay_1", "secret")
    assert client.verify_payment_signature("order_1", "pay_1", signature)
    assert not client.verify_payment_signature("order_1", "pay_2", signature)
    assert not client.verify_payment_signature("order_1", "pay_1", None)
    assert to_paise(499.99) == 49999


def test_paytm_client_signs_requests():
    gateway = FakeGateway({
        "/theia/api/v1/initiateTransaction": (200, {"body": {"resultInfo": {"resultStatus": "S"}, "txnToken": "TOKEN1"}}),
    })
    client = PaytmClient(PAYTM_CONFIG, http_client=gateway.client())
    result = client.initiate_transaction("PAYTM_o1_1", "100.00", "c1", "9876543210", "https://shop/cb")
    assert result["txn_token"] == "TOKEN1"

    sent = gateway.requests[0]
    assert sent.url.params["orderId"] == "PAYTM_o1_1"
    assert sent.headers["X-MID"] == "MID1"
    assert verify_checksum(json.loads(sent.content), sent.headers["X-CHECKSUM"], MERCHANT_KEY)


def test_paytm_client_raises_on_rejection():
    gateway = FakeGateway({
        "/theia/api/v1/initiateTransaction": (200, {"body": {"resultInfo": {"resultStatus": "F", "resultMsg": "Invalid MID"}}}),
    })
    client = PaytmClient(PAYTM_CONFIG, http_client=gateway.client())
    with pytest.raises(PaytmError, match="Invalid MID"):
        client.initiate_transaction("PAYTM_o1_1", "100.00", "c1", "9876543210", "https://shop/cb")


def test_production_environment_uses_live_gateway():
    client = PaytmClient({**PAYTM_CONFIG, "environment": "production"})
    assert client.get_payment_url().startswith("https://securegw.paytm.in")
    assert not PaytmClient({"merchantId": "MID1"}).is_complete


@pytest.fixture
def gateway():
    return FakeGateway({
        "/theia/api/v1/initiateTransaction": (200, {"body": {"resultInfo": {"resultStatus": "S"}, "txnToken": "TOKEN1"}}),
        "/v3/order/status": (200, {"body": {
            "resultInfo": {"resultStatus": "TXN_SUCCESS", "resultCode": "01", "resultMsg": "Txn Success"},
            "txnStatus": "TXN_SUCCESS", "txnAmount": "1180.00"
        }}),
        "/refund/apply": (200, {"body": {"resultInfo": {"resultStatus": "PENDING", "resultMsg": "Refund is pending"}}}),
    })


@pytest.fixture
def razorpay_orders():
    return FakeRazorpayOrders()


@pytest.fixture
def pay_client(client, fake_db, gateway, razorpay_orders):
    app.dependency_overrides[get_payment_service] = lambda: PaymentService(
        fake_db,
        paytm_factory=lambda config: PaytmClient(config, http_client=gateway.client()),
        razorpay_factory=razorpay_orders.factory,
    )
    fake_db.seed("orders", {"id": "o1", "customer_id": "c1", "total": 1180, "status": "Pending"})
    return client


def _enable_paytm(fake_db, enabled=True):
    fake_db.seed("settings", {"key": "payment_paytm", "value": {"enabled": enabled, "config": PAYTM_CONFIG}})


def _enable_razorpay(fake_db, config=None):
    fake_db.seed("settings", {"key": "payment_razorpay", "value": {
        "enabled": True, "config": config or {"keyId": "rzp_test", "keySecret": "secret"}
    }})


def test_paytm_initiate(pay_client, fake_db):
    _enable_paytm(fake_db)
    response = pay_client.post("/api/v1/payment/paytm/initiate",
                               json={"orderId": "o1", "amount": "1180.00", "customerPhone": "9876543210"})
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["txnToken"] == "TOKEN1"
    assert body["orderId"].startswith("PAYTM_o1_")
    assert body["paymentUrl"].startswith("https://securegw-stage.paytm.in")
    transaction = fake_db.rows("payment_transactions")[0]
    assert transaction["status"] == "initiated" and transaction["amount"] == 1180


def test_paytm_initiate_needs_enabled_gateway(pay_client, fake_db):
    body = {"orderId": "o1", "amount": "10", "customerPhone": "9876543210"}
    missing = pay_client.post("/api/v1/payment/paytm/initiate", json=body)
    assert missing.status_code == 503
    assert missing.json()["detail"] == "Paytm payment method not configured"

    _enable_paytm(fake_db, enabled=False)
    disabled = pay_client.post("/api/v1/payment/paytm/initiate", json=body)
    assert disabled.json()["detail"] == "Paytm payment method is disabled"


def test_paytm_initiate_validation_and_rate_limit(pay_client, fake_db):
    _enable_paytm(fake_db)
    statuses = [
        pay_client.post("/api/v1/payment/paytm/initiate", json={"orderId": "o1"}).status_code
        for _ in range(6)
    ]
    assert statuses == [400] * 5 + [429]
    blocked = pay_client.post("/api/v1/payment/paytm/initiate", json={"orderId": "o1"})
    assert blocked.json()["detail"] == "Too many payment attempts. Please wait a minute."
    assert blocked.json()["retry_after"] == 60


def _callback_form(status="TXN_SUCCESS", **extra):
    form = {"ORDERID": "PAYTM_o1_1", "STATUS": status, "TXNID": "T123", "RESPCODE": "01", "RESPMSG": "Txn Success", **extra}
    return {**form, "CHECKSUMHASH": generate_checksum(form, MERCHANT_KEY)}


def test_paytm_callback_success_marks_order_paid(pay_client, fake_db):
    _enable_paytm(fake_db)
    fake_db.seed("payment_transactions", {"transaction_id": "PAYTM_o1_1", "order_id": "o1", "status": "initiated"})
    response = pay_client.post("/api/v1/payment/paytm/callback", data=_callback_form(), follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/payment/success?orderId=o1&txnId=T123")

    order = fake_db.rows("orders")[0]
    assert order["status"] == "Payment Confirmed" and order["payment_status"] == "paid"
    transaction = fake_db.rows("payment_transactions")[0]
    assert transaction["status"] == "success" and transaction["gateway_transaction_id"] == "T123"


def test_paytm_callback_failure_redirects_with_reason(pay_client, fake_db):
    _enable_paytm(fake_db)
    fake_db.seed("payment_transactions", {"transaction_id": "PAYTM_o1_1", "order_id": "o1"})
    form = _callback_form(status="TXN_FAILURE", RESPMSG="Insufficient funds")
    response = pay_client.post("/api/v1/payment/paytm/callback", data=form, follow_redirects=False)
    assert response.headers["location"].endswith("/payment/failed?orderId=o1&reason=Insufficient%20funds")
    assert fake_db.rows("orders")[0]["status"] == "Pending"
    assert fake_db.rows("payment_transactions")[0]["status"] == "failed"


def test_paytm_callback_rejects_bad_checksum(pay_client, fake_db):
    _enable_paytm(fake_db)
    form = {**_callback_form(), "TXNAMOUNT": "1.00"}
    response = pay_client.post("/api/v1/payment/paytm/callback", data=form, follow_redirects=False)
    assert response.status_code == 400


def test_paytm_status_confirms_payment(pay_client, fake_db):
    _enable_paytm(fake_db)
    fake_db.seed("payment_transactions", {"transaction_id": "PAYTM_o1_1", "order_id": "o1"})
    assert pay_client.get("/api/v1/payment/paytm/status").status_code == 400

    body = pay_client.get("/api/v1/payment/paytm/status", params={"transactionId": "PAYTM_o1_1"}).json()
    assert body["success"] is True and body["code"] == "01" and body["amount"] == "1180.00"
    assert fake_db.rows("orders")[0]["payment_status"] == "paid"


def test_paytm_refund_is_admin_only(pay_client, fake_db, login):
    _enable_paytm(fake_db)
    fake_db.seed("payment_transactions", {"transaction_id": "PAYTM_o1_1", "order_id": "o1", "status": "success"})
    body = {"orderId": "PAYTM_o1_1", "txnId": "T123", "refundAmount": "100"}
    assert pay_client.post("/api/v1/payment/paytm/refund", json=body, headers=login("customer")).status_code == 403

    result = pay_client.post("/api/v1/payment/paytm/refund", json=body, headers=login("admin")).json()
    assert result["success"] is True
    assert result["refId"].startswith("REFUND_PAYTM_o1_1_")
    assert fake_db.rows("payment_transactions")[0]["status"] == "refunded"


def test_razorpay_initiate(pay_client, fake_db, razorpay_orders):
    _enable_razorpay(fake_db)
    response = pay_client.post("/api/v1/payment/razorpay/initiate", json={"orderId": "o1", "amount": 1180})
    body = response.json()
    assert body["razorpayOrderId"] == "order_RZP1"
    assert body["amount"] == 118000
    assert body["keyId"] == "rzp_test"
    assert "keySecret" not in json.dumps(body)

    sent = razorpay_orders.created[0]
    assert sent["currency"] == "INR" and sent["receipt"] == "receipt_o1"
    assert sent["notes"]["orderId"] == "o1"


def test_razorpay_initiate_needs_complete_config(pay_client, fake_db):
    _enable_razorpay(fake_db, config={"keyId": "rzp_test"})
    response = pay_client.post("/api/v1/payment/razorpay/initiate", json={"orderId": "o1", "amount": 10})
    assert response.status_code == 503


def test_razorpay_gateway_error(client, fake_db):
    failing = FakeRazorpayOrders(error="bad amount")
    app.dependency_overrides[get_payment_service] = lambda: PaymentService(fake_db, razorpay_factory=failing.factory)
    _enable_razorpay(fake_db)
    fake_db.seed("orders", {"id": "o1", "total": 10, "status": "Pending"})
    response = client.post("/api/v1/payment/razorpay/initiate", json={"orderId": "o1", "amount": 10})
    assert response.status_code == 500
    assert response.json()["detail"] == "Payment initialization failed"


def _razorpay_checkout(pay_client, order_id="o1", amount=1180):
    response = pay_client.post("/api/v1/payment/razorpay/initiate", json={"orderId": order_id, "amount": amount})
    return response.json()["razorpayOrderId"]


def test_razorpay_verify(pay_client, fake_db):
    _enable_razorpay(fake_db)
    razorpay_order_id = _razorpay_checkout(pay_client)
    body = {
        "orderId": "o1", "razorpay_order_id": razorpay_order_id, "razorpay_payment_id": "pay_1",
        "razorpay_signature": "forged",
    }
    assert pay_client.post("/api/v1/payment/razorpay/verify", json=body).status_code == 400

    body["razorpay_signature"] = razorpay_signature(razorpay_order_id, "pay_1", "secret")
    result = pay_client.post("/api/v1/payment/razorpay/verify", json=body).json()
    assert result == {"success": True, "orderId": "o1", "paymentId": "pay_1"}
    assert fake_db.rows("orders")[0]["status"] == "Payment Confirmed"
    transaction = fake_db.rows("payment_transactions")[0]
    assert transaction["payment_method"] == "razorpay" and transaction["amount"] == 1180


def test_razorpay_payment_cannot_confirm_another_order(pay_client, fake_db):
    _enable_razorpay(fake_db)
    fake_db.seed("orders", {"id": "o2", "customer_id": "c2", "total": 99999, "status": "Pending"})
    razorpay_order_id = _razorpay_checkout(pay_client)
    body = {
        "orderId": "o2", "razorpay_order_id": razorpay_order_id, "razorpay_payment_id": "pay_1",
        "razorpay_signature": razorpay_signature(razorpay_order_id, "pay_1", "secret"),
    }
    response = pay_client.post("/api/v1/payment/razorpay/verify", json=body)
    assert response.status_code == 400
    assert response.json()["detail"] == "Payment does not match this order"
    orders = {row["id"]: row for row in fake_db.rows("orders")}
    assert orders["o2"]["status"] == "Pending"
    assert not fake_db.rows("payment_transactions")


def test_razorpay_verify_rejects_changed_total(pay_client, fake_db, razorpay_orders):
    _enable_razorpay(fake_db)
    razorpay_order_id = _razorpay_checkout(pay_client)
    razorpay_orders.orders[razorpay_order_id]["amount"] = 100
    body = {
        "orderId": "o1", "razorpay_order_id": razorpay_order_id, "razorpay_payment_id": "pay_1",
        "razorpay_signature": razorpay_signature(razorpay_order_id, "pay_1", "secret"),
    }
    assert pay_client.post("/api/v1/payment/razorpay/verify", json=body).status_code == 400


def test_razorpay_verify_unknown_gateway_order(pay_client, fake_db):
    _enable_razorpay(fake_db)
    body = {
        "orderId": "o1", "razorpay_order_id": "order_missing", "razorpay_payment_id": "pay_1",
        "razorpay_signature": razorpay_signature("order_missing", "pay_1", "secret"),
    }
    assert pay_client.post("/api/v1/payment/razorpay/verify", json=body).status_code == 502


def test_razorpay_initiate_must_charge_the_order_total(pay_client, fake_db, razorpay_orders):
    _enable_razorpay(fake_db)
    response = pay_client.post("/api/v1/payment/razorpay/initiate", json={"orderId": "o1", "amount": 1})
    assert response.status_code == 400
    assert response.json()["detail"] == "Amount does not match order total"
    assert not razorpay_orders.created
