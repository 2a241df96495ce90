import json

import httpx
import pytest

from app.config import settings
from app.main import app
from app.modules.notifications.routes import get_notification_service
from app.modules.notifications.service import NotificationError, NotificationService, normalize_phone
from app.modules.notifications.templates import account_credentials_email, message_email


class Provider:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    def service(self) -> NotificationService:
        return NotificationService(httpx.Client(transport=httpx.MockTransport(self)))


@pytest.fixture
def superfone(monkeypatch):
    monkeypatch.setattr(settings, "superfone_api_key", "sf-key")
    monkeypatch.setattr(settings, "superfone_cookie", "abc123")
    return Provider(200, {"messageId": "m-1"})


def test_normalize_phone():
    assert normalize_phone("98765 43210") == "919876543210"
    assert normalize_phone("+44 20 7946 0958") == "442079460958"
    assert normalize_phone(None) == ""


def test_sms_otp_via_2factor(monkeypatch):
    monkeypatch.setattr(settings, "twofactor_api_key", "2f-key")
    provider = Provider(200, {"Status": "Success", "Details": "sess-1"})
    result = provider.service().send_sms_otp("9876543210", "4821")
    assert result == {"success": True, "provider": "2factor", "provider_message_id": "sess-1"}
    assert provider.requests[0].url.path == "/API/V1/2f-key/SMS/919876543210/4821/OTP1"


def test_sms_otp_rejections(monkeypatch):
    monkeypatch.setattr(settings, "twofactor_api_key", None)
    with pytest.raises(NotificationError):
        Provider().service().send_sms_otp("9876543210", "4821")

    monkeypatch.setattr(settings, "twofactor_api_key", "2f-key")
    with pytest.raises(NotificationError, match="4-digit"):
        Provider().service().send_sms_otp("9876543210", "123456")
    refused = Provider(200, {"Status": "Error", "Details": "Invalid template"})
    with pytest.raises(NotificationError, match="Invalid template"):
        refused.service().send_sms_otp("9876543210", "4821")


def test_whatsapp_otp_template(superfone):
    result = superfone.service().send_whatsapp_otp("9876543210", "4821")
    assert result["provider_message_id"] == "m-1"

    request = superfone.requests[0]
    assert request.headers["x-api-key"] == "sf-key"
    assert request.headers["Cookie"] == "connect.sid=abc123"
    payload = json.loads(request.content)
    assert payload["recipient"] == "919876543210"
    assert payload["templateName"] == "otp2"
    assert payload["components"][1]["sub_type"] == "url"


def test_whatsapp_http_error(monkeypatch):
    monkeypatch.setattr(settings, "superfone_api_key", "sf-key")
    with pytest.raises(NotificationError, match="HTTP 500"):
        Provider(500).service().send_whatsapp_text("9876543210", "hello")


def test_best_effort_swallows_provider_errors(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", None)
    monkeypatch.setattr(settings, "superfone_api_key", None)
    service = NotificationService()
    assert service.notify_best_effort("email", to="a@tecbunny.in", subject="Hi", html="<p>Hi</p>") is False
    assert service.notify_best_effort("whatsapp", phone="9876543210", message="Hi") is False
    assert service.notify_best_effort("pigeon") is False


def test_routes_require_admin(client, login):
    body = {"phone": "9876543210", "message": "hello"}
    assert client.post("/api/v1/notifications/whatsapp/text", json=body, headers=login("sales")).status_code == 403


def test_template_route(client, login, superfone):
    app.dependency_overrides[get_notification_service] = superfone.service
    response = client.post("/api/v1/notifications/whatsapp/template", json={
        "phone": "9876543210", "template_name": "order_update", "parameters": ["TB-1001", 1180]
    }, headers=login("admin"))
    assert response.json()["success"] is True
    components = json.loads(superfone.requests[0].content)["components"]
    assert components == [{"type": "body", "parameters": [
        {"type": "text", "text": "TB-1001"}, {"type": "text", "text": "1180"}
    ]}]


def test_email_route_reports_missing_smtp(client, login, monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", None)
    response = client.post("/api/v1/notifications/email/test", json={"to": "ops@tecbunny.in"}, headers=login("admin"))
    assert response.status_code == 503
    assert response.json()["detail"] == "SMTP is not configured"


def test_credentials_email_escapes_user_values():
    _, html = account_credentials_email("<script>alert(1)</script>", "a@b.in", "p&ss", "sales", "https://x.in/?a=1&b=2")
    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "p&amp;ss" in html and "a=1&amp;b=2" in html


def test_message_email_escapes_each_line():
    assert message_email("hi <b>there</b>\nbye") == "<p>hi &lt;b&gt;there&lt;/b&gt;</p><p>bye</p>"
