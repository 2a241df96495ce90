from types import SimpleNamespace

import pytest

from app.database.supabase_client import get_session_client_factory
from app.main import app
from app.modules.auth import service as auth_service
from app.modules.auth.service import normalize_mobile
from app.modules.otp.routes import get_otp_service
from app.modules.otp.service import InMemoryOTPStore, OTPService


class SilentNotifier:
    def __init__(self):
        self.emails = []

    def send_email(self, to, subject, html):
        self.emails.append(to)
        return {"provider": "fake-email"}


@pytest.fixture
def otp_service():
    InMemoryOTPStore.clear()
    service = OTPService(InMemoryOTPStore(), SilentNotifier())
    app.dependency_overrides[get_otp_service] = lambda: service
    yield service
    InMemoryOTPStore.clear()


def _signup_body(**overrides):
    body = {"email": "new@tecbunny.in", "password": "secret1", "name": "Neha", "mobile": "+91 98765-43210"}
    body.update(overrides)
    return body


def test_normalize_mobile():
    assert normalize_mobile("+91 98765-43210") == "919876543210"
    assert normalize_mobile(None) is None
    with pytest.raises(Exception):
        normalize_mobile("12345")


def test_full_token_cache_drops_expired_entries(monkeypatch):
    monkeypatch.setattr(auth_service, "_AUTH_CACHE_MAX_SIZE", 1)
    auth_service._AUTH_USER_CACHE["old"] = ({"id": "x"}, 0)
    auth_service._remember_user("new", {"id": "y"})
    assert set(auth_service._AUTH_USER_CACHE) == {"new"}


def test_login_returns_session(client, fake_db, login):
    login("customer")
    fake_db.auth.passwords["user-customer@example.com"] = "pa55word"
    response = client.post("/api/v1/auth/login", json={"email": "user-customer@example.com", "password": "pa55word"})
    assert response.status_code == 200
    body = response.json()
    assert body["access_token"] == "session-user-customer"
    assert body["refresh_token"] == "refresh-user-customer"
    assert body["token_type"] == "bearer"


def test_each_login_gets_its_own_session_client(client, fake_db, login):
    login("customer")
    fake_db.auth.passwords["user-customer@example.com"] = "pa55word"
    created = []

    def factory():
        created.append(SimpleNamespace(auth=fake_db.auth))
        return created[-1]

    app.dependency_overrides[get_session_client_factory] = lambda: factory
    for _ in range(2):
        response = client.post("/api/v1/auth/login", json={"email": "user-customer@example.com", "password": "pa55word"})
        assert response.status_code == 200
    assert len(created) == 2


def test_login_with_wrong_password(client, fake_db, login):
    login("customer")
    response = client.post("/api/v1/auth/login", json={"email": "user-customer@example.com", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_session_includes_effective_permissions(client, login):
    headers = login("accounts", name="Kiran", customer_category="Standard")
    body = client.get("/api/v1/auth/session", headers=headers).json()
    assert body["user"]["id"] == "user-accounts"
    assert body["user"]["name"] == "Kiran"
    assert body["user"]["role"] == "accounts"
    assert "invoice:manage" in body["permissions"]
    assert "order:view:all" in body["permissions"]
    assert "user:manage" not in body["permissions"]


def test_session_requires_token(client):
    assert client.get("/api/v1/auth/session").status_code in (401, 403)
    assert client.get("/api/v1/auth/session", headers={"Authorization": "Bearer bogus"}).status_code == 401


def test_refresh_session(client, login):
    login("customer")
    response = client.post("/api/v1/auth/session/refresh", json={"refresh_token": "refresh-user-customer"})
    assert response.json()["access_token"] == "rotated-user-customer"
    bad = client.post("/api/v1/auth/session/refresh", json={"refresh_token": "refresh-ghost"})
    assert bad.status_code == 401


def test_logout(client, login):
    response = client.post("/api/v1/auth/logout", headers=login("customer"))
    assert response.json() == {"message": "Signed out successfully"}


def test_signup_sends_registration_code(client, otp_service):
    response = client.post("/api/v1/auth/signup", json=_signup_body())
    assert response.status_code == 200
    body = response.json()
    assert body["channel"] == "email" and body["preferred_channel"] == "email"
    record = otp_service.get_record(body["otp_id"])
    assert record["purpose"] == "registration"
    assert record["phone"] == "919876543210"
    assert otp_service.notifier.emails == ["new@tecbunny.in"]


def test_signup_rejects_known_email_and_bad_mobile(client, fake_db, otp_service):
    fake_db.seed("profiles", {"id": "u1", "email": "new@tecbunny.in", "role": "customer"})
    assert client.post("/api/v1/auth/signup", json=_signup_body()).status_code == 409
    assert client.post("/api/v1/auth/signup", json=_signup_body(email="other@tecbunny.in", mobile="123")).status_code == 400


def test_complete_signup_needs_verified_code(client, fake_db, otp_service):
    otp_id = client.post("/api/v1/auth/signup", json=_signup_body()).json()["otp_id"]
    body = {**_signup_body(), "otp_id": otp_id}
    premature = client.post("/api/v1/auth/complete-signup", json=body)
    assert premature.status_code == 400

    code = otp_service.get_record(otp_id)["code"]
    assert otp_service.verify(otp_id, code)["success"]
    response = client.post("/api/v1/auth/complete-signup", json=body)
    assert response.status_code == 201
    created = response.json()
    assert created["requires_sign_in"] is False
    assert created["session"]["access_token"] == f"session-{created['user_id']}"

    profile = fake_db.rows("profiles")[0]
    assert profile["role"] == "customer" and profile["phone"] == "919876543210"

    again = client.post("/api/v1/auth/complete-signup", json=body)
    assert again.status_code == 409


def test_complete_signup_checks_code_owner(client, otp_service):
    otp_id = client.post("/api/v1/auth/signup", json=_signup_body()).json()["otp_id"]
    otp_service.verify(otp_id, otp_service.get_record(otp_id)["code"])
    response = client.post("/api/v1/auth/complete-signup",
                           json={**_signup_body(email="someone@tecbunny.in"), "otp_id": otp_id})
    assert response.status_code == 400


def test_complete_signup_rejects_login_code(client, fake_db, otp_service):
    otp_id = otp_service.generate("login", email="new@tecbunny.in")["otp_id"]
    otp_service.verify(otp_id, otp_service.get_record(otp_id)["code"])
    response = client.post("/api/v1/auth/complete-signup", json={**_signup_body(), "otp_id": otp_id})
    assert response.status_code == 400
    assert fake_db.rows("profiles") == []
