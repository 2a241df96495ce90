import pytest

from app.config import settings
from app.main import app
from app.modules.users.routes import get_user_service
from app.modules.users.service import UserService, generate_password


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify_best_effort(self, channel, **kwargs):
        self.sent.append((channel, kwargs))
        return True


@pytest.fixture
def notifier(fake_db):
    recorder = RecordingNotifier()
    app.dependency_overrides[get_user_service] = lambda: UserService(fake_db, recorder)
    return recorder


def test_generated_passwords_are_grouped_hex():
    password = generate_password()
    groups = password.split("-")
    assert len(groups) == 3 and all(len(g) == 4 for g in groups)
    assert password != generate_password()


def test_list_users_merges_profiles(client, login):
    admin = login("admin")
    login("customer", name="Asha")
    body = client.get("/api/v1/users", headers=admin).json()
    assert body["total"] == 2
    by_id = {u["id"]: u for u in body["users"]}
    assert by_id["user-customer"]["profile"]["name"] == "Asha"
    assert by_id["user-admin"]["created_at"].startswith("2026-01-01")


def test_list_users_requires_back_office_role(client, login):
    assert client.get("/api/v1/users", headers=login("accounts")).status_code == 403


def test_create_user_emails_credentials(client, fake_db, login, notifier):
    response = client.post("/api/v1/users", json={"email": "staff@tecbunny.in", "name": "Ravi", "role": "Sales"},
                           headers=login("admin"))
    assert response.status_code == 201
    user_id = response.json()["user"]["id"]

    profile = next(p for p in fake_db.rows("profiles") if p["id"] == user_id)
    assert profile["role"] == "sales" and profile["is_active"] is True

    channel, email = notifier.sent[0]
    password = fake_db.auth.passwords["staff@tecbunny.in"]
    assert channel == "email" and email["to"] == "staff@tecbunny.in"
    assert password in email["html"]


def test_create_user_rolls_back_auth_user_when_profile_fails(client, fake_db, login, notifier):
    admin = login("admin")
    fake_db.fail("profiles", "upsert", "permission denied")
    response = client.post("/api/v1/users", json={"email": "x@tecbunny.in", "name": "X", "password": "secret1"},
                           headers=admin)
    assert response.status_code == 500
    assert len(fake_db.auth.admin.deleted) == 1
    assert notifier.sent == []


def test_create_user_reports_auth_error(client, fake_db, login, notifier):
    fake_db.auth.fail_create = "A user with this email address has already been registered"
    response = client.post("/api/v1/users", json={"email": "x@tecbunny.in", "name": "X"}, headers=login("admin"))
    assert response.status_code == 400
    assert "already been registered" in response.json()["detail"]


def test_update_user_folds_camel_case(client, fake_db, login):
    manager = login("manager")
    login("customer")
    response = client.put("/api/v1/users/user-customer", json={
        "isActive": False, "customerCategory": "Premium", "email": "new@tecbunny.in"
    }, headers=manager)
    assert response.json() == {"message": "User updated successfully"}
    profile = next(p for p in fake_db.rows("profiles") if p["id"] == "user-customer")
    assert profile["is_active"] is False and profile["customer_category"] == "Premium"
    assert fake_db.auth.admin.updated == [("user-customer", {"email": "new@tecbunny.in"})]

    bad = client.put("/api/v1/users/user-customer", json={"role": "wizard"}, headers=manager)
    assert bad.status_code == 400


def test_manager_cannot_escalate_roles(client, fake_db, login):
    manager = login("manager")
    login("customer")
    own = client.put("/api/v1/users/user-manager", json={"role": "superadmin"}, headers=manager)
    assert own.status_code == 403
    other = client.put("/api/v1/users/user-customer", json={"role": "superadmin"}, headers=manager)
    assert other.status_code == 403
    peer = client.put("/api/v1/users/user-customer", json={"role": "manager"}, headers=manager)
    assert peer.json()["detail"] == "Cannot assign a role at or above your own"
    roles = {p["id"]: p["role"] for p in fake_db.rows("profiles")}
    assert roles == {"user-manager": "manager", "user-customer": "customer"}

    assert client.put("/api/v1/users/user-customer", json={"role": "sales"}, headers=manager).status_code == 200
    assert client.put("/api/v1/users/user-manager", json={"name": "Meera"}, headers=manager).status_code == 200


def test_manager_cannot_edit_higher_accounts(client, fake_db, login):
    manager = login("manager")
    login("admin")
    response = client.put("/api/v1/users/user-admin", json={"password": "takeover1"}, headers=manager)
    assert response.status_code == 403
    assert fake_db.auth.admin.updated == []


def test_create_user_role_must_sit_below_caller(client, fake_db, login, notifier):
    manager = login("manager")
    for role in ("manager", "superadmin"):
        response = client.post("/api/v1/users", json={"email": "x@tecbunny.in", "name": "X", "role": role},
                               headers=manager)
        assert response.status_code == 403
    assert fake_db.auth.passwords == {}
    response = client.post("/api/v1/users", json={"email": "x@tecbunny.in", "name": "X", "role": "accounts"},
                           headers=login("superadmin"))
    assert response.status_code == 201


def test_delete_user(client, fake_db, login):
    admin = login("admin")
    login("customer")
    assert client.delete("/api/v1/users/user-admin", headers=admin).json()["detail"] == "Cannot delete your own account"
    assert client.delete("/api/v1/users/user-customer", headers=login("manager")).status_code == 403
    assert client.delete("/api/v1/users/user-customer", headers=admin).status_code == 200
    assert fake_db.auth.admin.deleted == ["user-customer"]


def test_roles_listing_is_scoped_to_caller(client, login):
    everything = client.get("/api/v1/roles", headers=login("superadmin")).json()
    assert len(everything["roles"]) == 7
    assert any(p["name"] == "inventory:manage" for p in everything["permissions"])

    below_manager = client.get("/api/v1/roles", headers=login("manager")).json()["roles"]
    assert {r["name"] for r in below_manager} == {"customer", "sales", "service_engineer", "accounts"}
    below_admin = client.get("/api/v1/roles", headers=login("admin")).json()["roles"]
    assert "superadmin" not in {r["name"] for r in below_admin} and len(below_admin) == 5


def test_role_change_needs_superadmin(client, login):
    login("customer")
    body = {"userId": "user-customer", "newRole": "sales"}
    response = client.post("/api/v1/admin/roles/set", json=body, headers=login("admin"))
    assert response.status_code == 403
    assert response.json() == {"detail": "Superadmin role required"}
    assert client.post("/api/v1/admin/roles/set", json=body).status_code == 401


def test_superadmin_sets_roles(client, fake_db, login):
    superadmin = login("superadmin")
    login("customer")
    response = client.post("/api/v1/admin/roles/set", json={"userId": "user-customer", "newRole": "sales"},
                           headers=superadmin)
    assert response.json() == {"success": True, "userId": "user-customer", "newRole": "sales"}
    assert next(p for p in fake_db.rows("profiles") if p["id"] == "user-customer")["role"] == "sales"

    own = client.post("/api/v1/admin/roles/set", json={"userId": "user-superadmin", "newRole": "admin"},
                      headers=superadmin)
    assert own.json()["detail"] == "Self role change not permitted"
    missing = client.post("/api/v1/admin/roles/set", json={"userId": "ghost", "newRole": "sales"}, headers=superadmin)
    assert missing.status_code == 404
    invalid = client.post("/api/v1/admin/roles/set", json={"userId": "user-customer", "newRole": "root"},
                          headers=superadmin)
    assert invalid.status_code == 400


def test_role_change_with_maintenance_token(client, fake_db, login, monkeypatch):
    login("customer")
    body = {"userId": "user-customer", "newRole": "accounts"}
    assert client.post("/api/v1/admin/roles/set", json=body, headers={"x-admin-token": "t0ken"}).status_code == 503

    monkeypatch.setattr(settings, "admin_api_token", "t0ken")
    assert client.post("/api/v1/admin/roles/set", json=body, headers={"x-admin-token": "wrong"}).status_code == 401
    response = client.post("/api/v1/admin/roles/set", json=body, headers={"x-admin-token": "t0ken"})
    assert response.status_code == 200
    assert fake_db.rows("profiles")[0]["role"] == "accounts"
