import json

from app.modules.settings.service import decode_value, deep_merge, default_payment_method


def test_decode_value_handles_legacy_strings():
    assert decode_value('{"enabled": true}') == {"enabled": True}
    assert decode_value("plain text") == "plain text"
    assert decode_value({"a": 1}) == {"a": 1}


def test_deep_merge_keeps_nested_keys():
    base = {"enabled": False, "config": {"merchantId": "M1", "environment": "staging"}}
    merged = deep_merge(base, {"enabled": True, "config": {"merchantKey": "K"}})
    assert merged == {"enabled": True, "config": {"merchantId": "M1", "environment": "staging", "merchantKey": "K"}}
    assert base["config"] == {"merchantId": "M1", "environment": "staging"}


def test_unknown_payment_method_defaults():
    assert default_payment_method("bharatpe") == {
        "id": "bharatpe", "name": "Bharatpe", "type": "online", "enabled": False, "config": {}
    }


def test_public_settings_are_open(client, fake_db):
    fake_db.seed("settings", {"key": "site_branding", "value": {"name": "TecBunny"}})
    response = client.get("/api/v1/settings", params={"key": "site_branding"})
    assert response.json()["value"] == {"name": "TecBunny"}
    assert client.get("/api/v1/settings", params={"key": "feature_flags_public"}).status_code == 404


def test_protected_settings_need_admin(client, fake_db, login):
    fake_db.seed("settings", {"key": "smtp_relay", "value": "internal"})
    params = {"key": "smtp_relay"}
    assert client.get("/api/v1/settings", params=params).status_code == 401
    assert client.get("/api/v1/settings", params=params, headers=login("customer")).status_code == 403
    assert client.get("/api/v1/settings", params=params, headers=login("manager")).json()["value"] == "internal"


def test_settings_by_keys(client, fake_db, login):
    fake_db.seed(
        "settings",
        {"key": "site_branding", "value": {"name": "TecBunny"}},
        {"key": "feature_flags_public", "value": {"b2b": True}},
        {"key": "smtp_relay", "value": "internal"},
    )
    public = client.get("/api/v1/settings", params={"keys": "site_branding, feature_flags_public"}).json()
    assert public == {"site_branding": {"name": "TecBunny"}, "feature_flags_public": {"b2b": True}}

    mixed = client.get("/api/v1/settings", params={"keys": "site_branding,smtp_relay"})
    assert mixed.status_code == 401
    assert mixed.json()["detail"] == "Unauthorized for protected keys"

    assert client.get("/api/v1/settings").status_code == 401
    listed = client.get("/api/v1/settings", headers=login("admin")).json()
    assert [row["key"] for row in listed] == ["feature_flags_public", "site_branding", "smtp_relay"]


def test_setting_writes(client, fake_db, login):
    manager = login("manager")
    assert client.post("/api/v1/settings", json={"key": "banner"}, headers=manager).status_code == 400
    created = client.post("/api/v1/settings", json={"key": "banner", "value": "Sale!"}, headers=manager)
    assert created.json()["value"] == "Sale!"
    client.post("/api/v1/settings", json={"key": "banner", "value": "Bigger sale!"}, headers=manager)
    assert [row["value"] for row in fake_db.rows("settings")] == ["Bigger sale!"]

    assert client.put("/api/v1/settings", json={"key": "nope", "value": 1}, headers=manager).status_code == 404
    updated = client.put("/api/v1/settings", json={"key": "banner", "value": "Done", "description": "hero"}, headers=manager)
    assert updated.json()["description"] == "hero"

    assert client.delete("/api/v1/settings", params={"key": "banner"}, headers=manager).status_code == 403
    admin = login("admin")
    assert client.delete("/api/v1/settings", headers=admin).status_code == 400
    assert client.delete("/api/v1/settings", params={"key": "banner"}, headers=admin).json() == {"success": True}
    assert fake_db.rows("settings") == []


def test_payment_settings_overlay_defaults(client, fake_db, login):
    fake_db.seed("settings", {"key": "payment_paytm", "value": json.dumps({"enabled": True})})
    methods = client.get("/api/v1/admin/payment-settings", headers=login("admin")).json()["paymentSettings"]
    assert methods["paytm"]["enabled"] is True
    assert methods["paytm"]["name"] == "Paytm"
    assert methods["cod"]["enabled"] is True
    assert methods["razorpay"]["enabled"] is False


def test_payment_method_updates_merge(client, fake_db, login):
    admin = login("admin")
    assert client.put("/api/v1/admin/payment-settings", json={"methodId": "paytm"}, headers=admin).status_code == 400

    client.put("/api/v1/admin/payment-settings", json={
        "methodId": "paytm", "updates": {"enabled": True, "config": {"merchantId": "MID1"}}
    }, headers=admin)
    response = client.put("/api/v1/admin/payment-settings", json={
        "methodId": "paytm", "updates": {"config": {"merchantKey": "KEY"}}
    }, headers=admin)
    method = response.json()["method"]
    assert method["enabled"] is True
    assert method["config"] == {"merchantId": "MID1", "merchantKey": "KEY"}
    stored = fake_db.rows("settings")[0]
    assert stored["key"] == "payment_paytm" and stored["value"]["config"]["merchantKey"] == "KEY"


def test_payment_settings_require_admin(client, login):
    assert client.get("/api/v1/admin/payment-settings", headers=login("sales")).status_code == 403
