import inspect
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from app.config import settings
from app.core.timeutils import utc_now
from app.main import app
from app.modules.zoho.inventory_client import ZohoApiError, ZohoInventoryClient
from app.modules.zoho.routes import get_sync_service, get_token_manager, run_sync
from app.modules.zoho.sync_service import ZohoSyncService, from_zoho_item, to_zoho_item
from app.modules.zoho.token_manager import ZohoTokenManager

ZOHO_SETTINGS = ("zoho_client_id", "zoho_client_secret", "zoho_redirect_uri",
                 "zoho_organization_id", "zoho_access_token", "zoho_refresh_token")


@pytest.fixture(autouse=True)
def unset_zoho_env(monkeypatch):
    for name in ZOHO_SETTINGS:
        monkeypatch.setattr(settings, name, None)


class FakeZoho:
    """Stands in for accounts.zoho.in and the inventory API."""

    def __init__(self, valid_token="fresh"):
        self.valid_token = valid_token
        self.token_forms = []
        self.api_calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/v2/token"):
            self.token_forms.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
            return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r2", "expires_in": 3600})
        self.api_calls.append(request)
        if request.headers["Authorization"] != f"Zoho-oauthtoken {self.valid_token}":
            return httpx.Response(401, json={"message": "token expired"})
        return httpx.Response(200, json={"items": [{"item_id": "z1"}]})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class FakeInventory:
    def __init__(self, items=(), stock_on_hand=0, failing_skus=()):
        self.items = list(items)
        self.stock_on_hand = stock_on_hand
        self.failing_skus = set(failing_skus)
        self.created = []
        self.updated = []
        self.adjustments = []
        self.pages_read = []

    def create_item(self, item):
        if item["sku"] in self.failing_skus:
            raise ZohoApiError("duplicate sku", 400)
        self.created.append(item)
        return {"item": {"item_id": f"z-{item['sku']}"}}

    def update_item(self, item_id, item):
        self.updated.append((item_id, item))
        return {}

    def list_items(self, page=1, per_page=200):
        self.pages_read.append(page)
        start = (page - 1) * per_page
        return {
            "items": self.items[start:start + per_page],
            "page_context": {"total": len(self.items), "has_more_page": start + per_page < len(self.items)},
        }

    def get_stock_summary(self, item_id):
        return {"stock_on_hand": self.stock_on_hand}

    def adjust_stock(self, adjustment):
        self.adjustments.append(adjustment)
        return {"inventory_adjustment": {"adjustment_id": "adj1"}}


def _seed_config(fake_db, token_expires_in=timedelta(hours=1), **values):
    config = {"client_id": "cid", "client_secret": "secret", "organization_id": "org1",
              "redirect_uri": "https://api.tecbunny.in/api/v1/zoho/auth/callback", "refresh_token": "r1", **values}
    for key, value in config.items():
        fake_db.seed("zoho_config", {"config_key": key, "config_value": value})
    fake_db.seed("zoho_config", {
        "config_key": "access_token", "config_value": "stale",
        "expires_at": (utc_now() + token_expires_in).isoformat()
    })


def _config_value(fake_db, key):
    return next(r["config_value"] for r in fake_db.rows("zoho_config") if r["config_key"] == key)


def test_item_mapping():
    item = to_zoho_item({"id": "p1", "title": "Router", "base_price": "1500", "stock_quantity": "4"})
    assert item["name"] == "Router" and item["sku"] == "p1"
    assert item["rate"] == 1500.0 and item["initial_stock"] == 4
    assert item["custom_fields"] == [{"customfield_id": "tecbunny_id", "value": "p1"}]

    local = from_zoho_item({"item_id": "z9", "name": "Switch", "rate": 900,
                            "custom_fields": [{"customfield_id": "tecbunny_id", "value": "p9"}]})
    assert local["id"] == "p9" and local["zoho_item_id"] == "z9"
    assert local["stock_quantity"] == 0


def test_config_prefers_stored_values(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "zoho_client_id", "env-id")
    monkeypatch.setattr(settings, "zoho_organization_id", "env-org")
    fake_db.seed("zoho_config", {"config_key": "client_id", "config_value": "db-id"})
    config = ZohoTokenManager(fake_db).get_config()
    assert config["client_id"] == "db-id"
    assert config["organization_id"] == "env-org"
    assert config["client_secret"] is None


def test_expired_token_is_refreshed_once(fake_db):
    _seed_config(fake_db, token_expires_in=timedelta(minutes=-5))
    zoho = FakeZoho()
    tokens = ZohoTokenManager(fake_db, http_client=zoho.client())

    assert tokens.get_access_token() == "fresh"
    assert tokens.get_access_token() == "fresh"
    assert len(zoho.token_forms) == 1
    assert zoho.token_forms[0]["grant_type"] == "refresh_token"
    assert zoho.token_forms[0]["refresh_token"] == "r1"
    assert _config_value(fake_db, "access_token") == "fresh"


def test_valid_stored_token_needs_no_refresh(fake_db):
    _seed_config(fake_db)
    zoho = FakeZoho()
    assert ZohoTokenManager(fake_db, http_client=zoho.client()).get_access_token() == "stale"
    assert zoho.token_forms == []


def test_refresh_needs_client_credentials(fake_db):
    fake_db.seed("zoho_config", {"config_key": "refresh_token", "config_value": "r1"})
    zoho = FakeZoho()
    assert ZohoTokenManager(fake_db, http_client=zoho.client()).refresh_access_token() is None
    assert zoho.token_forms == []


def test_exchange_code_stores_both_tokens(fake_db):
    _seed_config(fake_db)
    zoho = FakeZoho()
    tokens = ZohoTokenManager(fake_db, http_client=zoho.client())
    assert tokens.exchange_code("abc") == {"expires_in": 3600, "has_refresh_token": True}
    assert zoho.token_forms[0]["grant_type"] == "authorization_code"
    assert zoho.token_forms[0]["code"] == "abc"
    assert _config_value(fake_db, "refresh_token") == "r2"

    url = tokens.authorization_url()
    assert url.startswith(f"{settings.zoho_accounts_url}/oauth/v2/auth?")
    assert "client_id=cid" in url and "access_type=offline" in url


def test_inventory_client_retries_after_401(fake_db):
    _seed_config(fake_db)
    zoho = FakeZoho(valid_token="fresh")
    http = zoho.client()
    client = ZohoInventoryClient(ZohoTokenManager(fake_db, http_client=http), http_client=http)

    assert client.list_items() == {"items": [{"item_id": "z1"}]}
    assert len(zoho.api_calls) == 2
    assert zoho.api_calls[1].url.params["organization_id"] == "org1"
    assert len(zoho.token_forms) == 1


def test_inventory_client_needs_a_token(fake_db):
    with pytest.raises(ZohoApiError) as excinfo:
        ZohoInventoryClient(ZohoTokenManager(fake_db)).list_items()
    assert excinfo.value.status_code == 401


def test_push_products_in_batches(fake_db):
    fake_db.seed(
        "products",
        {"id": "p1", "title": "Router", "sku": "R1", "price": 100, "created_at": "2026-01-03"},
        {"id": "p2", "title": "Switch", "sku": "S1", "price": 200, "zoho_item_id": "z-old", "created_at": "2026-01-02"},
        {"id": "p3", "title": "Cable", "sku": "C1", "price": 20, "created_at": "2026-01-01"},
    )
    inventory = FakeInventory(failing_skus={"C1"})
    pauses = []
    result = ZohoSyncService(fake_db, inventory, sleep=pauses.append).sync_products_to_zoho(batch_size=2)

    assert (result.synced, result.failed) == (2, 1)
    assert pauses == [1.0]
    assert inventory.updated[0][0] == "z-old"
    assert "Cable" in result.errors[0]
    router = next(p for p in fake_db.rows("products") if p["id"] == "p1")
    assert router["zoho_item_id"] == "z-R1"


def test_pull_products_matches_by_sku(fake_db):
    fake_db.seed("products", {"id": "p1", "sku": "R1", "title": "Old name"})
    inventory = FakeInventory(items=[
        {"item_id": "z1", "name": "Router AX", "sku": "R1", "rate": 1200, "stock_on_hand": 7},
        {"item_id": "z2", "name": "Mesh kit", "sku": "M1", "rate": 5000},
    ])
    result = ZohoSyncService(fake_db, inventory).sync_products_from_zoho()
    assert result.synced == 2
    rows = {p["sku"]: p for p in fake_db.rows("products")}
    assert rows["R1"]["title"] == "Router AX" and rows["R1"]["zoho_item_id"] == "z1"
    assert rows["M1"]["status"] == "active"


def test_pull_products_follows_every_page(fake_db):
    inventory = FakeInventory(items=[{"item_id": f"z{n}", "name": f"Item {n}", "sku": f"S{n}", "rate": 10} for n in range(5)])
    result = ZohoSyncService(fake_db, inventory).sync_products_from_zoho(per_page=2)
    assert inventory.pages_read == [1, 2, 3]
    assert result.synced == 5
    assert {p["sku"] for p in fake_db.rows("products")} == {"S0", "S1", "S2", "S3", "S4"}


def test_adjust_stock_mirrors_difference(fake_db):
    fake_db.seed("products",
                 {"id": "p1", "stock_quantity": 5, "zoho_item_id": "z1"},
                 {"id": "p2", "stock_quantity": 5})
    inventory = FakeInventory(stock_on_hand=3)
    service = ZohoSyncService(fake_db, inventory)

    result = service.adjust_stock("p1", 8, "Restock")
    assert result["new_quantity"] == 8
    assert inventory.adjustments[0]["line_items"] == [{"item_id": "z1", "quantity_adjusted": 5}]
    movement = fake_db.rows("stock_movements")[0]
    assert movement["movement_type"] == "in" and movement["quantity"] == 3

    assert service.adjust_stock("p2", 1)["zoho_sync"] == "No Zoho item ID"
    assert fake_db.rows("stock_movements")[1]["movement_type"] == "out"


def test_auth_url_route(client, fake_db, login):
    admin = login("admin")
    assert client.get("/api/v1/zoho/auth", headers=admin).status_code == 503
    _seed_config(fake_db)
    assert "client_id=cid" in client.get("/api/v1/zoho/auth", headers=admin).json()["authURL"]
    assert client.get("/api/v1/zoho/auth", headers=login("sales")).status_code == 403


def test_oauth_callback_redirects(client, fake_db):
    page = f"{settings.site_url}/management/integrations/zoho"
    denied = client.get("/api/v1/zoho/auth/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert denied.status_code == 303
    assert denied.headers["location"] == f"{page}?error=access_denied"
    assert client.get("/api/v1/zoho/auth/callback").status_code == 400

    failed = client.get("/api/v1/zoho/auth/callback", params={"code": "abc"}, follow_redirects=False)
    assert failed.headers["location"] == f"{page}?error=token_exchange_failed"

    _seed_config(fake_db)
    zoho = FakeZoho()
    app.dependency_overrides[get_token_manager] = lambda: ZohoTokenManager(fake_db, http_client=zoho.client())
    connected = client.get("/api/v1/zoho/auth/callback", params={"code": "abc"}, follow_redirects=False)
    assert connected.headers["location"] == f"{page}?connected=1"
    assert _config_value(fake_db, "access_token") == "fresh"


def test_config_update_is_admin_only(client, fake_db, login):
    body = {"client_id": "new-id", "client_secret": "s3"}
    assert client.put("/api/v1/zoho/config", json=body, headers=login("manager")).status_code == 403
    assert client.put("/api/v1/zoho/config", json=body, headers=login("admin")).status_code == 200
    secret = next(r for r in fake_db.rows("zoho_config") if r["config_key"] == "client_secret")
    assert secret["config_value"] == "s3" and secret["encrypted"] is True


def test_sync_route(client, fake_db, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_token", "job-token")
    headers = {"x-internal-token": "job-token"}
    assert client.post("/api/v1/zoho/sync", json={"direction": "to_zoho"}, headers=headers).status_code == 503

    _seed_config(fake_db)
    fake_db.seed("products", {"id": "p1", "title": "Router", "sku": "R1", "price": 100})
    app.dependency_overrides[get_sync_service] = lambda: ZohoSyncService(fake_db, FakeInventory(), sleep=lambda s: None)
    body = client.post("/api/v1/zoho/sync", json={"direction": "to_zoho"}, headers=headers).json()
    assert body["direction"] == "to_zoho"
    assert body["to_zoho"]["synced"] == 1
    assert "from_zoho" not in body
    assert _config_value(fake_db, "last_sync")

    bad = client.post("/api/v1/zoho/sync", json={"direction": "sideways"}, headers=headers)
    assert bad.status_code == 422


def test_sync_status_route(client, fake_db, login):
    admin = login("admin")
    not_ready = client.get("/api/v1/zoho/sync", headers=admin).json()
    assert not_ready["sync_status"] == "not_configured"

    _seed_config(fake_db)
    fake_db.seed("products", {"id": "p1"})
    app.dependency_overrides[get_sync_service] = lambda: ZohoSyncService(fake_db, FakeInventory(items=[{"item_id": "z1"}]))
    ready = client.get("/api/v1/zoho/sync", headers=admin).json()
    assert ready["sync_status"] == "ready"
    assert ready["zoho_items"] == 1 and ready["local_products"] == 1


def test_stock_adjust_needs_inventory_permission(client, fake_db, login):
    fake_db.seed("products", {"id": "p1", "stock_quantity": 2})
    body = {"productId": "p1", "quantity": 6}
    assert client.post("/api/v1/zoho/stock/adjust", json=body, headers=login("sales")).status_code == 403

    response = client.post("/api/v1/zoho/stock/adjust", json=body, headers=login("manager"))
    assert response.status_code == 200
    assert response.json()["zoho_sync"] == "No Zoho item ID"
    missing = client.post("/api/v1/zoho/stock/adjust", json={"productId": "nope", "quantity": 1}, headers=login("admin"))
    assert missing.status_code == 404


def test_sync_route_runs_in_threadpool():
    assert not inspect.iscoroutinefunction(run_sync)
