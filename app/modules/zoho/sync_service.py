"""
Product and stock sync between the store and Zoho Inventory.

Products go to Zoho in batches with a pause between batches; Zoho items come
back into the products table matched by zoho_item_id, then sku.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.core.timeutils import utc_now, utc_now_iso
from app.modules.products.csv_import import get_product_columns
from app.modules.zoho.inventory_client import ZohoApiError, ZohoInventoryClient
from app.modules.zoho.schemas import SyncResult

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
BATCH_PAUSE_SECONDS = 1.0
STORE_ID_FIELD = "tecbunny_id"
DEFAULT_STOCK_REASON = "Stock adjustment from TecBunny Store"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def to_zoho_item(product: Dict[str, Any]) -> Dict[str, Any]:
    price = _to_float(product.get("price") if product.get("price") is not None else product.get("base_price"))
    return {
        "name": product.get("title") or product.get("name") or "",
        "sku": product.get("sku") or str(product["id"]),
        "description": product.get("description") or "",
        "rate": price,
        "initial_stock": _to_int(product.get("stock_quantity")),
        "initial_stock_rate": price,
        "custom_fields": [{"customfield_id": STORE_ID_FIELD, "value": str(product["id"])}]
    }


def from_zoho_item(item: Dict[str, Any]) -> Dict[str, Any]:
    store_id = next(
        (f.get("value") for f in item.get("custom_fields") or [] if f.get("customfield_id") == STORE_ID_FIELD),
        None
    )
    return {
        "id": store_id,
        "title": item.get("name"),
        "name": item.get("name"),
        "sku": item.get("sku"),
        "description": item.get("description"),
        "price": item.get("rate"),
        "stock_quantity": item.get("stock_on_hand") or 0,
        "zoho_item_id": item.get("item_id")
    }


class ZohoSyncService:
    def __init__(self, supabase: Client, client: ZohoInventoryClient,
                 sleep: Callable[[float], None] = time.sleep):
        self.supabase = supabase
        self.client = client
        self.sleep = sleep

    def _fit_columns(self, row: Dict[str, Any]) -> Dict[str, Any]:
        columns = get_product_columns(self.supabase)
        if not columns:
            return row
        return {key: value for key, value in row.items() if key in columns}

    def sync_products_to_zoho(self, product_ids: Optional[List[str]] = None,
                              batch_size: int = DEFAULT_BATCH_SIZE) -> SyncResult:
        result = SyncResult()
        try:
            query = self.supabase.table("products").select("*")
            if product_ids:
                query = query.in_("id", product_ids)
            products = query.order("created_at", desc=True).execute().data or []
        except Exception as e:
            logger.error(f"Product sync to Zoho failed to load products: {e}")
            result.success = False
            result.errors.append(f"Product sync failed: {e}")
            return result

        logger.info(f"Syncing {len(products)} products to Zoho")
        for start in range(0, len(products), batch_size):
            for product in products[start:start + batch_size]:
                self._push_product(product, result)
            if start + batch_size < len(products):
                self.sleep(BATCH_PAUSE_SECONDS)

        logger.info(f"Product sync to Zoho done: {result.synced} synced, {result.failed} failed")
        return result

    def _push_product(self, product: Dict[str, Any], result: SyncResult) -> None:
        label = product.get("title") or product.get("name") or product.get("id")
        try:
            item = to_zoho_item(product)
            zoho_id = product.get("zoho_item_id")
            if zoho_id:
                self.client.update_item(zoho_id, item)
            else:
                response = self.client.create_item(item)
                zoho_id = (response.get("item") or {}).get("item_id")
                if zoho_id:
                    self.supabase.table("products")\
                        .update({"zoho_item_id": zoho_id, "zoho_synced_at": utc_now_iso()})\
                        .eq("id", product["id"])\
                        .execute()
            result.synced += 1
            result.details.append({"id": product["id"], "name": label, "zohoId": zoho_id, "status": "synced"})
        except Exception as e:
            result.failed += 1
            result.errors.append(f"Failed to sync product {label}: {e}")
            logger.error(f"Product {product.get('id')} sync to Zoho failed: {e}")

    def sync_products_from_zoho(self, per_page: int = 200) -> SyncResult:
        result = SyncResult()
        items: List[Dict[str, Any]] = []
        page = 1
        try:
            while True:
                body = self.client.list_items(page, per_page)
                items.extend(body.get("items") or [])
                if not (body.get("page_context") or {}).get("has_more_page"):
                    break
                page += 1
        except ZohoApiError as e:
            logger.error(f"Could not list Zoho items: {e}")
            result.success = False
            result.errors.append(f"Product sync from Zoho failed: {e}")
            return result

        logger.info(f"Pulling {len(items)} items from Zoho ({page} page(s))")
        for item in items:
            try:
                self._pull_item(item)
                result.synced += 1
                result.details.append({"zohoId": item.get("item_id"), "sku": item.get("sku"), "status": "synced"})
            except Exception as e:
                result.failed += 1
                result.errors.append(f"Failed to sync product from Zoho {item.get('name')}: {e}")
                logger.error(f"Zoho item {item.get('item_id')} import failed: {e}")
        return result

    def _find_local(self, item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for column, value in (("zoho_item_id", item.get("item_id")), ("sku", item.get("sku"))):
            if not value:
                continue
            found = self.supabase.table("products")\
                .select("id")\
                .eq(column, value)\
                .limit(1)\
                .execute()
            if found.data:
                return found.data[0]
        return None

    def _pull_item(self, item: Dict[str, Any]) -> None:
        local = from_zoho_item(item)
        local.pop("id")
        local["zoho_synced_at"] = utc_now_iso()
        existing = self._find_local(item)
        if existing:
            self.supabase.table("products").update(self._fit_columns(local)).eq("id", existing["id"]).execute()
        else:
            local["status"] = "active"
            self.supabase.table("products").insert(self._fit_columns(local)).execute()

    def sync_stock_to_zoho(self, zoho_item_id: str, new_quantity: int,
                           reason: str = DEFAULT_STOCK_REASON) -> Dict[str, Any]:
        """Post the difference between Zoho's stock on hand and the new quantity"""
        summary = self.client.get_stock_summary(zoho_item_id)
        current = _to_int(summary.get("stock_on_hand"))
        adjustment = new_quantity - current
        if adjustment == 0:
            return {"message": "No adjustment needed"}
        return self.client.adjust_stock({
            "adjustment_type": "quantity",
            "reason": reason,
            "adjustment_date": utc_now().date().isoformat(),
            "line_items": [{"item_id": zoho_item_id, "quantity_adjusted": adjustment}]
        })

    def adjust_stock(self, product_id: str, quantity: int, reason: Optional[str] = None) -> Dict[str, Any]:
        found = self.supabase.table("products")\
            .select("*")\
            .eq("id", product_id)\
            .limit(1)\
            .execute()
        if not found.data:
            raise HTTPException(status_code=404, detail="Product not found")
        product = found.data[0]
        previous = _to_int(product.get("stock_quantity"))

        try:
            self.supabase.table("products")\
                .update({"stock_quantity": quantity, "updated_at": utc_now_iso()})\
                .eq("id", product_id)\
                .execute()
        except Exception as e:
            logger.error(f"Local stock update for {product_id} failed: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to update local stock: {e}")

        try:
            self.supabase.table("stock_movements").insert({
                "product_id": product_id,
                "movement_type": "in" if quantity > previous else "out",
                "quantity": abs(quantity - previous),
                "reason": reason or "Stock adjustment via Zoho sync",
                "created_at": utc_now_iso()
            }).execute()
        except Exception as e:
            logger.warning(f"Could not record stock movement for {product_id}: {e}")

        zoho_item_id = product.get("zoho_item_id")
        if not zoho_item_id:
            zoho_result: Any = "No Zoho item ID"
        else:
            try:
                zoho_result = self.sync_stock_to_zoho(zoho_item_id, quantity, reason or DEFAULT_STOCK_REASON)
            except ZohoApiError as e:
                logger.warning(f"Zoho stock sync for {product_id} failed: {e}")
                zoho_result = {"error": str(e)}

        return {
            "message": "Stock updated successfully",
            "local_update": True,
            "zoho_sync": zoho_result,
            "new_quantity": quantity
        }

    def full_sync(self, direction: str, product_ids: Optional[List[str]] = None,
                  batch_size: int = DEFAULT_BATCH_SIZE) -> Dict[str, Any]:
        results: Dict[str, Any] = {"direction": direction}
        if direction in ("to_zoho", "bidirectional"):
            results["to_zoho"] = self.sync_products_to_zoho(product_ids, batch_size).model_dump()
        if direction in ("from_zoho", "bidirectional"):
            results["from_zoho"] = self.sync_products_from_zoho().model_dump()
        self._record_last_sync()
        return results

    def _record_last_sync(self) -> None:
        try:
            self.supabase.table("zoho_config").upsert(
                {"config_key": "last_sync", "config_value": utc_now_iso(), "updated_at": utc_now_iso()},
                on_conflict="config_key"
            ).execute()
        except Exception as e:
            logger.warning(f"Could not record last Zoho sync time: {e}")

    def status(self, configured: bool) -> Dict[str, Any]:
        local = self.supabase.table("products").select("id", count="exact").limit(1).execute()
        last = self.supabase.table("zoho_config")\
            .select("config_value")\
            .eq("config_key", "last_sync")\
            .limit(1)\
            .execute()
        status_payload = {
            "configured": configured,
            "sync_status": "not_configured",
            "local_products": local.count or 0,
            "zoho_items": 0,
            "last_sync": last.data[0]["config_value"] if last.data else None
        }
        if not configured:
            status_payload["error"] = "Please complete Zoho OAuth authentication first"
            return status_payload
        try:
            page = self.client.list_items(1, 1)
            status_payload["zoho_items"] = (page.get("page_context") or {}).get("total") or len(page.get("items") or [])
            status_payload["sync_status"] = "ready"
        except ZohoApiError as e:
            logger.warning(f"Zoho item count failed: {e}")
            status_payload["sync_status"] = "connection_error"
            status_payload["error"] = "Failed to connect to Zoho API"
        return status_payload
