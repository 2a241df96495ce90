import json
import logging
from supabase import Client
from fastapi import HTTPException, status
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.core.timeutils import utc_now, utc_now_iso
from app.modules.notifications.service import NotificationService, normalize_phone

logger = logging.getLogger(__name__)

GST_RATE = 0.18
WALK_IN_GST_PERCENT = 18
STORE_ORDER_FILTER = "type.eq.Walk-in,type.eq.Pickup"


def _round2(value: float) -> float:
    return round(value + 1e-9, 2)


def _decode_items(order: Dict[str, Any]) -> Dict[str, Any]:
    """Online orders keep cart and contact details JSON-encoded in `items`."""
    raw = order.get("items")
    if not isinstance(raw, str):
        return order
    try:
        details = json.loads(raw or "{}")
    except ValueError:
        return order
    if not isinstance(details, dict):
        return order
    return {
        **order,
        "customer_email": order.get("customer_email") or details.get("customer_email"),
        "customer_phone": order.get("customer_phone") or details.get("customer_phone"),
        "delivery_address": details.get("delivery_address"),
        "payment_method": order.get("payment_method") or details.get("payment_method"),
        "notes": order.get("notes") or details.get("customer_notes"),
        "items": details.get("cart_items") or [],
    }


def day_bounds(day: Optional[str]) -> tuple:
    """Start of the day and start of the next one, for gte/lt filters."""
    try:
        start = date.fromisoformat(day) if day else utc_now().date()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date, expected YYYY-MM-DD")
    return f"{start.isoformat()}T00:00:00", f"{(start + timedelta(days=1)).isoformat()}T00:00:00"


def daily_stats(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    revenue = 0.0
    for order in orders:
        try:
            revenue += float(order.get("total") or 0)
        except (TypeError, ValueError):
            continue
    return {
        "totalOrders": len(orders),
        "totalRevenue": _round2(revenue),
        "completedOrders": sum(1 for o in orders if o.get("status") == "Completed"),
        "pendingOrders": sum(1 for o in orders if o.get("status") == "Pending"),
    }


class OrderService:
    def __init__(self, supabase: Client, notifier: Optional[NotificationService] = None):
        self.supabase = supabase
        self.notifier = notifier

    def list_orders(self, user_id: str, is_admin: bool = False, status_filter: Optional[str] = None,
                    limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        """Own orders for customers; admins see everything"""
        try:
            query = self.supabase.table("orders").select("*")
            if not is_admin:
                query = query.eq("customer_id", user_id)
            if status_filter:
                query = query.eq("status", status_filter)
            result = query.order("created_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching orders: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch orders")
        orders = [_decode_items(o) for o in result.data or []]
        return {"orders": orders, "count": len(orders)}

    def get_order(self, order_id: str, user_id: str, is_admin: bool = False) -> Dict[str, Any]:
        try:
            result = self.supabase.table("orders")\
                .select("*")\
                .eq("id", order_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching order {order_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch order")

        # other customers' orders look missing rather than forbidden
        if not result.data or (not is_admin and result.data[0].get("customer_id") != user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

        order = _decode_items(result.data[0])
        items = self.supabase.table("order_items")\
            .select("*")\
            .eq("order_id", order_id)\
            .execute()
        order["order_items"] = items.data or []
        return order

    def create_order(self, data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """Online checkout order. Totals default to the item sum plus 18% GST."""
        items = data.get("items") or []
        subtotal = data.get("subtotal")
        if subtotal is None:
            subtotal = sum(i["price"] * i["quantity"] for i in items)
        gst_amount = data.get("gst_amount")
        if gst_amount is None:
            gst_amount = subtotal * GST_RATE
        total = data.get("total")
        if total is None:
            total = subtotal + gst_amount

        details = {
            "cart_items": items,
            "customer_email": data["customer_email"],
            "customer_phone": data["customer_phone"],
            "delivery_address": data.get("delivery_address"),
            "payment_method": data.get("payment_method"),
            "customer_notes": data.get("notes"),
        }
        row = {
            "customer_name": data["customer_name"],
            "customer_id": data.get("customer_id") or user_id,
            "status": "Pending",
            "type": data.get("type") or "Delivery",
            "subtotal": _round2(subtotal),
            "gst_amount": _round2(gst_amount),
            "total": _round2(total),
            "items": json.dumps(details),
            "processed_by": None,
            "created_at": utc_now_iso(),
        }
        try:
            result = self.supabase.table("orders").insert(row).execute()
        except Exception as e:
            logger.error(f"Error creating order for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create order")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create order")

        order = _decode_items(result.data[0])
        logger.info(f"Order {order['id']} created by {user_id}")

        if self.notifier:
            self.notifier.notify_best_effort(
                "whatsapp",
                phone=normalize_phone(data["customer_phone"]),
                message=f"Hi {data['customer_name']}, your TecBunny order {order['id']} has been placed. "
                        f"Total: Rs.{order['total']}"
            )
        return order

    def update_status(self, order_id: str, new_status: str, processed_by: str,
                      notes: Optional[str] = None) -> Dict[str, Any]:
        updates = {"status": new_status, "processed_by": processed_by, "updated_at": utc_now_iso()}
        if notes is not None:
            updates["notes"] = notes
        try:
            result = self.supabase.table("orders")\
                .update(updates)\
                .eq("id", order_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating order {order_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update order status")
        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        logger.info(f"Order {order_id} moved to {new_status} by {processed_by}")
        return result.data[0]


class WalkInOrderService:
    """Point-of-sale orders created by store staff (types Walk-in and Pickup)."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _store_orders_query(self, columns: str = "*"):
        return self.supabase.table("orders")\
            .select(columns)\
            .or_(STORE_ORDER_FILTER)

    def store_orders(self, day: Optional[str] = None) -> List[Dict[str, Any]]:
        start, end = day_bounds(day)
        try:
            result = self._store_orders_query()\
                .gte("created_at", start)\
                .lt("created_at", end)\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching store orders: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch store orders")

        orders = result.data or []
        if not orders:
            return []
        items = self.supabase.table("order_items")\
            .select("*")\
            .in_("order_id", [o["id"] for o in orders])\
            .execute()
        by_order: Dict[str, List[Dict[str, Any]]] = {}
        for item in items.data or []:
            by_order.setdefault(item["order_id"], []).append(item)
        return [{**o, "order_items": by_order.get(o["id"], [])} for o in orders]

    def daily_stats(self, day: Optional[str] = None) -> Dict[str, Any]:
        start, end = day_bounds(day)
        try:
            result = self._store_orders_query("total, status")\
                .gte("created_at", start)\
                .lt("created_at", end)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching daily stats: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch daily stats")
        return daily_stats(result.data or [])

    def customer_orders(self, customer_id: Optional[str] = None, phone: Optional[str] = None) -> List[Dict[str, Any]]:
        if not customer_id and not phone:
            raise HTTPException(status_code=400, detail="Customer ID or phone number is required")
        query = self._store_orders_query()
        if customer_id:
            query = query.eq("customer_id", customer_id)
        else:
            query = query.eq("customer_phone", phone)
        try:
            result = query.order("created_at", desc=True).execute()
        except Exception as e:
            logger.error(f"Error fetching customer orders: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch customer orders")
        return result.data or []

    def create_order(self, data: Dict[str, Any], staff_id: Optional[str] = None) -> Dict[str, Any]:
        """Walk-in sale: totals with 18% GST, order row then items; the order is removed if items fail."""
        items = data.get("items") or []
        if not items:
            raise HTTPException(status_code=400, detail="At least one item is required")
        subtotal = sum(i["price"] * i["quantity"] for i in items)
        gst_amount = subtotal * GST_RATE

        try:
            result = self.supabase.table("orders").insert({
                "customer_name": data.get("customer_name"),
                "customer_email": data.get("customer_email"),
                "customer_phone": data.get("customer_phone"),
                "status": "Pending",
                "type": "Walk-in",
                "subtotal": _round2(subtotal),
                "gst_amount": _round2(gst_amount),
                "total": _round2(subtotal + gst_amount),
                "payment_method": data.get("payment_method"),
                "notes": data.get("notes"),
                "processed_by": staff_id,
                "created_at": utc_now_iso()
            }).execute()
        except Exception as e:
            logger.error(f"Error creating walk-in order: {e}")
            raise HTTPException(status_code=500, detail="Failed to create order")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create order")
        order = result.data[0]

        order_items = [
            {
                "order_id": order["id"],
                "product_id": item.get("product_id"),
                "name": item.get("name"),
                "quantity": item["quantity"],
                "price": item["price"],
                "gst_rate": WALK_IN_GST_PERCENT,
            }
            for item in items
        ]
        try:
            self.supabase.table("order_items").insert(order_items).execute()
        except Exception as e:
            logger.error(f"Walk-in order {order['id']} items failed, rolling back: {e}")
            self.supabase.table("orders").delete().eq("id", order["id"]).execute()
            raise HTTPException(status_code=500, detail="Failed to create order items")

        logger.info(f"Walk-in order {order['id']} created by {staff_id}")
        return {"order": order, "items": order_items}
