"""
Automatic offers and coupons applied to a cart.

Cart items are dicts with product_id, price, quantity and category. An offer
or coupon is "general" when it is not limited to categories or products, in
which case it applies to the whole subtotal.
"""
import logging
from supabase import Client
from fastapi import HTTPException
from typing import Any, Dict, List, Optional

from app.core.timeutils import parse_timestamp, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

COUPON_TYPES = ("percentage", "fixed")
AUTO_OFFER_TYPES = ("percentage", "fixed_amount")


def _round2(value: float) -> float:
    return round(value + 1e-9, 2)


def cart_subtotal(items: List[Dict[str, Any]]) -> float:
    return sum(float(i.get("price") or 0) * int(i.get("quantity") or 0) for i in items)


def _conditions(offer: Dict[str, Any]) -> Dict[str, Any]:
    return offer.get("conditions") or {}


def _amount_for(items, categories=None, product_ids=None) -> float:
    if categories:
        items = [i for i in items if i.get("category") in categories]
    elif product_ids:
        items = [i for i in items if i.get("product_id") in product_ids]
    return cart_subtotal(items)


def is_offer_applicable(
    offer: Dict[str, Any],
    items: List[Dict[str, Any]],
    customer_category: Optional[str] = None,
    cart_total: float = 0
) -> bool:
    conditions = _conditions(offer)
    allowed_categories = conditions.get("customer_category")
    if allowed_categories and customer_category and customer_category not in allowed_categories:
        return False
    minimum = conditions.get("minimum_order_value")
    if minimum and cart_total < float(minimum):
        return False
    categories = conditions.get("applicable_categories")
    if categories and not any(i.get("category") in categories for i in items):
        return False
    product_ids = conditions.get("applicable_product_ids")
    if product_ids and not any(i.get("product_id") in product_ids for i in items):
        return False
    return True


def calculate_offer_discount(offer: Dict[str, Any], items: List[Dict[str, Any]], cart_total: float) -> float:
    conditions = _conditions(offer)
    categories = conditions.get("applicable_categories")
    product_ids = conditions.get("applicable_product_ids")
    if categories or product_ids:
        applicable = _amount_for(items, categories, product_ids)
    else:
        applicable = cart_total

    value = float(offer.get("discount_value") or 0)
    if offer.get("discount_type") == "fixed_amount":
        discount = min(value, applicable)
    else:
        discount = applicable * value / 100

    cap = offer.get("max_discount_amount")
    if cap:
        discount = min(discount, float(cap))
    return _round2(discount)


def coupon_rejection(coupon: Dict[str, Any], now=None) -> Optional[str]:
    """Reason the coupon cannot be used right now, or None."""
    now = now or utc_now()
    if coupon.get("status", "active") != "active":
        return "Coupon is not active"
    starts = parse_timestamp(coupon.get("start_date"))
    if starts and starts > now:
        return "Coupon is not active yet"
    expires = parse_timestamp(coupon.get("expiry_date"))
    if expires and expires < now:
        return "Coupon has expired"
    limit = coupon.get("usage_limit")
    if limit and int(coupon.get("used_count") or 0) >= int(limit):
        return "Coupon usage limit exceeded"
    return None


def is_coupon_applicable(coupon: Dict[str, Any], items: List[Dict[str, Any]], cart_total: float = 0) -> bool:
    minimum = coupon.get("min_purchase")
    if minimum and cart_total < float(minimum):
        return False
    category = coupon.get("applicable_category")
    if category and not any(i.get("category") == category for i in items):
        return False
    product_id = coupon.get("applicable_product_id")
    if product_id and not any(i.get("product_id") == product_id for i in items):
        return False
    return True


def calculate_coupon_discount(coupon: Dict[str, Any], items: List[Dict[str, Any]], cart_total: float) -> float:
    category = coupon.get("applicable_category")
    product_id = coupon.get("applicable_product_id")
    if category:
        applicable = _amount_for(items, categories=[category])
    elif product_id:
        applicable = _amount_for(items, product_ids=[product_id])
    else:
        applicable = cart_total

    value = float(coupon.get("value") or 0)
    if coupon.get("type") == "fixed":
        discount = min(value, applicable)
    else:
        discount = applicable * value / 100

    cap = coupon.get("max_discount_amount")
    if cap:
        discount = min(discount, float(cap))
    return _round2(discount)


def get_best_offer(
    offers: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
    customer_category: Optional[str] = None,
    cart_total: float = 0
) -> Optional[Dict[str, Any]]:
    """Applicable offer with the largest discount; earlier offers win ties."""
    best, best_discount = None, -1.0
    for offer in offers:
        if not is_offer_applicable(offer, items, customer_category, cart_total):
            continue
        discount = calculate_offer_discount(offer, items, cart_total)
        if discount > best_discount:
            best, best_discount = offer, discount
    return best


def can_combine(offer: Optional[Dict[str, Any]], coupon: Optional[Dict[str, Any]]) -> bool:
    """An offer and a coupon stack only when they target different parts of the cart."""
    if not offer or not coupon:
        return False
    conditions = _conditions(offer)
    offer_categories = conditions.get("applicable_categories") or []
    offer_products = conditions.get("applicable_product_ids") or []
    offer_general = not offer_categories and not offer_products
    coupon_general = not coupon.get("applicable_category") and not coupon.get("applicable_product_id")
    if offer_general and coupon_general:
        return False
    if coupon.get("applicable_category") in offer_categories:
        return False
    if coupon.get("applicable_product_id") in offer_products:
        return False
    return True


def calculate_cart_pricing(
    items: List[Dict[str, Any]],
    offers: List[Dict[str, Any]],
    customer_category: Optional[str] = None,
    coupon: Optional[Dict[str, Any]] = None,
    auto_offers: bool = True
) -> Dict[str, Any]:
    subtotal = _round2(cart_subtotal(items))
    best_offer = get_best_offer(offers, items, customer_category, subtotal) if auto_offers else None
    offer_discount = calculate_offer_discount(best_offer, items, subtotal) if best_offer else 0.0

    coupon_discount = 0.0
    if coupon and is_coupon_applicable(coupon, items, subtotal):
        coupon_discount = calculate_coupon_discount(coupon, items, subtotal)

    combinable = can_combine(best_offer, coupon)
    if combinable:
        total_discount = offer_discount + coupon_discount
    else:
        # keep the larger one; the offer wins a tie
        if coupon_discount > offer_discount:
            offer_discount = 0.0
        else:
            coupon_discount = 0.0
        total_discount = offer_discount + coupon_discount

    total_discount = _round2(min(total_discount, subtotal))
    return {
        "subtotal": subtotal,
        "best_offer": best_offer,
        "offer_discount": offer_discount,
        "coupon_discount": coupon_discount,
        "total_discount": total_discount,
        "final_total": _round2(max(0.0, subtotal - total_discount)),
        "can_combine": combinable,
    }


def is_auto_offer_live(offer: Dict[str, Any], now=None) -> bool:
    now = now or utc_now()
    conditions = _conditions(offer)
    valid_from = parse_timestamp(conditions.get("valid_from"))
    valid_to = parse_timestamp(conditions.get("valid_to"))
    if valid_from and valid_from > now:
        return False
    if valid_to and valid_to < now:
        return False
    return True


class DiscountService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    # Auto offers

    def list_auto_offers(self, active_only: bool = False) -> List[Dict[str, Any]]:
        try:
            query = self.supabase.table("auto_offers")\
                .select("*")\
                .order("priority", desc=True)
            if active_only:
                query = query.eq("is_active", True)
            result = query.execute()
        except Exception as e:
            logger.error(f"Error fetching auto offers: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch auto offers")
        return result.data or []

    def get_auto_offer(self, offer_id: str) -> Dict[str, Any]:
        result = self.supabase.table("auto_offers")\
            .select("*")\
            .eq("id", offer_id)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Auto offer not found")
        return result.data[0]

    def live_auto_offers(self) -> List[Dict[str, Any]]:
        """Active, auto-applied offers inside their validity window, highest priority first."""
        try:
            result = self.supabase.table("auto_offers")\
                .select("*")\
                .eq("is_active", True)\
                .eq("auto_apply", True)\
                .order("priority", desc=True)\
                .execute()
        except Exception as e:
            # pricing still works without auto offers
            logger.error(f"Error fetching live auto offers: {e}")
            return []
        now = utc_now()
        return [o for o in result.data or [] if is_auto_offer_live(o, now)]

    def create_auto_offer(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get("title") or not data.get("discount_type") or not data.get("discount_value"):
            raise HTTPException(status_code=400, detail="Title, discount type, and discount value are required")
        if data["discount_type"] not in AUTO_OFFER_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid discount_type: {data['discount_type']}")
        now = utc_now_iso()
        payload = {
            "title": data["title"],
            "description": data.get("description"),
            "discount_type": data["discount_type"],
            "discount_value": float(data["discount_value"]),
            "max_discount_amount": data.get("max_discount_amount"),
            "conditions": data.get("conditions") or {},
            "is_active": data.get("is_active") is not False,
            "auto_apply": bool(data.get("auto_apply")),
            "priority": int(data.get("priority") or 0),
            "created_at": now,
            "updated_at": now
        }
        result = self.supabase.table("auto_offers").insert(payload).execute()
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create auto offer")
        return result.data[0]

    def update_auto_offer(self, offer_id: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
        if not offer_id:
            raise HTTPException(status_code=400, detail="ID is required")
        updates = {k: v for k, v in data.items() if k != "id" and v is not None}
        if updates.get("discount_type") and updates["discount_type"] not in AUTO_OFFER_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid discount_type: {updates['discount_type']}")
        updates["updated_at"] = utc_now_iso()
        result = self.supabase.table("auto_offers")\
            .update(updates)\
            .eq("id", offer_id)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Auto offer not found")
        return result.data[0]

    def delete_auto_offer(self, offer_id: Optional[str]) -> Dict[str, bool]:
        if not offer_id:
            raise HTTPException(status_code=400, detail="ID is required")
        self.supabase.table("auto_offers")\
            .delete()\
            .eq("id", offer_id)\
            .execute()
        return {"success": True}

    # Coupons

    def list_coupons(self) -> List[Dict[str, Any]]:
        result = self.supabase.table("coupons")\
            .select("*")\
            .eq("status", "active")\
            .order("created_at", desc=True)\
            .execute()
        return result.data or []

    def get_coupon_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("coupons")\
            .select("*")\
            .eq("code", code.strip().upper())\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def get_coupon(self, coupon_id: str) -> Dict[str, Any]:
        result = self.supabase.table("coupons")\
            .select("*")\
            .eq("id", coupon_id)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Coupon not found")
        return result.data[0]

    def validate_coupon(self, code: str, items: List[Dict[str, Any]], subtotal: Optional[float] = None) -> Dict[str, Any]:
        coupon = self.get_coupon_by_code(code)
        if coupon is None:
            raise HTTPException(status_code=404, detail="Coupon not found")
        reason = coupon_rejection(coupon)
        if reason:
            raise HTTPException(status_code=400, detail=reason)
        total = subtotal if subtotal is not None else cart_subtotal(items)
        if not is_coupon_applicable(coupon, items, total):
            raise HTTPException(status_code=400, detail="Coupon is not applicable to this cart")
        return {
            "valid": True,
            "coupon": coupon,
            "discount": calculate_coupon_discount(coupon, items, total)
        }

    def applicable_coupons(self, items: List[Dict[str, Any]], cart_total: float) -> List[Dict[str, Any]]:
        try:
            coupons = self.list_coupons()
        except Exception as e:
            logger.error(f"Error fetching coupons: {e}")
            return []
        now = utc_now()
        return [
            c for c in coupons
            if coupon_rejection(c, now) is None and is_coupon_applicable(c, items, cart_total)
        ]

    def create_coupon(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get("code") or not data.get("title") or not data.get("type") or not data.get("value"):
            raise HTTPException(status_code=400, detail="Code, title, type, and value are required")
        if data["type"] not in COUPON_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid coupon type: {data['type']}")
        now = utc_now_iso()
        payload = {
            **{k: v for k, v in data.items() if k != "id" and v is not None},
            "code": data["code"].strip().upper(),
            "value": float(data["value"]),
            "used_count": 0,
            "status": data.get("status") or "active",
            "start_date": data.get("start_date") or now,
            "created_at": now,
            "updated_at": now
        }
        try:
            result = self.supabase.table("coupons").insert(payload).execute()
        except Exception as e:
            logger.error(f"Error creating coupon {payload['code']}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create coupon")
        return result.data[0] if result.data else payload

    def update_coupon(self, coupon_id: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
        if not coupon_id:
            raise HTTPException(status_code=400, detail="ID is required")
        updates = {k: v for k, v in data.items() if k != "id" and v is not None}
        if "code" in updates:
            updates["code"] = updates["code"].strip().upper()
        if updates.get("type") and updates["type"] not in COUPON_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid coupon type: {updates['type']}")
        updates["updated_at"] = utc_now_iso()
        result = self.supabase.table("coupons")\
            .update(updates)\
            .eq("id", coupon_id)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Coupon not found")
        return result.data[0]

    def delete_coupon(self, coupon_id: Optional[str]) -> Dict[str, bool]:
        if not coupon_id:
            raise HTTPException(status_code=400, detail="ID is required")
        self.supabase.table("coupons")\
            .delete()\
            .eq("id", coupon_id)\
            .execute()
        return {"success": True}

    def price_cart(
        self,
        items: List[Dict[str, Any]],
        customer_category: Optional[str] = None,
        coupon_code: Optional[str] = None,
        auto_offers: bool = True
    ) -> Dict[str, Any]:
        coupon, coupon_error = None, None
        if coupon_code:
            coupon = self.get_coupon_by_code(coupon_code)
            if coupon is None:
                coupon_error = "Coupon not found"
            else:
                coupon_error = coupon_rejection(coupon)
                if coupon_error:
                    coupon = None
        offers = self.live_auto_offers() if auto_offers else []
        pricing = calculate_cart_pricing(items, offers, customer_category, coupon, auto_offers)
        if coupon is not None and not is_coupon_applicable(coupon, items, pricing["subtotal"]):
            coupon_error = "Coupon is not applicable to this cart"
        pricing["coupon_error"] = coupon_error
        pricing["available_coupons"] = self.applicable_coupons(items, pricing["subtotal"])
        return pricing

