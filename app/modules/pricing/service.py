import logging
from supabase import Client
from fastapi import HTTPException
from typing import Any, Dict, List, Optional

from app.core.timeutils import parse_timestamp, utc_now, utc_now_iso
from app.modules.pricing import calculator
from app.modules.pricing.schemas import PricingContext

logger = logging.getLogger(__name__)

PRICING_RULE_FIELDS = (
    "product_id", "customer_type", "customer_category", "price", "min_quantity",
    "max_quantity", "valid_from", "valid_to", "is_active"
)


def _rule_is_current(rule: Dict[str, Any], now) -> bool:
    valid_from = parse_timestamp(rule.get("valid_from"))
    valid_to = parse_timestamp(rule.get("valid_to"))
    if valid_from and valid_from > now:
        return False
    return valid_to is None or valid_to >= now


def _serialize_rule(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key in PRICING_RULE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        out[key] = value.isoformat() if hasattr(value, "isoformat") else value
    return out


class PricingService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_pricing_context(self, user_id: Optional[str]) -> PricingContext:
        """B2B only for GST-verified business profiles; everyone else is priced as B2C."""
        if not user_id:
            return PricingContext()
        try:
            result = self.supabase.table("profiles")\
                .select("customer_type, customer_category, b2b_category, gst_verified")\
                .eq("id", user_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.warning(f"Pricing context lookup failed for {user_id}: {e}")
            return PricingContext(user_id=user_id)
        if not result.data:
            return PricingContext(user_id=user_id)

        profile = result.data[0]
        if profile.get("customer_type") == "B2B" and profile.get("gst_verified"):
            return PricingContext(
                customer_type="B2B",
                customer_category=profile.get("b2b_category") or "Bronze",
                user_id=user_id
            )
        return PricingContext(
            customer_type="B2C",
            customer_category=profile.get("customer_category") or "Normal",
            user_id=user_id
        )

    def _find_b2b_rule(self, product_id: str, tier: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("product_pricing")\
            .select("*")\
            .eq("product_id", product_id)\
            .eq("customer_type", "B2B")\
            .eq("customer_category", tier)\
            .eq("is_active", True)\
            .execute()
        now = utc_now()
        return next((r for r in result.data or [] if _rule_is_current(r, now)), None)

    def get_product_price(self, product: Dict[str, Any], context: PricingContext, quantity: int = 1) -> Dict[str, Any]:
        if context.customer_type == "B2C":
            return calculator.b2c_price(product, context.customer_category)
        rule = self._find_b2b_rule(product["id"], context.customer_category)
        return calculator.b2b_price(product, context.customer_category, rule, quantity)

    def _load_products(self, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        result = self.supabase.table("products")\
            .select("id, title, name, price, mrp, offer_price, category, brand")\
            .in_("id", product_ids)\
            .execute()
        return {p["id"]: p for p in result.data or []}

    def calculate_cart_total(self, items: List[Dict[str, Any]], context: PricingContext) -> Dict[str, Any]:
        """items: [{product_id, quantity}] priced for the given context, plus 18% GST."""
        try:
            products = self._load_products([i["product_id"] for i in items])
        except Exception as e:
            logger.error(f"Loading products for pricing failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to calculate pricing")

        item_prices = []
        for item in items:
            product = products.get(item["product_id"])
            if product is None:
                raise HTTPException(status_code=404, detail=f"Product not found: {item['product_id']}")
            quantity = item["quantity"]
            info = self.get_product_price(product, context, quantity)
            total = info["final_price"] * quantity
            item_prices.append({
                "product_id": product["id"],
                "quantity": quantity,
                "unit_price": info["final_price"],
                "total_price": calculator.round2(total),
                "discount_amount": calculator.round2((info["sale_price"] - info["final_price"]) * quantity),
                "pricing_info": info
            })

        return {
            **calculator.cart_totals(item_prices),
            "customer_type": context.customer_type,
            "pricing_tier": context.customer_category,
            "item_prices": item_prices
        }

    def upgrade_to_b2b(self, user_id: str, gstin: str, business_name: str,
                       business_address: Optional[str] = None, b2b_category: Optional[str] = None) -> Dict[str, Any]:
        verification = calculator.verify_gstin(gstin, business_name)
        if not verification["valid"]:
            raise HTTPException(status_code=400, detail=verification["error"])
        now = utc_now_iso()
        try:
            self.supabase.table("profiles")\
                .update({
                    "customer_type": "B2B",
                    "gstin": verification["details"]["gstin"],
                    "gst_verified": True,
                    "gst_verification_date": now,
                    "business_name": business_name,
                    "business_address": business_address,
                    "b2b_category": b2b_category or "Bronze",
                    "updated_at": now
                })\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.error(f"B2B upgrade failed for {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to upgrade customer to B2B")
        logger.info(f"User {user_id} upgraded to B2B")
        return verification["details"]

    # Admin pricing rules

    def list_rules(self) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table("product_pricing")\
                .select("*, products:product_id (id, title, category, price)")\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching pricing rules: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch pricing rules")
        rules = []
        for rule in result.data or []:
            product = rule.pop("products", None) or {}
            rules.append({**rule, "product_title": product.get("title") or "Unknown Product"})
        return rules

    def create_rule(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.supabase.table("product_pricing").insert(_serialize_rule(data)).execute()
        except Exception as e:
            logger.error(f"Error creating pricing rule: {e}")
            raise HTTPException(status_code=500, detail="Failed to create pricing rule")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create pricing rule")
        return result.data[0]

    def update_rule(self, rule_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        updates = _serialize_rule(data)
        if not updates:
            raise HTTPException(status_code=400, detail="No fields to update")
        try:
            result = self.supabase.table("product_pricing")\
                .update(updates)\
                .eq("id", rule_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating pricing rule {rule_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update pricing rule")
        if not result.data:
            raise HTTPException(status_code=404, detail="Pricing rule not found")
        return result.data[0]

    def delete_rule(self, rule_id: str) -> None:
        try:
            self.supabase.table("product_pricing")\
                .delete()\
                .eq("id", rule_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error deleting pricing rule {rule_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete pricing rule")
