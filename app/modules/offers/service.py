import logging
from supabase import Client
from fastapi import HTTPException
from typing import Any, Dict, List, Optional

from app.core.timeutils import parse_timestamp, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("percentage", "fixed_amount", "buy_x_get_y", "free_shipping")
CUSTOMER_ELIGIBILITY = ("all", "new_customers", "existing_customers", "vip_customers")
REQUIRED_FIELDS = ("title", "discount_type", "start_date", "end_date")

OFFER_DEFAULTS = {
    "is_active": True,
    "is_featured": False,
    "display_on_homepage": False,
    "priority": 0,
    "banner_color": "#dc2626",
    "usage_count": 0,
    "customer_eligibility": "all",
}


def normalize_offer(offer: Dict[str, Any]) -> Dict[str, Any]:
    """Return one shape for rows from the legacy and the current offers layout.

    discount_percentage/discount_amount mirror discount_value, and
    minimum_order_amount mirrors minimum_purchase_amount, in both directions.
    """
    out = {**OFFER_DEFAULTS, **{k: v for k, v in offer.items() if v is not None}}

    if not out.get("discount_type"):
        if out.get("discount_percentage") is not None:
            out["discount_type"] = "percentage"
        elif out.get("discount_amount") is not None:
            out["discount_type"] = "fixed_amount"
        else:
            out["discount_type"] = "percentage"

    if out.get("discount_value") is None:
        if out["discount_type"] == "percentage":
            out["discount_value"] = out.get("discount_percentage")
        else:
            out["discount_value"] = out.get("discount_amount")
    if out["discount_type"] == "percentage" and out.get("discount_percentage") is None:
        out["discount_percentage"] = out.get("discount_value")
    if out["discount_type"] == "fixed_amount" and out.get("discount_amount") is None:
        out["discount_amount"] = out.get("discount_value")

    if out.get("minimum_order_amount") is None:
        out["minimum_order_amount"] = out.get("minimum_purchase_amount")
    if out.get("minimum_purchase_amount") is None:
        out["minimum_purchase_amount"] = out.get("minimum_order_amount")

    if not out.get("applicable_categories") and out.get("category"):
        out["applicable_categories"] = [out["category"]]
    if not out.get("applicable_products") and out.get("product_ids"):
        out["applicable_products"] = list(out["product_ids"])
    return out


def is_expired(offer: Dict[str, Any], now=None) -> bool:
    end = parse_timestamp(offer.get("end_date"))
    return end is None or end <= (now or utc_now())


def sort_offers(offers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Priority descending, then newest first."""
    by_recency = sorted(offers, key=lambda o: str(o.get("created_at") or ""), reverse=True)
    return sorted(by_recency, key=lambda o: int(o.get("priority") or 0), reverse=True)


def filter_offers(
    offers: List[Dict[str, Any]],
    active: bool = False,
    featured: bool = False,
    homepage: bool = False,
    include_expired: bool = False
) -> List[Dict[str, Any]]:
    now = utc_now()
    result = []
    for offer in offers:
        if active and not offer.get("is_active"):
            continue
        if featured and not offer.get("is_featured"):
            continue
        if homepage and not offer.get("display_on_homepage"):
            continue
        if not include_expired and is_expired(offer, now):
            continue
        result.append(offer)
    return result


class OfferService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_offers(
        self,
        active: bool = False,
        featured: bool = False,
        homepage: bool = False,
        include_expired: bool = False
    ) -> Dict[str, Any]:
        try:
            query = self.supabase.table("offers").select("*")
            if active:
                query = query.eq("is_active", True)
            result = query.execute()
        except Exception as e:
            logger.error(f"Error fetching offers: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch offers")
        offers = [normalize_offer(o) for o in result.data or []]
        offers = sort_offers(filter_offers(offers, active, featured, homepage, include_expired))
        return {"offers": offers, "count": len(offers)}

    def _validate(self, data: Dict[str, Any], offer_id: Optional[str] = None) -> None:
        start, end = data.get("start_date"), data.get("end_date")
        if start and end:
            start_dt, end_dt = parse_timestamp(start), parse_timestamp(end)
            if start_dt is None or end_dt is None:
                raise HTTPException(status_code=400, detail="Invalid start_date or end_date")
            if end_dt <= start_dt:
                raise HTTPException(status_code=400, detail="End date must be after start date")
        if data.get("discount_type") and data["discount_type"] not in DISCOUNT_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid discount_type: {data['discount_type']}")
        if data.get("customer_eligibility") and data["customer_eligibility"] not in CUSTOMER_ELIGIBILITY:
            raise HTTPException(status_code=400, detail=f"Invalid customer_eligibility: {data['customer_eligibility']}")
        if data.get("offer_code"):
            query = self.supabase.table("offers")\
                .select("id")\
                .eq("offer_code", data["offer_code"])
            if offer_id:
                query = query.neq("id", offer_id)
            existing = query.limit(1).execute()
            if existing.data:
                raise HTTPException(status_code=400, detail="Offer code already exists")

    def create_offer(self, data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        for field in REQUIRED_FIELDS:
            if not data.get(field):
                raise HTTPException(status_code=400, detail=f"Missing required field: {field}")
        self._validate(data)
        payload = {k: v for k, v in data.items() if k != "id"}
        payload["created_by"] = user_id
        try:
            result = self.supabase.table("offers").insert(payload).execute()
        except Exception as e:
            logger.error(f"Error creating offer: {e}")
            raise HTTPException(status_code=500, detail="Failed to create offer")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create offer")
        logger.info(f"Offer {result.data[0].get('id')} created by {user_id}")
        return {"offer": normalize_offer(result.data[0]), "message": "Offer created successfully"}

    def update_offer(self, offer_id: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
        if not offer_id:
            raise HTTPException(status_code=400, detail="Offer ID is required")
        updates = {k: v for k, v in data.items() if k != "id"}
        self._validate(updates, offer_id=offer_id)
        updates["updated_at"] = utc_now_iso()
        try:
            result = self.supabase.table("offers")\
                .update(updates)\
                .eq("id", offer_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating offer {offer_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update offer")
        if not result.data:
            raise HTTPException(status_code=404, detail="Offer not found")
        return {"offer": normalize_offer(result.data[0]), "message": "Offer updated successfully"}

    def delete_offer(self, offer_id: Optional[str]) -> Dict[str, str]:
        """Used offers are deactivated instead of deleted."""
        if not offer_id:
            raise HTTPException(status_code=400, detail="Offer ID is required")
        try:
            usage = self.supabase.table("offer_usage")\
                .select("id")\
                .eq("offer_id", offer_id)\
                .limit(1)\
                .execute()
            if usage.data:
                self.supabase.table("offers")\
                    .update({"is_active": False})\
                    .eq("id", offer_id)\
                    .execute()
                return {"message": "Offer has been deactivated (cannot delete used offers)"}
            self.supabase.table("offers")\
                .delete()\
                .eq("id", offer_id)\
                .execute()
            return {"message": "Offer deleted successfully"}
        except Exception as e:
            logger.error(f"Error deleting offer {offer_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete offer")
