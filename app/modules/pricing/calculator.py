"""
Pure price arithmetic: customer tiers, product offer prices, GST and GSTIN checks.
Nothing here touches the database.
"""
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from app.core.timeutils import parse_timestamp, utc_now, utc_now_iso

GST_RATE = 0.18
MINIMUM_PRICE_RATIO = 0.1
LOW_STOCK_THRESHOLD = 5

B2C_CATEGORY_DISCOUNTS = {"Normal": 0, "Standard": 5, "Premium": 10}
B2B_TIER_DISCOUNTS = {"Bronze": 8, "Silver": 12, "Gold": 15}
B2B_DEFAULT_DISCOUNT = 5

CATEGORY_DISCOUNTS = {
    "Audio": 15,
    "Accessories": 20,
    "Laptops": 10,
    "Monitors": 12,
    "Cameras": 8,
    "Tablets": 18,
    "Wearables": 25,
    "Furniture": 30,
}

BRAND_DISCOUNTS = {
    "CyberAcoustics": 10,
    "PowerTech": 15,
    "AuraTech": 8,
    "VisionTech": 12,
    "GameTech": 20,
    "DisplayPro": 10,
    "ErgoTech": 25,
    "AudioPro": 15,
}

# (percentage, (month, day) first, (month, day) last); repeats every year, may wrap past 31 Dec
SEASONAL_DISCOUNTS = {
    "DIWALI": (20, (10, 1), (11, 15)),
    "NEW_YEAR": (15, (12, 25), (1, 5)),
    "SUMMER_SALE": (25, (4, 1), (6, 30)),
    "MONSOON_SPECIAL": (18, (7, 1), (9, 30)),
}

# Holi follows the lunar calendar; the sale runs from five days before to the day after
HOLI_PERCENT = 15
HOLI_DATES = {
    2025: date(2025, 3, 14),
    2026: date(2026, 3, 4),
    2027: date(2027, 3, 22),
    2028: date(2028, 3, 11),
}

GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")


def round2(value: float) -> float:
    return round(value + 1e-9, 2)


def discount_percent(base: float, final: float) -> int:
    if base <= 0:
        return 0
    return round((base - final) / base * 100)


def b2c_price(product: Dict[str, Any], customer_category: Optional[str]) -> Dict[str, Any]:
    base = float(product.get("price") or 0)
    original = float(product.get("mrp") or base)
    percent = B2C_CATEGORY_DISCOUNTS.get(customer_category or "Normal", 0)
    final = base * (1 - percent / 100)

    offer_price = product.get("offer_price")
    if offer_price is not None and float(offer_price) < final:
        final = float(offer_price)
        percent = discount_percent(base, final)

    return {
        "original_price": original,
        "sale_price": base,
        "final_price": round2(final),
        "customer_type": "B2C",
        "discount_percentage": percent,
        "pricing_tier": customer_category or "Normal",
    }


def rule_matches_quantity(rule: Dict[str, Any], quantity: int) -> bool:
    low = rule.get("min_quantity") or 1
    high = rule.get("max_quantity")
    return quantity >= low and (high is None or quantity <= high)


def b2b_price(
    product: Dict[str, Any],
    tier: Optional[str],
    rule: Optional[Dict[str, Any]] = None,
    quantity: int = 1
) -> Dict[str, Any]:
    """A matching product_pricing rule wins over the tier discount. Never above the B2C price."""
    base = float(product.get("price") or 0)
    original = float(product.get("mrp") or base)
    final = base
    b2b = base
    if rule:
        if rule_matches_quantity(rule, quantity):
            b2b = float(rule["price"])
            final = b2b
    else:
        percent = B2B_TIER_DISCOUNTS.get(tier or "", B2B_DEFAULT_DISCOUNT)
        b2b = base * (1 - percent / 100)
        final = b2b

    final = min(final, base)
    return {
        "original_price": original,
        "sale_price": base,
        "b2b_price": round2(b2b),
        "final_price": round2(final),
        "customer_type": "B2B",
        "discount_percentage": discount_percent(base, final),
        "pricing_tier": tier or "Bronze",
        "quantity_based": rule is not None,
    }


def cart_totals(item_prices: List[Dict[str, Any]]) -> Dict[str, float]:
    subtotal = sum(i["total_price"] for i in item_prices)
    total_discount = sum(i["discount_amount"] for i in item_prices)
    gst = subtotal * GST_RATE
    return {
        "subtotal": round2(subtotal),
        "gst_amount": round2(gst),
        "total": round2(subtotal + gst),
        "total_discount": round2(total_discount),
    }


def verify_gstin(gstin: str, business_name: str) -> Dict[str, Any]:
    """Format and state-code check only; there is no registry lookup."""
    gstin = (gstin or "").strip().upper()
    if not GSTIN_PATTERN.match(gstin):
        return {"valid": False, "error": "Invalid GSTIN format"}
    state_code = gstin[:2]
    if not 1 <= int(state_code) <= 37:
        return {"valid": False, "error": "Invalid state code in GSTIN"}
    return {
        "valid": True,
        "details": {
            "gstin": gstin,
            "business_name": business_name,
            "state_code": state_code,
            "pan_number": gstin[2:12],
            "verified_at": utc_now_iso(),
        },
    }


def get_stock_status(quantity: int) -> str:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= LOW_STOCK_THRESHOLD:
        return "low_stock"
    return "in_stock"


def bulk_discount(quantity: int) -> int:
    if quantity >= 50:
        return 15
    if quantity >= 20:
        return 10
    if quantity >= 10:
        return 5
    return 0


def _custom_discount_applies(discount: Dict[str, Any], product: Dict[str, Any], quantity: int, now) -> bool:
    start = parse_timestamp(discount.get("start_date"))
    if start and start > now:
        return False
    end = parse_timestamp(discount.get("end_date"))
    if end and end < now:
        return False
    if discount.get("min_quantity") and quantity < discount["min_quantity"]:
        return False
    categories = discount.get("applicable_categories")
    if categories and product.get("category") not in categories:
        return False
    brands = discount.get("applicable_brands")
    if brands and product.get("brand") and product["brand"] not in brands:
        return False
    return True


def active_seasons(today: date) -> List[Tuple[str, int]]:
    """Seasonal sales running on `today` as (name, percentage)."""
    key = (today.month, today.day)
    running = []
    for season, (percent, first, last) in SEASONAL_DISCOUNTS.items():
        if first <= last:
            inside = first <= key <= last
        else:
            inside = key >= first or key <= last
        if inside:
            running.append((season, percent))
    holi = HOLI_DATES.get(today.year)
    if holi and holi - timedelta(days=5) <= today <= holi + timedelta(days=1):
        running.append(("HOLI", HOLI_PERCENT))
    return running


def calculate_offer_price(
    product: Dict[str, Any],
    customer_category: str = "Normal",
    quantity: int = 1,
    custom_discounts: Optional[List[Dict[str, Any]]] = None,
    now=None
) -> Dict[str, Any]:
    """Best storefront price for one product.

    Customer, category, brand and seasonal discounts compete (the lowest
    price wins); bulk and custom discounts then compound on top. The result
    never drops below 10% of the selling price and is rounded to whole rupees.
    """
    now = now or utc_now()
    original = float(product.get("price") or 0)
    mrp = float(product.get("mrp") or original)
    applied: List[str] = []
    current = original

    customer_percent = B2C_CATEGORY_DISCOUNTS.get(customer_category, 0)
    if customer_percent > 0:
        current = original * (1 - customer_percent / 100)
        applied.append(f"{customer_category} Customer ({customer_percent}%)")

    candidates = []
    category_percent = CATEGORY_DISCOUNTS.get(product.get("category"))
    if category_percent:
        candidates.append((category_percent, f"Category Discount ({category_percent}%)"))
    brand_percent = BRAND_DISCOUNTS.get(product.get("brand"))
    if brand_percent:
        candidates.append((brand_percent, f"Brand Discount ({brand_percent}%)"))
    for season, percent in active_seasons(now.date()):
        candidates.append((percent, f"{season} Sale ({percent}%)"))
    for percent, label in candidates:
        candidate_price = original * (1 - percent / 100)
        if candidate_price < current:
            current = candidate_price
            applied = [label]

    bulk = bulk_discount(quantity)
    if bulk:
        current = current * (1 - bulk / 100)
        applied.append(f"Bulk Order ({bulk}%)")

    for discount in custom_discounts or []:
        if not _custom_discount_applies(discount, product, quantity, now):
            continue
        discounted = current
        kind, value = discount.get("type"), float(discount.get("value") or 0)
        if kind == "percentage":
            discounted = current * (1 - value / 100)
            cap = discount.get("max_discount")
            if cap:
                discounted = max(discounted, current - original * (float(cap) / 100))
        elif kind == "fixed":
            discounted = max(0.0, current - value)
        elif kind == "buy_one_get_one" and quantity >= 2:
            discounted = current * 0.5
        if discounted < current:
            current = discounted
            applied.append(discount.get("name") or kind)

    current = max(current, original * MINIMUM_PRICE_RATIO)
    offer_price = int(current + 0.5)
    total_discount = original - offer_price
    return {
        "offer_price": offer_price,
        "original_price": original,
        "mrp": mrp,
        "total_discount": total_discount,
        "discount_percentage": discount_percent(original, offer_price),
        "applied_discounts": applied,
    }
