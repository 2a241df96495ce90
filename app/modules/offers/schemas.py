from pydantic import BaseModel
from typing import Optional, List, Dict, Any


class OfferPayload(BaseModel):
    """Create/update body. Required fields are checked by the service so the
    caller gets "Missing required field: x" instead of a schema error."""
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    offer_code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    discount_percentage: Optional[float] = None
    minimum_order_amount: Optional[float] = None
    minimum_purchase_amount: Optional[float] = None
    maximum_discount_amount: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    display_on_homepage: Optional[bool] = None
    priority: Optional[int] = None
    banner_text: Optional[str] = None
    banner_color: Optional[str] = None
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None
    usage_limit: Optional[int] = None
    usage_limit_per_customer: Optional[int] = None
    customer_eligibility: Optional[str] = None
    terms_and_conditions: Optional[str] = None


class OfferListResponse(BaseModel):
    offers: List[Dict[str, Any]]
    count: int


class OfferResponse(BaseModel):
    offer: Dict[str, Any]
    message: str


class MessageResponse(BaseModel):
    message: str


class CartItem(BaseModel):
    product_id: str
    price: float
    quantity: int = 1
    category: Optional[str] = None


class DiscountRequest(BaseModel):
    items: List[CartItem]
    coupon_code: Optional[str] = None
    auto_offers: bool = True


class CouponValidateRequest(BaseModel):
    code: str
    items: List[CartItem] = []
    subtotal: Optional[float] = None


class CouponPayload(BaseModel):
    id: Optional[str] = None
    code: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    value: Optional[float] = None
    min_purchase: Optional[float] = None
    max_discount_amount: Optional[float] = None
    applicable_category: Optional[str] = None
    applicable_product_id: Optional[str] = None
    usage_limit: Optional[int] = None
    used_count: Optional[int] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    expiry_date: Optional[str] = None


class AutoOfferConditions(BaseModel):
    customer_category: Optional[List[str]] = None
    minimum_order_value: Optional[float] = None
    applicable_categories: Optional[List[str]] = None
    applicable_product_ids: Optional[List[str]] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None


class AutoOfferPayload(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    max_discount_amount: Optional[float] = None
    conditions: Optional[AutoOfferConditions] = None
    is_active: Optional[bool] = None
    auto_apply: Optional[bool] = None
    priority: Optional[int] = None


class CartPricingResponse(BaseModel):
    subtotal: float
    best_offer: Optional[Dict[str, Any]] = None
    offer_discount: float
    coupon_discount: float
    total_discount: float
    final_total: float
    can_combine: bool
    coupon_error: Optional[str] = None
    available_coupons: List[Dict[str, Any]] = []
