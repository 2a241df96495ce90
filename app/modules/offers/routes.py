from fastapi import APIRouter, Depends, Query
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import get_optional_user, get_user_profile, require_roles
from app.database.supabase_client import get_service_supabase
from app.modules.offers.schemas import (
    OfferPayload, OfferListResponse, OfferResponse, MessageResponse,
    DiscountRequest, CouponValidateRequest, CouponPayload, AutoOfferPayload, CartPricingResponse
)
from app.modules.offers.service import OfferService
from app.modules.offers.discounts import DiscountService
from supabase import Client
from typing import Dict, Optional

router = APIRouter(tags=["offers"])

# Auto offers and coupons are managed by the back office
OFFER_MANAGERS = ADMIN_ROLES


def get_offer_service(supabase: Client = Depends(get_service_supabase)) -> OfferService:
    return OfferService(supabase)


def get_discount_service(supabase: Client = Depends(get_service_supabase)) -> DiscountService:
    return DiscountService(supabase)


@router.get("/offers", response_model=OfferListResponse)
async def list_offers(
    active: bool = False,
    featured: bool = False,
    homepage: bool = False,
    include_expired: bool = False,
    service: OfferService = Depends(get_offer_service)
):
    """Public offer listing"""
    return service.list_offers(active, featured, homepage, include_expired)


@router.post("/offers", response_model=OfferResponse, status_code=201)
async def create_offer(
    body: OfferPayload,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: OfferService = Depends(get_offer_service)
):
    return service.create_offer(body.model_dump(exclude_none=True), current["id"])


@router.put("/offers", response_model=OfferResponse)
async def update_offer(
    body: OfferPayload,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: OfferService = Depends(get_offer_service)
):
    return service.update_offer(body.id, body.model_dump(exclude_none=True))


@router.delete("/offers", response_model=MessageResponse)
async def delete_offer(
    id: Optional[str] = Query(None),
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: OfferService = Depends(get_offer_service)
):
    """Delete an offer; offers with recorded usage are deactivated instead"""
    return service.delete_offer(id)


@router.get("/auto-offers")
async def list_auto_offers(
    active: bool = False,
    id: Optional[str] = Query(None),
    service: DiscountService = Depends(get_discount_service)
):
    if id:
        return service.get_auto_offer(id)
    return service.list_auto_offers(active_only=active)


@router.post("/auto-offers")
async def create_auto_offer(
    body: AutoOfferPayload,
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.create_auto_offer(body.model_dump(exclude_none=True))


@router.put("/auto-offers")
async def update_auto_offer(
    body: AutoOfferPayload,
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.update_auto_offer(body.id, body.model_dump(exclude_none=True))


@router.delete("/auto-offers")
async def delete_auto_offer(
    id: Optional[str] = Query(None),
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.delete_auto_offer(id)


@router.post("/discounts/calculate", response_model=CartPricingResponse)
async def calculate_discounts(
    body: DiscountRequest,
    current_user: Optional[Dict] = Depends(get_optional_user),
    supabase: Client = Depends(get_service_supabase),
    service: DiscountService = Depends(get_discount_service)
):
    """Best auto offer (unless auto_offers is false) plus an optional coupon for a cart"""
    customer_category = None
    if current_user:
        customer_category = get_user_profile(current_user["id"], supabase).get("customer_category")
    items = [item.model_dump() for item in body.items]
    return service.price_cart(items, customer_category, body.coupon_code, auto_offers=body.auto_offers)


@router.post("/coupons/validate")
async def validate_coupon(
    body: CouponValidateRequest,
    service: DiscountService = Depends(get_discount_service)
):
    items = [item.model_dump() for item in body.items]
    return service.validate_coupon(body.code, items, body.subtotal)


@router.get("/coupons")
async def list_coupons(
    id: Optional[str] = Query(None),
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    if id:
        return service.get_coupon(id)
    return service.list_coupons()


@router.post("/coupons")
async def create_coupon(
    body: CouponPayload,
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.create_coupon(body.model_dump(exclude_none=True))


@router.put("/coupons")
async def update_coupon(
    body: CouponPayload,
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.update_coupon(body.id, body.model_dump(exclude_none=True))


@router.delete("/coupons")
async def delete_coupon(
    id: Optional[str] = Query(None),
    current: Dict = Depends(require_roles(*OFFER_MANAGERS)),
    service: DiscountService = Depends(get_discount_service)
):
    return service.delete_coupon(id)
