from fastapi import APIRouter, Depends
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import get_current_user_id, get_optional_user, require_roles
from app.database.supabase_client import get_service_supabase
from app.modules.pricing.schemas import (
    PricingRuleCreate, PricingRuleUpdate, PricingRuleListResponse,
    PriceCalculationRequest, PriceCalculationResponse, CustomerTypeResponse, B2BUpgradeRequest
)
from app.modules.pricing.service import PricingService
from supabase import Client
from typing import Dict, Optional

router = APIRouter(tags=["pricing"])


def get_pricing_service(supabase: Client = Depends(get_service_supabase)) -> PricingService:
    return PricingService(supabase)


@router.get("/admin/pricing", response_model=PricingRuleListResponse)
async def list_pricing_rules(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: PricingService = Depends(get_pricing_service)
):
    """All pricing rules with their product title"""
    return {"rules": service.list_rules()}


@router.post("/admin/pricing", status_code=201)
async def create_pricing_rule(
    rule: PricingRuleCreate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: PricingService = Depends(get_pricing_service)
):
    return {"rule": service.create_rule(rule.model_dump())}


@router.put("/admin/pricing/{rule_id}")
async def update_pricing_rule(
    rule_id: str,
    rule: PricingRuleUpdate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: PricingService = Depends(get_pricing_service)
):
    return {"rule": service.update_rule(rule_id, rule.model_dump(exclude_unset=True))}


@router.delete("/admin/pricing/{rule_id}")
async def delete_pricing_rule(
    rule_id: str,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: PricingService = Depends(get_pricing_service)
):
    service.delete_rule(rule_id)
    return {"message": "Pricing rule deleted successfully"}


@router.post("/pricing/calculate", response_model=PriceCalculationResponse)
async def calculate_pricing(
    body: PriceCalculationRequest,
    current_user: Optional[Dict] = Depends(get_optional_user),
    service: PricingService = Depends(get_pricing_service)
):
    """Cart pricing for the caller; anonymous callers get B2C Normal prices"""
    context = service.get_pricing_context(current_user["id"] if current_user else None)
    items = [item.model_dump() for item in body.items]
    return {"success": True, "pricing": service.calculate_cart_total(items, context)}


@router.get("/pricing/customer-type", response_model=CustomerTypeResponse)
async def get_customer_type(
    current_user: Dict = Depends(get_current_user_id),
    service: PricingService = Depends(get_pricing_service)
):
    context = service.get_pricing_context(current_user["id"])
    return {
        "success": True,
        "customer_type": context.customer_type,
        "customer_category": context.customer_category,
        "pricing_context": context
    }


@router.post("/pricing/customer-type")
async def upgrade_customer_type(
    body: B2BUpgradeRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: PricingService = Depends(get_pricing_service)
):
    """Verify a GSTIN and switch the caller to B2B pricing"""
    details = service.upgrade_to_b2b(
        current_user["id"], body.gstin, body.business_name, body.business_address, body.b2b_category
    )
    return {"success": True, "verification_result": {"valid": True, "details": details}}
