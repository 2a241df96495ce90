from fastapi import APIRouter, Depends, HTTPException, Query, Request
from app.config.permissions_config import ADMIN_ROLES, STAFF_ROLES
from app.core.dependencies import get_current_profile, require_roles
from app.core.rate_limit import limiter, user_or_ip_key
from app.database.supabase_client import get_service_supabase
from app.modules.notifications.service import NotificationService
from app.modules.orders.schemas import OrderCreate, OrderStatusUpdate, OrderListResponse, WalkInOrderCreate
from app.modules.orders.service import OrderService, WalkInOrderService
from supabase import Client
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])

ORDER_RATE = "5/minute"


def get_order_service(supabase: Client = Depends(get_service_supabase)) -> OrderService:
    return OrderService(supabase, NotificationService())


def get_walk_in_service(supabase: Client = Depends(get_service_supabase)) -> WalkInOrderService:
    return WalkInOrderService(supabase)


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current: Dict = Depends(get_current_profile),
    service: OrderService = Depends(get_order_service)
):
    """Caller's orders; admins get every order and may filter by status"""
    is_admin = current["role"] in ADMIN_ROLES
    return service.list_orders(current["id"], is_admin, status if is_admin else None, limit, offset)


@router.post("/orders", status_code=201)
@limiter.limit(ORDER_RATE, key_func=user_or_ip_key, error_message="Too many orders. Please try again shortly.")
async def create_order(
    body: OrderCreate,
    request: Request,
    current: Dict = Depends(get_current_profile),
    service: OrderService = Depends(get_order_service)
):
    order = service.create_order(body.model_dump(mode="json"), current["id"])
    return {"success": True, "order": order}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    current: Dict = Depends(get_current_profile),
    service: OrderService = Depends(get_order_service)
):
    return service.get_order(order_id, current["id"], current["role"] in ADMIN_ROLES)


@router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: OrderService = Depends(get_order_service)
):
    order = service.update_status(order_id, body.status, current["id"], body.notes)
    return {"success": True, "order": order}


@router.get("/walk-in-orders")
async def walk_in_orders(
    action: Optional[str] = None,
    date: Optional[str] = None,
    customer_id: Optional[str] = Query(None, alias="customerId"),
    phone: Optional[str] = None,
    current: Dict = Depends(require_roles(*STAFF_ROLES)),
    service: WalkInOrderService = Depends(get_walk_in_service)
):
    """Store (walk-in and pickup) orders: store-orders, daily-stats or customer-orders"""
    if action == "store-orders":
        return {"orders": service.store_orders(date)}
    if action == "daily-stats":
        return {"stats": service.daily_stats(date)}
    if action == "customer-orders":
        return {"orders": service.customer_orders(customer_id, phone)}
    raise HTTPException(status_code=400, detail="Invalid action parameter")


@router.post("/walk-in-orders")
async def create_walk_in_order(
    body: WalkInOrderCreate,
    action: Optional[str] = None,
    current: Dict = Depends(require_roles(*STAFF_ROLES)),
    service: WalkInOrderService = Depends(get_walk_in_service)
):
    if (action or body.action) != "create-order":
        raise HTTPException(status_code=400, detail="Invalid action")
    return service.create_order(body.model_dump(), current["id"])
