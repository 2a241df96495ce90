from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import get_optional_user, require_roles
from app.core.rate_limit import limiter, user_or_ip_key
from app.database.supabase_client import get_service_supabase
from app.modules.payments.schemas import (
    PaytmInitiateRequest, PaytmInitiateResponse, PaytmStatusResponse, PaytmRefundRequest,
    RazorpayInitiateRequest, RazorpayVerifyRequest
)
from app.modules.payments.service import PaymentService
from supabase import Client
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payments"])

INITIATE_RATE = "5/minute"
INITIATE_RATE_MESSAGE = "Too many payment attempts. Please wait a minute."
NO_STORE_HEADERS = {"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"}


def get_payment_service(supabase: Client = Depends(get_service_supabase)) -> PaymentService:
    return PaymentService(supabase)


@router.post("/paytm/initiate", response_model=PaytmInitiateResponse)
@limiter.limit(INITIATE_RATE, error_message=INITIATE_RATE_MESSAGE)
async def initiate_paytm(
    body: PaytmInitiateRequest,
    request: Request,
    service: PaymentService = Depends(get_payment_service)
):
    """Get a Paytm transaction token for an order"""
    if not body.orderId or not body.amount or not body.customerPhone:
        raise HTTPException(status_code=400, detail="Missing required fields: orderId, amount, customerPhone")

    result = service.initiate_paytm(body.orderId, body.amount, body.customerPhone)
    return JSONResponse(content=result, headers=NO_STORE_HEADERS)


@router.post("/paytm/callback")
async def paytm_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service)
):
    """Paytm posts the result here as a form; the shopper is redirected to the storefront"""
    form = await request.form()
    callback = {key: str(value) for key, value in form.items()}
    logger.info(f"Paytm callback for {callback.get('ORDERID')}: {callback.get('STATUS')} {callback.get('RESPCODE')}")
    redirect_url = service.handle_paytm_callback(callback)
    return RedirectResponse(url=redirect_url, status_code=303)


@router.get("/paytm/status", response_model=PaytmStatusResponse)
async def paytm_status(
    transactionId: Optional[str] = None,
    service: PaymentService = Depends(get_payment_service)
):
    if not transactionId:
        raise HTTPException(status_code=400, detail="Transaction ID is required")
    return service.paytm_status(transactionId)


@router.post("/paytm/refund")
async def paytm_refund(
    body: PaytmRefundRequest,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: PaymentService = Depends(get_payment_service)
):
    logger.info(f"Refund of {body.refundAmount} for {body.orderId} requested by {current['id']}")
    return service.refund_paytm(body.orderId, body.txnId, body.refundAmount, body.refId)


@router.post("/razorpay/initiate")
@limiter.limit(INITIATE_RATE, key_func=user_or_ip_key, error_message=INITIATE_RATE_MESSAGE)
async def initiate_razorpay(
    body: RazorpayInitiateRequest,
    request: Request,
    current_user: Optional[Dict] = Depends(get_optional_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Create a Razorpay order for checkout"""
    if not body.orderId or not body.amount:
        raise HTTPException(status_code=400, detail="Missing required fields: orderId, amount")

    result = service.initiate_razorpay(
        body.orderId, body.amount, body.customerPhone, body.customerEmail, body.customerName
    )
    return JSONResponse(content=result, headers=NO_STORE_HEADERS)


@router.post("/razorpay/verify")
async def verify_razorpay(
    body: RazorpayVerifyRequest,
    service: PaymentService = Depends(get_payment_service)
):
    return service.verify_razorpay(
        body.orderId, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature
    )
