import math
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from app.config import settings
from app.core.dependencies import get_client_ip
from app.core import rate_limit
from app.core.timeutils import utc_now
from app.database.supabase_client import get_service_supabase
from app.modules.otp.schemas import (
    OTPGenerateRequest, OTPGenerateResponse, OTPVerifyRequest, OTPVerifyResponse,
    OTPResendRequest, OTPResendResponse, OTPStatusResponse
)
from app.modules.otp.service import OTPService, OTP_PURPOSES
from datetime import timedelta
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])

RESEND_MAX_REQUESTS = 10


def get_otp_service() -> OTPService:
    supabase = get_service_supabase() if settings.is_supabase_configured else None
    return OTPService.from_supabase(supabase)


def _too_many(message: str, retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": message, "retry_after": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


@router.post("/generate", response_model=OTPGenerateResponse)
async def generate_otp(
    body: OTPGenerateRequest,
    request: Request,
    service: OTPService = Depends(get_otp_service)
):
    """Generate an OTP and deliver it over SMS, email or WhatsApp"""
    phone = body.phone
    purpose = body.purpose or "agent_order"
    order_id = body.order_id
    user_id = body.user_id
    if body.customer_phone and body.agent_id and body.order_id and not body.phone:
        phone = body.customer_phone
        purpose = "agent_order"
        user_id = body.agent_id

    if not phone and not body.email:
        raise HTTPException(status_code=400, detail="Either phone or email is required")
    if purpose not in OTP_PURPOSES:
        raise HTTPException(status_code=400, detail="Valid purpose is required")

    if not settings.otp_rate_limit_bypass:
        key = phone or body.email or get_client_ip(request)
        limit, window = settings.otp_rate_limit_max_requests, settings.otp_rate_limit_window_seconds
        if not rate_limit.hit("otp_generate", key, limit, window):
            logger.warning(f"OTP generate rate limited for {key}")
            return _too_many(
                "Rate limit exceeded. Please wait before requesting another OTP.",
                rate_limit.retry_after("otp_generate", key, limit, window)
            )

    result = service.generate(
        purpose=purpose,
        phone=phone,
        email=body.email,
        preferred_channel=body.preferred_channel,
        user_id=user_id,
        order_id=order_id,
    )
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result.get("message") or "Failed to generate OTP")

    return OTPGenerateResponse(
        otp_id=result["otp_id"],
        channel=result["channel"],
        message=result["message"],
        fallback_available=result["fallback_available"],
        provider=result.get("provider"),
        expires_in=settings.otp_expiry_minutes * 60,
        expires_at=(utc_now() + timedelta(minutes=settings.otp_expiry_minutes)).isoformat(),
    )


@router.get("/generate", response_model=OTPStatusResponse)
async def get_generated_otp_status(otp_id: str, service: OTPService = Depends(get_otp_service)):
    """Status and fallback options for an issued OTP"""
    status = service.get_status(otp_id)
    if status is None:
        raise HTTPException(status_code=404, detail="OTP not found")
    return status


@router.post("/verify", response_model=OTPVerifyResponse)
async def verify_otp(body: OTPVerifyRequest, service: OTPService = Depends(get_otp_service)):
    """Verify a code by otp_id, or by order_id and phone for agent orders"""
    otp_id = body.otp_id
    if not otp_id:
        if not body.order_id:
            raise HTTPException(status_code=400, detail="otp_id or order_id is required")
        record = service.find_for_order(body.order_id, body.phone)
        if not record:
            raise HTTPException(status_code=404, detail="OTP not found")
        otp_id = record["id"]

    result = service.verify(otp_id, body.code)
    if not result["success"]:
        content = {
            "detail": result["message"],
            "can_retry": result.get("can_retry", False),
            "suggest_fallback": result.get("suggest_fallback", False),
        }
        if result.get("next_fallback_channel"):
            content["next_fallback_channel"] = result["next_fallback_channel"]
            content["fallback_message"] = f"Try receiving the code via {result['next_fallback_channel']}"
        return JSONResponse(status_code=400, content=content)

    return OTPVerifyResponse(success=True, verified=True, message=result["message"], otp_id=otp_id)


@router.get("/verify", response_model=OTPStatusResponse)
async def get_verify_status(
    otp_id: Optional[str] = None,
    order_id: Optional[str] = None,
    service: OTPService = Depends(get_otp_service)
):
    """Verification status by otp_id or order_id"""
    if otp_id:
        status = service.get_status(otp_id)
    elif order_id:
        record = service.find_for_order(order_id)
        status = service.get_status(record["id"]) if record else None
    else:
        raise HTTPException(status_code=400, detail="otp_id or order_id is required")
    if status is None:
        raise HTTPException(status_code=404, detail="OTP not found")
    return status


@router.post("/resend", response_model=OTPResendResponse)
async def resend_otp(body: OTPResendRequest, service: OTPService = Depends(get_otp_service)):
    """Resend with a new code, optionally on a fallback channel"""
    record = service.get_record(body.otp_id)
    if not record:
        raise HTTPException(status_code=404, detail="OTP not found")

    elapsed = service.seconds_since_issued(record)
    cooldown = settings.otp_resend_cooldown_seconds
    if elapsed < cooldown:
        return _too_many("Please wait before requesting another OTP", math.ceil(cooldown - elapsed))

    if not settings.otp_rate_limit_bypass:
        key = record.get("phone") or record.get("email") or record.get("user_id") or body.otp_id
        window = settings.otp_rate_limit_window_seconds
        if not rate_limit.hit("otp_resend", key, RESEND_MAX_REQUESTS, window):
            return _too_many(
                "Rate limit exceeded. Please wait before requesting another OTP.",
                rate_limit.retry_after("otp_resend", key, RESEND_MAX_REQUESTS, window)
            )

    result = service.resend_with_fallback(body.otp_id, body.fallback_channel)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result.get("message") or "Failed to resend OTP")
    return OTPResendResponse(
        message=result["message"],
        channel=result["channel"],
        expires_in=settings.otp_expiry_minutes * 60,
    )


@router.get("/resend", response_model=OTPStatusResponse)
async def get_resend_options(otp_id: str, service: OTPService = Depends(get_otp_service)):
    """Available fallback channels for an OTP"""
    status = service.get_status(otp_id)
    if status is None:
        raise HTTPException(status_code=404, detail="OTP not found")
    return status
