from fastapi import APIRouter, Depends, HTTPException
from app.core.dependencies import get_current_user_id
from app.database.supabase_client import get_service_supabase
from app.modules.two_factor.schemas import (
    TwoFactorSetupResponse, TwoFactorCodeRequest, TwoFactorStatusResponse, TwoFactorVerifyResponse
)
from app.modules.two_factor.service import TwoFactorService
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/auth/2fa", tags=["two-factor"])


def get_two_factor_service(supabase: Client = Depends(get_service_supabase)) -> TwoFactorService:
    return TwoFactorService(supabase)


@router.post("/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(
    current_user: Dict = Depends(get_current_user_id),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """Start 2FA setup: secret, QR code and backup codes"""
    return service.setup(current_user["id"], current_user.get("email") or current_user["id"])


@router.put("/setup")
async def enable_two_factor(
    body: TwoFactorCodeRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """Enable 2FA after verifying a code from the authenticator app"""
    return service.enable(current_user["id"], body.code)


@router.post("/disable")
async def disable_two_factor(
    body: TwoFactorCodeRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """Disable 2FA (requires a valid code or backup code)"""
    return service.disable(current_user["id"], body.code)


@router.get("/status", response_model=TwoFactorStatusResponse)
async def two_factor_status(
    current_user: Dict = Depends(get_current_user_id),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    return service.status(current_user["id"])


@router.post("/verify", response_model=TwoFactorVerifyResponse)
async def verify_two_factor(
    body: TwoFactorCodeRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """Second login step: TOTP or backup code"""
    result = service.verify(current_user["id"], body.code)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["message"])
    return result
