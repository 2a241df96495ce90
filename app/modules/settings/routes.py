from fastapi import APIRouter, Depends, HTTPException, Query, status
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import get_optional_user, get_user_profile, require_roles
from app.database.supabase_client import get_service_supabase
from app.modules.settings.schemas import (
    SettingUpsert, PaymentSettingsResponse, PaymentSettingsUpdate, PaymentMethodResponse
)
from app.modules.settings.service import SettingsService, is_public_key
from supabase import Client
from typing import Dict, Optional

router = APIRouter(tags=["settings"])

SETTINGS_EDITORS = ("admin", "superadmin", "manager")
SETTINGS_OWNERS = ("admin", "superadmin")


def get_settings_service(supabase: Client = Depends(get_service_supabase)) -> SettingsService:
    return SettingsService(supabase)


def _require_admin_reader(current_user: Optional[Dict], supabase: Client, detail: str) -> None:
    if current_user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    profile = get_user_profile(current_user["id"], supabase)
    if profile["role"] not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


@router.get("/settings")
async def get_settings(
    key: Optional[str] = None,
    keys: Optional[str] = None,
    current_user: Optional[Dict] = Depends(get_optional_user),
    supabase: Client = Depends(get_service_supabase),
    service: SettingsService = Depends(get_settings_service)
):
    """Public keys are open; anything else needs an admin role"""
    if key:
        if not is_public_key(key):
            _require_admin_reader(current_user, supabase, "Unauthorized")
        return service.get_setting(key)
    if keys:
        key_list = [k.strip() for k in keys.split(",") if k.strip()]
        if any(not is_public_key(k) for k in key_list):
            _require_admin_reader(current_user, supabase, "Unauthorized for protected keys")
        return service.get_many(key_list)
    _require_admin_reader(current_user, supabase, "Unauthorized")
    return service.list_settings()


@router.post("/settings")
async def upsert_setting(
    body: SettingUpsert,
    current: Dict = Depends(require_roles(*SETTINGS_EDITORS)),
    service: SettingsService = Depends(get_settings_service)
):
    if not body.key or "value" not in body.model_fields_set:
        raise HTTPException(status_code=400, detail="Key and value are required")
    return service.upsert_setting(body.key, body.value, body.description)


@router.put("/settings")
async def update_setting(
    body: SettingUpsert,
    current: Dict = Depends(require_roles(*SETTINGS_EDITORS)),
    service: SettingsService = Depends(get_settings_service)
):
    if not body.key:
        raise HTTPException(status_code=400, detail="Key is required")
    return service.update_setting(body.key, body.value, body.description)


@router.delete("/settings")
async def delete_setting(
    key: Optional[str] = Query(None),
    current: Dict = Depends(require_roles(*SETTINGS_OWNERS)),
    service: SettingsService = Depends(get_settings_service)
):
    if not key:
        raise HTTPException(status_code=400, detail="Key is required")
    service.delete_setting(key)
    return {"success": True}


@router.get("/admin/payment-settings", response_model=PaymentSettingsResponse)
async def get_payment_settings(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: SettingsService = Depends(get_settings_service)
):
    return {"paymentSettings": service.get_payment_settings()}


@router.put("/admin/payment-settings", response_model=PaymentMethodResponse)
async def update_payment_settings(
    body: PaymentSettingsUpdate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: SettingsService = Depends(get_settings_service)
):
    """Merge updates into one payment method's stored settings"""
    if not body.method_id or body.updates is None:
        raise HTTPException(status_code=400, detail="Method ID and updates are required")
    return {"success": True, "method": service.update_payment_method(body.method_id, body.updates)}
