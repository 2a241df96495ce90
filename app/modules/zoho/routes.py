from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from urllib.parse import quote
from app.config import settings
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import require_admin_or_internal_token, require_permission, require_roles
from app.database.supabase_client import get_service_supabase
from app.modules.zoho.inventory_client import ZohoInventoryClient
from app.modules.zoho.schemas import (
    SyncRequest, SyncStatusResponse, StockAdjustRequest, StockAdjustResponse, ZohoConfigUpdate
)
from app.modules.zoho.sync_service import ZohoSyncService
from app.modules.zoho.token_manager import ZohoAuthError, ZohoTokenManager
from supabase import Client
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/zoho", tags=["zoho"])

INTEGRATION_PAGE = "/management/integrations/zoho"


def get_token_manager(supabase: Client = Depends(get_service_supabase)) -> ZohoTokenManager:
    return ZohoTokenManager(supabase)


def get_sync_service(
    supabase: Client = Depends(get_service_supabase),
    tokens: ZohoTokenManager = Depends(get_token_manager)
) -> ZohoSyncService:
    return ZohoSyncService(supabase, ZohoInventoryClient(tokens))


@router.get("/auth")
async def authorization_url(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    tokens: ZohoTokenManager = Depends(get_token_manager)
):
    """URL that starts the Zoho OAuth consent flow"""
    try:
        return {"authURL": tokens.authorization_url()}
    except ZohoAuthError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/auth/callback")
async def oauth_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    tokens: ZohoTokenManager = Depends(get_token_manager)
):
    """Zoho redirects here after consent; tokens are stored and the admin sent back to the dashboard"""
    page = f"{settings.site_url}{INTEGRATION_PAGE}"
    if error:
        logger.warning(f"Zoho OAuth error: {error}")
        return RedirectResponse(url=f"{page}?error={quote(error)}", status_code=303)
    if not code:
        raise HTTPException(
            status_code=400,
            detail="No authorization code received. This endpoint is only reached through the Zoho OAuth redirect."
        )
    try:
        tokens.exchange_code(code)
    except ZohoAuthError as e:
        logger.error(f"Zoho code exchange failed: {e}")
        return RedirectResponse(url=f"{page}?error={quote('token_exchange_failed')}", status_code=303)
    logger.info("Zoho OAuth completed")
    return RedirectResponse(url=f"{page}?connected=1", status_code=303)


@router.put("/config")
async def update_config(
    body: ZohoConfigUpdate,
    current: Dict = Depends(require_roles("admin", "superadmin")),
    tokens: ZohoTokenManager = Depends(get_token_manager)
):
    tokens.store_config(body.client_id, body.client_secret, body.organization_id, body.redirect_uri)
    return {"message": "Zoho configuration saved"}


@router.get("/sync", response_model=SyncStatusResponse)
async def sync_status(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    tokens: ZohoTokenManager = Depends(get_token_manager),
    service: ZohoSyncService = Depends(get_sync_service)
):
    return service.status(tokens.is_configured())


@router.post("/sync")
def run_sync(
    body: SyncRequest,
    current: Dict = Depends(require_admin_or_internal_token),
    tokens: ZohoTokenManager = Depends(get_token_manager),
    service: ZohoSyncService = Depends(get_sync_service)
):
    """Push products to Zoho, pull them back, or both. Runs in the threadpool; a full sync blocks on Zoho."""
    if not tokens.is_configured():
        raise HTTPException(status_code=503, detail="Zoho is not configured")
    logger.info(f"Zoho sync {body.direction} started by {current.get('id') or current['role']}")
    return service.full_sync(body.direction, body.productIds, body.batchSize)


@router.get("/stock")
async def stock_status(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    tokens: ZohoTokenManager = Depends(get_token_manager)
):
    if not tokens.is_configured():
        return {"status": "not_configured", "message": "Zoho authentication required", "configured": False}
    return {"status": "configured", "message": "Stock management ready", "configured": True}


@router.post("/stock/adjust", response_model=StockAdjustResponse)
async def adjust_stock(
    body: StockAdjustRequest,
    current: Dict = Depends(require_permission("inventory:manage")),
    service: ZohoSyncService = Depends(get_sync_service)
):
    """Set local stock and mirror the change into Zoho when the product is linked"""
    return service.adjust_stock(body.productId, body.quantity, body.reason)
