from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

SyncDirection = Literal["to_zoho", "from_zoho", "bidirectional"]


class SyncResult(BaseModel):
    success: bool = True
    synced: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    details: List[Dict[str, Any]] = Field(default_factory=list)


class SyncRequest(BaseModel):
    direction: SyncDirection
    productIds: Optional[List[str]] = None
    batchSize: int = Field(50, ge=1, le=200)


class SyncStatusResponse(BaseModel):
    configured: bool
    sync_status: str  # not_configured | ready | connection_error
    local_products: int = 0
    zoho_items: int = 0
    last_sync: Optional[str] = None
    error: Optional[str] = None


class StockAdjustRequest(BaseModel):
    productId: str
    quantity: int = Field(..., ge=0)
    reason: Optional[str] = None


class StockAdjustResponse(BaseModel):
    message: str
    local_update: bool
    zoho_sync: Any
    new_quantity: int


class ZohoConfigUpdate(BaseModel):
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    organization_id: Optional[str] = None
    redirect_uri: Optional[str] = None
