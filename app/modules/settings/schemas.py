from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class SettingUpsert(BaseModel):
    key: Optional[str] = None
    value: Any = None
    description: Optional[str] = None


class PaymentSettingsResponse(BaseModel):
    paymentSettings: Dict[str, Dict[str, Any]]


class PaymentSettingsUpdate(BaseModel):
    method_id: Optional[str] = Field(None, alias="methodId")
    updates: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class PaymentMethodResponse(BaseModel):
    success: bool = True
    method: Dict[str, Any]
