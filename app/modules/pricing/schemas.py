from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime

CustomerType = Literal["B2C", "B2B"]


class PricingRuleCreate(BaseModel):
    product_id: str
    customer_type: CustomerType
    customer_category: Optional[str] = None
    price: float = Field(..., ge=0)
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True


class PricingRuleUpdate(BaseModel):
    product_id: Optional[str] = None
    customer_type: Optional[CustomerType] = None
    customer_category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: Optional[bool] = None


class PricingRuleResponse(BaseModel):
    id: str
    product_id: str
    product_title: Optional[str] = None
    customer_type: str
    customer_category: Optional[str] = None
    price: float
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PricingRuleListResponse(BaseModel):
    rules: List[PricingRuleResponse]


class PriceItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class PriceCalculationRequest(BaseModel):
    items: List[PriceItem] = Field(..., min_length=1)


class PricingContext(BaseModel):
    customer_type: CustomerType = "B2C"
    customer_category: str = "Normal"
    user_id: Optional[str] = None


class PriceCalculationResponse(BaseModel):
    success: bool = True
    pricing: Dict[str, Any]


class CustomerTypeResponse(BaseModel):
    success: bool = True
    customer_type: CustomerType
    customer_category: str
    pricing_context: PricingContext


class B2BUpgradeRequest(BaseModel):
    gstin: str
    business_name: str
    business_address: Optional[str] = None
    b2b_category: Optional[Literal["Bronze", "Silver", "Gold"]] = None
