from pydantic import BaseModel, EmailStr, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class UserCreate(BaseModel):
    email: EmailStr
    name: str
    role: Optional[str] = "customer"
    mobile: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(BaseModel):
    """Profile and auth changes. camelCase keys from the dashboard are accepted too."""
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    email_confirm: Optional[bool] = None
    name: Optional[str] = None
    role: Optional[str] = None
    mobile: Optional[str] = None
    address: Optional[Any] = None
    gstin: Optional[str] = None
    is_active: Optional[bool] = None
    customer_category: Optional[str] = None
    discount_percentage: Optional[float] = None
    isActive: Optional[bool] = None
    customerCategory: Optional[str] = None
    discountPercentage: Optional[float] = None

    @model_validator(mode="after")
    def fold_camel_case(self):
        if self.isActive is not None:
            self.is_active = self.isActive
        if self.customerCategory and not self.customer_category:
            self.customer_category = self.customerCategory
        if self.discountPercentage is not None:
            self.discount_percentage = self.discountPercentage
        return self


class AdminUser(BaseModel):
    id: str
    email: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    banned_until: Optional[datetime] = None
    profile: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: List[AdminUser]
    total: int


class UserCreateResponse(BaseModel):
    message: str
    user: Dict[str, Any]


class MessageResponse(BaseModel):
    message: str


class RoleSetRequest(BaseModel):
    userId: str
    newRole: str
    note: Optional[str] = None


class RoleSetResponse(BaseModel):
    success: bool = True
    userId: str
    newRole: str
