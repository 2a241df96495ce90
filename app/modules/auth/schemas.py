from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Literal


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user_id: str
    email: str


class RefreshRequest(BaseModel):
    refresh_token: str


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    mobile: Optional[str] = None
    channel: Optional[Literal["sms", "email", "whatsapp"]] = None


class SignupResponse(BaseModel):
    message: str
    otp_sent: bool = True
    verification_required: bool = True
    otp_id: str
    channel: str
    fallback_available: bool = False
    preferred_channel: str


class CompleteSignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    mobile: Optional[str] = None
    otp_id: str


class CompleteSignupResponse(BaseModel):
    message: str
    user_id: str
    email: str
    name: Optional[str] = None
    requires_sign_in: bool
    session: Optional[TokenResponse] = None


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = "customer"
    customer_type: Optional[str] = None
    customer_category: Optional[str] = None
    discount_percentage: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SessionResponse(BaseModel):
    user: SessionUser
    permissions: list = []
