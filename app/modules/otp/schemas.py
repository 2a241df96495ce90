from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Literal

OTPChannel = Literal["sms", "email", "whatsapp"]


class OTPGenerateRequest(BaseModel):
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    purpose: Optional[str] = None
    preferred_channel: Optional[OTPChannel] = None
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    # Legacy agent-order body
    agent_id: Optional[str] = None
    customer_phone: Optional[str] = None


class OTPGenerateResponse(BaseModel):
    success: bool = True
    otp_id: str
    channel: str
    message: str
    fallback_available: bool = False
    provider: Optional[str] = None
    expires_in: int = 300
    can_resend: bool = True
    expires_at: str


class OTPVerifyRequest(BaseModel):
    otp_id: Optional[str] = None
    code: str = Field(..., pattern=r"^\d{4,6}$")
    # Legacy lookup by order
    order_id: Optional[str] = None
    phone: Optional[str] = None


class OTPVerifyResponse(BaseModel):
    success: bool
    verified: bool
    message: str
    otp_id: str


class OTPResendRequest(BaseModel):
    otp_id: str
    fallback_channel: Optional[OTPChannel] = None


class OTPResendResponse(BaseModel):
    success: bool = True
    message: str
    channel: str
    expires_in: int = 300


class OTPStatusResponse(BaseModel):
    otp_id: str
    verified: bool
    attempts: int
    max_attempts: int
    channel: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: Optional[str] = None
    available_fallbacks: List[str] = []
    can_resend: bool = False
