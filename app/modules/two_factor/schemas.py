from pydantic import BaseModel, Field
from typing import List, Optional


class TwoFactorSetupResponse(BaseModel):
    secret: str
    qr_code: str  # PNG data URL
    otpauth_url: str
    backup_codes: List[str]


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=12)


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    method: Optional[str] = None
    setup_at: Optional[str] = None
    backup_codes_remaining: int = 0


class TwoFactorVerifyResponse(BaseModel):
    success: bool
    message: str
    backup_code_used: bool = False
