from fastapi import APIRouter, Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.config.permissions_config import effective_permissions
from app.core.dependencies import get_auth_service, get_current_profile
from app.modules.auth.schemas import (
    LoginRequest, TokenResponse, RefreshRequest, SignupRequest, SignupResponse,
    CompleteSignupRequest, CompleteSignupResponse, SessionResponse, SessionUser
)
from app.modules.auth.service import AuthService
from app.modules.otp.routes import get_otp_service
from app.modules.otp.service import OTPService
from typing import Dict

router = APIRouter(prefix="/auth", tags=["auth"])

# Security scheme for JWT Bearer token
security = HTTPBearer()


def get_current_token(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """Extract JWT token from Authorization header"""
    return credentials.credentials


@router.post("/signup", response_model=SignupResponse)
async def signup(
    signup_data: SignupRequest,
    service: AuthService = Depends(get_auth_service),
    otp_service: OTPService = Depends(get_otp_service)
):
    """Start registration: validate and send a verification code"""
    return service.start_signup(signup_data, otp_service)


@router.post("/complete-signup", response_model=CompleteSignupResponse, status_code=201)
async def complete_signup(
    signup_data: CompleteSignupRequest,
    service: AuthService = Depends(get_auth_service),
    otp_service: OTPService = Depends(get_otp_service)
):
    """Create the account after the registration OTP was verified"""
    return service.complete_signup(signup_data, otp_service)


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Login and get access token"""
    return service.login(login_data)


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service)
):
    """Logout and invalidate token"""
    service.logout(token)
    return {"message": "Signed out successfully"}


@router.get("/session", response_model=SessionResponse)
async def get_session(current: Dict = Depends(get_current_profile)):
    """Current user, profile fields and effective permissions"""
    profile = current["profile"]
    user = SessionUser(
        id=current["id"],
        email=current.get("email"),
        name=profile.get("name") or profile.get("full_name"),
        role=current["role"],
        customer_type=profile.get("customer_type"),
        customer_category=profile.get("customer_category"),
        discount_percentage=profile.get("discount_percentage"),
        created_at=str(profile["created_at"]) if profile.get("created_at") else None,
        updated_at=str(profile["updated_at"]) if profile.get("updated_at") else None
    )
    return SessionResponse(user=user, permissions=effective_permissions(current["role"]))


@router.post("/session/refresh", response_model=TokenResponse)
async def refresh_session(
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Exchange a refresh token for a new session"""
    return service.refresh_session(body.refresh_token)
