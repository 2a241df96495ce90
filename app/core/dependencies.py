"""
Core dependencies for route protection and role checking
"""

import hmac
from fastapi import Depends, Header, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.config import settings
from app.config.permissions_config import ADMIN_ROLES, has_permission, normalize_role
from app.database.supabase_client import get_service_supabase, get_session_client_factory
from app.modules.auth.service import AuthService
from supabase import Client
from typing import Any, Callable, Dict, Optional
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


class AdminAuthError(Exception):
    """Raised by admin guards; mapped to {"detail": message} with the given status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _get_request_cache(request: Request) -> Dict[str, Any]:
    """Return request-scoped cache for the caller's profile."""
    if not hasattr(request.state, "access_cache"):
        request.state.access_cache = {}
    return request.state.access_cache


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_auth_service(
    supabase: Client = Depends(get_service_supabase),
    session_factory: Callable[[], Client] = Depends(get_session_client_factory)
) -> AuthService:
    return AuthService(supabase, session_factory)


def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Resolve the bearer token; the user id is kept on request.state for per-user rate limits"""
    user_data = auth_service.get_current_user(credentials.credentials)
    request.state.user_id = user_data["id"]
    return user_data


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service)
) -> Optional[dict]:
    """Current user when a valid bearer token is sent, else None."""
    if credentials is None:
        return None
    try:
        user_data = auth_service.get_current_user(credentials.credentials)
    except HTTPException:
        return None
    request.state.user_id = user_data["id"]
    return user_data


def get_user_profile(user_id: str, supabase: Client, cache: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the profiles row for user_id with a normalized role. Missing rows behave as a customer."""
    if cache is not None and "profile" in cache:
        return cache["profile"]
    try:
        result = supabase.table("profiles")\
            .select("*")\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        profile = result.data[0] if result.data else {"id": user_id}
    except Exception as e:
        logger.warning(f"Profile lookup failed for {user_id}: {e}")
        raise AdminAuthError(500, "Failed to verify profile")
    profile = {**profile, "role": normalize_role(profile.get("role"))}
    if cache is not None:
        cache["profile"] = profile
    return profile


def get_current_profile(
    request: Request,
    user_data: dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_service_supabase)
) -> dict:
    """Current user merged with their profile ({"id", "email", "role", "profile"})."""
    profile = get_user_profile(user_data["id"], supabase, _get_request_cache(request))
    return {**user_data, "role": profile["role"], "profile": profile}


def assert_admin(profile: Dict[str, Any]) -> str:
    role = profile.get("role")
    if role not in ADMIN_ROLES:
        raise AdminAuthError(status.HTTP_403_FORBIDDEN, "Insufficient permissions")
    return role


def require_roles(*roles: str):
    """Factory function to create a role allow-list dependency"""
    allowed = roles or ADMIN_ROLES

    def check_roles(current: dict = Depends(get_current_profile)) -> dict:
        if current["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current
    return check_roles


def require_admin(current: dict = Depends(get_current_profile)) -> dict:
    """Back-office guard: admin, superadmin or manager"""
    assert_admin(current)
    return current


def require_permission(required_permission: str):
    """Factory function to create permission check dependency"""
    def check_permission(current: dict = Depends(get_current_profile)) -> dict:
        if not has_permission(current["role"], required_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {required_permission}"
            )
        return current
    return check_permission


def _check_static_token(provided: Optional[str], expected: Optional[str], header_name: str) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{header_name} is not configured on this server"
        )
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid maintenance token"
        )


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> bool:
    _check_static_token(x_admin_token, settings.admin_api_token, "x-admin-token")
    return True


def require_internal_token(x_internal_token: Optional[str] = Header(None)) -> bool:
    _check_static_token(x_internal_token, settings.internal_api_token, "x-internal-token")
    return True


def require_admin_or_internal_token(
    request: Request,
    x_internal_token: Optional[str] = Header(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service),
    supabase: Client = Depends(get_service_supabase)
) -> dict:
    """Maintenance jobs send x-internal-token; dashboard users need an admin role."""
    if x_internal_token:
        _check_static_token(x_internal_token, settings.internal_api_token, "x-internal-token")
        return {"id": None, "role": "internal"}
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user_data = auth_service.get_current_user(credentials.credentials)
    profile = get_user_profile(user_data["id"], supabase, _get_request_cache(request))
    current = {**user_data, "role": profile["role"], "profile": profile}
    assert_admin(current)
    return current


def require_superadmin_or_admin_token(
    request: Request,
    x_admin_token: Optional[str] = Header(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service),
    supabase: Client = Depends(get_service_supabase)
) -> dict:
    """Role changes: x-admin-token for bootstrap scripts, otherwise a superadmin session."""
    if x_admin_token:
        _check_static_token(x_admin_token, settings.admin_api_token, "x-admin-token")
        return {"id": None, "role": "superadmin", "via_token": True}
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user_data = auth_service.get_current_user(credentials.credentials)
    profile = get_user_profile(user_data["id"], supabase, _get_request_cache(request))
    if profile["role"] != "superadmin":
        raise AdminAuthError(status.HTTP_403_FORBIDDEN, "Superadmin role required")
    return {**user_data, "role": profile["role"], "profile": profile}
