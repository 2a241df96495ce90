import hashlib
import logging
import re
import time
from supabase import Client
from app.modules.auth.schemas import (
    LoginRequest, TokenResponse, SignupRequest, SignupResponse,
    CompleteSignupRequest, CompleteSignupResponse
)
from fastapi import HTTPException
from typing import Callable, Dict, Any, Optional

logger = logging.getLogger(__name__)

# sha256(token) -> (user dict, monotonic expiry)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500


def _token_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _cached_user(key: str) -> Optional[Dict[str, Any]]:
    entry = _AUTH_USER_CACHE.get(key)
    if entry is None:
        return None
    user_data, expiry = entry
    if time.monotonic() >= expiry:
        _AUTH_USER_CACHE.pop(key, None)
        return None
    return user_data


def _remember_user(key: str, user_data: Dict[str, Any]) -> None:
    now = time.monotonic()
    if len(_AUTH_USER_CACHE) >= _AUTH_CACHE_MAX_SIZE:
        for stale in [k for k, (_, expiry) in _AUTH_USER_CACHE.items() if expiry <= now]:
            del _AUTH_USER_CACHE[stale]
        if len(_AUTH_USER_CACHE) >= _AUTH_CACHE_MAX_SIZE:
            return
    _AUTH_USER_CACHE[key] = (user_data, now + _AUTH_CACHE_TTL_SEC)


def normalize_mobile(mobile: Optional[str]) -> Optional[str]:
    """Digits only, 10-15 long; None when not provided."""
    if not mobile:
        return None
    digits = re.sub(r"\D", "", mobile)
    if len(digits) < 10 or len(digits) > 15:
        raise HTTPException(status_code=400, detail="Mobile number must be between 10-15 digits")
    return digits


def _token_response(session, user, fallback_email: str) -> TokenResponse:
    return TokenResponse(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", None),
        expires_at=getattr(session, "expires_at", None),
        user_id=user.id,
        email=user.email or fallback_email
    )


class AuthService:
    def __init__(self, supabase: Client, session_factory: Optional[Callable[[], Client]] = None):
        self.supabase = supabase
        # sign-in and refresh bind a user session to the client they run on
        self.session_factory = session_factory or (lambda: supabase)

    def email_exists(self, email: str) -> bool:
        result = self.supabase.table("profiles")\
            .select("id")\
            .eq("email", email)\
            .limit(1)\
            .execute()
        return bool(result.data)

    def start_signup(self, signup_data: SignupRequest, otp_service) -> SignupResponse:
        """Send a registration OTP. The account itself is created by complete_signup."""
        mobile = normalize_mobile(signup_data.mobile)
        try:
            exists = self.email_exists(signup_data.email)
        except Exception as e:
            logger.error(f"Existing user check failed for {signup_data.email}: {e}")
            exists = False
        if exists:
            raise HTTPException(status_code=409, detail="An account with this email already exists")

        preferred = signup_data.channel or "email"
        result = otp_service.generate(
            purpose="registration",
            phone=mobile,
            email=signup_data.email,
            preferred_channel=preferred,
        )
        if not result["success"]:
            logger.error(f"Signup OTP failed for {signup_data.email}: {result.get('message')}")
            raise HTTPException(status_code=500, detail=result.get("message") or "Failed to send verification code")

        logger.info(f"Signup OTP {result['otp_id']} sent to {signup_data.email} via {result['channel']}")
        return SignupResponse(
            message=result.get("message") or f"Verification code sent via {result['channel']}.",
            otp_id=result["otp_id"],
            channel=result["channel"],
            fallback_available=result["fallback_available"],
            preferred_channel=preferred,
        )

    def complete_signup(self, signup_data: CompleteSignupRequest, otp_service) -> CompleteSignupResponse:
        """Create the confirmed auth user and profile once the registration OTP is verified."""
        mobile = normalize_mobile(signup_data.mobile)
        if not otp_service.is_verified_for(signup_data.otp_id, "registration", email=signup_data.email):
            raise HTTPException(status_code=400, detail="OTP verification is required before account creation")
        if self.email_exists(signup_data.email):
            raise HTTPException(status_code=409, detail="An account with this email already exists")

        user_metadata = {"name": signup_data.name, "role": "customer"}
        if mobile:
            user_metadata["mobile"] = mobile
        try:
            created = self.supabase.auth.admin.create_user({
                "email": signup_data.email,
                "password": signup_data.password,
                "email_confirm": True,
                "user_metadata": user_metadata
            })
        except Exception as e:
            error_message = str(e).lower()
            if "already been registered" in error_message or "already registered" in error_message:
                raise HTTPException(status_code=409, detail="An account with this email already exists")
            logger.error(f"Account creation failed for {signup_data.email}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create account. Please try again.")
        user = created.user

        profile = {
            "id": user.id,
            "email": user.email or signup_data.email,
            "name": signup_data.name,
            "full_name": signup_data.name,
            "role": "customer"
        }
        if mobile:
            profile["phone"] = mobile
        try:
            self.supabase.table("profiles").upsert(profile).execute()
        except Exception as e:
            # The account exists; a missing profile is repaired on first admin edit
            logger.error(f"Profile creation failed for {user.id}: {e}")

        try:
            auth_response = self.session_factory().auth.sign_in_with_password({
                "email": signup_data.email,
                "password": signup_data.password
            })
        except Exception as e:
            logger.warning(f"Post-signup sign in failed for {signup_data.email}: {e}")
            auth_response = None

        if not auth_response or not auth_response.session:
            return CompleteSignupResponse(
                message="Account created successfully! Please sign in to continue.",
                user_id=user.id,
                email=user.email or signup_data.email,
                name=signup_data.name,
                requires_sign_in=True
            )
        return CompleteSignupResponse(
            message="Account created and signed in successfully!",
            user_id=user.id,
            email=user.email or signup_data.email,
            name=signup_data.name,
            requires_sign_in=False,
            session=_token_response(auth_response.session, auth_response.user, signup_data.email)
        )

    def login(self, login_data: LoginRequest) -> TokenResponse:
        """Authenticate user using Supabase Auth"""
        try:
            auth_response = self.session_factory().auth.sign_in_with_password({
                "email": login_data.email,
                "password": login_data.password
            })

            if not auth_response.user or not auth_response.session:
                raise HTTPException(status_code=401, detail="Invalid credentials")

            return _token_response(auth_response.session, auth_response.user, login_data.email)
        except HTTPException:
            raise
        except Exception as e:
            error_message = str(e)
            if "invalid" in error_message.lower() or "credentials" in error_message.lower():
                raise HTTPException(status_code=401, detail="Invalid email or password")
            raise HTTPException(status_code=500, detail=f"Login failed: {error_message}")

    def refresh_session(self, refresh_token: str) -> TokenResponse:
        try:
            auth_response = self.session_factory().auth.refresh_session(refresh_token)
        except Exception as e:
            logger.warning(f"Session refresh failed: {e}")
            raise HTTPException(status_code=401, detail="Failed to refresh session")
        if not auth_response.session or not auth_response.user:
            raise HTTPException(status_code=401, detail="Failed to refresh session")
        return _token_response(auth_response.session, auth_response.user, auth_response.user.email or "")

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """Resolve a bearer token to `{id, email}`; answers are cached for 60 seconds."""
        key = _token_key(token)
        user_data = _cached_user(key)
        if user_data is not None:
            return user_data

        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.debug(f"Token lookup failed: {e}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user_data = {"id": user_response.user.id, "email": user_response.user.email}
        _remember_user(key, user_data)
        return user_data

    def logout(self, token: str) -> bool:
        """Revoke the session server-side and forget the cached token."""
        _AUTH_USER_CACHE.pop(_token_key(token), None)
        try:
            self.supabase.auth.admin.sign_out(token)
            return True
        except Exception as e:
            logger.debug(f"Sign out call failed: {e}")
            return False


def clear_auth_cache() -> None:
    _AUTH_USER_CACHE.clear()
