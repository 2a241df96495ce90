import base64
import io
import logging
import secrets
from typing import Any, Dict, List, Optional

import pyotp
import qrcode
from fastapi import HTTPException
from supabase import Client

from app.core.timeutils import utc_now_iso

logger = logging.getLogger(__name__)

ISSUER = "TecBunny Store"
VERIFY_WINDOW = 2
BACKUP_CODE_COUNT = 10

_PROFILE_2FA_COLUMNS = (
    "two_factor_enabled, two_factor_secret, two_factor_method, two_factor_setup_at, "
    "two_factor_backup_codes, two_factor_backup_codes_used"
)


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """XXXX-XXXX upper-case hex codes."""
    codes = []
    for _ in range(count):
        raw = secrets.token_hex(4).upper()
        codes.append(f"{raw[:4]}-{raw[4:]}")
    return codes


def _normalize_backup_code(code: str) -> str:
    return code.replace("-", "").strip().upper()


def verify_backup_code(backup_codes: List[str], used_codes: List[str], code: str) -> bool:
    normalized = _normalize_backup_code(code)
    return any(
        _normalize_backup_code(c) == normalized and c not in used_codes
        for c in backup_codes
    )


def mark_backup_code_used(backup_codes: List[str], used_codes: List[str], code: str) -> List[str]:
    normalized = _normalize_backup_code(code)
    match = next((c for c in backup_codes if _normalize_backup_code(c) == normalized), None)
    if match and match not in used_codes:
        return [*used_codes, match]
    return list(used_codes)


def verify_totp(secret: str, code: str) -> bool:
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=VERIFY_WINDOW)


def qr_code_data_url(otpauth_url: str) -> str:
    image = qrcode.make(otpauth_url)
    buffer = io.BytesIO()
    image.save(buffer)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


class TwoFactorService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _get_profile(self, user_id: str) -> Dict[str, Any]:
        result = self.supabase.table("profiles")\
            .select(_PROFILE_2FA_COLUMNS)\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="User not found")
        return result.data[0]

    def _update_profile(self, user_id: str, changes: Dict[str, Any]) -> None:
        try:
            self.supabase.table("profiles")\
                .update(changes)\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.error(f"Updating 2FA fields for {user_id} failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to update two-factor settings")

    def setup(self, user_id: str, email: str) -> Dict[str, Any]:
        """Create a pending secret and backup codes; 2FA stays off until enable() verifies a code."""
        profile = self._get_profile(user_id)
        if profile.get("two_factor_enabled"):
            raise HTTPException(status_code=400, detail="2FA is already enabled")

        secret = pyotp.random_base32(length=32)
        otpauth_url = pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=ISSUER)
        backup_codes = generate_backup_codes()
        self._update_profile(user_id, {
            "two_factor_secret": secret,
            "two_factor_backup_codes": backup_codes,
            "two_factor_backup_codes_used": [],
            "two_factor_enabled": False
        })
        return {
            "secret": secret,
            "otpauth_url": otpauth_url,
            "qr_code": qr_code_data_url(otpauth_url),
            "backup_codes": backup_codes
        }

    def enable(self, user_id: str, code: str) -> Dict[str, Any]:
        profile = self._get_profile(user_id)
        if profile.get("two_factor_enabled"):
            raise HTTPException(status_code=400, detail="2FA is already enabled")
        secret = profile.get("two_factor_secret")
        if not secret:
            raise HTTPException(status_code=400, detail="Run 2FA setup first")
        if not verify_totp(secret, code):
            raise HTTPException(status_code=400, detail="Invalid verification code")
        self._update_profile(user_id, {
            "two_factor_enabled": True,
            "two_factor_method": "totp",
            "two_factor_setup_at": utc_now_iso()
        })
        logger.info(f"2FA enabled for user {user_id}")
        return {"success": True, "message": "2FA enabled successfully"}

    def verify(self, user_id: str, code: str) -> Dict[str, Any]:
        """TOTP first, then an unused backup code (which is consumed)."""
        profile = self._get_profile(user_id)
        secret = profile.get("two_factor_secret")
        if not profile.get("two_factor_enabled") or not secret:
            return {"success": False, "message": "2FA not enabled for this account"}

        if verify_totp(secret, code):
            return {"success": True, "message": "2FA verification successful"}

        backup_codes = profile.get("two_factor_backup_codes") or []
        used_codes = profile.get("two_factor_backup_codes_used") or []
        if backup_codes and verify_backup_code(backup_codes, used_codes, code):
            self._update_profile(user_id, {
                "two_factor_backup_codes_used": mark_backup_code_used(backup_codes, used_codes, code)
            })
            return {"success": True, "message": "Backup code verified successfully", "backup_code_used": True}

        return {"success": False, "message": "Invalid 2FA code"}

    def disable(self, user_id: str, code: str) -> Dict[str, Any]:
        result = self.verify(user_id, code)
        if not result["success"]:
            raise HTTPException(status_code=400, detail=result["message"])
        self._update_profile(user_id, {
            "two_factor_enabled": False,
            "two_factor_secret": None,
            "two_factor_method": None,
            "two_factor_backup_codes": None,
            "two_factor_backup_codes_used": None,
            "two_factor_setup_at": None
        })
        logger.info(f"2FA disabled for user {user_id}")
        return {"success": True, "message": "2FA disabled successfully"}

    def status(self, user_id: str) -> Dict[str, Any]:
        profile = self._get_profile(user_id)
        backup_codes = profile.get("two_factor_backup_codes") or []
        used_codes = profile.get("two_factor_backup_codes_used") or []
        setup_at: Optional[str] = profile.get("two_factor_setup_at")
        return {
            "enabled": bool(profile.get("two_factor_enabled")),
            "method": profile.get("two_factor_method"),
            "setup_at": str(setup_at) if setup_at else None,
            "backup_codes_remaining": len(backup_codes) - len(used_codes)
        }
