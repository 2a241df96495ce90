import logging
import secrets
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from supabase import Client

from app.config import settings
from app.core.timeutils import parse_timestamp, utc_now, utc_now_iso
from app.modules.notifications.service import NotificationService, NotificationError
from app.modules.notifications.templates import otp_email

logger = logging.getLogger(__name__)

OTP_CHANNELS = ("sms", "email", "whatsapp")
OTP_PURPOSES = ("login", "registration", "password_reset", "transaction", "agent_order")
FALLBACK_ORDER = ("sms", "email", "whatsapp")


class OTPError(Exception):
    pass


def generate_otp_code() -> str:
    """4-digit code; the 2Factor SMS template only accepts 4 digits."""
    return str(1000 + secrets.randbelow(9000))


def available_channels(has_phone: bool, has_email: bool) -> List[str]:
    channels = []
    if has_phone:
        channels.append("sms")
    if has_email:
        channels.append("email")
    if has_phone:
        channels.append("whatsapp")
    return channels


def determine_fallback_channels(preferred: str, has_phone: bool, has_email: bool) -> List[str]:
    """Available channels other than the preferred one, in sms -> email -> whatsapp order."""
    remaining = [c for c in available_channels(has_phone, has_email) if c != preferred]
    return [c for c in FALLBACK_ORDER if c in remaining]


class InMemoryOTPStore:
    """Process-local store used when Supabase is not configured."""

    _records: Dict[str, Dict[str, Any]] = {}
    _lock = threading.Lock()

    def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = {**record, "id": str(uuid.uuid4())}
        with self._lock:
            self._records[stored["id"]] = stored
        return dict(stored)

    def get(self, otp_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(otp_id)
        return dict(record) if record else None

    def update(self, otp_id: str, changes: Dict[str, Any]) -> None:
        with self._lock:
            if otp_id in self._records:
                self._records[otp_id].update(changes)

    def find_latest(self, order_id: str, phone: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            matches = [
                r for r in self._records.values()
                if r.get("order_id") == order_id and (phone is None or r.get("phone") == phone)
            ]
        if not matches:
            return None
        return dict(max(matches, key=lambda r: r.get("created_at") or ""))

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._records.clear()


class SupabaseOTPStore:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        result = self.supabase.table("otp_verifications")\
            .insert(record)\
            .execute()
        if not result.data:
            raise OTPError("Database error: OTP record was not stored")
        return result.data[0]

    def get(self, otp_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table("otp_verifications")\
            .select("*")\
            .eq("id", otp_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def update(self, otp_id: str, changes: Dict[str, Any]) -> None:
        self.supabase.table("otp_verifications")\
            .update(changes)\
            .eq("id", otp_id)\
            .execute()

    def find_latest(self, order_id: str, phone: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = self.supabase.table("otp_verifications")\
            .select("*")\
            .eq("order_id", order_id)
        if phone:
            query = query.eq("phone", phone)
        result = query.order("created_at", desc=True).limit(1).execute()
        return result.data[0] if result.data else None


class OTPService:
    """Multi-channel OTP: primary channel first, then sms -> email -> whatsapp fallbacks."""

    def __init__(self, store, notifier: Optional[NotificationService] = None):
        self.store = store
        self.notifier = notifier or NotificationService()

    @classmethod
    def from_supabase(cls, supabase: Optional[Client], notifier: Optional[NotificationService] = None) -> "OTPService":
        if supabase is None:
            logger.warning("Supabase is not configured; using in-memory OTP storage")
            return cls(InMemoryOTPStore(), notifier)
        return cls(SupabaseOTPStore(supabase), notifier)

    def _send_via_channel(
        self,
        channel: str,
        phone: Optional[str],
        email: Optional[str],
        code: str,
        purpose: str
    ) -> Dict[str, Any]:
        try:
            if channel == "sms":
                if not phone:
                    raise NotificationError("Phone number is required for SMS channel")
                result = self.notifier.send_sms_otp(phone, code)
            elif channel == "email":
                if not email:
                    raise NotificationError("Email address is required for email channel")
                subject, html = otp_email(code, purpose, settings.otp_expiry_minutes)
                result = self.notifier.send_email(email, subject, html)
            elif channel == "whatsapp":
                if not phone:
                    raise NotificationError("Phone number is required for WhatsApp channel")
                result = self.notifier.send_whatsapp_otp(phone, code)
            else:
                raise NotificationError(f"Unsupported channel: {channel}")
        except NotificationError as e:
            logger.warning(f"OTP delivery via {channel} failed: {e}")
            return {"success": False, "error": str(e)}
        return {**result, "success": True}

    def generate(
        self,
        purpose: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        preferred_channel: Optional[str] = None,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Store a new code and deliver it. Returns {success, otp_id, channel, message, fallback_available}."""
        try:
            has_phone, has_email = bool(phone), bool(email)
            if not preferred_channel:
                if has_phone:
                    preferred_channel = "sms"
                elif has_email:
                    preferred_channel = "email"
                else:
                    raise OTPError("No contact method available")
            if preferred_channel not in OTP_CHANNELS:
                raise OTPError(f"Unsupported channel: {preferred_channel}")
            if preferred_channel == "sms" and not has_phone:
                raise OTPError("SMS channel requires phone number")
            if preferred_channel == "email" and not has_email:
                raise OTPError("Email channel requires email address")
            if preferred_channel == "whatsapp" and not has_phone:
                raise OTPError("WhatsApp channel requires phone number")

            code = generate_otp_code()
            fallback_channels = determine_fallback_channels(preferred_channel, has_phone, has_email)
            record = self.store.insert({
                "code": code,
                "phone": phone,
                "email": email,
                "purpose": purpose,
                "channel": preferred_channel,
                "attempts": 0,
                "max_attempts": settings.otp_max_attempts,
                "verified": False,
                "expires_at": (utc_now() + timedelta(minutes=settings.otp_expiry_minutes)).isoformat(),
                "user_id": user_id,
                "order_id": order_id,
                "fallback_channels": fallback_channels,
                "created_at": utc_now_iso(),
            })
            otp_id = record["id"]

            primary = self._send_via_channel(preferred_channel, phone, email, code, purpose)
            if primary["success"]:
                return {
                    "success": True,
                    "otp_id": otp_id,
                    "channel": preferred_channel,
                    "message": f"OTP sent via {preferred_channel}",
                    "fallback_available": len(fallback_channels) > 0,
                    "provider": primary.get("provider"),
                }

            errors = [(preferred_channel, primary["error"])]
            for channel in fallback_channels:
                result = self._send_via_channel(channel, phone, email, code, purpose)
                if result["success"]:
                    self.store.update(otp_id, {"channel": channel, "last_attempt_at": utc_now_iso()})
                    return {
                        "success": True,
                        "otp_id": otp_id,
                        "channel": channel,
                        "message": f"OTP sent via {channel} (fallback)",
                        "fallback_available": len([c for c in fallback_channels if c != channel]) > 0,
                        "provider": result.get("provider"),
                    }
                errors.append((channel, result["error"]))

            summary = "; ".join(f"{ch}: {err}" for ch, err in errors)
            raise OTPError(f"Failed to send OTP via any channel ({summary})")
        except Exception as e:
            logger.error(f"OTP generation failed for purpose={purpose}: {e}")
            return {"success": False, "message": str(e)}

    def verify(self, otp_id: str, code: str) -> Dict[str, Any]:
        record = self.store.get(otp_id)
        if not record:
            return {"success": False, "message": "Invalid OTP ID"}

        expires_at = parse_timestamp(record.get("expires_at"))
        if expires_at is None or expires_at < utc_now():
            return {"success": False, "message": "OTP has expired"}
        if record.get("verified"):
            return {"success": False, "message": "OTP already used"}

        attempts = int(record.get("attempts") or 0)
        max_attempts = int(record.get("max_attempts") or settings.otp_max_attempts)
        if attempts >= max_attempts:
            return self._attempts_exhausted(record)

        if not secrets.compare_digest(str(record.get("code")), str(code)):
            attempts += 1
            self.store.update(otp_id, {"attempts": attempts, "last_attempt_at": utc_now_iso()})
            if attempts >= max_attempts:
                return self._attempts_exhausted(record)
            return {
                "success": False,
                "message": f"Invalid OTP. {max_attempts - attempts} attempts remaining.",
                "can_retry": True,
            }

        self.store.update(otp_id, {"verified": True, "verified_at": utc_now_iso()})
        logger.info(f"OTP {otp_id} verified for purpose={record.get('purpose')}")
        return {"success": True, "message": "OTP verified successfully"}

    def _attempts_exhausted(self, record: Dict[str, Any]) -> Dict[str, Any]:
        next_fallback = next(
            (c for c in record.get("fallback_channels") or [] if c != record.get("channel")),
            None
        )
        if next_fallback:
            return {
                "success": False,
                "message": "Maximum attempts reached",
                "can_retry": False,
                "suggest_fallback": True,
                "next_fallback_channel": next_fallback,
            }
        return {
            "success": False,
            "message": "Maximum attempts reached. No fallback available.",
            "can_retry": False,
        }

    def resend_with_fallback(self, otp_id: str, channel: Optional[str] = None) -> Dict[str, Any]:
        """Issue a fresh code on `channel` (default: next fallback, else the current channel)."""
        record = self.store.get(otp_id)
        if not record:
            return {"success": False, "message": "Invalid OTP ID"}

        if not channel:
            fallbacks = [c for c in record.get("fallback_channels") or [] if c != record.get("channel")]
            channel = fallbacks[0] if fallbacks else record.get("channel")

        code = generate_otp_code()
        result = self._send_via_channel(channel, record.get("phone"), record.get("email"), code, record.get("purpose"))
        if not result["success"]:
            return {"success": False, "message": f"Failed to send OTP via {channel}: {result['error']}"}

        self.store.update(otp_id, {
            "code": code,
            "channel": channel,
            "attempts": 0,
            "expires_at": (utc_now() + timedelta(minutes=settings.otp_expiry_minutes)).isoformat(),
            "created_at": utc_now_iso(),
            "last_attempt_at": None,
        })
        return {
            "success": True,
            "message": f"OTP resent via {channel}",
            "channel": channel,
            "provider": result.get("provider"),
        }

    def get_status(self, otp_id: str) -> Optional[Dict[str, Any]]:
        record = self.store.get(otp_id)
        if not record:
            return None
        return self._status_for(record)

    def _status_for(self, record: Dict[str, Any]) -> Dict[str, Any]:
        expires_at = parse_timestamp(record.get("expires_at"))
        return {
            "otp_id": record["id"],
            "verified": bool(record.get("verified")),
            "attempts": int(record.get("attempts") or 0),
            "max_attempts": int(record.get("max_attempts") or settings.otp_max_attempts),
            "channel": record.get("channel"),
            "expires_at": record.get("expires_at"),
            "created_at": record.get("created_at"),
            "available_fallbacks": [c for c in record.get("fallback_channels") or [] if c != record.get("channel")],
            "can_resend": not record.get("verified") and expires_at is not None and expires_at > utc_now(),
        }

    def find_for_order(self, order_id: str, phone: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.store.find_latest(order_id, phone)

    def get_record(self, otp_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(otp_id)

    def seconds_since_issued(self, record: Dict[str, Any]) -> float:
        created_at = parse_timestamp(record.get("created_at"))
        if created_at is None:
            return float("inf")
        return (utc_now() - created_at).total_seconds()

    def is_verified_for(self, otp_id: str, purpose: str, email: Optional[str] = None,
                        phone: Optional[str] = None) -> bool:
        """True when otp_id was verified for `purpose`, recently, and belongs to the given contact."""
        record = self.store.get(otp_id)
        if not record or not record.get("verified") or record.get("purpose") != purpose:
            return False
        verified_at = parse_timestamp(record.get("verified_at"))
        window = timedelta(minutes=settings.otp_verified_window_minutes)
        if verified_at is None or utc_now() - verified_at > window:
            return False
        if email and (record.get("email") or "").lower() != email.lower():
            return False
        if phone and record.get("phone") and record.get("phone") != phone:
            return False
        return True
