import copy
import json
import logging
from supabase import Client
from fastapi import HTTPException, status
from typing import Any, Dict, List, Optional

from app.core.timeutils import utc_now_iso

logger = logging.getLogger(__name__)

PUBLIC_SETTING_KEYS = ("site_branding", "payment_phonepe_public", "payment_razorpay_public", "feature_flags_public")

PAYMENT_KEY_PREFIX = "payment_"
OFFLINE_METHODS = ("cod", "upi")

DEFAULT_PAYMENT_METHODS = {
    "razorpay": {"id": "razorpay", "name": "Razorpay", "type": "online", "enabled": False, "config": {}},
    "stripe": {"id": "stripe", "name": "Stripe", "type": "online", "enabled": False, "config": {}},
    "phonepe": {"id": "phonepe", "name": "PhonePe", "type": "online", "enabled": False, "config": {}},
    "paytm": {"id": "paytm", "name": "Paytm", "type": "online", "enabled": False, "config": {}},
    "cashfree": {"id": "cashfree", "name": "Cashfree", "type": "online", "enabled": False, "config": {}},
    "cod": {"id": "cod", "name": "Cash on Delivery", "type": "offline", "enabled": True, "config": {}},
    "upi": {"id": "upi", "name": "UPI/QR Code", "type": "offline", "enabled": True, "config": {}},
}


def is_public_key(key: str) -> bool:
    return key in PUBLIC_SETTING_KEYS


def decode_value(value: Any) -> Any:
    """Setting values are jsonb, but older rows hold JSON-encoded strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def default_payment_method(method_id: str) -> Dict[str, Any]:
    if method_id in DEFAULT_PAYMENT_METHODS:
        return copy.deepcopy(DEFAULT_PAYMENT_METHODS[method_id])
    return {
        "id": method_id,
        "name": method_id[:1].upper() + method_id[1:],
        "type": "offline" if method_id in OFFLINE_METHODS else "online",
        "enabled": False,
        "config": {},
    }


class SettingsService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_setting(self, key: str) -> Dict[str, Any]:
        try:
            result = self.supabase.table("settings")\
                .select("*")\
                .eq("key", key)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching setting {key}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch setting")
        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Setting not found")
        return result.data[0]

    def get_value(self, key: str) -> Optional[Any]:
        """Decoded value for key, None when the row is missing or unreadable"""
        try:
            result = self.supabase.table("settings")\
                .select("value")\
                .eq("key", key)\
                .order("updated_at", desc=True)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error reading setting {key}: {e}")
            return None
        if not result.data:
            return None
        return decode_value(result.data[0].get("value"))

    def get_many(self, keys: List[str]) -> Dict[str, Any]:
        try:
            result = self.supabase.table("settings")\
                .select("*")\
                .in_("key", keys)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching settings {keys}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch settings")
        return {row["key"]: row.get("value") for row in result.data or []}

    def list_settings(self) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table("settings")\
                .select("*")\
                .order("key")\
                .execute()
        except Exception as e:
            logger.error(f"Error listing settings: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch settings")
        return result.data or []

    def upsert_setting(self, key: str, value: Any, description: Optional[str] = None) -> Dict[str, Any]:
        row = {"key": key, "value": value, "updated_at": utc_now_iso()}
        if description is not None:
            row["description"] = description
        try:
            result = self.supabase.table("settings")\
                .upsert(row, on_conflict="key")\
                .execute()
        except Exception as e:
            logger.error(f"Error saving setting {key}: {e}")
            raise HTTPException(status_code=500, detail="Failed to save setting")
        logger.info(f"Setting {key} saved")
        return result.data[0] if result.data else row

    def update_setting(self, key: str, value: Any, description: Optional[str] = None) -> Dict[str, Any]:
        updates = {"value": value, "updated_at": utc_now_iso()}
        if description is not None:
            updates["description"] = description
        try:
            result = self.supabase.table("settings")\
                .update(updates)\
                .eq("key", key)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating setting {key}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update setting")
        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Setting not found")
        return result.data[0]

    def delete_setting(self, key: str) -> None:
        try:
            self.supabase.table("settings")\
                .delete()\
                .eq("key", key)\
                .execute()
        except Exception as e:
            logger.error(f"Error deleting setting {key}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete setting")
        logger.info(f"Setting {key} deleted")

    # Payment methods

    def get_payment_settings(self) -> Dict[str, Dict[str, Any]]:
        """Every known method, stored values laid over the defaults"""
        try:
            result = self.supabase.table("settings")\
                .select("key, value")\
                .like("key", f"{PAYMENT_KEY_PREFIX}%")\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching payment settings: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch payment settings")

        methods = copy.deepcopy(DEFAULT_PAYMENT_METHODS)
        for row in result.data or []:
            method_id = row["key"][len(PAYMENT_KEY_PREFIX):]
            value = decode_value(row.get("value"))
            if method_id in methods and isinstance(value, dict):
                methods[method_id] = {**methods[method_id], **value}
            elif method_id in methods:
                logger.warning(f"Ignoring unreadable payment setting {row['key']}")
        return methods

    def update_payment_method(self, method_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        key = f"{PAYMENT_KEY_PREFIX}{method_id}"
        current = default_payment_method(method_id)
        stored = self.get_value(key)
        if isinstance(stored, dict):
            current = {**current, **stored}
        method = deep_merge(current, updates)
        self.upsert_setting(key, method)
        logger.info(f"Payment method {method_id} updated")
        return method

    def get_gateway_config(self, method_id: str) -> Optional[Dict[str, Any]]:
        value = self.get_value(f"{PAYMENT_KEY_PREFIX}{method_id}")
        return value if isinstance(value, dict) else None
