"""
Zoho OAuth token storage and refresh.

Tokens and client credentials live in the zoho_config table; the ZOHO_*
settings are used for any key the table does not hold.
"""
import logging
import threading
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlencode

import httpx
from supabase import Client

from app.config import settings
from app.core.http import http_client
from app.core.timeutils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

CONFIG_KEYS = ("client_id", "client_secret", "organization_id", "redirect_uri")
OAUTH_SCOPE = "ZohoInventory.FullAccess.all"
DEFAULT_EXPIRES_IN = 3600

# Shared across requests; holds access_token and expires_at
_token_cache: Dict[str, Any] = {}
_cache_lock = threading.Lock()


class ZohoAuthError(Exception):
    pass


def clear_token_cache() -> None:
    with _cache_lock:
        _token_cache.clear()
    logger.info("Zoho token cache cleared")


class ZohoTokenManager:
    def __init__(self, supabase: Client, http_client: Optional[httpx.Client] = None):
        self.supabase = supabase
        self._http = http_client

    def _rows(self, keys: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        try:
            result = self.supabase.table("zoho_config")\
                .select("config_key, config_value, expires_at")\
                .in_("config_key", list(keys))\
                .execute()
        except Exception as e:
            logger.warning(f"Could not read zoho_config: {e}")
            return {}
        return {row["config_key"]: row for row in result.data or []}

    def _write(self, key: str, value: str, **extra) -> None:
        row = {"config_key": key, "config_value": value, "updated_at": utc_now().isoformat(), **extra}
        self.supabase.table("zoho_config").upsert(row, on_conflict="config_key").execute()

    def get_config(self) -> Dict[str, Optional[str]]:
        rows = self._rows(CONFIG_KEYS)
        fallback = {
            "client_id": settings.zoho_client_id,
            "client_secret": settings.zoho_client_secret,
            "organization_id": settings.zoho_organization_id,
            "redirect_uri": settings.zoho_redirect_uri,
        }
        return {
            key: (rows.get(key) or {}).get("config_value") or fallback[key]
            for key in CONFIG_KEYS
        }

    def store_config(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        organization_id: Optional[str] = None,
        redirect_uri: Optional[str] = None
    ) -> None:
        if client_id:
            self._write("client_id", client_id)
        if client_secret:
            self._write("client_secret", client_secret, encrypted=True)
        if organization_id:
            self._write("organization_id", organization_id)
        if redirect_uri:
            self._write("redirect_uri", redirect_uri)
        logger.info("Zoho configuration stored")

    def store_tokens(self, access_token: str, refresh_token: Optional[str] = None,
                     expires_in: int = DEFAULT_EXPIRES_IN) -> None:
        expires_at = utc_now() + timedelta(seconds=expires_in)
        self._write("access_token", access_token, expires_at=expires_at.isoformat())
        if refresh_token:
            self._write("refresh_token", refresh_token)
        with _cache_lock:
            _token_cache["access_token"] = access_token
            _token_cache["expires_at"] = expires_at
        logger.info("Zoho tokens stored")

    def get_access_token(self) -> Optional[str]:
        """Cached token, then the stored one; an expired stored token is refreshed."""
        now = utc_now()
        with _cache_lock:
            cached = _token_cache.get("access_token")
            expires_at = _token_cache.get("expires_at")
        if cached and expires_at and now < expires_at:
            return cached

        row = self._rows(["access_token"]).get("access_token")
        if not row or not row.get("config_value"):
            if settings.zoho_access_token:
                return settings.zoho_access_token
            logger.warning("No Zoho access token stored")
            return None

        stored_expiry = parse_timestamp(row.get("expires_at"))
        if stored_expiry and stored_expiry <= now:
            logger.info("Zoho access token expired, refreshing")
            return self.refresh_access_token()

        with _cache_lock:
            _token_cache["access_token"] = row["config_value"]
            _token_cache["expires_at"] = stored_expiry
        return row["config_value"]

    def get_refresh_token(self) -> Optional[str]:
        row = self._rows(["refresh_token"]).get("refresh_token")
        if row and row.get("config_value"):
            return row["config_value"]
        return settings.zoho_refresh_token

    def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        url = f"{settings.zoho_accounts_url}/oauth/v2/token"
        try:
            with http_client(self._http) as client:
                response = client.post(url, data=form)
        except httpx.HTTPError as e:
            raise ZohoAuthError(f"Zoho token request failed: {e}")
        if response.status_code >= 400:
            raise ZohoAuthError(f"Zoho token request rejected: {response.status_code} {response.text}")
        data = response.json()
        if not data.get("access_token"):
            raise ZohoAuthError(data.get("error") or "Zoho did not return an access token")
        return data

    def refresh_access_token(self) -> Optional[str]:
        refresh_token = self.get_refresh_token()
        if not refresh_token:
            logger.error("Cannot refresh Zoho token: no refresh token")
            return None
        config = self.get_config()
        if not config["client_id"] or not config["client_secret"]:
            logger.error("Cannot refresh Zoho token: client credentials missing")
            return None
        try:
            data = self._token_request({
                "grant_type": "refresh_token",
                "client_id": config["client_id"],
                "client_secret": config["client_secret"],
                "refresh_token": refresh_token,
            })
        except ZohoAuthError as e:
            logger.error(f"Zoho token refresh failed: {e}")
            return None
        self.store_tokens(data["access_token"], None, int(data.get("expires_in") or DEFAULT_EXPIRES_IN))
        logger.info("Zoho access token refreshed")
        return data["access_token"]

    def authorization_url(self) -> str:
        config = self.get_config()
        if not config["client_id"] or not config["redirect_uri"]:
            raise ZohoAuthError("Zoho client ID and redirect URI must be configured")
        params = urlencode({
            "response_type": "code",
            "client_id": config["client_id"],
            "scope": OAUTH_SCOPE,
            "redirect_uri": config["redirect_uri"],
            "access_type": "offline",
        })
        return f"{settings.zoho_accounts_url}/oauth/v2/auth?{params}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for tokens and persist them"""
        config = self.get_config()
        if not config["client_id"] or not config["client_secret"]:
            raise ZohoAuthError("Zoho client credentials are not configured")
        data = self._token_request({
            "grant_type": "authorization_code",
            "client_id": config["client_id"],
            "client_secret": config["client_secret"],
            "redirect_uri": config["redirect_uri"] or "",
            "code": code,
        })
        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        self.store_tokens(data["access_token"], data.get("refresh_token"), expires_in)
        return {"expires_in": expires_in, "has_refresh_token": bool(data.get("refresh_token"))}

    def is_configured(self) -> bool:
        config = self.get_config()
        return bool(config["client_id"] and config["organization_id"] and self.get_access_token())
