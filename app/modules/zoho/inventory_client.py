import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.core.http import http_client
from app.modules.zoho.token_manager import ZohoTokenManager

logger = logging.getLogger(__name__)


class ZohoApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ZohoInventoryClient:
    """Thin wrapper over the Zoho Inventory v1 REST API"""

    def __init__(self, tokens: ZohoTokenManager, organization_id: Optional[str] = None,
                 http_client: Optional[httpx.Client] = None):
        self.tokens = tokens
        self.organization_id = organization_id
        self._http = http_client

    def _org_id(self) -> str:
        if not self.organization_id:
            self.organization_id = self.tokens.get_config()["organization_id"]
        if not self.organization_id:
            raise ZohoApiError("Zoho organization ID is not configured")
        return self.organization_id

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None, retried: bool = False) -> Dict[str, Any]:
        token = self.tokens.get_access_token()
        if not token:
            raise ZohoApiError("No Zoho access token. Complete the OAuth flow first.", 401)

        query = {"organization_id": self._org_id(), **(params or {})}
        try:
            with http_client(self._http) as client:
                response = client.request(
                    method,
                    f"{settings.zoho_api_base}{path}",
                    params=query,
                    json=json,
                    headers={"Authorization": f"Zoho-oauthtoken {token}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"Zoho {method} {path} failed: {e}")
            raise ZohoApiError(f"Zoho request failed: {e}")

        if response.status_code == 401 and not retried:
            logger.info(f"Zoho returned 401 for {path}, refreshing token")
            if not self.tokens.refresh_access_token():
                raise ZohoApiError("Zoho access token refresh failed", 401)
            return self._request(method, path, params, json, retried=True)

        if response.status_code >= 400:
            raise ZohoApiError(
                f"Zoho API error: {response.status_code} {response.text}", response.status_code
            )
        return response.json()

    def list_items(self, page: int = 1, per_page: int = 200) -> Dict[str, Any]:
        return self._request("GET", "/items", {"page": page, "per_page": per_page})

    def get_item(self, item_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/items/{item_id}")

    def create_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/items", json=item)

    def update_item(self, item_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/items/{item_id}", json=item)

    def delete_item(self, item_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/items/{item_id}")

    def get_stock_summary(self, item_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/items/{item_id}/stock")

    def adjust_stock(self, adjustment: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/inventoryadjustments", json=adjustment)

    def list_warehouses(self) -> Dict[str, Any]:
        return self._request("GET", "/warehouses")
