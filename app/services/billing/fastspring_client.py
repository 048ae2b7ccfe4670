"""Thin client for the FastSpring REST API (admin tooling and tenant sync)."""
import logging
from urllib.parse import quote
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from app.core.settings import settings
from app.exceptions import FastSpringAPIError

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    # Customer ids are often the billing email; "/", "?" and "#" must not reshape the path
    return quote(str(value), safe="")


class FastSpringClient:
    def __init__(
        self,
        username: Optional[str],
        password: Optional[str],
        store_id: Optional[str],
        base_url: str = "https://api.fastspring.com",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.username = username
        self.password = password
        self.store_id = store_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password and self.store_id)

    def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                 body: Optional[Dict[str, Any]] = None) -> Any:
        if not self.configured:
            raise FastSpringAPIError("FastSpring API credentials not configured")

        url = f"{self.base_url}/companies/{self.store_id}{endpoint}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=body,
                auth=HTTPBasicAuth(self.username, self.password),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"FastSpring API {method} {endpoint} failed: {e}")
            raise FastSpringAPIError(f"FastSpring API request failed: {e}")

        if not response.ok:
            logger.error(f"FastSpring API {method} {endpoint} returned {response.status_code}")
            raise FastSpringAPIError(
                f"FastSpring API error: {response.status_code} {response.reason}",
                upstream_status=response.status_code,
            )
        return response.json()

    def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/customers/{_segment(customer_id)}")

    def list_customers(self, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        return self._request("GET", "/customers", params={"page": page, "limit": limit})

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/subscriptions/{_segment(subscription_id)}")

    def list_subscriptions(self, page: int = 1, limit: int = 50, status: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return self._request("GET", "/subscriptions", params=params)

    def update_subscription(self, subscription_id: str, status: Optional[str], reason: Optional[str]) -> Dict[str, Any]:
        return self._request(
            "PUT", f"/subscriptions/{_segment(subscription_id)}", body={"status": status, "reason": reason}
        )


def get_fastspring_client() -> FastSpringClient:
    """FastAPI dependency; tests override it with a stub."""
    return FastSpringClient(
        username=settings.fastspring_api_username,
        password=settings.fastspring_api_password,
        store_id=settings.fastspring_store_id,
        base_url=settings.fastspring_api_base,
        timeout=settings.fastspring_api_timeout,
    )
