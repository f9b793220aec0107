"""HTTP client for the storefront API, used by the cart and checkout flow."""

from typing import Optional

import requests

from cart import InMemoryStorage, StorageAdapter
from errors import ApiError
from logging_config import get_logger

logger = get_logger(__name__)


class StorefrontClient:
    """Thin wrapper over the REST surface.

    Responses use the `{success, data|error}` envelope; error envelopes are
    raised as `ApiError` carrying the HTTP status and the server's message.
    `session` is a `requests.Session` by default; any object with the same
    `request()` signature (e.g. FastAPI's `TestClient`) works.
    """

    TOKEN_KEY = "token"

    def __init__(self, base_url: str = "", session=None, storage: Optional[StorageAdapter] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.timeout = timeout

    @property
    def token(self) -> Optional[str]:
        return self.storage.get(self.TOKEN_KEY)

    def _headers(self) -> dict:
        token = self.token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _request(self, method: str, path: str, json: dict = None, params: dict = None) -> dict:
        kwargs = {"json": json, "params": params, "headers": self._headers()}
        if isinstance(self.session, requests.Session):
            kwargs["timeout"] = self.timeout
        resp = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            raise ApiError(resp.status_code, f"Unexpected response body from {path}")
        if resp.status_code >= 400 or body.get("success") is False:
            message = body.get("error") or f"Request failed with status {resp.status_code}"
            logger.debug("api_error", method=method, path=path, status_code=resp.status_code, error=message)
            raise ApiError(resp.status_code, message)
        return body

    # -------------------- Auth --------------------

    def register(self, name: str, email: str, password: str) -> str:
        body = self._request("POST", "/auth/register", json={"name": name, "email": email, "password": password})
        self.storage.set(self.TOKEN_KEY, body["access_token"])
        return body["access_token"]

    def login(self, email: str, password: str) -> str:
        body = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.storage.set(self.TOKEN_KEY, body["access_token"])
        return body["access_token"]

    def logout(self) -> None:
        self.storage.remove(self.TOKEN_KEY)

    def me(self) -> dict:
        return self._request("GET", "/auth/me")["data"]

    # -------------------- Catalog --------------------

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/products/{product_id}")["data"]

    def list_products(self, **filters) -> dict:
        return self._request("GET", "/products", params={k: v for k, v in filters.items() if v is not None})

    # -------------------- Orders & payment --------------------

    def create_order(self, payload: dict) -> dict:
        return self._request("POST", "/orders", json=payload)["data"]

    def get_order(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}")["data"]

    def my_orders(self) -> list:
        return self._request("GET", "/orders/myorders")["data"]

    def create_payment_intent(self, order_id: str) -> str:
        return self._request("POST", "/payment/create-payment-intent", json={"order_id": order_id})["data"]["client_secret"]

    def payment_success(self, order_id: str, payment_intent_id: str) -> dict:
        body = self._request(
            "POST",
            "/payment/payment-success",
            json={"order_id": order_id, "payment_intent_id": payment_intent_id},
        )
        return body["data"]
