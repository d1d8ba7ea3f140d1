"""
Server cart persistence contract and its HTTP client.

Each operation returns the authoritative server-held cart snapshot. The
CartStore only talks to these methods; guest sessions never reach them.
"""
import logging
from typing import Any, List, Optional

import httpx

from agrocart.config import Config
from agrocart.exceptions import PersistenceError
from agrocart.identifiers import hash_identifier
from agrocart.models import CartLine, CartSnapshot

logger = logging.getLogger(__name__)


class CartPersistence:
    """Remote cart operations keyed by an authenticated identity"""

    async def fetch(self) -> CartSnapshot:
        raise NotImplementedError

    async def add(self, line: CartLine) -> CartSnapshot:
        raise NotImplementedError

    async def update(
        self,
        product_id: str,
        quantity: float,
        variant_or_category_id: Optional[str] = None
    ) -> CartSnapshot:
        raise NotImplementedError

    async def remove(self, product_id: str, variant_or_category_id: Optional[str] = None) -> CartSnapshot:
        raise NotImplementedError

    async def clear(self) -> CartSnapshot:
        raise NotImplementedError

    async def replace(self, lines: List[CartLine]) -> CartSnapshot:
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held resources"""
        return None


class HttpCartPersistence(CartPersistence):
    """
    Client for the cart persistence service.

    Identity travels in the ``X-User-ID`` header.
    """

    def __init__(
        self,
        user_id: str,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize cart persistence client.

        Args:
            user_id: Authenticated user identifier
            base_url: Base URL of the cart service (defaults to Config.CART_API_URL)
            http_client: Pre-built client, mostly for tests
            timeout: Request timeout in seconds
        """
        self.user_id = user_id
        self.base_url = (base_url or Config.CART_API_URL).rstrip("/")
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout or Config.HTTP_TIMEOUT_SECONDS
        )

    async def close(self) -> None:
        """Close HTTP client"""
        if self._owns_client:
            await self._http_client.aclose()

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-User-ID": self.user_id,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> CartSnapshot:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http_client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Cart service returned {e.response.status_code} for {method} {path}",
                extra={"hashed_user_id": hash_identifier(self.user_id), "status_code": e.response.status_code},
            )
            raise PersistenceError(f"Cart service error {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            logger.error(
                f"Cart service request failed: {method} {path}: {e}",
                extra={"hashed_user_id": hash_identifier(self.user_id)},
            )
            raise PersistenceError(f"Cart service unreachable: {e}") from e

        return CartSnapshot.model_validate(self._unwrap(response.json()))

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        # Accept both a bare snapshot and the { success, data: { cart } } envelope
        if isinstance(payload, dict):
            if isinstance(payload.get("data"), dict):
                payload = payload["data"]
            if isinstance(payload.get("cart"), dict):
                payload = payload["cart"]
        return payload

    async def fetch(self) -> CartSnapshot:
        return await self._request("GET", "/cart")

    async def add(self, line: CartLine) -> CartSnapshot:
        return await self._request("POST", "/cart/items", json=line.model_dump(mode="json", by_alias=True))

    async def update(
        self,
        product_id: str,
        quantity: float,
        variant_or_category_id: Optional[str] = None
    ) -> CartSnapshot:
        body = {
            "productId": product_id,
            "variantOrCategoryId": variant_or_category_id,
            "quantity": quantity,
        }
        return await self._request("PUT", "/cart/items", json=body)

    async def remove(self, product_id: str, variant_or_category_id: Optional[str] = None) -> CartSnapshot:
        params = {"variant_id": variant_or_category_id} if variant_or_category_id else None
        return await self._request("DELETE", f"/cart/items/{product_id}", params=params)

    async def clear(self) -> CartSnapshot:
        return await self._request("DELETE", "/cart")

    async def replace(self, lines: List[CartLine]) -> CartSnapshot:
        body = {"lines": [line.model_dump(mode="json", by_alias=True) for line in lines]}
        return await self._request("PUT", "/cart", json=body)
