"""
Catalog Source Client

HTTP client for the two upstream listing endpoints: unit-priced products and
weight-priced (fish) products. Responses are returned as parsed catalog
records; normalization is left to the caller or ``list_normalized``.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from agrocart.catalog import UNIT, WEIGHT, parse_records
from agrocart.config import Config
from agrocart.exceptions import CatalogSourceError
from agrocart.models import CatalogRecord, NormalizedProduct
from agrocart.normalizer import normalize_many

logger = logging.getLogger(__name__)

# record kind -> (listing path, payload key)
LISTINGS = {
    UNIT: ("/product", "products"),
    WEIGHT: ("/fish-product", "fishProducts"),
}


class CatalogClient:
    """
    Client for the catalog listing API.

    Never retries and never caches; each call reflects the upstream at that moment.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or Config.CATALOG_API_URL).rstrip("/")
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout or Config.HTTP_TIMEOUT_SECONDS
        )

    async def close(self) -> None:
        """Close HTTP client"""
        if self._owns_client:
            await self._http_client.aclose()

    async def _get_listing(
        self, kind: str, page: int, limit: int
    ) -> Tuple[List[CatalogRecord], Dict[str, Any]]:
        path, payload_key = LISTINGS[kind]
        url = f"{self.base_url}{path}"
        try:
            response = await self._http_client.get(
                url,
                params={"page": page, "limit": limit},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Catalog listing {path} returned {e.response.status_code}")
            raise CatalogSourceError(
                f"Catalog listing {path} failed: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Catalog listing {path} request failed: {e}")
            raise CatalogSourceError(f"Catalog listing {path} unreachable: {e}") from e
        except ValueError as e:
            raise CatalogSourceError(f"Catalog listing {path} returned invalid JSON") from e

        # Listings may be wrapped as { success, data: { <payload_key>, pagination } }
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            data = payload if isinstance(payload, dict) else {}

        records = parse_records(data.get(payload_key) or [], kind)
        pagination = data.get("pagination")
        if not isinstance(pagination, dict):
            pagination = {
                key: data[key]
                for key in ("total", "currentPage", "totalPages")
                if key in data
            }

        logger.info(
            f"Fetched {len(records)} records from {path}",
            extra={"kind": kind, "page": page, "limit": limit},
        )
        return records, pagination

    async def list_products(
        self, page: int = 1, limit: int = 20
    ) -> Tuple[List[CatalogRecord], Dict[str, Any]]:
        """List unit-priced products"""
        return await self._get_listing(UNIT, page, limit)

    async def list_fish_products(
        self, page: int = 1, limit: int = 20
    ) -> Tuple[List[CatalogRecord], Dict[str, Any]]:
        """List weight-priced products; every record is parsed as weight-priced"""
        return await self._get_listing(WEIGHT, page, limit)

    async def list_normalized(
        self, kind: str = UNIT, page: int = 1, limit: int = 20
    ) -> List[NormalizedProduct]:
        """Fetch one listing page and normalize it"""
        if kind not in LISTINGS:
            raise ValueError(f"Unknown catalog kind: {kind}")
        records, _ = await self._get_listing(kind, page, limit)
        return normalize_many(records)
