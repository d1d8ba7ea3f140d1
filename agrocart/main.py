"""
FastAPI application: server cart persistence service and catalog normalization.
"""
import logging
import time
from typing import Any, List, Literal, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agrocart.cart_service import CartService
from agrocart.config import Config
from agrocart.exceptions import (
    CartException,
    CatalogSourceError,
    PersistenceError,
    ProductNotFoundError,
    RedisConnectionError,
    ValidationError,
)
from agrocart.middleware import RequestLoggingMiddleware
from agrocart.models import (
    CartLine,
    CartSnapshot,
    NormalizedProduct,
    ReplaceCartRequest,
    UpdateQuantityRequest,
)
from agrocart.normalizer import normalize_many
from agrocart.redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Storefront Cart API",
    description="Server-held cart for authenticated shoppers and catalog normalization",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

_cart_service: Optional[CartService] = None


def get_cart_service() -> CartService:
    """Get or create the cart service (singleton)"""
    global _cart_service
    if _cart_service is None:
        _cart_service = CartService()
    return _cart_service


def require_user_id(
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="Authenticated user identifier")
) -> str:
    """Server carts exist only for authenticated users"""
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="User ID is required")
    return user_id.strip()


@app.get("/health")
async def health_check():
    """
    Liveness plus cart storage status.

    The app answers 200 while it runs; a Redis outage only degrades the
    reported cart storage status.
    """
    storage = {"backend": "redis", "reachable": False, "latency_ms": None}
    try:
        started = time.perf_counter()
        storage["reachable"] = get_redis_client().ping()
        storage["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    except RedisConnectionError as e:
        logger.warning(f"Health check could not reach Redis: {e}")

    return {
        "status": "ok" if storage["reachable"] else "degraded",
        "service": Config.PROJECT_NAME,
        "cart_storage": storage,
        "limits": {
            "max_lines_per_cart": Config.MAX_LINES_PER_CART,
            "cart_ttl_seconds": Config.CART_TTL_SECONDS,
        },
    }


# Cart endpoints
@app.get("/cart", response_model=CartSnapshot)
async def get_cart(
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get the server cart; a user without a cart gets an empty one"""
    return cart_service.get_cart(user_id)


@app.post("/cart/items", response_model=CartSnapshot)
async def add_cart_line(
    line: CartLine,
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add a line, incrementing an existing (product, variant-or-category) line"""
    return cart_service.add_line(user_id, line)


@app.put("/cart/items", response_model=CartSnapshot)
async def update_cart_line(
    request: UpdateQuantityRequest,
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Set a line's quantity; zero or less removes it"""
    return cart_service.update_quantity(
        user_id,
        request.product_id,
        request.quantity,
        request.variant_or_category_id
    )


@app.delete("/cart/items/{product_id}", response_model=CartSnapshot)
async def remove_cart_line(
    product_id: str,
    variant_id: Optional[str] = Query(None, description="Variant or size category identifier"),
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Remove a line; missing lines are not an error"""
    return cart_service.remove_line(user_id, product_id, variant_id)


@app.put("/cart", response_model=CartSnapshot)
async def replace_cart(
    request: ReplaceCartRequest,
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Replace the whole cart, used after the login merge"""
    return cart_service.replace_cart(user_id, request.lines)


@app.delete("/cart", response_model=CartSnapshot)
async def clear_cart(
    user_id: str = Depends(require_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Clear the server cart"""
    return cart_service.clear_cart(user_id)


# Catalog endpoints
@app.post("/catalog/normalize", response_model=List[NormalizedProduct])
async def normalize_catalog(
    records: List[Any] = Body(..., description="Raw catalog records"),
    kind: Optional[Literal["unit", "weight"]] = Query(None, description="Force the record kind")
):
    """Normalize raw listing records into the canonical product shape"""
    return normalize_many(records, kind)


# Error handlers: cart exception type -> (status, error label)
ERROR_RESPONSES = {
    ValidationError: (400, "Validation error"),
    ProductNotFoundError: (404, "Line not found"),
    CatalogSourceError: (502, "Catalog unavailable"),
    RedisConnectionError: (503, "Service unavailable"),
    PersistenceError: (503, "Service unavailable"),
}


async def cart_error_handler(request: Request, exc: CartException) -> JSONResponse:
    status_code, label = next(
        (response for exc_type, response in ERROR_RESPONSES.items() if isinstance(exc, exc_type)),
        (500, "Cart error"),
    )
    if status_code >= 500:
        logger.warning(
            f"{label} on {request.method} {request.url.path}: {exc}",
            extra={"status_code": status_code, "error_type": type(exc).__name__},
        )
        # Storage details stay in the logs
        message = "Cart storage is unavailable" if isinstance(exc, PersistenceError) else str(exc)
    else:
        message = str(exc)
    return JSONResponse(status_code=status_code, content={"error": label, "message": message})


for _exc_type in (CartException, *ERROR_RESPONSES):
    app.add_exception_handler(_exc_type, cart_error_handler)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
