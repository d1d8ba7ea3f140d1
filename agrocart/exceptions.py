"""
Custom exceptions for the storefront cart core.
"""
from typing import Optional


class CartException(Exception):
    """Base exception for cart operations"""
    pass


class ValidationError(CartException):
    """Raised when validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProductNotFoundError(CartException):
    """Raised when a product line is not found in the server cart"""
    def __init__(self, product_id: str, variant_or_category_id: Optional[str] = None):
        self.product_id = product_id
        self.variant_or_category_id = variant_or_category_id
        suffix = f" ({variant_or_category_id})" if variant_or_category_id else ""
        super().__init__(f"Product not found in cart: {product_id}{suffix}")


class PersistenceError(CartException):
    """Raised when the remote cart could not be read or written"""
    pass


class RedisConnectionError(PersistenceError):
    """Raised when Redis connection fails"""
    pass


class CartClearError(PersistenceError):
    """Raised when the remote cart clear was not acknowledged"""
    pass


class CatalogSourceError(CartException):
    """Raised when a catalog listing could not be fetched"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
