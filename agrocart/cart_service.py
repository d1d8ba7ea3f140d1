"""
Server cart service: the authoritative cart for authenticated users, in Redis.
"""
import json
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from agrocart.atomic_scripts import AtomicScripts
from agrocart.cart_line import build_snapshot, normalize_quantity
from agrocart.config import Config
from agrocart.exceptions import ProductNotFoundError, ValidationError
from agrocart.identifiers import hash_identifier
from agrocart.models import CartLine, CartSnapshot
from agrocart.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)


class CartService:
    """Service for server cart operations"""

    def __init__(self, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or get_redis_client()
        self.scripts = AtomicScripts(self.redis)

    def _get_cart_key(self, user_id: str) -> str:
        """Generate Redis key for cart (hash tag keeps cart and counter in one slot)"""
        return f"cart:{{{user_id}}}"

    def _get_seq_key(self, user_id: str) -> str:
        return f"cart:{{{user_id}}}:seq"

    @staticmethod
    def _line_field(product_id: str, variant_or_category_id: Optional[str]) -> str:
        return f"{product_id}::{variant_or_category_id or ''}"

    @staticmethod
    def _line_json(line: CartLine) -> str:
        return json.dumps(line.model_dump(mode="json", by_alias=True))

    def get_cart(self, user_id: str) -> CartSnapshot:
        """Get cart contents in insertion order"""
        items_data: Dict[str, str] = self.redis.hgetall(self._get_cart_key(user_id)) or {}

        positioned = []
        for field, item_json in items_data.items():
            try:
                item_data = json.loads(item_json)
                line = CartLine.model_validate(item_data)
            except (json.JSONDecodeError, PydanticValidationError) as e:
                # Skip invalid items
                logger.warning(
                    f"Failed to parse cart line {field}: {e}",
                    extra={"hashed_user_id": hash_identifier(user_id)},
                )
                continue
            if line.quantity > 0:
                positioned.append((item_data.get("position") or 0, line))

        positioned.sort(key=lambda pair: pair[0])
        return build_snapshot(line for _, line in positioned)

    def add_line(self, user_id: str, line: CartLine) -> CartSnapshot:
        """
        Add a line or increment an existing one by line.quantity.

        Raises:
            ValidationError: If the quantity is not positive or the cart is full
        """
        quantity = normalize_quantity(line.quantity, line.price_kind, line.measurement_increment)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        result = self.scripts.add_line(
            cart_key=self._get_cart_key(user_id),
            seq_key=self._get_seq_key(user_id),
            field=self._line_field(line.product_id, line.variant_or_category_id),
            line_json=self._line_json(line),
            quantity=quantity,
            max_lines=Config.MAX_LINES_PER_CART,
            ttl=Config.CART_TTL_SECONDS,
        )
        if result.get("err") == "MAX_LINES_EXCEEDED":
            raise ValidationError(f"Cart exceeds maximum lines {result.get('max', Config.MAX_LINES_PER_CART)}")
        if not result.get("ok"):
            raise ValidationError(f"Redis script did not return success: {result}")

        logger.info(
            f"Added {quantity} of {line.product_id} to server cart",
            extra={"hashed_user_id": hash_identifier(user_id), "is_new": result.get("is_new")},
        )
        return self.get_cart(user_id)

    def update_quantity(
        self,
        user_id: str,
        product_id: str,
        quantity: float,
        variant_or_category_id: Optional[str] = None
    ) -> CartSnapshot:
        """
        Set a line's quantity; zero or less removes the line.

        Raises:
            ProductNotFoundError: If the line is not in the cart
        """
        result = self.scripts.set_quantity(
            cart_key=self._get_cart_key(user_id),
            field=self._line_field(product_id, variant_or_category_id),
            quantity=quantity,
            ttl=Config.CART_TTL_SECONDS,
        )
        if result.get("err") == "LINE_NOT_FOUND":
            raise ProductNotFoundError(product_id, variant_or_category_id)
        return self.get_cart(user_id)

    def remove_line(
        self,
        user_id: str,
        product_id: str,
        variant_or_category_id: Optional[str] = None
    ) -> CartSnapshot:
        """Remove a line; removing a missing line is not an error"""
        self.redis.hdel(self._get_cart_key(user_id), self._line_field(product_id, variant_or_category_id))
        return self.get_cart(user_id)

    def clear_cart(self, user_id: str) -> CartSnapshot:
        """Clear all lines from cart"""
        self.redis.delete(self._get_cart_key(user_id), self._get_seq_key(user_id))
        logger.info("Cleared server cart", extra={"hashed_user_id": hash_identifier(user_id)})
        return build_snapshot([])

    def replace_cart(self, user_id: str, lines: List[CartLine]) -> CartSnapshot:
        """Replace the whole cart, keeping the given order"""
        if len(lines) > Config.MAX_LINES_PER_CART:
            raise ValidationError(f"Cart exceeds maximum lines {Config.MAX_LINES_PER_CART}")

        pairs = [
            (self._line_field(line.product_id, line.variant_or_category_id), self._line_json(line))
            for line in lines
            if line.quantity > 0
        ]
        self.scripts.replace_cart(
            cart_key=self._get_cart_key(user_id),
            seq_key=self._get_seq_key(user_id),
            lines=pairs,
            ttl=Config.CART_TTL_SECONDS,
        )
        logger.info(
            f"Replaced server cart with {len(pairs)} lines",
            extra={"hashed_user_id": hash_identifier(user_id)},
        )
        return self.get_cart(user_id)
