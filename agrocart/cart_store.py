"""
Cart store: the single owner of a shopper's cart lines.

Mutations apply to in-memory state immediately and are written through to
local storage. For authenticated sessions every mutation also lands in an
outbox of pending server writes, tagged with the cart version it produced.
One drain task per cart sends them in order; a server snapshot is adopted
only if no local mutation happened after the write it answers.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from agrocart.cart_line import build_snapshot, cart_count, cart_total, make_line, normalize_quantity
from agrocart.config import Config
from agrocart.exceptions import CartClearError, PersistenceError, ValidationError
from agrocart.local_storage import LocalStorage, load_lines, save_lines
from agrocart.models import AddResult, CartLine, CartSnapshot, NormalizedProduct, to_number
from agrocart.persistence import CartPersistence

logger = logging.getLogger(__name__)

LineKey = Tuple[str, Optional[str]]


@dataclass
class PendingWrite:
    """Server write waiting in the outbox"""
    seq: int
    operation: str
    args: tuple
    waiter: Optional[asyncio.Future] = None
    resync: bool = False


def merge_lines(server_lines: Iterable[CartLine], local_lines: Iterable[CartLine]) -> List[CartLine]:
    """
    Merge a guest cart into a server cart.

    Matching (product, variant-or-category) lines have their quantities
    summed and keep the server line's price snapshot; the remaining lines
    are unioned, server lines first.
    """
    merged: Dict[LineKey, CartLine] = {}
    for line in server_lines:
        merged[line.key] = line.model_copy()

    for line in local_lines:
        existing = merged.get(line.key)
        if existing is None:
            merged[line.key] = line.model_copy()
            continue
        existing.quantity = normalize_quantity(
            existing.quantity + line.quantity,
            existing.price_kind,
            existing.measurement_increment
        )

    return [line for line in merged.values() if line.quantity > 0]


class CartStore:
    """Owned cart state with local write-through and ordered server sync"""

    def __init__(
        self,
        storage: LocalStorage,
        persistence: Optional[CartPersistence] = None,
        lines: Optional[Iterable[CartLine]] = None,
        storage_key: Optional[str] = None,
    ):
        self.storage = storage
        self.storage_key = storage_key or Config.CART_STORAGE_KEY
        self._persistence = persistence
        self._lines: Dict[LineKey, CartLine] = {}
        for line in lines or []:
            self._lines[line.key] = line
        self._version = 0
        self._outbox: Deque[PendingWrite] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._logging_in = False
        # Set after a server write failed; the server copy then lags local state
        self._unsynced = False
        self.stale_responses = 0

    @classmethod
    def open(cls, storage: LocalStorage, storage_key: Optional[str] = None) -> "CartStore":
        """Start a guest session from whatever cart is kept in local storage"""
        key = storage_key or Config.CART_STORAGE_KEY
        return cls(storage, lines=load_lines(storage, key), storage_key=key)

    # -- reads ---------------------------------------------------------------

    @property
    def lines(self) -> List[CartLine]:
        return [line.model_copy() for line in self._lines.values()]

    @property
    def cart_count(self) -> int:
        return cart_count(self._lines.values())

    @property
    def cart_total(self) -> float:
        return cart_total(self._lines.values())

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_authenticated(self) -> bool:
        return self._persistence is not None

    @property
    def pending_writes(self) -> int:
        return len(self._outbox)

    def get_line(self, product_id: str, variant_or_category_id: Optional[str] = None) -> Optional[CartLine]:
        key = self._find_key(product_id, variant_or_category_id)
        return self._lines[key].model_copy() if key is not None else None

    def snapshot(self) -> CartSnapshot:
        return build_snapshot(self.lines)

    # -- mutations -----------------------------------------------------------

    def add(
        self,
        product: NormalizedProduct,
        qty: float = 1,
        variant_or_category_id: Optional[str] = None
    ) -> AddResult:
        """
        Add qty of a product selection, incrementing an existing line.

        The resulting quantity is clamped to the product's resolved stock; the
        clamp is reported in the result rather than raised.
        """
        requested = to_number(qty)
        if requested <= 0:
            return AddResult(requested=requested)

        try:
            candidate = make_line(product, variant_or_category_id, requested)
        except ValidationError as e:
            logger.warning(f"Ignoring add for product {product.id}: {e}")
            return AddResult(requested=requested)

        existing = self._lines.get(candidate.key)
        line = existing if existing is not None else candidate
        current = existing.quantity if existing is not None else 0.0

        target = normalize_quantity(current + requested, line.price_kind, line.measurement_increment)
        limit = normalize_quantity(product.total_stock, line.price_kind, line.measurement_increment)
        clamped = target > limit
        if clamped:
            logger.info(
                f"Clamped quantity for product {product.id} to available stock",
                extra={"product_id": product.id, "requested": current + requested, "available": limit},
            )
            target = limit

        if target <= current:
            return AddResult(line=existing.model_copy() if existing else None, clamped=clamped, requested=requested)

        line.quantity = target
        if existing is None:
            self._lines[line.key] = line

        delta = line.model_copy(update={"quantity": target - current})
        self._commit("add", (delta,))
        return AddResult(line=line.model_copy(), clamped=clamped, requested=requested)

    def update_quantity(
        self,
        product_id: str,
        quantity: float,
        variant_or_category_id: Optional[str] = None
    ) -> Optional[CartLine]:
        """Set a line's quantity; zero or less removes it, unknown lines are ignored"""
        key = self._find_key(product_id, variant_or_category_id)
        if key is None:
            return None
        line = self._lines[key]

        target = normalize_quantity(quantity, line.price_kind, line.measurement_increment)
        if target <= 0:
            self.remove(*key)
            return None
        if target == line.quantity:
            return line.model_copy()

        line.quantity = target
        self._commit("update", (product_id, target, key[1]))
        return line.model_copy()

    def remove(self, product_id: str, variant_or_category_id: Optional[str] = None) -> bool:
        """Delete a line; returns False (and does nothing) if it is not in the cart"""
        key = self._find_key(product_id, variant_or_category_id)
        if key is None:
            return False
        del self._lines[key]
        self._commit("remove", key)
        return True

    async def clear(self) -> None:
        """
        Empty the cart.

        For authenticated sessions this resolves only once the server has
        acknowledged the clear, after all earlier pending writes.

        Raises:
            CartClearError: If the server clear failed
        """
        self._lines.clear()
        waiter = self._commit("clear", (), wait=True)
        if waiter is not None:
            await waiter

    # -- session transitions -------------------------------------------------

    async def login(self, persistence: CartPersistence) -> CartSnapshot:
        """
        Guest to authenticated transition.

        The server cart and the guest cart are merged by summing quantities
        of matching lines; the result becomes the new server cart. Runs once
        per transition: calling it on an authenticated store does nothing.

        Raises:
            PersistenceError: If the server cart could not be read or replaced.
                The store stays a guest session in that case.
        """
        if self._persistence is not None or self._logging_in:
            logger.debug("Login ignored, session already authenticated")
            return self.snapshot()

        self._logging_in = True
        try:
            server = await persistence.fetch()
            guest_lines = list(self._lines.values())
            merged = merge_lines(server.lines, guest_lines)
            logger.info(
                "Merging guest cart into server cart",
                extra={"guest_lines": len(guest_lines), "server_lines": len(server.lines), "merged_lines": len(merged)},
            )

            self._lines = {line.key: line for line in merged}
            self._persistence = persistence
            self._unsynced = False
            waiter = self._commit("replace", ([line.model_copy() for line in merged],), wait=True)
            merge_version = self._version
            try:
                await waiter
            except PersistenceError:
                self._persistence = None
                self._unsynced = False
                self._outbox.clear()
                if self._version == merge_version:
                    self._lines = {line.key: line for line in guest_lines}
                    self._save_local()
                raise
        finally:
            self._logging_in = False

        return self.snapshot()

    def logout(self) -> Optional[CartPersistence]:
        """
        Drop the server session; local lines stay untouched.

        Returns the persistence handle so the caller can close it.
        """
        persistence, self._persistence = self._persistence, None
        self._unsynced = False
        while self._outbox:
            write = self._outbox.popleft()
            if write.waiter is None or write.waiter.done():
                continue
            message = f"Session ended before the server acknowledged the {write.operation}"
            error_type = CartClearError if write.operation == "clear" else PersistenceError
            write.waiter.set_exception(error_type(message))
        self._save_local()
        return persistence

    async def flush(self) -> None:
        """Wait until every pending server write has been sent"""
        self._ensure_draining()
        if self._drain_task is not None:
            await self._drain_task

    async def close(self) -> None:
        """Tear down the store at session end"""
        await self.flush()
        self._save_local()

    # -- internals -----------------------------------------------------------

    def _save_local(self) -> None:
        save_lines(self.storage, self._lines.values(), self.storage_key)

    def _find_key(self, product_id: str, variant_or_category_id: Optional[str]) -> Optional[LineKey]:
        """
        Key of the addressed line. Without a category id, a weight product's
        single line (added under its default category) is addressed.
        """
        key = (product_id, variant_or_category_id)
        if key in self._lines:
            return key
        if variant_or_category_id is not None:
            return None
        weight_keys = [
            line.key for line in self._lines.values()
            if line.product_id == product_id and line.is_weight_based
        ]
        return weight_keys[0] if len(weight_keys) == 1 else None

    def _commit(self, operation: str, args: tuple, wait: bool = False) -> Optional[asyncio.Future]:
        self._version += 1
        self._save_local()
        if self._persistence is None:
            return None

        if self._unsynced and operation in ("add", "update", "remove"):
            # A delta would land on a stale server cart; send the whole cart instead
            write = self._resync_write()
        else:
            write = PendingWrite(seq=self._version, operation=operation, args=args)
        if wait:
            write.waiter = asyncio.get_running_loop().create_future()
        self._outbox.append(write)
        self._ensure_draining()
        return write.waiter

    def _resync_write(self) -> PendingWrite:
        lines = [line.model_copy() for line in self._lines.values()]
        return PendingWrite(seq=self._version, operation="replace", args=(lines,), resync=True)

    def _ensure_draining(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        if not self._outbox:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: writes wait in the outbox until flush()
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._outbox:
            write = self._outbox.popleft()
            persistence = self._persistence
            if persistence is None:
                continue

            try:
                snapshot = await getattr(persistence, write.operation)(*write.args)
            except Exception as e:
                self._fail(write, e)
                continue

            if persistence is not self._persistence:
                logger.debug(f"Discarding {write.operation} response from a closed session")
            else:
                self._apply_server_snapshot(write, snapshot)
            if write.waiter is not None and not write.waiter.done():
                write.waiter.set_result(snapshot)

    def _fail(self, write: PendingWrite, error: Exception) -> None:
        if write.waiter is not None:
            if write.operation == "clear":
                self._unsynced = True
                failure = CartClearError(f"Server cart clear failed: {error}")
            elif isinstance(error, PersistenceError):
                failure = error
            else:
                failure = PersistenceError(f"Server cart {write.operation} failed: {error}")
            if not write.waiter.done():
                write.waiter.set_exception(failure)
            return

        # Local state stays the source of truth; the server copy is resent whole
        logger.warning(
            f"Server cart {write.operation} failed, keeping local state: {error}",
            extra={"operation": write.operation, "seq": write.seq, "resync": write.resync},
            exc_info=not isinstance(error, PersistenceError),
        )
        self._unsynced = True
        if not write.resync:
            self._outbox.append(self._resync_write())

    def _apply_server_snapshot(self, write: PendingWrite, snapshot: Optional[CartSnapshot]) -> None:
        if snapshot is None:
            return
        if write.resync or write.operation == "clear":
            # The server now holds the full local cart as of write.seq
            self._unsynced = False
        elif self._unsynced:
            logger.debug(
                f"Ignoring {write.operation} response while the server cart is behind",
                extra={"response_seq": write.seq, "local_version": self._version},
            )
            return
        if write.seq != self._version:
            self.stale_responses += 1
            logger.debug(
                f"Discarding stale {write.operation} response",
                extra={"response_seq": write.seq, "local_version": self._version},
            )
            return
        self._lines = {line.key: line for line in snapshot.lines if line.quantity > 0}
        self._save_local()
