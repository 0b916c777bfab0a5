"""Order submission and order history queries."""

from __future__ import annotations

import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from cart import CartStore, cart_total
from database import DocumentStore
from errors import BackendError, EmptyCartError
from schemas import CheckoutForm, Order, OrderStatus, OrderSummary, ShippingAddress, UserProfile

logger = structlog.get_logger(__name__)

ORDERS = "orders"


def checkout_defaults(user: Optional[UserProfile]) -> Dict[str, str]:
    """Checkout form values pre-filled from the signed-in user's profile."""
    if user is None:
        return {"name": "", "email": "", "address": "", "city": "", "state": "", "zip": ""}
    return {
        "name": user.name or "",
        "email": user.email or "",
        "address": user.address or "",
        "city": user.city or "",
        "state": user.state or "",
        "zip": user.zipcode or "",
    }


async def submit_order(
    store: DocumentStore,
    cart: CartStore,
    user: Optional[UserProfile],
    form: CheckoutForm,
    now: Optional[datetime] = None,
) -> Order:
    """Write the current cart as a new order and empty the cart.

    The cart is only cleared after the write is confirmed. On failure the cart
    is left exactly as it was and a BackendError is raised.

    Raises:
        EmptyCartError: The cart has no lines. No backend call is made.
        BackendError: The order could not be written.
    """
    if len(cart) == 0:
        raise EmptyCartError()

    # captured now so a sign-out during the write does not change the owner
    user_id = user.id if user is not None else None
    items = cart.snapshot()
    now = now or datetime.now(timezone.utc)

    order = Order(
        user_id=user_id,
        user_name=form.name,
        user_email=str(form.email),
        shipping_address=ShippingAddress(address=form.address, city=form.city, state=form.state, zip=form.zip),
        items=items,
        total_amount=cart_total(tuple(items)),
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
    )

    try:
        order_id = await store.create_document(ORDERS, order.to_document())
    except BackendError as e:
        logger.error("order_write_failed", user_id=user_id, **e.details)
        raise BackendError("Failed to place order. Please try again.", details=e.details) from e

    cart.clear()
    logger.info("order_created", order_id=order_id, user_id=user_id, total_amount=order.total_amount)
    return order.model_copy(update={"id": order_id})


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings, epoch
    seconds and ``{"seconds": ..., "nanoseconds": ...}`` mappings. Returns
    None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, dict) and "seconds" in value:
        seconds = value["seconds"] + value.get("nanoseconds", 0) / 1e9
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return None


def order_from_document(doc: dict, queried_at: datetime) -> Order:
    timestamps = {}
    for field, key in (("created_at", "createdAt"), ("updated_at", "updatedAt")):
        value = to_datetime(doc.get(key))
        if value is None:
            logger.warning("order_timestamp_missing", order_id=doc.get("id"), field=key)
            value = queried_at
        timestamps[field] = value

    address = doc.get("shippingAddress") or {}
    try:
        return Order(
            id=doc.get("id"),
            user_id=doc.get("userId"),
            user_name=doc.get("userName") or "",
            user_email=doc.get("userEmail") or "",
            shipping_address=ShippingAddress(
                address=address.get("address", ""),
                city=address.get("city", ""),
                state=address.get("state", ""),
                zip=address.get("zip", ""),
            ),
            items=doc.get("items") or [],
            total_amount=doc.get("totalAmount") or 0,
            status=doc.get("status") or OrderStatus.PENDING,
            **timestamps,
        )
    except ValidationError as e:
        logger.error("order_malformed", order_id=doc.get("id"), error=str(e))
        raise BackendError("Order could not be read", details={"order_id": doc.get("id")}) from e


def summarize(order: Order) -> OrderSummary:
    return OrderSummary(
        order_id=order.id or "",
        date=order.created_at,
        total_amount=order.total_amount,
        status=order.status,
        item_count=sum(item.quantity for item in order.items),
    )


class QueryCache:
    """Results keyed by query key, served until they are older than their staleness window.

    Entries older than ``max_age`` are dropped on every write, and at most
    ``max_entries`` are kept; the least recently fetched go first.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_age: float = 300, max_entries: int = 1024):
        self._clock = clock
        self._max_age = max_age
        self._max_entries = max_entries
        # ordered by fetch time, oldest first
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()

    def get(self, key: Hashable, stale_after: float) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        fetched_at, value = entry
        if self._clock() - fetched_at >= stale_after:
            del self._entries[key]
            return False, None
        return True, value

    def put(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = (now, value)
        self._evict(now)

    def _evict(self, now: float) -> None:
        while self._entries:
            oldest, (fetched_at, _) = next(iter(self._entries.items()))
            if now - fetched_at < self._max_age and len(self._entries) <= self._max_entries:
                break
            del self._entries[oldest]

    def __len__(self) -> int:
        return len(self._entries)


class OrderQuery:
    def __init__(
        self,
        store: DocumentStore,
        list_stale_after: float = 300,
        order_stale_after: float = 60,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        cache_size: int = 1024,
    ):
        self._store = store
        self._list_stale_after = list_stale_after
        self._order_stale_after = order_stale_after
        self._cache = QueryCache(clock, max_age=max(list_stale_after, order_stale_after), max_entries=cache_size)
        self._now = now

    async def list_for_user(self, user_id: Optional[str]) -> List[Order]:
        if not user_id:
            return []
        key = ("user-orders", user_id)
        hit, cached = self._cache.get(key, self._list_stale_after)
        if hit:
            return list(cached)

        try:
            docs = await self._store.get_documents(ORDERS, {"userId": user_id}, order_by="createdAt", descending=True)
        except BackendError:
            logger.error("order_list_failed", user_id=user_id)
            raise
        queried_at = self._now()
        orders = [order_from_document(doc, queried_at) for doc in docs]
        self._cache.put(key, orders)
        return list(orders)

    async def get_order(self, order_id: Optional[str]) -> Optional[Order]:
        if not order_id:
            return None
        key = ("order", order_id)
        hit, cached = self._cache.get(key, self._order_stale_after)
        if hit:
            return cached

        try:
            doc = await self._store.get_document(ORDERS, order_id)
        except BackendError:
            logger.error("order_fetch_failed", order_id=order_id)
            raise
        order = order_from_document(doc, self._now()) if doc is not None else None
        self._cache.put(key, order)
        return order

    async def get_order_for_user(self, order_id: Optional[str], user_id: str) -> Optional[Order]:
        """Like ``get_order``, but orders owned by anyone else read as missing."""
        order = await self.get_order(order_id)
        if order is None or order.user_id != user_id:
            return None
        return order
