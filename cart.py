"""Shopping cart state.

The cart is an ordered tuple of CartItem lines with at most one line per
product. ``reduce`` applies one action and returns the next state; CartStore
holds the current state and mirrors it into session storage under "cart".
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import structlog
from pydantic import TypeAdapter, ValidationError

from schemas import CartItem, Product

logger = structlog.get_logger(__name__)

STORAGE_KEY = "cart"

CartState = Tuple[CartItem, ...]

_lines = TypeAdapter(Tuple[CartItem, ...])


@dataclass(frozen=True)
class AddItem:
    item: CartItem


@dataclass(frozen=True)
class RemoveItem:
    product_id: str


@dataclass(frozen=True)
class SetQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ClearCart:
    pass


CartAction = Union[AddItem, RemoveItem, SetQuantity, ClearCart]


def reduce(state: CartState, action: CartAction) -> CartState:
    if isinstance(action, AddItem):
        incoming = action.item
        for i, line in enumerate(state):
            if line.product_id == incoming.product_id:
                merged = line.model_copy(update={"quantity": line.quantity + incoming.quantity})
                return state[:i] + (merged,) + state[i + 1:]
        return state + (incoming,)
    if isinstance(action, RemoveItem):
        return tuple(line for line in state if line.product_id != action.product_id)
    if isinstance(action, SetQuantity):
        if action.quantity <= 0:
            return reduce(state, RemoveItem(action.product_id))
        return tuple(
            line.model_copy(update={"quantity": action.quantity}) if line.product_id == action.product_id else line
            for line in state
        )
    if isinstance(action, ClearCart):
        return ()
    raise TypeError(f"Unknown cart action: {action!r}")


def item_count(state: CartState) -> int:
    return sum(line.quantity for line in state)


def cart_total(state: CartState) -> float:
    return round(sum(line.price * line.quantity for line in state), 2)


class CartStore:
    def __init__(self, storage=None):
        self._storage = storage
        self._state: CartState = self._load()

    def _load(self) -> CartState:
        if self._storage is None:
            return ()
        raw = self._storage.get(STORAGE_KEY)
        if not raw:
            return ()
        try:
            return _lines.validate_json(raw)
        except ValidationError:
            logger.warning("stored_cart_discarded", reason="invalid cart payload")
            self._storage.remove(STORAGE_KEY)
            return ()

    def _persist(self) -> None:
        if self._storage is None:
            return
        if self._state:
            payload = [line.model_dump(by_alias=True) for line in self._state]
            self._storage.set(STORAGE_KEY, json.dumps(payload))
        else:
            self._storage.remove(STORAGE_KEY)

    def dispatch(self, action: CartAction) -> CartState:
        self._state = reduce(self._state, action)
        self._persist()
        return self._state

    @property
    def items(self) -> CartState:
        return self._state

    @property
    def item_count(self) -> int:
        return item_count(self._state)

    @property
    def total(self) -> float:
        return cart_total(self._state)

    def __len__(self) -> int:
        return len(self._state)

    def get(self, product_id: str) -> Optional[CartItem]:
        return next((line for line in self._state if line.product_id == product_id), None)

    def add(self, product: Product, quantity: int = 1) -> CartState:
        if quantity < 1:
            raise ValueError("Quantity must be positive")
        if not product.id:
            raise ValueError("Product has no id")
        item = CartItem(
            product_id=product.id,
            title=product.title,
            price=product.price,
            image=product.image,
            quantity=quantity,
        )
        return self.dispatch(AddItem(item))

    def remove(self, product_id: str) -> CartState:
        return self.dispatch(RemoveItem(product_id))

    def set_quantity(self, product_id: str, quantity: int) -> CartState:
        return self.dispatch(SetQuantity(product_id, quantity))

    def clear(self) -> CartState:
        return self.dispatch(ClearCart())

    def snapshot(self) -> list:
        """Value copies of the current lines."""
        return [line.model_copy(deep=True) for line in self._state]
