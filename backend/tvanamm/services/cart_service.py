# Overview: Cart operations over an injectable storage adapter (in-memory or Flask session).

"""
CartService holds the cart as an in-memory mapping keyed by product id and
writes it through a CartStore after every change. Stores keep the payload
with an expiry CART_TTL_HOURS after the last save; an expired cart is
discarded the next time it is loaded.

Call sites construct a CartService explicitly (see routes/cart.py); there
is no module-level cart.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Protocol

from flask import current_app, has_app_context, session

from ..validation import NotFoundError, ValidationError
from .catalog_service import CatalogEntry, get_catalog_entry
from .pricing_service import CartLine, OrderTotals, compute_totals, redemption_cap_points


DEFAULT_CART_TTL_HOURS = 24
MAX_LINE_QUANTITY = 10_000


def _cart_ttl_seconds() -> float:
    hours = DEFAULT_CART_TTL_HOURS
    if has_app_context():
        hours = current_app.config.get("CART_TTL_HOURS", DEFAULT_CART_TTL_HOURS)
    return hours * 3600


def _log_warning(message: str, *args) -> None:
    if has_app_context():
        current_app.logger.warning(message, *args)


class CartStore(Protocol):
    def load(self) -> list[CartLine]: ...

    def save(self, lines: list[CartLine]) -> None: ...

    def clear(self) -> None: ...


class _ExpiringCartStore(ABC):
    """Shared payload format: {"items": [...], "expires_at": epoch seconds}."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    @abstractmethod
    def _read_raw(self) -> dict | None: ...

    @abstractmethod
    def _write_raw(self, payload: dict) -> None: ...

    @abstractmethod
    def _delete_raw(self) -> None: ...

    def load(self) -> list[CartLine]:
        payload = self._read_raw()
        if not payload:
            return []

        try:
            expires_at = float(payload["expires_at"])
            items = [CartLine.from_storage(item) for item in payload["items"]]
        except (KeyError, TypeError, ValueError):
            _log_warning("Discarding unreadable saved cart")
            self._delete_raw()
            return []

        if self._clock() >= expires_at:
            _log_warning("Discarding cart saved before %s (expired)", expires_at)
            self._delete_raw()
            return []
        return items

    def save(self, lines: list[CartLine]) -> None:
        if not lines:
            self._delete_raw()
            return
        self._write_raw({
            "items": [line.to_storage() for line in lines],
            "expires_at": self._clock() + _cart_ttl_seconds(),
        })

    def clear(self) -> None:
        self._delete_raw()


class MemoryCartStore(_ExpiringCartStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._payload: dict | None = None

    def _read_raw(self) -> dict | None:
        return self._payload

    def _write_raw(self, payload: dict) -> None:
        self._payload = payload

    def _delete_raw(self) -> None:
        self._payload = None


class SessionCartStore(_ExpiringCartStore):
    """Cart kept in the signed Flask session cookie, one slot per user."""

    def __init__(self, user_id: int, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._key = f"cart:{user_id}"

    def _read_raw(self) -> dict | None:
        return session.get(self._key)

    def _write_raw(self, payload: dict) -> None:
        session[self._key] = payload

    def _delete_raw(self) -> None:
        session.pop(self._key, None)


class CartService:
    def __init__(self, store: CartStore,
                 catalog: Callable[[int], CatalogEntry] = get_catalog_entry):
        self._store = store
        self._catalog = catalog
        self._items: dict[int, CartLine] = {line.id: line for line in store.load()}

    def _persist(self) -> None:
        # Persistence is a side effect of the in-memory change, not a precondition for it
        try:
            self._store.save(self.lines())
        except Exception:
            if has_app_context():
                current_app.logger.exception("Failed to persist cart")

    def add(self, product_id: int, quantity: int = 1) -> CartLine:
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        existing = self._items.get(product_id)
        if existing is not None:
            line = existing.with_quantity(existing.quantity + quantity)
        else:
            entry = self._catalog(product_id)
            line = CartLine.from_catalog(
                product_id=entry.id,
                name=entry.name,
                base_price_paise=entry.price_paise,
                gst_rate_bps=entry.gst_rate_bps,
                quantity=quantity,
            )

        if line.quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_LINE_QUANTITY}")

        self._items[product_id] = line
        self._persist()
        return line

    def update_quantity(self, product_id: int, quantity: int) -> CartLine | None:
        """Set a line's quantity; zero or less removes the line."""
        if product_id not in self._items:
            raise NotFoundError("Item is not in the cart", details={"product_id": product_id})
        if quantity <= 0:
            self.remove(product_id)
            return None
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_LINE_QUANTITY}")

        line = self._items[product_id].with_quantity(quantity)
        self._items[product_id] = line
        self._persist()
        return line

    def remove(self, product_id: int) -> None:
        if self._items.pop(product_id, None) is not None:
            self._persist()

    def clear(self) -> None:
        self._items.clear()
        self._store.clear()

    def lines(self) -> list[CartLine]:
        return list(self._items.values())

    def count(self) -> int:
        return sum(line.quantity for line in self._items.values())

    def is_empty(self) -> bool:
        return not self._items

    def totals(self) -> OrderTotals:
        return compute_totals(self._items.values())

    def redemption_cap(self) -> int:
        return redemption_cap_points(self.totals().subtotal_paise)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.lines()],
            "count": self.count(),
            "totals": self.totals().to_dict(),
            "redemption_cap_points": self.redemption_cap(),
        }
