"""
Session carts.

One cart per session id, created on first touch. Cart lines point at
listings by id only; a line whose listing has since disappeared is kept
and resolves to no product.
"""

import logging
from datetime import datetime
from typing import Callable

from database import DocumentStore
from errors import NotFound, ValidationError
from registry import utcnow
from schemas import Cart, CartItem, CartView, Listing, ResolvedCartItem

logger = logging.getLogger(__name__)


class CartAggregator:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @staticmethod
    def _check_session(session_id: str):
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError("Session id is required", fields=["sessionId"])

    def _find(self, session_id: str):
        doc = self.store.find_one({"session_id": session_id})
        return Cart.model_validate(doc) if doc is not None else None

    def get_or_create(self, session_id: str) -> Cart:
        self._check_session(session_id)
        # One upsert, so simultaneous first requests share a single cart
        fresh = Cart(session_id=session_id, updated_at=self.clock())
        doc = self.store.find_or_insert({"session_id": session_id}, fresh.model_dump(exclude={"id"}))
        return Cart.model_validate(doc)

    def _save(self, cart: Cart) -> Cart:
        # Whole-array write: concurrent adds to one session can lose an increment
        cart.updated_at = self.clock()
        saved = self.store.update_by_id(
            cart.id, {"items": cart.item_documents(), "updated_at": cart.updated_at}
        )
        if saved is None:
            raise NotFound("Cart not found")
        return Cart.model_validate(saved)

    def add_item(self, session_id: str, listing_id: str) -> Cart:
        if not listing_id:
            raise ValidationError("productId is required", fields=["productId"])
        cart = self.get_or_create(session_id)
        for item in cart.items:
            if item.listing_id == listing_id:
                item.quantity += 1
                break
        else:
            cart.items.append(CartItem(listing_id=listing_id))
        return self._save(cart)

    def remove_item(self, session_id: str, listing_id: str) -> Cart:
        self._check_session(session_id)
        cart = self._find(session_id)
        if cart is None:
            raise NotFound("Cart not found")
        cart.items = [item for item in cart.items if item.listing_id != listing_id]
        return self._save(cart)

    def resolve(self, cart: Cart, lookup: Callable[[str], Listing]) -> CartView:
        """Attach the current listing to each line; missing listings give None."""
        items = []
        for item in cart.items:
            try:
                product = lookup(item.listing_id)
            except NotFound:
                product = None
            items.append(
                ResolvedCartItem(listing_id=item.listing_id, quantity=item.quantity, product=product)
            )
        return CartView(id=cart.id, session_id=cart.session_id, items=items, updated_at=cart.updated_at)

    def prune(self, before: datetime) -> int:
        """Delete carts untouched since `before`. Nothing calls this on a schedule."""
        removed = self.store.delete_many({"updated_at": {"$lt": before}})
        if removed:
            logger.info("Pruned %d carts idle since %s", removed, before.isoformat())
        return removed
