"""Cart aggregate owned by a checkout session."""

from decimal import Decimal

from restaurant_ordering.models.order_models import CartItem


class Cart:
    """Line items selected by a customer during one browsing session.

    The cart lives in memory only; it is handed to the checkout flow by
    reference and cleared once an order has been placed.
    """

    def __init__(self, items: list[CartItem] | None = None) -> None:
        self._items: dict[str, CartItem] = {}
        for item in items or []:
            self.add_item(item, quantity=item.quantity)

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self._items.values()), Decimal("0"))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    @property
    def is_empty(self) -> bool:
        return not self._items

    def add_item(self, item: CartItem, quantity: int = 1) -> None:
        """Add a product, merging with an existing line for the same product."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        existing = self._items.get(item.id)
        if existing is not None:
            self._items[item.id] = existing.model_copy(
                update={"quantity": existing.quantity + quantity}
            )
        else:
            self._items[item.id] = item.model_copy(update={"quantity": quantity})

    def add_items(self, items: list[CartItem]) -> None:
        """Add several products at once, each with its own quantity."""
        for item in items:
            self.add_item(item, quantity=item.quantity)

    def remove_item(self, item_id: str) -> None:
        self._items.pop(item_id, None)

    def update_quantity(self, item_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(item_id)
            return

        existing = self._items.get(item_id)
        if existing is not None:
            self._items[item_id] = existing.model_copy(update={"quantity": quantity})

    def clear(self) -> None:
        self._items.clear()
