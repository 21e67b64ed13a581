"""Cart state container.

``CartStore`` owns one cart's lines and totals. All mutation goes through its
methods; each one recomputes totals and writes the new state to the injected
storage adapter, so a cart survives the redirect to the payment page.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Optional, Protocol

from storefront.domain.pricing import Totals, compute_totals, to_money


@dataclass(frozen=True)
class CartItem:
    product_id: str
    variant_id: str
    name: str
    price: Decimal
    quantity: int = 1
    color: str = ""
    size: str = ""
    image: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "color": self.color,
            "size": self.size,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            variant_id=data["variant_id"],
            name=data["name"],
            price=to_money(data["price"]),
            quantity=int(data.get("quantity") or 1),
            color=data.get("color") or "",
            size=data.get("size") or "",
            image=data.get("image") or "",
        )


@dataclass(frozen=True)
class CartSnapshot:
    items: tuple[CartItem, ...] = ()
    subtotal: Decimal = Decimal("0.00")
    shipping: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "subtotal": str(self.subtotal),
            "shipping": str(self.shipping),
            "total": str(self.total),
        }


class CartStorage(Protocol):
    def load(self, cart_id: str) -> Optional[dict]: ...

    def save(self, cart_id: str, data: dict) -> None: ...

    def delete(self, cart_id: str) -> None: ...


@dataclass
class CartStore:
    storage: CartStorage
    cart_id: str
    _items: list[CartItem] = field(default_factory=list, init=False)
    _totals: Totals = field(default_factory=lambda: compute_totals([]), init=False)

    def __post_init__(self):
        data = self.storage.load(self.cart_id)
        if data:
            self._items = [CartItem.from_dict(raw) for raw in data.get("items", [])]
        self._totals = self._recompute()

    @property
    def items(self) -> tuple[CartItem, ...]:
        return tuple(self._items)

    def add_item(self, item: CartItem, quantity: int = 1) -> CartSnapshot:
        quantity = quantity or 1
        for index, existing in enumerate(self._items):
            if existing.variant_id == item.variant_id:
                merged = existing.quantity + quantity
                if merged <= 0:
                    del self._items[index]
                else:
                    self._items[index] = replace(existing, quantity=merged)
                return self._commit()
        if quantity > 0:
            self._items.append(replace(item, quantity=quantity))
        return self._commit()

    def remove_item(self, variant_id: str) -> CartSnapshot:
        self._items = [i for i in self._items if i.variant_id != variant_id]
        return self._commit()

    def update_quantity(self, variant_id: str, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            return self.remove_item(variant_id)
        self._items = [
            replace(i, quantity=quantity) if i.variant_id == variant_id else i
            for i in self._items
        ]
        return self._commit()

    def clear(self) -> CartSnapshot:
        self._items = []
        self._totals = self._recompute()
        self.storage.delete(self.cart_id)
        return self.snapshot()

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=tuple(self._items),
            subtotal=self._totals.subtotal,
            shipping=self._totals.shipping,
            total=self._totals.total,
        )

    def _recompute(self) -> Totals:
        return compute_totals((i.price, i.quantity) for i in self._items)

    def _commit(self) -> CartSnapshot:
        self._totals = self._recompute()
        snapshot = self.snapshot()
        self.storage.save(self.cart_id, snapshot.to_dict())
        return snapshot
