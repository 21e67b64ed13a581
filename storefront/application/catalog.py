from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.application.errors import InvalidInput
from storefront.domain.cart import CartItem
from storefront.domain.models import Product
from storefront.domain.pricing import to_money


@dataclass(frozen=True)
class ResolvedVariant:
    product_id: str
    variant_id: str
    name: str
    price: Decimal
    size: str
    color: str
    image: str

    def as_cart_item(self, quantity: int = 1) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            variant_id=self.variant_id,
            name=self.name,
            price=self.price,
            quantity=quantity,
            color=self.color,
            size=self.size,
            image=self.image,
        )


class CatalogService:
    """Read-only view of products and their variants."""

    def __init__(self, db: Session):
        self.db = db

    def list(self):
        stmt = (
            select(Product)
            .options(selectinload(Product.variants))
            .where(Product.is_active.is_(True))
            .order_by(Product.name)
        )
        return list(self.db.execute(stmt).scalars())

    def get(self, product_id: str) -> Optional[Product]:
        stmt = select(Product).options(selectinload(Product.variants)).where(Product.id == product_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def resolve_variant(self, product_id: str, size: Optional[str] = None, color: Optional[str] = None) -> ResolvedVariant:
        """A variant is identified by (product, size, color); its price may override the base price."""
        product = self.get(product_id)
        if product is None or not product.is_active:
            raise InvalidInput(f"Unknown product: {product_id}")
        if product.sizes and size not in product.sizes:
            raise InvalidInput(f"Size {size!r} is not offered for {product.name}")
        if product.colors and color not in product.colors:
            raise InvalidInput(f"Color {color!r} is not offered for {product.name}")

        variant = next(
            (v for v in product.variants if v.is_active and v.size == size and v.color == color),
            None,
        )
        price = product.base_price
        if variant is not None and variant.price_override is not None:
            price = variant.price_override
        variant_id = variant.id if variant is not None else f"{product.id}:{size or ''}:{color or ''}"
        return ResolvedVariant(
            product_id=product.id,
            variant_id=variant_id,
            name=product.name,
            price=to_money(price),
            size=size or "",
            color=color or "",
            image=product.images[0] if product.images else "",
        )
