"""Metadata bundle carried through the payment processor.

Stripe metadata is a flat string map (values up to 500 characters), so the
item list is serialized as compact JSON and split across ``items``,
``items_1``, ``items_2``... when it does not fit in one value.

The bundle is the source of truth for an order's composition when the
webhook arrives: the live cart may have expired and the catalog may have
changed by then.
"""

import json
from decimal import Decimal
from typing import Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from storefront.application.errors import InvalidInput, ReconciliationSkipped

METADATA_TYPE = "shop_order"
METADATA_VERSION = "1"
VALUE_LIMIT = 500
MAX_ITEM_CHUNKS = 40


class MetadataItem(BaseModel):
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    name: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None

    @field_validator("product_id", "variant_id", "size", "color", "image", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value == "":
            return None
        return value

    def compact(self) -> dict:
        data = {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": float(self.price),
            "size": self.size,
            "color": self.color,
        }
        if self.image:
            data["image"] = self.image
        return data


class ShopOrderMetadata(BaseModel):
    type: Literal["shop_order"]
    version: Literal["1"] = METADATA_VERSION
    order_id: Optional[str] = None
    order_number: str = Field(min_length=1)
    user_id: Optional[str] = None
    items: list[MetadataItem] = []

    @field_validator("order_id", "user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value == "":
            return None
        return value


def encode_items(items: Iterable[MetadataItem]) -> dict[str, str]:
    payload = json.dumps([item.compact() for item in items], separators=(",", ":"))
    chunks = [payload[i:i + VALUE_LIMIT] for i in range(0, len(payload), VALUE_LIMIT)] or ["[]"]
    if len(chunks) > MAX_ITEM_CHUNKS:
        raise InvalidInput("Cart is too large to send to the payment processor")
    encoded = {"items": chunks[0]}
    for index, chunk in enumerate(chunks[1:], start=1):
        encoded[f"items_{index}"] = chunk
    return encoded


def decode_items(raw: Mapping[str, str]) -> Optional[str]:
    if "items" not in raw:
        return None
    parts = [raw["items"]]
    index = 1
    while f"items_{index}" in raw:
        parts.append(raw[f"items_{index}"])
        index += 1
    return "".join(parts)


def build_metadata(
    order_number: str,
    items: Iterable[MetadataItem],
    order_id: Optional[str] = None,
    user_id: Optional[str] = None,
    include_items: bool = True,
) -> dict[str, str]:
    """Flatten a bundle into Stripe metadata. Missing ids become empty strings."""
    metadata = {
        "type": METADATA_TYPE,
        "version": METADATA_VERSION,
        "order_id": order_id or "",
        "order_number": order_number,
        "user_id": user_id or "",
    }
    if include_items:
        metadata.update(encode_items(items))
    return metadata


def parse_metadata(raw: Optional[Mapping[str, str]]) -> ShopOrderMetadata:
    """Validate processor metadata; anything that is not ours raises ``ReconciliationSkipped``."""
    if not raw:
        raise ReconciliationSkipped("event carries no metadata")
    discriminator = raw.get("type")
    if discriminator != METADATA_TYPE:
        raise ReconciliationSkipped(f"metadata type {discriminator!r} belongs to another flow")

    data = {key: value for key, value in raw.items() if key == "items" or not key.startswith("items")}
    joined = decode_items(raw)
    if joined is None:
        data.pop("items", None)
    else:
        try:
            data["items"] = json.loads(joined, parse_float=Decimal)
        except ValueError:
            raise ReconciliationSkipped(
                "metadata items are not valid JSON",
                order_id=raw.get("order_id") or None,
                order_number=raw.get("order_number") or None,
            )
    try:
        return ShopOrderMetadata.model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ReconciliationSkipped(
            f"malformed metadata: {', '.join(fields)}",
            order_id=raw.get("order_id") or None,
            order_number=raw.get("order_number") or None,
        )
