from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

class CartLine(BaseModel):
    product_id: str
    variant_id: str
    name: str
    price: Decimal = Field(ge=0, decimal_places=2)
    quantity: int = 1
    color: str = ""
    size: str = ""
    image: str = ""

class ShippingAddress(BaseModel):
    name: Optional[str] = None
    street: Optional[str] = None
    apartment: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

class CheckoutRequest(BaseModel):
    items: list[CartLine] = []
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    shipping_address: Optional[ShippingAddress] = None

class CartCheckoutRequest(BaseModel):
    shipping_address: Optional[ShippingAddress] = None

class CheckoutResponse(BaseModel):
    url: str
    session_id: str
    order_id: Optional[str] = None
    order_number: str

class CheckoutStatus(BaseModel):
    session_id: str
    cart_cleared: bool
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    status: str

class CartAdd(BaseModel):
    product_id: str
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = 1

class CartQuantity(BaseModel):
    quantity: int

class CartItemRead(BaseModel):
    product_id: str
    variant_id: str
    name: str
    price: float
    quantity: int
    color: str
    size: str
    image: str

class CartRead(BaseModel):
    cart_id: str
    items: list[CartItemRead]
    subtotal: float
    shipping: float
    total: float

class OrderItemRead(BaseModel):
    id: int
    line_number: int
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: str
    product_image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: str
    order_number: str
    user_id: Optional[str] = None
    status: str
    subtotal: float
    shipping: float
    tax: float
    total: float
    currency: str
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    shipping_address: Optional[dict] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemRead] = []
    class Config:
        from_attributes = True

class OrderStatusUpdate(BaseModel):
    # Payment-driven statuses and fields are not writable here
    status: Literal["processing", "shipped", "delivered", "cancelled"]
    notes: Optional[str] = None

class ProductVariantRead(BaseModel):
    id: str
    sku: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    price_override: Optional[float] = None
    class Config:
        from_attributes = True

class ProductRead(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    base_price: float
    images: list[str] = []
    sizes: list[str] = []
    colors: list[str] = []
    variants: list[ProductVariantRead] = []
    class Config:
        from_attributes = True

class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    reason: Optional[str] = None
