"""Order, cart and checkout data models.

Orders are persisted in DynamoDB using the column names of the shared
storefront schema (``estado``, ``metodo_pago``, ``puntos_ganados``...), so the
existing web frontend and back office keep reading the same records.
"""

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

GUEST_PHONE_DIGITS = 9
CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    """Round a money amount to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatusEnum(str, Enum):
    """Enumeration of order status values."""

    PENDING = "pendiente"
    CONFIRMED = "confirmado"
    ON_THE_WAY = "en_camino"
    DELIVERED = "entregado"
    CANCELLED = "cancelado"

    @property
    def is_terminal(self) -> bool:
        """Whether the order can no longer change status."""
        return self in (OrderStatusEnum.DELIVERED, OrderStatusEnum.CANCELLED)


# Forward progression used by the back office "next status" action
ORDER_STATUS_SEQUENCE: tuple[OrderStatusEnum, ...] = (
    OrderStatusEnum.PENDING,
    OrderStatusEnum.CONFIRMED,
    OrderStatusEnum.ON_THE_WAY,
    OrderStatusEnum.DELIVERED,
)


class PaymentMethod(str, Enum):
    """Payment methods offered at checkout."""

    DIGITAL_WALLET_QR = "yape_plin"
    CASH_ON_DELIVERY = "efectivo"
    CARD_ON_DELIVERY = "tarjeta"


class CartItem(BaseModel):
    """Line item held in a checkout session's cart.

    Accepts the storefront field names (``nombre``, ``precio``, ``cantidad``,
    ``imagen_url``) as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Product identifier")
    name: str = Field(..., alias="nombre", description="Display name")
    unit_price: Decimal = Field(..., alias="precio", description="Unit price", ge=0)
    quantity: int = Field(default=1, alias="cantidad", description="Quantity", ge=1)
    image_url: str | None = Field(None, alias="imagen_url", description="Product image")

    @property
    def line_total(self) -> Decimal:
        """Price of the line (unit price times quantity)."""
        return self.unit_price * self.quantity


class OrderTotals(BaseModel):
    """Monetary breakdown of an order."""

    subtotal: Decimal
    discount_percentage: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total: Decimal

    @classmethod
    def from_subtotal(
        cls, subtotal: Decimal, discount_percentage: Decimal | int = 0
    ) -> "OrderTotals":
        """Apply a percentage discount to a subtotal.

        Args:
            subtotal: Sum of all cart lines
            discount_percentage: Percentage off (0 when no active discount)

        Returns:
            OrderTotals with discount amount and final total, both in cents
        """
        percentage = Decimal(str(discount_percentage))
        discount_amount = to_cents(subtotal * percentage / Decimal(100))
        return cls(
            subtotal=subtotal,
            discount_percentage=percentage,
            discount_amount=discount_amount,
            total=to_cents(subtotal - discount_amount),
        )

    @property
    def points(self) -> int:
        """Loyalty points earned by a registered customer for this total."""
        return math.floor(self.total)


class GuestInfo(BaseModel):
    """Self-reported identity of a guest ordering from a table."""

    name: str = Field(..., description="Guest name")
    phone: str | None = Field(None, description="Optional contact phone")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the trimmed name length."""
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        if len(v) > 100:
            raise ValueError("Name is too long")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate that a provided phone has exactly nine digits."""
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) != GUEST_PHONE_DIGITS or not v.isdigit():
            raise ValueError(f"Phone must have {GUEST_PHONE_DIGITS} digits")
        return v


class Order(BaseModel):
    """Customer order.

    Stored in DynamoDB with ``order_id`` as partition key. ``order_date`` backs
    the ``order_date-index`` GSI used for the daily cash register closing and
    ``user_id`` backs the ``user_id-index`` GSI used for order history.
    """

    order_id: str = Field(..., description="Unique order identifier")
    user_id: str | None = Field(None, description="Registered owner, None for guests")
    is_guest: bool = Field(default=False, description="Whether placed by a guest")
    guest_name: str | None = Field(None, description="Guest name")
    guest_phone: str | None = Field(None, description="Guest phone")
    table_number: int | None = Field(None, description="Table the order was placed from")
    waiter_id: str | None = Field(None, description="Waiter assigned to the table")
    subtotal: Decimal = Field(..., description="Sum of order lines", ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), description="Discount applied", ge=0)
    total: Decimal = Field(..., description="Amount due", ge=0)
    payment_method: PaymentMethod = Field(..., description="Selected payment method")
    status: OrderStatusEnum = Field(default=OrderStatusEnum.PENDING, description="Order status")
    receipt_path: str | None = Field(None, description="Object storage path of payment receipt")
    tendered_amount: Decimal | None = Field(None, description="Cash handed over by the customer")
    points_awarded: int = Field(default=0, description="Points credited on delivery", ge=0)
    cancellation_reason: str | None = Field(None, description="Why the order was cancelled")
    created_at: datetime = Field(..., description="Creation timestamp")

    @property
    def order_date(self) -> str:
        """Calendar date (YYYY-MM-DD) the order was created."""
        return self.created_at.date().isoformat()

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "order_id": self.order_id,
            "es_invitado": self.is_guest,
            "subtotal": self.subtotal,
            "descuento": self.discount_amount,
            "total": self.total,
            "metodo_pago": self.payment_method.value,
            "estado": self.status.value,
            "puntos_ganados": self.points_awarded,
            "created_at": self.created_at.isoformat(),
            "order_date": self.order_date,
        }

        optional_fields = {
            "user_id": self.user_id,
            "nombre_invitado": self.guest_name,
            "telefono_invitado": self.guest_phone,
            "numero_mesa": self.table_number,
            "mesero_id": self.waiter_id,
            "comprobante_pago": self.receipt_path,
            "monto_pago": self.tendered_amount,
            "motivo_cancelacion": self.cancellation_reason,
        }
        for key, value in optional_fields.items():
            if value is not None:
                item[key] = value

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Order":
        """Create Order from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Order: Parsed model instance
        """
        data: dict[str, Any] = {
            "order_id": item["order_id"],
            "user_id": item.get("user_id"),
            "is_guest": bool(item.get("es_invitado", False)),
            "guest_name": item.get("nombre_invitado"),
            "guest_phone": item.get("telefono_invitado"),
            "waiter_id": item.get("mesero_id"),
            "subtotal": Decimal(str(item.get("subtotal", item["total"]))),
            "discount_amount": Decimal(str(item.get("descuento", 0))),
            "total": Decimal(str(item["total"])),
            "payment_method": PaymentMethod(item["metodo_pago"]),
            "status": OrderStatusEnum(item["estado"]),
            "receipt_path": item.get("comprobante_pago"),
            "points_awarded": int(item.get("puntos_ganados", 0)),
            "cancellation_reason": item.get("motivo_cancelacion"),
            "created_at": datetime.fromisoformat(item["created_at"]),
        }

        if item.get("numero_mesa") is not None:
            data["table_number"] = int(item["numero_mesa"])

        if item.get("monto_pago") is not None:
            data["tendered_amount"] = Decimal(str(item["monto_pago"]))

        return cls(**data)


class OrderItem(BaseModel):
    """Order line with the unit price captured at order time.

    Stored in DynamoDB with (order_id, product_id) as composite key.
    """

    order_id: str = Field(..., description="Owning order")
    product_id: str = Field(..., description="Ordered product")
    quantity: int = Field(..., description="Ordered quantity", ge=1)
    unit_price: Decimal = Field(..., description="Unit price when ordered", ge=0)

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "order_id": self.order_id,
            "product_id": self.product_id,
            "cantidad": self.quantity,
            "precio_unitario": self.unit_price,
        }


class OrderStatusChange(BaseModel):
    """Notification that an order moved to a new status."""

    order_id: str
    status: OrderStatusEnum
    previous_status: OrderStatusEnum | None = None
