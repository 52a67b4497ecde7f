"""Loyalty program models: reward catalog, point balances and active discounts."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RewardDefinition(BaseModel):
    """Admin-managed catalog entry mapping a points cost to a discount.

    Stored in DynamoDB with reward_id as partition key.
    """

    reward_id: str = Field(..., description="Unique reward identifier")
    name: str = Field(..., description="Reward name")
    points_required: int = Field(..., description="Points needed to redeem", gt=0)
    discount_percentage: Decimal = Field(..., description="Percentage off the next order")
    active: bool = Field(default=True, description="Whether customers can redeem it")

    @field_validator("discount_percentage")
    @classmethod
    def validate_discount_percentage(cls, v: Decimal) -> Decimal:
        """Validate that the percentage is within (0, 100]."""
        if v <= 0 or v > 100:
            raise ValueError("discount_percentage must be between 0 and 100")
        return v

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "reward_id": self.reward_id,
            "nombre": self.name,
            "puntos_requeridos": self.points_required,
            "porcentaje_descuento": self.discount_percentage,
            "activo": self.active,
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "RewardDefinition":
        """Create RewardDefinition from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            RewardDefinition: Parsed model instance
        """
        return cls(
            reward_id=item["reward_id"],
            name=item["nombre"],
            points_required=int(item["puntos_requeridos"]),
            discount_percentage=Decimal(str(item["porcentaje_descuento"])),
            active=bool(item.get("activo", True)),
        )


class PointsBalance(BaseModel):
    """Accumulated loyalty points of a registered user.

    Stored in DynamoDB with user_id as partition key. ``active_discount_id``
    holds the user's single unconsumed discount, if any.
    """

    user_id: str = Field(..., description="Registered user identifier")
    points: int = Field(default=0, description="Available points", ge=0)
    active_discount_id: str | None = Field(None, description="Unconsumed discount slot")
    slot_claimed_at: datetime | None = Field(None, description="When the slot was claimed")

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "PointsBalance":
        """Create PointsBalance from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            PointsBalance: Parsed model instance
        """
        claimed_at = item.get("slot_claimed_at")
        return cls(
            user_id=item["user_id"],
            points=int(item.get("puntos_totales", 0)),
            active_discount_id=item.get("active_discount_id"),
            slot_claimed_at=datetime.fromisoformat(claimed_at) if claimed_at else None,
        )


class ActiveDiscount(BaseModel):
    """A redeemed reward awaiting use on a future order.

    Stored in DynamoDB with discount_id as partition key and a
    ``user_id-index`` GSI for per-user lookups.
    """

    discount_id: str = Field(..., description="Unique discount identifier")
    user_id: str = Field(..., description="Owner of the discount")
    reward_id: str = Field(..., description="Redeemed reward")
    points_used: int = Field(..., description="Points spent on redemption", ge=0)
    used: bool = Field(default=False, description="Whether applied to an order")
    order_id: str | None = Field(None, description="Order the discount was applied to")
    reward_name: str | None = Field(None, description="Reward name at redemption time")
    discount_percentage: Decimal | None = Field(
        None, description="Percentage off granted at redemption time"
    )
    created_at: datetime = Field(..., description="Redemption timestamp")
    used_at: datetime | None = Field(None, description="When the discount was applied")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "discount_id": self.discount_id,
            "user_id": self.user_id,
            "recompensa_id": self.reward_id,
            "puntos_usados": self.points_used,
            "usado": self.used,
            "created_at": self.created_at.isoformat(),
        }

        if self.order_id is not None:
            item["orden_id"] = self.order_id

        if self.reward_name is not None:
            item["nombre_recompensa"] = self.reward_name

        if self.discount_percentage is not None:
            item["porcentaje_descuento"] = self.discount_percentage

        if self.used_at is not None:
            item["usado_at"] = self.used_at.isoformat()

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "ActiveDiscount":
        """Create ActiveDiscount from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            ActiveDiscount: Parsed model instance
        """
        data: dict[str, Any] = {
            "discount_id": item["discount_id"],
            "user_id": item["user_id"],
            "reward_id": item["recompensa_id"],
            "points_used": int(item.get("puntos_usados", 0)),
            "used": bool(item.get("usado", False)),
            "order_id": item.get("orden_id"),
            "created_at": datetime.fromisoformat(item["created_at"]),
        }

        if "usado_at" in item:
            data["used_at"] = datetime.fromisoformat(item["usado_at"])

        if "porcentaje_descuento" in item:
            data["reward_name"] = item.get("nombre_recompensa")
            data["discount_percentage"] = Decimal(str(item["porcentaje_descuento"]))

        return cls(**data)


class AppliedDiscount(BaseModel):
    """Active discount resolved together with its reward's percentage."""

    discount: ActiveDiscount
    reward_name: str
    discount_percentage: Decimal
