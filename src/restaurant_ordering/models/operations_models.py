"""Back-office models: waiter table assignments and cash register closings."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator


class TableAssignment(BaseModel):
    """Range of tables a waiter serves on a given day and shift.

    Stored in DynamoDB with (assignment_date, waiter_id) as composite key.
    """

    assignment_date: date = Field(..., description="Day the assignment applies to")
    waiter_id: str = Field(..., description="Assigned waiter")
    first_table: int = Field(..., description="First table of the range", ge=1)
    last_table: int = Field(..., description="Last table of the range", ge=1)
    shift: str = Field(default="completo", description="Shift name")

    @model_validator(mode="after")
    def validate_range(self) -> "TableAssignment":
        """Validate that the table range is not inverted."""
        if self.last_table < self.first_table:
            raise ValueError("last_table must be greater than or equal to first_table")
        return self

    def covers(self, table_number: int) -> bool:
        """Whether the table falls within this assignment's range."""
        return self.first_table <= table_number <= self.last_table

    def overlaps(self, other: "TableAssignment") -> bool:
        """Whether both ranges share at least one table."""
        return self.first_table <= other.last_table and other.first_table <= self.last_table

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "fecha": self.assignment_date.isoformat(),
            "mesero_id": self.waiter_id,
            "mesa_inicio": self.first_table,
            "mesa_fin": self.last_table,
            "turno": self.shift,
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "TableAssignment":
        """Create TableAssignment from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            TableAssignment: Parsed model instance
        """
        return cls(
            assignment_date=date.fromisoformat(item["fecha"]),
            waiter_id=item["mesero_id"],
            first_table=int(item["mesa_inicio"]),
            last_table=int(item["mesa_fin"]),
            shift=item.get("turno", "completo"),
        )


class CashRegisterClosing(BaseModel):
    """End-of-day summary of delivered sales per payment method.

    Stored in DynamoDB with closing_date as partition key, one per day.
    """

    closing_date: date = Field(..., description="Day being closed")
    total_sales: Decimal = Field(default=Decimal("0"), ge=0)
    total_cash: Decimal = Field(default=Decimal("0"), ge=0)
    total_digital_wallet: Decimal = Field(default=Decimal("0"), ge=0)
    total_card: Decimal = Field(default=Decimal("0"), ge=0)
    delivered_orders: int = Field(default=0, ge=0)
    cancelled_orders: int = Field(default=0, ge=0)
    created_at: datetime = Field(..., description="When the closing was recorded")
    created_by: str | None = Field(None, description="Staff member who closed the day")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "fecha": self.closing_date.isoformat(),
            "total_ventas": self.total_sales,
            "total_efectivo": self.total_cash,
            "total_yape_plin": self.total_digital_wallet,
            "total_tarjeta": self.total_card,
            "ordenes_entregadas": self.delivered_orders,
            "ordenes_canceladas": self.cancelled_orders,
            "created_at": self.created_at.isoformat(),
        }

        if self.created_by is not None:
            item["created_by"] = self.created_by

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "CashRegisterClosing":
        """Create CashRegisterClosing from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            CashRegisterClosing: Parsed model instance
        """
        return cls(
            closing_date=date.fromisoformat(item["fecha"]),
            total_sales=Decimal(str(item.get("total_ventas", 0))),
            total_cash=Decimal(str(item.get("total_efectivo", 0))),
            total_digital_wallet=Decimal(str(item.get("total_yape_plin", 0))),
            total_card=Decimal(str(item.get("total_tarjeta", 0))),
            delivered_orders=int(item.get("ordenes_entregadas", 0)),
            cancelled_orders=int(item.get("ordenes_canceladas", 0)),
            created_at=datetime.fromisoformat(item["created_at"]),
            created_by=item.get("created_by"),
        )
