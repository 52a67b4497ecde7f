"""End-of-day cash register closing."""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from restaurant_ordering.models.operations_models import CashRegisterClosing
from restaurant_ordering.models.order_models import Order, OrderStatusEnum, PaymentMethod
from restaurant_ordering.observability.decorators import traced
from restaurant_ordering.repositories.operations_repositories import CashClosingRepository
from restaurant_ordering.repositories.order_repositories import OrderRepository

logger = logging.getLogger(__name__)


@dataclass
class ClosingResult:
    """Result of closing a day.

    Attributes:
        success: Whether the closing was recorded
        closing: The recorded closing, or the existing one if already closed
        already_closed: Whether the day had been closed before
        error_message: Message for staff on failure
    """

    success: bool
    closing: CashRegisterClosing | None = None
    already_closed: bool = False
    error_message: str | None = None


def summarize_orders(
    orders: list[Order], closing_date: date, created_by: str | None = None
) -> CashRegisterClosing:
    """Total the delivered orders of a day per payment method.

    Args:
        orders: Every order created that day
        closing_date: Day being closed
        created_by: Staff member closing the day

    Returns:
        CashRegisterClosing with the day's totals
    """
    totals = {method: Decimal("0") for method in PaymentMethod}
    delivered = 0
    cancelled = 0

    for order in orders:
        if order.status == OrderStatusEnum.DELIVERED:
            totals[order.payment_method] += order.total
            delivered += 1
        elif order.status == OrderStatusEnum.CANCELLED:
            cancelled += 1

    return CashRegisterClosing(
        closing_date=closing_date,
        total_sales=sum(totals.values(), Decimal("0")),
        total_cash=totals[PaymentMethod.CASH_ON_DELIVERY],
        total_digital_wallet=totals[PaymentMethod.DIGITAL_WALLET_QR],
        total_card=totals[PaymentMethod.CARD_ON_DELIVERY],
        delivered_orders=delivered,
        cancelled_orders=cancelled,
        created_at=datetime.now(UTC),
        created_by=created_by,
    )


class CashRegisterService:
    """Service recording the daily cash register closing."""

    def __init__(
        self, order_repository: OrderRepository, closing_repository: CashClosingRepository
    ) -> None:
        self.order_repository = order_repository
        self.closing_repository = closing_repository

    @traced("cash_register.close_day")
    async def close_day(self, closing_date: date, created_by: str | None = None) -> ClosingResult:
        """Close the cash register for a day.

        Args:
            closing_date: Day to close
            created_by: Staff member closing the day

        Returns:
            ClosingResult with the recorded closing
        """
        existing = self.closing_repository.get_closing(closing_date)
        if existing is not None:
            return ClosingResult(
                success=False,
                closing=existing,
                already_closed=True,
                error_message="The cash register for this day is already closed",
            )

        orders = self.order_repository.list_orders_for_date(closing_date.isoformat())
        if orders is None:
            return ClosingResult(
                success=False, error_message="Could not load the orders of the day"
            )

        closing = summarize_orders(orders, closing_date, created_by)
        if not self.closing_repository.save_closing(closing):
            return ClosingResult(
                success=False, error_message="Could not save the cash register closing"
            )

        logger.info(
            f"Cash register closed for {closing_date}: {closing.delivered_orders} delivered, "
            f"total {closing.total_sales}"
        )
        return ClosingResult(success=True, closing=closing)
