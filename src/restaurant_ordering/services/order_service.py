"""Back-office order management."""

import logging
from dataclasses import dataclass
from enum import Enum

from restaurant_ordering.models.order_models import (
    ORDER_STATUS_SEQUENCE,
    Order,
    OrderStatusChange,
    OrderStatusEnum,
)
from restaurant_ordering.observability.decorators import traced
from restaurant_ordering.observability.metrics import record_status_change
from restaurant_ordering.repositories.order_repositories import OrderRepository
from restaurant_ordering.services.order_notifier import OrderStatusNotifier
from restaurant_ordering.services.receipt_storage import ReceiptStorage
from restaurant_ordering.services.rewards_service import RewardsService

logger = logging.getLogger(__name__)


class OrderUpdateRejection(str, Enum):
    """Reasons a status change can be rejected."""

    NOT_FOUND = "not_found"
    TERMINAL_STATUS = "terminal_status"
    CONFLICT = "conflict"


@dataclass
class OrderUpdateResult:
    """Result of a status change.

    Attributes:
        success: Whether the status was changed
        order: The order after the change (before it, on rejection)
        rejection: Why the change was rejected, None on success
        points_credited: Whether delivery credited points to the owner
    """

    success: bool
    order: Order | None = None
    rejection: OrderUpdateRejection | None = None
    points_credited: bool = False


def next_status(status: OrderStatusEnum) -> OrderStatusEnum | None:
    """Status following the given one, None for terminal statuses."""
    if status.is_terminal:
        return None
    return ORDER_STATUS_SEQUENCE[ORDER_STATUS_SEQUENCE.index(status) + 1]


class OrderService:
    """Service staff use to move orders along and look at receipts."""

    def __init__(
        self,
        order_repository: OrderRepository,
        rewards_service: RewardsService,
        receipt_storage: ReceiptStorage,
        notifier: OrderStatusNotifier,
    ) -> None:
        """Initialize the OrderService.

        Args:
            order_repository: Repository for orders
            rewards_service: Rewards ledger credited on delivery
            receipt_storage: Storage holding payment receipts
            notifier: Hub notified of every status change
        """
        self.order_repository = order_repository
        self.rewards_service = rewards_service
        self.receipt_storage = receipt_storage
        self.notifier = notifier

    @traced("orders.advance_status")
    async def advance_status(self, order_id: str) -> OrderUpdateResult:
        """Move an order to the next status of its lifecycle.

        Reaching "entregado" credits the order's points to its owner.

        Args:
            order_id: Order to advance

        Returns:
            OrderUpdateResult with the updated order or the rejection reason
        """
        order = self.order_repository.get_order(order_id)
        if order is None:
            return OrderUpdateResult(success=False, rejection=OrderUpdateRejection.NOT_FOUND)

        target = next_status(order.status)
        if target is None:
            return OrderUpdateResult(
                success=False, order=order, rejection=OrderUpdateRejection.TERMINAL_STATUS
            )

        result = await self._change_status(order, target)
        if not result.success or target != OrderStatusEnum.DELIVERED:
            return result

        if order.user_id is not None and not order.is_guest:
            result.points_credited = await self.rewards_service.credit_points(
                order.user_id, order.points_awarded
            )
            if not result.points_credited:
                logger.error(
                    f"Order {order_id} delivered but {order.points_awarded} points "
                    f"were not credited to user {order.user_id}"
                )

        return result

    @traced("orders.cancel")
    async def cancel_order(self, order_id: str, reason: str) -> OrderUpdateResult:
        """Cancel an order that has not been delivered yet.

        Args:
            order_id: Order to cancel
            reason: Cancellation reason shown to staff

        Returns:
            OrderUpdateResult with the cancelled order or the rejection reason
        """
        order = self.order_repository.get_order(order_id)
        if order is None:
            return OrderUpdateResult(success=False, rejection=OrderUpdateRejection.NOT_FOUND)

        if order.status.is_terminal:
            return OrderUpdateResult(
                success=False, order=order, rejection=OrderUpdateRejection.TERMINAL_STATUS
            )

        return await self._change_status(order, OrderStatusEnum.CANCELLED, reason)

    async def get_receipt_url(self, order_id: str, ttl_seconds: int = 300) -> str | None:
        """Signed URL to view an order's payment receipt.

        Returns:
            URL, or None if the order or its receipt does not exist
        """
        order = self.order_repository.get_order(order_id)
        if order is None or not order.receipt_path:
            return None
        return self.receipt_storage.create_signed_url(order.receipt_path, ttl_seconds)

    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        return self.order_repository.list_orders_for_user(user_id)

    async def _change_status(
        self, order: Order, target: OrderStatusEnum, reason: str | None = None
    ) -> OrderUpdateResult:
        previous = order.status
        if not self.order_repository.update_status(
            order.order_id, target, expected_status=previous, cancellation_reason=reason
        ):
            return OrderUpdateResult(
                success=False, order=order, rejection=OrderUpdateRejection.CONFLICT
            )

        updated = order.model_copy(update={"status": target, "cancellation_reason": reason})
        record_status_change(target.value)
        logger.info(f"Order {order.order_id} moved from {previous.value} to {target.value}")

        await self.notifier.publish(
            OrderStatusChange(order_id=order.order_id, status=target, previous_status=previous)
        )
        return OrderUpdateResult(success=True, order=updated)
