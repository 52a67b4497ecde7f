"""EventBridge event handler for order status change events."""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from restaurant_ordering.models.order_models import OrderStatusChange, OrderStatusEnum
from restaurant_ordering.services.order_notifier import OrderStatusNotifier

logger = logging.getLogger(__name__)

ORDER_EVENT_SOURCE = "com.restaurant.orders"
ORDER_STATUS_CHANGED = "OrderStatusChanged"


class OrderStatusChangedEvent(BaseModel):
    """Model for order status change events from EventBridge.

    Attributes:
        order_id: The order whose status changed
        status: New status of the order
        previous_status: Status before the change, when known
        timestamp: ISO 8601 timestamp of when the change happened
    """

    order_id: str
    status: OrderStatusEnum
    previous_status: OrderStatusEnum | None = None
    timestamp: str | None = None

    def to_status_change(self) -> OrderStatusChange:
        return OrderStatusChange(
            order_id=self.order_id, status=self.status, previous_status=self.previous_status
        )


def parse_eventbridge_event(event: dict[str, Any]) -> OrderStatusChangedEvent | None:
    """Parse an EventBridge event into an OrderStatusChangedEvent.

    Args:
        event: Raw EventBridge event dictionary

    Returns:
        OrderStatusChangedEvent if parsing succeeds, None otherwise
    """
    try:
        detail = event.get("detail", {})
        return OrderStatusChangedEvent(**detail)
    except (ValidationError, TypeError) as e:
        logger.error(f"Failed to parse EventBridge event: {e}")
        return None


class OrderEventHandler:
    """Forwards order status changes from EventBridge to the notification hub.

    Changes made by other instances (or by the back office directly in the
    database) reach the checkout sessions waiting in this process this way.
    """

    def __init__(self, notifier: OrderStatusNotifier) -> None:
        self.notifier = notifier

    async def handle_status_changed(self, event: OrderStatusChangedEvent) -> int:
        """Publish a status change to the subscribers of the order.

        Args:
            event: The status change event to process

        Returns:
            Number of subscribers notified
        """
        logger.info(f"Order {event.order_id} changed status to {event.status.value}")
        delivered = await self.notifier.publish(event.to_status_change())

        if delivered:
            logger.info(f"Notified {delivered} subscriber(s) of order {event.order_id}")
        return delivered

    async def handle_eventbridge_event(
        self, event: dict[str, Any], _context: Any
    ) -> dict[str, Any]:
        """Entry point for a raw EventBridge event.

        Args:
            event: EventBridge event dictionary
            _context: Lambda context object (unused)

        Returns:
            Dictionary with statusCode and body for Lambda response
        """
        status_event = parse_eventbridge_event(event)
        if not status_event:
            return {
                "statusCode": 400,
                "body": "Invalid event format",
            }

        delivered = await self.handle_status_changed(status_event)
        return {
            "statusCode": 200,
            "body": f"Order {status_event.order_id} status change delivered to {delivered} subscriber(s)",
        }
