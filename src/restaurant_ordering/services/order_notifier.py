"""In-process hub for order status change notifications."""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from restaurant_ordering.models.order_models import OrderStatusChange

logger = logging.getLogger(__name__)

StatusCallback = Callable[[OrderStatusChange], Awaitable[None] | None]


class Subscription:
    """Handle returned by OrderStatusNotifier.subscribe.

    Calling unsubscribe more than once is harmless.
    """

    def __init__(self, notifier: "OrderStatusNotifier", order_id: str, callback: StatusCallback) -> None:
        self.notifier = notifier
        self.order_id = order_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.notifier._remove(self)
            self.active = False


class OrderStatusNotifier:
    """Delivers order status changes to the callbacks watching that order.

    Changes are published by the order service when staff move an order along
    and by the event handler when a change arrives from EventBridge.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, order_id: str, callback: StatusCallback) -> Subscription:
        """Register a callback for status changes of one order.

        Args:
            order_id: Order to watch
            callback: Function or coroutine function receiving each change

        Returns:
            Subscription handle used to stop listening
        """
        subscription = Subscription(self, order_id, callback)
        self._subscriptions[order_id].append(subscription)
        logger.debug(f"Subscribed to status changes of order {order_id}")
        return subscription

    def subscriber_count(self, order_id: str) -> int:
        return len(self._subscriptions.get(order_id, []))

    async def publish(self, change: OrderStatusChange) -> int:
        """Deliver a change to the subscribers of its order.

        A failing callback is logged and does not prevent delivery to the
        remaining subscribers.

        Args:
            change: The status change to deliver

        Returns:
            Number of callbacks that received the change
        """
        delivered = 0
        for subscription in list(self._subscriptions.get(change.order_id, [])):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(change)
                if result is not None:
                    await result
                delivered += 1
            except Exception as e:
                logger.exception(
                    f"Status callback for order {change.order_id} failed: {e}"
                )
        return delivered

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.order_id)
        if not subscriptions:
            return

        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.order_id]
