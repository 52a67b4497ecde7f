"""Custom metrics for the ordering service."""

from opentelemetry import metrics

meter = metrics.get_meter("ordering-svc")

orders_placed_counter = meter.create_counter(
    name="orders_placed_total",
    description="Total number of orders placed by payment method and customer type",
    unit="1",
)

checkout_failure_counter = meter.create_counter(
    name="checkout_failure_total",
    description="Total number of checkout submissions that failed by step",
    unit="1",
)

order_value_histogram = meter.create_histogram(
    name="order_total_amount",
    description="Order totals after discounts",
    unit="1",
)

rewards_redeemed_counter = meter.create_counter(
    name="rewards_redeemed_total",
    description="Total number of rewards redeemed",
    unit="1",
)

discount_consume_failure_counter = meter.create_counter(
    name="discount_consume_failure_total",
    description="Orders placed whose discount could not be marked as used",
    unit="1",
)

order_status_change_counter = meter.create_counter(
    name="order_status_change_total",
    description="Total number of order status transitions by target status",
    unit="1",
)


def record_order_placed(payment_method: str, is_guest: bool, total: float) -> None:
    """Record a successfully placed order.

    Args:
        payment_method: Payment method value (e.g., "efectivo")
        is_guest: Whether the order came from the guest table flow
        total: Order total after discount
    """
    attributes = {"payment_method": payment_method, "guest": is_guest}
    orders_placed_counter.add(1, attributes)
    order_value_histogram.record(total, attributes)


def record_checkout_failure(step: str) -> None:
    """Record a failed checkout submission.

    Args:
        step: Submission step that failed (e.g., "receipt_upload", "order_insert")
    """
    checkout_failure_counter.add(1, {"step": step})


def record_reward_redeemed(reward_id: str) -> None:
    rewards_redeemed_counter.add(1, {"reward_id": reward_id})


def record_discount_consume_failure() -> None:
    discount_consume_failure_counter.add(1)


def record_status_change(status: str) -> None:
    order_status_change_counter.add(1, {"status": status})
