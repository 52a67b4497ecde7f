"""Shared pytest fixtures and configuration for all tests."""

import os
from datetime import UTC, datetime
from decimal import Decimal

import pytest

# Entry point modules skip building the real application in test mode
os.environ.setdefault("ENVIRONMENT", "test")

from restaurant_ordering.models.order_models import (  # noqa: E402
    CartItem,
    Order,
    OrderStatusEnum,
    PaymentMethod,
)
from restaurant_ordering.models.rewards_models import (  # noqa: E402
    ActiveDiscount,
    AppliedDiscount,
    RewardDefinition,
)


@pytest.fixture
def mock_user_id() -> str:
    """Fixture providing a standard registered user ID."""
    return "user_123"


@pytest.fixture
def sample_cart_items() -> list[CartItem]:
    """Fixture providing a two-line cart: 2 x 25.00 and 1 x 12.50."""
    return [
        CartItem(id="p1", nombre="Lomo saltado", precio=Decimal("25.00"), cantidad=2),
        CartItem(id="p2", nombre="Chicha morada", precio=Decimal("12.50"), cantidad=1),
    ]


@pytest.fixture
def sample_reward() -> RewardDefinition:
    """Fixture providing a 20% reward costing 100 points."""
    return RewardDefinition(
        reward_id="rew_20",
        name="20% off",
        points_required=100,
        discount_percentage=Decimal("20"),
    )


@pytest.fixture
def sample_discount(mock_user_id: str) -> ActiveDiscount:
    """Fixture providing an unused discount of the sample reward."""
    return ActiveDiscount(
        discount_id="dsc_abc",
        user_id=mock_user_id,
        reward_id="rew_20",
        points_used=100,
        created_at=datetime(2024, 1, 15, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_applied_discount(sample_discount: ActiveDiscount) -> AppliedDiscount:
    return AppliedDiscount(
        discount=sample_discount, reward_name="20% off", discount_percentage=Decimal("20")
    )


@pytest.fixture
def sample_order(mock_user_id: str) -> Order:
    """Fixture providing a pending cash order of a registered user."""
    return Order(
        order_id="ord_1",
        user_id=mock_user_id,
        subtotal=Decimal("50.00"),
        total=Decimal("50.00"),
        payment_method=PaymentMethod.CASH_ON_DELIVERY,
        status=OrderStatusEnum.PENDING,
        tendered_amount=Decimal("60.00"),
        points_awarded=50,
        created_at=datetime(2024, 1, 15, 12, 30, tzinfo=UTC),
    )


@pytest.fixture
def mock_eventbridge_event() -> dict:
    """Fixture providing a sample EventBridge order status change event."""
    return {
        "version": "0",
        "id": "event_123",
        "detail-type": "OrderStatusChanged",
        "source": "com.restaurant.orders",
        "account": "123456789012",
        "time": "2024-01-15T10:30:00Z",
        "region": "us-east-1",
        "resources": [],
        "detail": {
            "order_id": "ord_1",
            "status": "confirmado",
            "previous_status": "pendiente",
            "timestamp": "2024-01-15T10:30:00Z",
        },
    }
